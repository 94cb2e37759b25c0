"""
Timeout sweeper tests
"""
import asyncio
from datetime import timedelta

import pytest

from approval_engine.core.loader import TemplateLoader
from approval_engine.core.sweeper import TimeoutSweeper
from approval_engine.exceptions import ConcurrencyConflict
from approval_engine.models.instance import InstanceStatus
from approval_engine.models.template import utcnow

from conftest import build_template


def backdate(services, instance_id, hours):
    """Pretend the instance entered its current step ``hours`` ago"""
    stored = services.instance_repository.instances[instance_id]
    stored.step_entered_at = utcnow() - timedelta(hours=hours)


class TestTimeoutSweeper:
    """TimeoutSweeper tests"""

    @pytest.mark.asyncio
    async def test_overdue_step_without_route_times_out(self, services, engine, sweeper, timed_template):
        instance = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-1", "org-1")
        backdate(services, instance.id, hours=2)

        report = await sweeper.sweep_once()

        assert report.scanned == 1
        assert report.timed_out == 1
        stored = (await engine.get_instance(instance.id)).instance
        assert stored.status == InstanceStatus.TIMED_OUT
        assert stored.completed_at is not None
        assert stored.version == 1

        history = await engine.get_history(instance.id)
        assert len(history) == 1
        assert history[0].action == "TIMEOUT"
        assert history[0].actor_id == "system"

    @pytest.mark.asyncio
    async def test_second_sweep_is_noop(self, services, engine, sweeper, timed_template):
        instance = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-1", "org-1")
        backdate(services, instance.id, hours=2)
        await sweeper.sweep_once()

        report = await sweeper.sweep_once()

        assert report.timed_out == 0
        assert report.advanced == 0
        stored = (await engine.get_instance(instance.id)).instance
        assert stored.version == 1
        assert len(await engine.get_history(instance.id)) == 1

    @pytest.mark.asyncio
    async def test_step_within_deadline_untouched(self, services, engine, sweeper, timed_template):
        instance = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-1", "org-1")
        backdate(services, instance.id, hours=0.5)

        report = await sweeper.sweep_once()

        assert report.scanned == 1
        assert report.timed_out == 0
        assert (await engine.get_instance(instance.id)).instance.status == InstanceStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_sweep_with_explicit_clock(self, engine, sweeper, timed_template):
        instance = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-1", "org-1")

        report = await sweeper.sweep_once(now=utcnow() + timedelta(hours=3))

        assert report.timed_out == 1
        assert (await engine.get_instance(instance.id)).instance.status == InstanceStatus.TIMED_OUT

    @pytest.mark.asyncio
    async def test_timeout_transition_is_followed(self, services, store, engine, sweeper, sample_definition):
        loader = TemplateLoader()
        template_id = await loader.install(loader.parse(sample_definition), store)
        template = await store.get_template(template_id)
        steps = {s.name: s.id for s in template.steps}

        instance = await engine.start_instance(template_id, "CONTESTANT", "c-1", "org-1")
        await engine.advance_instance(instance.id, "org-1", "ORGANIZER", "APPROVE")
        backdate(services, instance.id, hours=73)

        report = await sweeper.sweep_once()

        assert report.advanced == 1
        stored = (await engine.get_instance(instance.id)).instance
        assert stored.status == InstanceStatus.IN_PROGRESS
        assert stored.current_step_id == steps["Escalation"]
        last = (await engine.get_history(instance.id))[-1]
        assert last.action == "TIMEOUT"
        assert last.actor_role == "BOARD"
        assert last.to_step_id == steps["Escalation"]

    @pytest.mark.asyncio
    async def test_timeout_route_followed_without_timeout_action(self, engine, store, sweeper):
        ids = await build_template(
            store,
            steps=[
                ("review", 1, "ORGANIZER", ["APPROVE"], False, 1),
                ("escalation", 2, "ADMIN", ["COMPLETE"], False, None),
            ],
            transitions=[
                ("review", "escalation", "APPROVE", 0),
                ("review", "escalation", "TIMEOUT", 0),
            ]
        )
        instance = await engine.start_instance(ids["template"], "CONTESTANT", "c-1", "org-1")

        report = await sweeper.sweep_once(now=utcnow() + timedelta(hours=2))

        assert report.advanced == 1
        assert report.timed_out == 0
        stored = (await engine.get_instance(instance.id)).instance
        assert stored.status == InstanceStatus.IN_PROGRESS
        assert stored.current_step_id == ids["escalation"]
        last = (await engine.get_history(instance.id))[-1]
        assert last.action == "TIMEOUT"
        assert last.to_step_id == ids["escalation"]

    @pytest.mark.asyncio
    async def test_stale_expiry_is_noop(self, engine, timed_template):
        instance = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-1", "org-1")
        await engine.advance_instance(instance.id, "org-1", "ORGANIZER", "APPROVE")

        # observed before the human acted
        result = await engine.expire_instance(instance.id, timed_template["review"], 0)

        assert result is None
        assert (await engine.get_instance(instance.id)).instance.version == 1

    @pytest.mark.asyncio
    async def test_conflict_counts_as_skipped(self, services, engine, sweeper, timed_template, monkeypatch):
        instance = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-1", "org-1")
        backdate(services, instance.id, hours=2)

        async def racing(instance_id, step_id, version, now=None):
            raise ConcurrencyConflict(instance_id, version, version + 1)

        monkeypatch.setattr(engine, "expire_instance", racing)
        report = await sweeper.sweep_once()

        assert report.skipped == 1
        assert report.failed == 0

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self, services, engine, sweeper, timed_template, monkeypatch):
        first = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-1", "org-1")
        second = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-2", "org-1")
        backdate(services, first.id, hours=2)
        backdate(services, second.id, hours=2)
        original = engine.expire_instance

        async def flaky(instance_id, step_id, version, now=None):
            if instance_id == first.id:
                raise RuntimeError("database unavailable")
            return await original(instance_id, step_id, version, now=now)

        monkeypatch.setattr(engine, "expire_instance", flaky)
        report = await sweeper.sweep_once()

        assert report.failed == 1
        assert report.timed_out == 1
        assert (await engine.get_instance(second.id)).instance.status == InstanceStatus.TIMED_OUT

    @pytest.mark.asyncio
    async def test_background_loop(self, services, engine, timed_template):
        instance = await engine.start_instance(timed_template["template"], "CONTESTANT", "c-1", "org-1")
        backdate(services, instance.id, hours=2)
        sweeper = TimeoutSweeper(engine, interval_seconds=0.01)

        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert not sweeper.running
        assert (await engine.get_instance(instance.id)).instance.status == InstanceStatus.TIMED_OUT
