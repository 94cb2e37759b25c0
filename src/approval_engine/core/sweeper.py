"""
Timeout sweeper
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..exceptions import ConcurrencyConflict
from ..models.template import WorkflowTemplate, utcnow
from ..models.instance import InstanceStatus
from .engine import TransitionEngine


logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome counts of one sweep"""
    scanned: int = 0
    advanced: int = 0
    timed_out: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "scanned": self.scanned,
            "advanced": self.advanced,
            "timed_out": self.timed_out,
            "skipped": self.skipped,
            "failed": self.failed
        }


class TimeoutSweeper:
    """Periodically forces the timeout outcome of overdue steps.

    The sweeper is just another caller of the transition engine; a human
    acting on the same instance at the same moment is resolved by the
    engine's version check, and the loser here is counted as skipped.
    """

    def __init__(self, engine: TransitionEngine, interval_seconds: float = 300):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._sweeper_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._sweeper_task is not None

    async def start(self):
        if self._sweeper_task:
            return

        self._stop_event.clear()
        self._sweeper_task = asyncio.create_task(self._sweeper_loop())
        logger.info(f"Timeout sweeper started (interval {self.interval_seconds}s)")

    async def stop(self):
        if not self._sweeper_task:
            return

        self._stop_event.set()
        await self._sweeper_task
        self._sweeper_task = None
        logger.info("Timeout sweeper stopped")

    async def sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        """Scan in-progress instances once and expire the overdue ones"""
        now = now or utcnow()
        report = SweepReport()
        templates: Dict[str, Optional[WorkflowTemplate]] = {}

        instances = await self.engine.instance_repository.list_instances(
            status=InstanceStatus.IN_PROGRESS
        )
        for instance in instances:
            report.scanned += 1
            try:
                if instance.template_id not in templates:
                    templates[instance.template_id] = await self.engine.template_repository.get_template(
                        instance.template_id
                    )
                template = templates[instance.template_id]
                step = template.get_step(instance.current_step_id) if template else None
                if step is None or step.timeout_hours is None:
                    continue
                if now - instance.step_entered_at <= timedelta(hours=step.timeout_hours):
                    continue

                updated = await self.engine.expire_instance(
                    instance.id, instance.current_step_id, instance.version, now=now
                )
            except ConcurrencyConflict:
                logger.debug(f"Instance {instance.id} moved during sweep; skipping")
                report.skipped += 1
                continue
            except Exception as e:
                logger.error(f"Failed to sweep instance {instance.id}: {e}", exc_info=True)
                report.failed += 1
                continue

            if updated is None:
                report.skipped += 1
            elif updated.status == InstanceStatus.IN_PROGRESS:
                report.advanced += 1
            else:
                report.timed_out += 1

        if report.advanced or report.timed_out or report.failed:
            logger.info(f"Sweep finished: {report.to_dict()}")
        return report

    async def _sweeper_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.sweep_once()
            except Exception as e:
                # retried on the next interval
                logger.error(f"Sweeper loop error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
