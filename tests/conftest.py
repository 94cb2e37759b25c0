"""
Pytest configuration and shared fixtures
"""
import pytest
from typing import Dict

from approval_engine.config import EngineSettings
from approval_engine.services import ApprovalServices, build_services
from approval_engine.storage.repository import InMemoryTemplateRepository, InMemoryInstanceRepository


@pytest.fixture
def settings() -> EngineSettings:
    """Settings for in-process tests"""
    return EngineSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        sweeper_enabled=False,
        auth_disabled=True,
        bottleneck_threshold=1.5
    )


@pytest.fixture
def services(settings) -> ApprovalServices:
    """Engine components over in-memory repositories"""
    return build_services(InMemoryTemplateRepository(), InMemoryInstanceRepository(), settings)


@pytest.fixture
def store(services):
    return services.template_store


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def analyzer(services):
    return services.analyzer


@pytest.fixture
def sweeper(services):
    return services.sweeper


async def build_template(store, steps, transitions, name="T", entity_type="CONTESTANT") -> Dict[str, str]:
    """Create a template from compact step/transition tuples.

    ``steps``: ``(key, order, role, actions, auto_advance, timeout_hours)``
    ``transitions``: ``(from_key, to_key, condition, priority)``

    Returns the step ids by key plus the template id under ``"template"``.
    """
    template_id = await store.create_template(name, description=f"{name} workflow", entity_type=entity_type)
    ids = {"template": template_id}
    for key, order, role, actions, auto_advance, timeout_hours in steps:
        ids[key] = await store.add_step(
            template_id,
            name=key,
            step_order=order,
            required_role=role,
            actions=actions,
            auto_advance=auto_advance,
            timeout_hours=timeout_hours
        )
    for from_key, to_key, condition, priority in transitions:
        await store.add_transition(template_id, ids[from_key], ids[to_key], condition, priority)
    return ids


@pytest.fixture
async def scenario_template(store) -> Dict[str, str]:
    """Organizer review, board approval, automatic completion"""
    return await build_template(
        store,
        steps=[
            ("S1", 1, "ORGANIZER", ["APPROVE", "REJECT"], False, None),
            ("S2", 2, "BOARD", ["APPROVE", "REJECT"], False, None),
            ("S3", 3, "ADMIN", ["COMPLETE"], True, None),
        ],
        transitions=[
            ("S1", "S2", "APPROVE", 0),
            ("S2", "S3", "APPROVE", 0),
        ]
    )


@pytest.fixture
async def timed_template(store) -> Dict[str, str]:
    """Single review step with a one hour deadline and no timeout route"""
    return await build_template(
        store,
        steps=[
            ("review", 1, "ORGANIZER", ["APPROVE", "REJECT"], False, 1),
            ("done", 2, "ADMIN", ["COMPLETE"], False, None),
        ],
        transitions=[
            ("review", "done", "APPROVE", 0),
        ],
        name="Timed"
    )


@pytest.fixture
def sample_definition() -> dict:
    """Template definition in loader format"""
    return {
        "template": {
            "name": "Contestant registration",
            "entity_type": "CONTESTANT",
            "description": "Review then board approval",
            "steps": [
                {"key": "review", "name": "Initial review", "order": 1, "role": "ORGANIZER",
                 "actions": ["APPROVE", "REJECT"], "timeout_hours": 48},
                {"key": "board", "name": "Board approval", "order": 2, "role": "BOARD",
                 "actions": ["APPROVE", "REJECT", "TIMEOUT"], "timeout_hours": 72},
                {"key": "escalation", "name": "Escalation", "order": 3, "role": "ADMIN",
                 "actions": ["APPROVE", "REJECT"]},
                {"key": "register", "name": "Registration", "order": 4, "role": "ADMIN",
                 "actions": ["COMPLETE"], "auto_advance": True},
            ],
            "transitions": [
                {"from": "review", "to": "board", "action": "APPROVE"},
                {"from": "board", "to": "register", "action": "APPROVE"},
                {"from": "board", "to": "escalation", "action": "TIMEOUT"},
                {"from": "escalation", "to": "register", "action": "APPROVE"},
            ]
        }
    }
