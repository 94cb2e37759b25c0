"""
Workflow template definition models
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored by every backend"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


class Role(str, Enum):
    """Roles that may be assigned to a step"""
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    BOARD = "BOARD"
    JUDGE = "JUDGE"
    TALLY_MASTER = "TALLY_MASTER"
    AUDITOR = "AUDITOR"
    EMCEE = "EMCEE"
    CONTESTANT = "CONTESTANT"


class Action(str, Enum):
    """Action labels accepted by steps and used as transition conditions"""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    REVIEW = "REVIEW"
    CERTIFY = "CERTIFY"
    COMPLETE = "COMPLETE"
    TIMEOUT = "TIMEOUT"


@dataclass
class WorkflowStep:
    """A state of the workflow, gated by one role"""
    template_id: str
    name: str
    step_order: int
    required_role: str
    actions: List[str]
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    auto_advance: bool = False
    timeout_hours: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class WorkflowTransition:
    """Directed edge between two steps, triggered by an action"""
    template_id: str
    from_step_id: str
    to_step_id: str
    condition: str
    priority: int = 0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class WorkflowTemplate:
    """Reusable approval process definition"""
    name: str
    entity_type: str
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    active: bool = True
    steps: List[WorkflowStep] = field(default_factory=list)
    transitions: List[WorkflowTransition] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        """Look up a step by id"""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def get_initial_step(self) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.step_order == 1:
                return step
        return None

    def get_outgoing(self, step_id: str, condition: str = None) -> List[WorkflowTransition]:
        """Transitions leaving a step, optionally filtered by condition"""
        return [
            t for t in self.transitions
            if t.from_step_id == step_id and (condition is None or t.condition == condition)
        ]

    def ordered_steps(self) -> List[WorkflowStep]:
        return sorted(self.steps, key=lambda s: s.step_order)
