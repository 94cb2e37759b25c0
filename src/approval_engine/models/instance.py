"""
Workflow instance and execution history models
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .template import new_id, utcnow


class InstanceStatus(str, Enum):
    """Coarse status layered over the current step"""
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self is not InstanceStatus.IN_PROGRESS


@dataclass
class Actor:
    """Identity and role supplied by the caller"""
    id: str
    role: str
    is_system: bool = False


@dataclass
class WorkflowInstance:
    """A live execution of a template against one business entity"""
    template_id: str
    entity_type: str
    entity_id: str
    current_step_id: str
    initiated_by: str
    id: str = field(default_factory=new_id)
    status: InstanceStatus = InstanceStatus.IN_PROGRESS
    version: int = 0
    started_at: datetime = field(default_factory=utcnow)
    step_entered_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_terminal_state(self) -> bool:
        return self.status.is_terminal

    def finish(self, status: InstanceStatus, at: datetime):
        """Move to a terminal status, stamping completed_at once"""
        self.status = status
        if self.completed_at is None:
            self.completed_at = at

    def move_to(self, step_id: str, at: datetime):
        self.current_step_id = step_id
        self.step_entered_at = at

    @property
    def duration(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class WorkflowExecution:
    """Immutable history record of one committed action"""
    instance_id: str
    sequence: int
    step_id: str
    actor_id: str
    actor_role: str
    action: str
    id: str = field(default_factory=new_id)
    to_step_id: Optional[str] = None
    comments: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
