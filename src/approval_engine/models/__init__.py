"""Template, instance and execution models"""

from .template import (
    WorkflowTemplate, WorkflowStep, WorkflowTransition, Role, Action,
    utcnow, new_id
)
from .instance import (
    WorkflowInstance, WorkflowExecution, InstanceStatus, Actor
)

__all__ = [
    "WorkflowTemplate",
    "WorkflowStep",
    "WorkflowTransition",
    "Role",
    "Action",
    "utcnow",
    "new_id",
    "WorkflowInstance",
    "WorkflowExecution",
    "InstanceStatus",
    "Actor"
]
