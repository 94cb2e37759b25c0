"""
Approval Engine - role-gated approval workflows
"""

__version__ = "0.1.0"

from .core.engine import TransitionEngine
from .core.templates import TemplateStore
from .core.sweeper import TimeoutSweeper
from .core.analyzer import MetricsAnalyzer
from .core.loader import TemplateLoader
from .models.template import WorkflowTemplate, WorkflowStep, WorkflowTransition
from .models.instance import WorkflowInstance, WorkflowExecution, InstanceStatus

__all__ = [
    "TransitionEngine",
    "TemplateStore",
    "TimeoutSweeper",
    "MetricsAnalyzer",
    "TemplateLoader",
    "WorkflowTemplate",
    "WorkflowStep",
    "WorkflowTransition",
    "WorkflowInstance",
    "WorkflowExecution",
    "InstanceStatus"
]
