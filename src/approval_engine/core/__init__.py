"""Core approval engine components"""

from .engine import TransitionEngine, InstanceDetails, TemplateSummary
from .templates import TemplateStore
from .validator import ValidationIssue, ValidationResult, validate_template
from .sweeper import TimeoutSweeper, SweepReport
from .analyzer import MetricsAnalyzer, WorkflowMetrics, BottleneckReport, StepDwell
from .loader import TemplateLoader

__all__ = [
    "TransitionEngine",
    "InstanceDetails",
    "TemplateSummary",
    "TemplateStore",
    "ValidationIssue",
    "ValidationResult",
    "validate_template",
    "TimeoutSweeper",
    "SweepReport",
    "MetricsAnalyzer",
    "WorkflowMetrics",
    "BottleneckReport",
    "StepDwell",
    "TemplateLoader"
]
