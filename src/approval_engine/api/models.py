"""
API request and response models
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..models.template import Role, Action, utcnow
from ..models.instance import InstanceStatus


# Template models

class TemplateCreateRequest(BaseModel):
    """Create template request"""
    name: str = Field(..., min_length=1, description="Template name")
    entity_type: str = Field(..., min_length=1, description="Kind of business object governed")
    description: Optional[str] = Field(None, description="Description")
    active: bool = Field(True, description="Whether new instances may start")


class TemplateUpdateRequest(BaseModel):
    """Update template request"""
    name: Optional[str] = Field(None, min_length=1, description="Template name")
    description: Optional[str] = Field(None, description="Description")
    active: Optional[bool] = Field(None, description="Whether new instances may start")


class StepCreateRequest(BaseModel):
    """Add step request"""
    name: str = Field(..., min_length=1, description="Step name")
    step_order: int = Field(..., ge=1, description="Position within the template")
    required_role: Role = Field(..., description="Only role allowed to act on the step")
    actions: List[Action] = Field(..., min_length=1, description="Accepted actions")
    auto_advance: bool = Field(False, description="Engine performs the sole action itself")
    timeout_hours: Optional[float] = Field(None, gt=0, description="Deadline before the sweeper intervenes")
    description: Optional[str] = Field(None, description="Description")


class TransitionCreateRequest(BaseModel):
    """Add transition request"""
    from_step_id: str = Field(..., description="Source step ID")
    to_step_id: str = Field(..., description="Target step ID")
    condition: Action = Field(..., description="Action that triggers the transition")
    priority: int = Field(0, description="Highest priority wins")


class StepResponse(BaseModel):
    id: str
    template_id: str
    name: str
    description: Optional[str] = None
    step_order: int
    required_role: str
    actions: List[str]
    auto_advance: bool
    timeout_hours: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class TransitionResponse(BaseModel):
    id: str
    template_id: str
    from_step_id: str
    to_step_id: str
    condition: str
    priority: int

    model_config = ConfigDict(from_attributes=True)


class TemplateResponse(BaseModel):
    """Template with steps and transitions"""
    id: str
    name: str
    entity_type: str
    description: Optional[str] = None
    active: bool
    created_at: datetime
    updated_at: datetime
    steps: List[StepResponse] = Field(default_factory=list)
    transitions: List[TransitionResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class ValidationIssueResponse(BaseModel):
    code: str
    message: str
    step_id: Optional[str] = None
    transition_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: List[ValidationIssueResponse] = Field(default_factory=list)


class TemplateDeleteResponse(BaseModel):
    template_id: str
    deleted: bool = Field(..., description="True when removed, False when only deactivated")


# Instance models

class InstanceStartRequest(BaseModel):
    """Start instance request"""
    template_id: str = Field(..., description="Template ID")
    entity_type: str = Field(..., min_length=1, description="Business object kind")
    entity_id: str = Field(..., min_length=1, description="Business object ID")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Metadata")


class AdvanceRequest(BaseModel):
    """Advance instance request"""
    action: str = Field(..., description="Action taken at the current step")
    comments: Optional[str] = Field(None, description="Free-text comments")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Structured metadata")


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Why the instance is cancelled")


class InstanceResponse(BaseModel):
    id: str
    template_id: str
    entity_type: str
    entity_id: str
    status: InstanceStatus
    current_step_id: str
    version: int
    initiated_by: str
    started_at: datetime
    step_entered_at: datetime
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class TemplateSummaryResponse(BaseModel):
    id: str
    name: str
    entity_type: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class InstanceDetailResponse(BaseModel):
    """Instance with its template summary and current step"""
    instance: InstanceResponse
    template: TemplateSummaryResponse
    current_step: StepResponse

    model_config = ConfigDict(from_attributes=True)


class ExecutionResponse(BaseModel):
    id: str
    instance_id: str
    sequence: int
    step_id: str
    to_step_id: Optional[str] = None
    actor_id: str
    actor_role: str
    action: str
    comments: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Analytics models

class MetricsResponse(BaseModel):
    template_id: str
    total_instances: int
    completed_instances: int
    completion_rate: float
    avg_completion_time: Optional[float] = Field(None, description="Seconds")
    status_counts: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class StepDwellResponse(BaseModel):
    step_id: str
    step_name: Optional[str] = None
    avg_dwell_time: float = Field(..., description="Seconds")
    visits: int

    model_config = ConfigDict(from_attributes=True)


class BottleneckResponse(BaseModel):
    template_id: str
    threshold: float
    median_dwell_time: Optional[float] = None
    slow_steps: List[StepDwellResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SweepResponse(BaseModel):
    scanned: int
    advanced: int
    timed_out: int
    skipped: int
    failed: int

    model_config = ConfigDict(from_attributes=True)


# Common models

class ErrorResponse(BaseModel):
    """Error response"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Any] = Field(None, description="Error details")
    request_id: Optional[str] = Field(None, description="Request ID")
    timestamp: datetime = Field(default_factory=utcnow, description="Timestamp")


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Health status", examples=["healthy", "unhealthy"])
    version: str = Field(..., description="Version")
    timestamp: datetime = Field(default_factory=utcnow, description="Timestamp")
    checks: Dict[str, bool] = Field(default_factory=dict, description="Per-component results")
