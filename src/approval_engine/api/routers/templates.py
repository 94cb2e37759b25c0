"""
Template management API routes
"""
from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
import logging

from ..models import (
    TemplateCreateRequest, TemplateUpdateRequest, TemplateResponse,
    TemplateDeleteResponse, StepCreateRequest, StepResponse,
    TransitionCreateRequest, TransitionResponse, ValidationResponse,
    ValidationIssueResponse, BottleneckResponse
)
from ..dependencies import (
    get_analyzer, get_current_actor, get_template_store, require_admin
)
from ...core.analyzer import MetricsAnalyzer
from ...core.templates import TemplateStore
from ...models.instance import Actor


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=List[TemplateResponse])
async def list_templates(
    active: Optional[bool] = Query(None, description="Filter by active flag"),
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    store: TemplateStore = Depends(get_template_store),
    actor: Actor = Depends(get_current_actor)
) -> List[TemplateResponse]:
    templates = await store.list_templates(active=active, entity_type=entity_type)
    return [TemplateResponse.model_validate(t) for t in templates]


@router.post("/", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    request: TemplateCreateRequest,
    store: TemplateStore = Depends(get_template_store),
    actor: Actor = Depends(require_admin)
) -> TemplateResponse:
    template_id = await store.create_template(
        name=request.name,
        description=request.description,
        entity_type=request.entity_type,
        active=request.active
    )
    logger.info(f"Template {template_id} created by {actor.id}")
    return TemplateResponse.model_validate(await store.get_template(template_id))


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: str,
    store: TemplateStore = Depends(get_template_store),
    actor: Actor = Depends(get_current_actor)
) -> TemplateResponse:
    return TemplateResponse.model_validate(await store.get_template(template_id))


@router.patch("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: str,
    request: TemplateUpdateRequest,
    store: TemplateStore = Depends(get_template_store),
    actor: Actor = Depends(require_admin)
) -> TemplateResponse:
    template = await store.update_template(
        template_id,
        name=request.name,
        description=request.description,
        active=request.active
    )
    return TemplateResponse.model_validate(template)


@router.delete("/{template_id}", response_model=TemplateDeleteResponse)
async def delete_template(
    template_id: str,
    store: TemplateStore = Depends(get_template_store),
    actor: Actor = Depends(require_admin)
) -> TemplateDeleteResponse:
    deleted = await store.delete_template(template_id)
    logger.info(f"Template {template_id} {'deleted' if deleted else 'deactivated'} by {actor.id}")
    return TemplateDeleteResponse(template_id=template_id, deleted=deleted)


@router.post("/{template_id}/steps", response_model=StepResponse, status_code=status.HTTP_201_CREATED)
async def add_step(
    template_id: str,
    request: StepCreateRequest,
    store: TemplateStore = Depends(get_template_store),
    actor: Actor = Depends(require_admin)
) -> StepResponse:
    step_id = await store.add_step(
        template_id,
        name=request.name,
        step_order=request.step_order,
        required_role=request.required_role.value,
        actions=[a.value for a in request.actions],
        auto_advance=request.auto_advance,
        timeout_hours=request.timeout_hours,
        description=request.description
    )
    template = await store.get_template(template_id)
    return StepResponse.model_validate(template.get_step(step_id))


@router.post(
    "/{template_id}/transitions",
    response_model=TransitionResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_transition(
    template_id: str,
    request: TransitionCreateRequest,
    store: TemplateStore = Depends(get_template_store),
    actor: Actor = Depends(require_admin)
) -> TransitionResponse:
    transition_id = await store.add_transition(
        template_id,
        from_step_id=request.from_step_id,
        to_step_id=request.to_step_id,
        condition=request.condition.value,
        priority=request.priority
    )
    template = await store.get_template(template_id)
    transition = next(t for t in template.transitions if t.id == transition_id)
    return TransitionResponse.model_validate(transition)


@router.post("/{template_id}/validate", response_model=ValidationResponse)
async def validate_template(
    template_id: str,
    store: TemplateStore = Depends(get_template_store),
    actor: Actor = Depends(get_current_actor)
) -> ValidationResponse:
    result = await store.validate_template(template_id)
    return ValidationResponse(
        is_valid=result.is_valid,
        errors=[ValidationIssueResponse.model_validate(e) for e in result.errors]
    )


@router.get("/{template_id}/bottlenecks", response_model=BottleneckResponse)
async def get_bottlenecks(
    template_id: str,
    threshold: Optional[float] = Query(None, gt=0, description="Multiple of the median dwell time"),
    analyzer: MetricsAnalyzer = Depends(get_analyzer),
    actor: Actor = Depends(get_current_actor)
) -> BottleneckResponse:
    report = await analyzer.get_bottlenecks(template_id, threshold=threshold)
    return BottleneckResponse.model_validate(report)
