"""
Workflow instance API routes
"""
from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
import logging

from ..models import (
    InstanceStartRequest, InstanceResponse, InstanceDetailResponse,
    AdvanceRequest, CancelRequest, ExecutionResponse
)
from ..dependencies import get_current_actor, get_engine
from ...core.engine import TransitionEngine
from ...models.instance import Actor, InstanceStatus


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=InstanceResponse, status_code=status.HTTP_201_CREATED)
async def start_instance(
    request: InstanceStartRequest,
    engine: TransitionEngine = Depends(get_engine),
    actor: Actor = Depends(get_current_actor)
) -> InstanceResponse:
    instance = await engine.start_instance(
        template_id=request.template_id,
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        initiated_by=actor.id,
        metadata=request.metadata
    )
    return InstanceResponse.model_validate(instance)


@router.get("/", response_model=List[InstanceResponse])
async def list_instances_for_entity(
    entity_type: str = Query(..., description="Business object kind"),
    entity_id: str = Query(..., description="Business object ID"),
    instance_status: Optional[InstanceStatus] = Query(None, alias="status", description="Filter by status"),
    engine: TransitionEngine = Depends(get_engine),
    actor: Actor = Depends(get_current_actor)
) -> List[InstanceResponse]:
    instances = await engine.list_instances_for_entity(entity_type, entity_id, status=instance_status)
    return [InstanceResponse.model_validate(i) for i in instances]


@router.get("/{instance_id}", response_model=InstanceDetailResponse)
async def get_instance(
    instance_id: str,
    engine: TransitionEngine = Depends(get_engine),
    actor: Actor = Depends(get_current_actor)
) -> InstanceDetailResponse:
    return InstanceDetailResponse.model_validate(await engine.get_instance(instance_id))


@router.post("/{instance_id}/advance", response_model=InstanceResponse)
async def advance_instance(
    instance_id: str,
    request: AdvanceRequest,
    engine: TransitionEngine = Depends(get_engine),
    actor: Actor = Depends(get_current_actor)
) -> InstanceResponse:
    """Submit an action at the instance's current step.

    A 409 response means someone else advanced the instance first; re-read it
    and decide again.
    """
    instance = await engine.advance_instance(
        instance_id,
        actor_id=actor.id,
        actor_role=actor.role,
        action=request.action,
        comments=request.comments,
        metadata=request.metadata
    )
    return InstanceResponse.model_validate(instance)


@router.post("/{instance_id}/cancel", response_model=InstanceResponse)
async def cancel_instance(
    instance_id: str,
    request: CancelRequest,
    engine: TransitionEngine = Depends(get_engine),
    actor: Actor = Depends(get_current_actor)
) -> InstanceResponse:
    instance = await engine.cancel_instance(
        instance_id,
        actor_id=actor.id,
        actor_role=actor.role,
        reason=request.reason
    )
    return InstanceResponse.model_validate(instance)


@router.get("/{instance_id}/history", response_model=List[ExecutionResponse])
async def get_history(
    instance_id: str,
    engine: TransitionEngine = Depends(get_engine),
    actor: Actor = Depends(get_current_actor)
) -> List[ExecutionResponse]:
    history = await engine.get_history(instance_id)
    return [ExecutionResponse.model_validate(e) for e in history]
