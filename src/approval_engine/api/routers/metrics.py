"""
Template metrics API routes
"""
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Query
from typing import Optional

from ..models import MetricsResponse
from ..dependencies import get_analyzer, get_current_actor
from ...core.analyzer import MetricsAnalyzer
from ...models.instance import Actor


router = APIRouter()


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # stored timestamps are naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@router.get("/", response_model=MetricsResponse)
async def get_metrics(
    template_id: str = Query(..., description="Template ID"),
    start: Optional[datetime] = Query(None, description="Earliest instance start"),
    end: Optional[datetime] = Query(None, description="Latest instance start"),
    analyzer: MetricsAnalyzer = Depends(get_analyzer),
    actor: Actor = Depends(get_current_actor)
) -> MetricsResponse:
    metrics = await analyzer.get_metrics(
        template_id, start=_as_naive_utc(start), end=_as_naive_utc(end)
    )
    return MetricsResponse.model_validate(metrics)
