"""
Monitoring API routes
"""
from fastapi import APIRouter, Depends
import logging

from ..models import HealthCheckResponse, SweepResponse
from ..dependencies import get_engine, get_sweeper, require_admin
from ... import __version__
from ...core.engine import TransitionEngine
from ...core.sweeper import TimeoutSweeper
from ...models.instance import Actor


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    engine: TransitionEngine = Depends(get_engine),
    sweeper: TimeoutSweeper = Depends(get_sweeper)
) -> HealthCheckResponse:
    checks = {}

    try:
        await engine.template_repository.list_templates(active=True)
        checks["database"] = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = False

    checks["sweeper"] = sweeper.running

    # a stopped sweeper is a configuration choice, not a failure
    healthy = checks["database"]
    return HealthCheckResponse(
        status="healthy" if healthy else "unhealthy",
        version=__version__,
        checks=checks
    )


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(
    sweeper: TimeoutSweeper = Depends(get_sweeper),
    actor: Actor = Depends(require_admin)
) -> SweepResponse:
    """Run one timeout sweep immediately"""
    report = await sweeper.sweep_once()
    logger.info(f"Manual sweep by {actor.id}: {report.to_dict()}")
    return SweepResponse.model_validate(report)
