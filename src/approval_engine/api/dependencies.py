"""
FastAPI dependency injection
"""
from fastapi import Depends, HTTPException, Request, status
from typing import Any, Dict
import logging

from ..config import EngineSettings
from ..core.engine import TransitionEngine
from ..core.templates import TemplateStore
from ..core.analyzer import MetricsAnalyzer
from ..core.sweeper import TimeoutSweeper
from ..models.instance import Actor


logger = logging.getLogger(__name__)


def get_app_state(request: Request) -> Dict[str, Any]:
    return request.app.state.services


def _service(request: Request, name: str):
    service = get_app_state(request).get(name)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "service_unavailable",
                "message": f"{name} not initialized"
            }
        )
    return service


def get_settings(request: Request) -> EngineSettings:
    return request.app.state.settings


def get_template_store(request: Request) -> TemplateStore:
    return _service(request, "template_store")


def get_engine(request: Request) -> TransitionEngine:
    return _service(request, "engine")


def get_analyzer(request: Request) -> MetricsAnalyzer:
    return _service(request, "analyzer")


def get_sweeper(request: Request) -> TimeoutSweeper:
    return _service(request, "sweeper")


def get_current_actor(request: Request) -> Actor:
    """Actor set by the authentication middleware; a role is mandatory"""
    actor = getattr(request.state, "actor", None)
    if not actor or not actor.get("role"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "unauthorized",
                "message": "Request carries no actor role"
            }
        )
    return Actor(id=actor["id"], role=actor["role"])


def require_admin(
    actor: Actor = Depends(get_current_actor),
    settings: EngineSettings = Depends(get_settings)
) -> Actor:
    if actor.role not in settings.admin_roles:
        logger.warning(f"Admin operation denied: actor={actor.id} role={actor.role}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "insufficient_permissions",
                "message": f"One of roles {settings.admin_roles} required"
            }
        )
    return actor
