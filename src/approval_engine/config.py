"""
Engine configuration
"""
import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


class EngineSettings(BaseModel):
    """Top-level configuration model"""
    database_url: str = "sqlite+aiosqlite:///./approval_engine.db"
    sweep_interval_seconds: float = Field(300.0, gt=0)
    sweeper_enabled: bool = True
    bottleneck_threshold: float = Field(1.5, gt=0)
    system_actor_id: str = "system"
    admin_roles: List[str] = Field(default_factory=lambda: ["ADMIN", "SUPER_ADMIN"])
    auth_disabled: bool = False
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000


# environment variable -> settings field
_ENV_OVERRIDES = {
    "DATABASE_URL": "database_url",
    "WORKFLOW_DATABASE_URL": "database_url",
    "SWEEP_INTERVAL_SECONDS": "sweep_interval_seconds",
    "SWEEPER_ENABLED": "sweeper_enabled",
    "BOTTLENECK_THRESHOLD": "bottleneck_threshold",
    "DISABLE_AUTH": "auth_disabled",
    "JWT_SECRET_KEY": "jwt_secret_key",
    "LOG_LEVEL": "log_level",
    "API_HOST": "api_host",
    "API_PORT": "api_port",
}


def load_settings(path: Optional[str] = None) -> EngineSettings:
    """Load settings from a YAML file, then apply environment overrides.

    Args:
        path: Optional path to the config file. Falls back to the
            WORKFLOW_CONFIG env variable or 'workflow.yaml' in the current
            directory; a missing file means defaults.
    """
    config_path = path or os.getenv("WORKFLOW_CONFIG", "workflow.yaml")
    data = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is not None:
            data[field_name] = value

    return EngineSettings(**data)
