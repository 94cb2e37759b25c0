"""
Wiring of the engine components over a pair of repositories
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import EngineSettings
from .core.analyzer import MetricsAnalyzer
from .core.engine import TransitionEngine
from .core.sweeper import TimeoutSweeper
from .core.templates import TemplateStore
from .integrations.event_bus import EventBus
from .storage.repository import InstanceRepository, TemplateRepository
from .storage.sqlalchemy_repository import (
    DatabaseManager, SQLAlchemyInstanceRepository, SQLAlchemyTemplateRepository
)


@dataclass
class ApprovalServices:
    settings: EngineSettings
    template_repository: TemplateRepository
    instance_repository: InstanceRepository
    event_bus: EventBus
    template_store: TemplateStore
    engine: TransitionEngine
    analyzer: MetricsAnalyzer
    sweeper: TimeoutSweeper
    db_manager: Optional[DatabaseManager] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "template_store": self.template_store,
            "engine": self.engine,
            "analyzer": self.analyzer,
            "sweeper": self.sweeper,
            "event_bus": self.event_bus,
            "db_manager": self.db_manager
        }

    async def close(self):
        await self.sweeper.stop()
        if self.db_manager:
            await self.db_manager.close()


def build_services(
    template_repository: TemplateRepository,
    instance_repository: InstanceRepository,
    settings: EngineSettings = None,
    event_bus: EventBus = None,
    db_manager: DatabaseManager = None
) -> ApprovalServices:
    settings = settings or EngineSettings()
    event_bus = event_bus or EventBus()
    engine = TransitionEngine(template_repository, instance_repository, event_bus, settings)
    return ApprovalServices(
        settings=settings,
        template_repository=template_repository,
        instance_repository=instance_repository,
        event_bus=event_bus,
        template_store=TemplateStore(template_repository, instance_repository),
        engine=engine,
        analyzer=MetricsAnalyzer(
            template_repository, instance_repository, settings.bottleneck_threshold
        ),
        sweeper=TimeoutSweeper(engine, settings.sweep_interval_seconds),
        db_manager=db_manager
    )


async def open_services(settings: EngineSettings, create_tables: bool = True) -> ApprovalServices:
    """Connect to ``settings.database_url`` and wire SQLAlchemy-backed services"""
    db_manager = DatabaseManager(settings.database_url)
    await db_manager.initialize(create_tables=create_tables)
    return build_services(
        SQLAlchemyTemplateRepository(db_manager),
        SQLAlchemyInstanceRepository(db_manager),
        settings,
        db_manager=db_manager
    )
