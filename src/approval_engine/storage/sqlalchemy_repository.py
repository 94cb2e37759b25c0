"""
SQLAlchemy repository implementations
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker, selectinload

from ..exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from ..models.template import WorkflowTemplate, WorkflowStep, WorkflowTransition, utcnow
from ..models.instance import WorkflowInstance, WorkflowExecution, InstanceStatus
from .repository import TemplateRepository, InstanceRepository
from .sqlalchemy_models import (
    WorkflowTemplateRow,
    WorkflowStepRow,
    WorkflowTransitionRow,
    WorkflowInstanceRow,
    WorkflowExecutionRow,
    Base
)


logger = logging.getLogger(__name__)


class DatabaseManager:
    """Database connection manager"""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker = None

    async def initialize(self, create_tables: bool = True):
        """Open the engine and optionally create the schema"""
        engine_kwargs = {"echo": False, "pool_pre_ping": True}
        if not self.database_url.startswith("sqlite"):
            engine_kwargs.update(pool_size=20, max_overflow=10)

        self.engine = create_async_engine(self.database_url, **engine_kwargs)
        self.async_session_maker = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        if create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database initialized: {self.engine.url.render_as_string(hide_password=True)}")

    async def close(self):
        """Dispose of the connection pool"""
        if self.engine:
            await self.engine.dispose()

    @asynccontextmanager
    async def get_session(self):
        """Session committed on success, rolled back on any error"""
        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


class SQLAlchemyTemplateRepository(TemplateRepository):
    """SQLAlchemy template repository"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def save_template(self, template: WorkflowTemplate) -> str:
        async with self.db.get_session() as session:
            session.add(WorkflowTemplateRow(
                id=template.id,
                name=template.name,
                description=template.description,
                entity_type=template.entity_type,
                active=template.active,
                created_at=template.created_at,
                updated_at=template.updated_at
            ))
            await session.flush()
            return template.id

    async def get_template(self, template_id: str) -> Optional[WorkflowTemplate]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowTemplateRow)
                .where(WorkflowTemplateRow.id == template_id)
                .options(
                    selectinload(WorkflowTemplateRow.steps),
                    selectinload(WorkflowTemplateRow.transitions)
                )
            )
            row = result.scalar_one_or_none()
            if not row:
                return None
            return self._row_to_template(row)

    async def list_templates(
        self,
        active: Optional[bool] = None,
        entity_type: Optional[str] = None
    ) -> List[WorkflowTemplate]:
        async with self.db.get_session() as session:
            query = select(WorkflowTemplateRow).options(
                selectinload(WorkflowTemplateRow.steps),
                selectinload(WorkflowTemplateRow.transitions)
            )
            if active is not None:
                query = query.where(WorkflowTemplateRow.active == active)
            if entity_type:
                query = query.where(WorkflowTemplateRow.entity_type == entity_type)
            query = query.order_by(WorkflowTemplateRow.created_at.desc())

            result = await session.execute(query)
            return [self._row_to_template(r) for r in result.scalars().all()]

    async def update_template(self, template: WorkflowTemplate) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(WorkflowTemplateRow)
                .where(WorkflowTemplateRow.id == template.id)
                .values(
                    name=template.name,
                    description=template.description,
                    active=template.active,
                    updated_at=utcnow()
                )
            )
            return result.rowcount > 0

    async def delete_template(self, template_id: str) -> bool:
        async with self.db.get_session() as session:
            # bulk deletes bypass ORM cascades, so children go first
            await session.execute(
                delete(WorkflowTransitionRow).where(WorkflowTransitionRow.template_id == template_id)
            )
            await session.execute(
                delete(WorkflowStepRow).where(WorkflowStepRow.template_id == template_id)
            )
            result = await session.execute(
                delete(WorkflowTemplateRow).where(WorkflowTemplateRow.id == template_id)
            )
            return result.rowcount > 0

    async def add_step(self, step: WorkflowStep) -> str:
        try:
            async with self.db.get_session() as session:
                session.add(WorkflowStepRow(
                    id=step.id,
                    template_id=step.template_id,
                    name=step.name,
                    description=step.description,
                    step_order=step.step_order,
                    required_role=step.required_role,
                    actions=list(step.actions),
                    auto_advance=step.auto_advance,
                    timeout_hours=step.timeout_hours,
                    created_at=step.created_at
                ))
                await session.flush()
        except IntegrityError as e:
            raise ValidationError(
                f"Step order {step.step_order} already exists in template '{step.template_id}'"
            ) from e
        return step.id

    async def add_transition(self, transition: WorkflowTransition) -> str:
        async with self.db.get_session() as session:
            session.add(WorkflowTransitionRow(
                id=transition.id,
                template_id=transition.template_id,
                from_step_id=transition.from_step_id,
                to_step_id=transition.to_step_id,
                condition=transition.condition,
                priority=transition.priority,
                created_at=transition.created_at
            ))
            await session.flush()
            return transition.id

    def _row_to_template(self, row: WorkflowTemplateRow) -> WorkflowTemplate:
        template = WorkflowTemplate(
            id=row.id,
            name=row.name,
            description=row.description,
            entity_type=row.entity_type,
            active=row.active,
            created_at=row.created_at,
            updated_at=row.updated_at
        )
        template.steps = [
            WorkflowStep(
                id=s.id,
                template_id=s.template_id,
                name=s.name,
                description=s.description,
                step_order=s.step_order,
                required_role=s.required_role,
                actions=list(s.actions or []),
                auto_advance=s.auto_advance,
                timeout_hours=s.timeout_hours,
                created_at=s.created_at
            )
            for s in row.steps
        ]
        template.transitions = [
            WorkflowTransition(
                id=t.id,
                template_id=t.template_id,
                from_step_id=t.from_step_id,
                to_step_id=t.to_step_id,
                condition=t.condition,
                priority=t.priority,
                created_at=t.created_at
            )
            for t in sorted(row.transitions, key=lambda t: t.created_at)
        ]
        return template


class SQLAlchemyInstanceRepository(InstanceRepository):
    """SQLAlchemy instance repository"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create_instance(self, instance: WorkflowInstance) -> str:
        async with self.db.get_session() as session:
            session.add(WorkflowInstanceRow(
                id=instance.id,
                template_id=instance.template_id,
                entity_type=instance.entity_type,
                entity_id=instance.entity_id,
                status=instance.status.value,
                current_step_id=instance.current_step_id,
                version=instance.version,
                initiated_by=instance.initiated_by,
                started_at=instance.started_at,
                step_entered_at=instance.step_entered_at,
                completed_at=instance.completed_at,
                metadata_=instance.metadata
            ))
            await session.flush()
            return instance.id

    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        async with self.db.get_session() as session:
            row = await session.get(WorkflowInstanceRow, instance_id)
            if not row:
                return None
            return self._row_to_instance(row)

    async def list_instances(
        self,
        template_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None
    ) -> List[WorkflowInstance]:
        async with self.db.get_session() as session:
            query = select(WorkflowInstanceRow)
            if template_id:
                query = query.where(WorkflowInstanceRow.template_id == template_id)
            if status:
                query = query.where(WorkflowInstanceRow.status == status.value)
            if entity_type:
                query = query.where(WorkflowInstanceRow.entity_type == entity_type)
            if entity_id:
                query = query.where(WorkflowInstanceRow.entity_id == entity_id)
            if started_from:
                query = query.where(WorkflowInstanceRow.started_at >= started_from)
            if started_to:
                query = query.where(WorkflowInstanceRow.started_at <= started_to)
            query = query.order_by(WorkflowInstanceRow.started_at)

            result = await session.execute(query)
            return [self._row_to_instance(r) for r in result.scalars().all()]

    async def commit_transition(
        self,
        instance: WorkflowInstance,
        expected_version: int,
        executions: List[WorkflowExecution]
    ) -> None:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(WorkflowInstanceRow)
                .where(
                    and_(
                        WorkflowInstanceRow.id == instance.id,
                        WorkflowInstanceRow.version == expected_version
                    )
                )
                .values(
                    status=instance.status.value,
                    current_step_id=instance.current_step_id,
                    version=instance.version,
                    step_entered_at=instance.step_entered_at,
                    completed_at=instance.completed_at,
                    metadata_=instance.metadata
                )
            )

            if result.rowcount == 0:
                current = await session.execute(
                    select(WorkflowInstanceRow.version).where(WorkflowInstanceRow.id == instance.id)
                )
                actual_version = current.scalar_one_or_none()
                if actual_version is None:
                    raise NotFoundError("Instance", instance.id)
                raise ConcurrencyConflict(instance.id, expected_version, actual_version)

            for execution in executions:
                session.add(WorkflowExecutionRow(
                    id=execution.id,
                    instance_id=execution.instance_id,
                    sequence=execution.sequence,
                    step_id=execution.step_id,
                    to_step_id=execution.to_step_id,
                    actor_id=execution.actor_id,
                    actor_role=execution.actor_role,
                    action=execution.action,
                    comments=execution.comments,
                    metadata_=execution.metadata,
                    created_at=execution.created_at
                ))

    async def get_history(self, instance_id: str) -> List[WorkflowExecution]:
        return await self.list_executions([instance_id])

    async def list_executions(self, instance_ids: List[str]) -> List[WorkflowExecution]:
        if not instance_ids:
            return []
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowExecutionRow)
                .where(WorkflowExecutionRow.instance_id.in_(instance_ids))
                .order_by(WorkflowExecutionRow.instance_id, WorkflowExecutionRow.sequence)
            )
            return [self._row_to_execution(r) for r in result.scalars().all()]

    def _row_to_instance(self, row: WorkflowInstanceRow) -> WorkflowInstance:
        return WorkflowInstance(
            id=row.id,
            template_id=row.template_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            status=InstanceStatus(row.status),
            current_step_id=row.current_step_id,
            version=row.version,
            initiated_by=row.initiated_by,
            started_at=row.started_at,
            step_entered_at=row.step_entered_at,
            completed_at=row.completed_at,
            metadata=row.metadata_ or {}
        )

    def _row_to_execution(self, row: WorkflowExecutionRow) -> WorkflowExecution:
        return WorkflowExecution(
            id=row.id,
            instance_id=row.instance_id,
            sequence=row.sequence,
            step_id=row.step_id,
            to_step_id=row.to_step_id,
            actor_id=row.actor_id,
            actor_role=row.actor_role,
            action=row.action,
            comments=row.comments,
            metadata=row.metadata_ or {},
            created_at=row.created_at
        )
