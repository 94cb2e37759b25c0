"""
SQLAlchemy table definitions
"""
from sqlalchemy import (
    Column, String, Text, Boolean, Integer, Float,
    DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index, JSON
)
from sqlalchemy.orm import declarative_base, relationship

from ..models.template import new_id, utcnow


Base = declarative_base()


class WorkflowTemplateRow(Base):
    """Workflow template"""
    __tablename__ = 'workflow_templates'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    entity_type = Column(String(100), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # relationships
    steps = relationship(
        "WorkflowStepRow",
        back_populates="template",
        order_by="WorkflowStepRow.step_order",
        cascade="all, delete-orphan"
    )
    transitions = relationship(
        "WorkflowTransitionRow",
        back_populates="template",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('idx_workflow_templates_entity_type', 'entity_type'),
        Index('idx_workflow_templates_active', 'active'),
    )


class WorkflowStepRow(Base):
    """Workflow step"""
    __tablename__ = 'workflow_steps'

    id = Column(String(36), primary_key=True, default=new_id)
    template_id = Column(String(36), ForeignKey('workflow_templates.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    step_order = Column(Integer, nullable=False)
    required_role = Column(String(50), nullable=False)
    actions = Column(JSON, nullable=False)
    auto_advance = Column(Boolean, nullable=False, default=False)
    timeout_hours = Column(Float)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    template = relationship("WorkflowTemplateRow", back_populates="steps")

    __table_args__ = (
        UniqueConstraint('template_id', 'step_order', name='unique_template_step_order'),
        CheckConstraint('step_order > 0', name='check_step_order_positive'),
        Index('idx_workflow_steps_template_id', 'template_id'),
    )


class WorkflowTransitionRow(Base):
    """Workflow transition"""
    __tablename__ = 'workflow_transitions'

    id = Column(String(36), primary_key=True, default=new_id)
    template_id = Column(String(36), ForeignKey('workflow_templates.id', ondelete='CASCADE'), nullable=False)
    from_step_id = Column(String(36), ForeignKey('workflow_steps.id', ondelete='CASCADE'), nullable=False)
    to_step_id = Column(String(36), ForeignKey('workflow_steps.id', ondelete='CASCADE'), nullable=False)
    condition = Column(String(50), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    template = relationship("WorkflowTemplateRow", back_populates="transitions")

    __table_args__ = (
        Index('idx_workflow_transitions_template_id', 'template_id'),
        Index('idx_workflow_transitions_from_step', 'from_step_id', 'condition'),
    )


class WorkflowInstanceRow(Base):
    """Workflow instance"""
    __tablename__ = 'workflow_instances'

    id = Column(String(36), primary_key=True, default=new_id)
    template_id = Column(String(36), ForeignKey('workflow_templates.id'), nullable=False)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)
    current_step_id = Column(String(36), ForeignKey('workflow_steps.id'), nullable=False)
    version = Column(Integer, nullable=False, default=0)
    initiated_by = Column(String(255), nullable=False)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    step_entered_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)
    # "metadata" is reserved by the declarative base
    metadata_ = Column('metadata', JSON, default=dict)

    executions = relationship(
        "WorkflowExecutionRow",
        back_populates="instance",
        order_by="WorkflowExecutionRow.sequence"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('IN_PROGRESS', 'COMPLETED', 'REJECTED', 'CANCELLED', 'TIMED_OUT')",
            name='check_instance_status'
        ),
        Index('idx_workflow_instances_template_id', 'template_id'),
        Index('idx_workflow_instances_status', 'status'),
        Index('idx_workflow_instances_entity', 'entity_type', 'entity_id'),
        Index('idx_workflow_instances_started_at', 'started_at'),
    )


class WorkflowExecutionRow(Base):
    """Append-only execution history"""
    __tablename__ = 'workflow_executions'

    id = Column(String(36), primary_key=True, default=new_id)
    instance_id = Column(String(36), ForeignKey('workflow_instances.id'), nullable=False)
    sequence = Column(Integer, nullable=False)
    step_id = Column(String(36), ForeignKey('workflow_steps.id'), nullable=False)
    to_step_id = Column(String(36), ForeignKey('workflow_steps.id'))
    actor_id = Column(String(255), nullable=False)
    actor_role = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    comments = Column(Text)
    metadata_ = Column('metadata', JSON, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    instance = relationship("WorkflowInstanceRow", back_populates="executions")

    __table_args__ = (
        UniqueConstraint('instance_id', 'sequence', name='unique_instance_sequence'),
        Index('idx_workflow_executions_instance_id', 'instance_id'),
        Index('idx_workflow_executions_created_at', 'created_at'),
    )
