"""
Storage repository interfaces
"""
import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from ..models.template import WorkflowTemplate, WorkflowStep, WorkflowTransition, utcnow
from ..models.instance import WorkflowInstance, WorkflowExecution, InstanceStatus


class TemplateRepository(ABC):
    """Template, step and transition storage"""

    @abstractmethod
    async def save_template(self, template: WorkflowTemplate) -> str:
        """Insert a template row (steps and transitions are added separately)"""
        pass

    @abstractmethod
    async def get_template(self, template_id: str) -> Optional[WorkflowTemplate]:
        """Fetch a template with steps and transitions loaded"""
        pass

    @abstractmethod
    async def list_templates(
        self,
        active: Optional[bool] = None,
        entity_type: Optional[str] = None
    ) -> List[WorkflowTemplate]:
        pass

    @abstractmethod
    async def update_template(self, template: WorkflowTemplate) -> bool:
        """Persist name, description and active flag"""
        pass

    @abstractmethod
    async def delete_template(self, template_id: str) -> bool:
        """Remove a template together with its steps and transitions"""
        pass

    @abstractmethod
    async def add_step(self, step: WorkflowStep) -> str:
        """Insert a step; duplicate step_order raises ValidationError"""
        pass

    @abstractmethod
    async def add_transition(self, transition: WorkflowTransition) -> str:
        pass


class InstanceRepository(ABC):
    """Instance and execution history storage with optimistic versioning"""

    @abstractmethod
    async def create_instance(self, instance: WorkflowInstance) -> str:
        pass

    @abstractmethod
    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        pass

    @abstractmethod
    async def list_instances(
        self,
        template_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None
    ) -> List[WorkflowInstance]:
        pass

    @abstractmethod
    async def commit_transition(
        self,
        instance: WorkflowInstance,
        expected_version: int,
        executions: List[WorkflowExecution]
    ) -> None:
        """Write the instance and append history if the stored version is
        still ``expected_version``; otherwise raise ConcurrencyConflict."""
        pass

    @abstractmethod
    async def get_history(self, instance_id: str) -> List[WorkflowExecution]:
        """Executions of one instance ordered by sequence"""
        pass

    @abstractmethod
    async def list_executions(self, instance_ids: List[str]) -> List[WorkflowExecution]:
        """Executions of several instances ordered by instance and sequence"""
        pass


# In-memory implementations (tests and offline validation)
class InMemoryTemplateRepository(TemplateRepository):
    """In-memory template repository"""

    def __init__(self):
        self.templates: Dict[str, WorkflowTemplate] = {}

    async def save_template(self, template: WorkflowTemplate) -> str:
        self.templates[template.id] = copy.deepcopy(template)
        return template.id

    async def get_template(self, template_id: str) -> Optional[WorkflowTemplate]:
        template = self.templates.get(template_id)
        return copy.deepcopy(template) if template else None

    async def list_templates(
        self,
        active: Optional[bool] = None,
        entity_type: Optional[str] = None
    ) -> List[WorkflowTemplate]:
        results = []
        for template in self.templates.values():
            if active is not None and template.active != active:
                continue
            if entity_type and template.entity_type != entity_type:
                continue
            results.append(copy.deepcopy(template))
        return sorted(results, key=lambda t: t.created_at, reverse=True)

    async def update_template(self, template: WorkflowTemplate) -> bool:
        stored = self.templates.get(template.id)
        if not stored:
            return False
        stored.name = template.name
        stored.description = template.description
        stored.active = template.active
        stored.updated_at = utcnow()
        return True

    async def delete_template(self, template_id: str) -> bool:
        return self.templates.pop(template_id, None) is not None

    async def add_step(self, step: WorkflowStep) -> str:
        template = self.templates.get(step.template_id)
        if not template:
            raise NotFoundError("Template", step.template_id)
        if any(s.step_order == step.step_order for s in template.steps):
            raise ValidationError(
                f"Step order {step.step_order} already exists in template '{step.template_id}'"
            )
        template.steps.append(copy.deepcopy(step))
        template.steps.sort(key=lambda s: s.step_order)
        return step.id

    async def add_transition(self, transition: WorkflowTransition) -> str:
        template = self.templates.get(transition.template_id)
        if not template:
            raise NotFoundError("Template", transition.template_id)
        template.transitions.append(copy.deepcopy(transition))
        return transition.id


class InMemoryInstanceRepository(InstanceRepository):
    """In-memory instance repository"""

    def __init__(self):
        self.instances: Dict[str, WorkflowInstance] = {}
        self.executions: Dict[str, List[WorkflowExecution]] = {}

    async def create_instance(self, instance: WorkflowInstance) -> str:
        self.instances[instance.id] = copy.deepcopy(instance)
        self.executions[instance.id] = []
        return instance.id

    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        instance = self.instances.get(instance_id)
        snapshot = copy.deepcopy(instance) if instance else None
        # yield after the read like a real driver would, so concurrent readers
        # can observe the same version
        await asyncio.sleep(0)
        return snapshot

    async def list_instances(
        self,
        template_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        started_from: Optional[datetime] = None,
        started_to: Optional[datetime] = None
    ) -> List[WorkflowInstance]:
        results = []
        for instance in self.instances.values():
            if template_id and instance.template_id != template_id:
                continue
            if status and instance.status != status:
                continue
            if entity_type and instance.entity_type != entity_type:
                continue
            if entity_id and instance.entity_id != entity_id:
                continue
            if started_from and instance.started_at < started_from:
                continue
            if started_to and instance.started_at > started_to:
                continue
            results.append(copy.deepcopy(instance))
        return sorted(results, key=lambda i: i.started_at)

    async def commit_transition(
        self,
        instance: WorkflowInstance,
        expected_version: int,
        executions: List[WorkflowExecution]
    ) -> None:
        stored = self.instances.get(instance.id)
        if stored is None:
            raise NotFoundError("Instance", instance.id)
        # check and write without awaiting in between
        if stored.version != expected_version:
            raise ConcurrencyConflict(instance.id, expected_version, stored.version)
        self.instances[instance.id] = copy.deepcopy(instance)
        self.executions[instance.id].extend(copy.deepcopy(executions))

    async def get_history(self, instance_id: str) -> List[WorkflowExecution]:
        history = self.executions.get(instance_id, [])
        return sorted(copy.deepcopy(history), key=lambda e: e.sequence)

    async def list_executions(self, instance_ids: List[str]) -> List[WorkflowExecution]:
        results = []
        for instance_id in instance_ids:
            results.extend(await self.get_history(instance_id))
        return results
