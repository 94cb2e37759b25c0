"""
Template store: creation, structural edits and validation of templates
"""
import logging
from typing import List, Optional

from ..exceptions import NotFoundError, ValidationError
from ..models.template import (
    Action, Role, WorkflowStep, WorkflowTemplate, WorkflowTransition
)
from ..models.instance import InstanceStatus
from ..storage.repository import InstanceRepository, TemplateRepository
from .validator import ValidationResult, validate_template


logger = logging.getLogger(__name__)


def _check_role(role: str) -> str:
    try:
        return Role(role).value
    except ValueError:
        raise ValidationError(f"Unknown role: {role}")


def _check_action(action: str) -> str:
    try:
        return Action(action).value
    except ValueError:
        raise ValidationError(f"Unknown action: {action}")


class TemplateStore:
    """Template store service"""

    def __init__(
        self,
        template_repository: TemplateRepository,
        instance_repository: InstanceRepository
    ):
        self.template_repository = template_repository
        self.instance_repository = instance_repository

    async def create_template(
        self,
        name: str,
        entity_type: str,
        description: Optional[str] = None,
        active: bool = True
    ) -> str:
        if not name or not name.strip():
            raise ValidationError("Template name is required")
        if not entity_type:
            raise ValidationError("Template entity_type is required")

        template = WorkflowTemplate(
            name=name.strip(),
            description=description,
            entity_type=entity_type,
            active=active
        )
        template_id = await self.template_repository.save_template(template)
        logger.info(f"Created workflow template '{template.name}' ({template_id})")
        return template_id

    async def get_template(self, template_id: str) -> WorkflowTemplate:
        template = await self.template_repository.get_template(template_id)
        if not template:
            raise NotFoundError("Template", template_id)
        return template

    async def list_templates(
        self,
        active: Optional[bool] = None,
        entity_type: Optional[str] = None
    ) -> List[WorkflowTemplate]:
        return await self.template_repository.list_templates(active=active, entity_type=entity_type)

    async def update_template(
        self,
        template_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        active: Optional[bool] = None
    ) -> WorkflowTemplate:
        """Update descriptive fields; the step graph is not touched"""
        template = await self.get_template(template_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Template name is required")
            template.name = name.strip()
        if description is not None:
            template.description = description
        if active is not None:
            template.active = active

        await self.template_repository.update_template(template)
        return await self.get_template(template_id)

    async def delete_template(self, template_id: str) -> bool:
        """Delete a template.

        Refused while instances are in progress. A template that finished
        instances still reference is only deactivated, so their history stays
        readable.

        Returns:
            bool: True when the template was removed, False when deactivated.
        """
        template = await self.get_template(template_id)
        instances = await self.instance_repository.list_instances(template_id=template_id)

        if any(i.status == InstanceStatus.IN_PROGRESS for i in instances):
            raise ValidationError(
                f"Template '{template_id}' has instances in progress and cannot be deleted"
            )

        if instances:
            template.active = False
            await self.template_repository.update_template(template)
            logger.info(f"Deactivated workflow template {template_id} ({len(instances)} instances retained)")
            return False

        await self.template_repository.delete_template(template_id)
        logger.info(f"Deleted workflow template {template_id}")
        return True

    async def add_step(
        self,
        template_id: str,
        name: str,
        step_order: int,
        required_role: str,
        actions: List[str],
        auto_advance: bool = False,
        timeout_hours: Optional[float] = None,
        description: Optional[str] = None
    ) -> str:
        template = await self.get_template(template_id)
        await self._ensure_no_live_instances(template_id)

        if not name or not name.strip():
            raise ValidationError("Step name is required")
        if step_order is None or step_order < 1:
            raise ValidationError(f"step_order must be a positive integer, got {step_order}")
        if not actions:
            raise ValidationError("A step must declare at least one action")
        if timeout_hours is not None and timeout_hours <= 0:
            raise ValidationError(f"timeout_hours must be positive, got {timeout_hours}")
        if any(s.step_order == step_order for s in template.steps):
            raise ValidationError(
                f"Step order {step_order} already exists in template '{template_id}'"
            )

        normalized = []
        for action in actions:
            value = _check_action(action)
            if value not in normalized:
                normalized.append(value)

        step = WorkflowStep(
            template_id=template_id,
            name=name.strip(),
            description=description,
            step_order=step_order,
            required_role=_check_role(required_role),
            actions=normalized,
            auto_advance=auto_advance,
            timeout_hours=timeout_hours
        )
        step_id = await self.template_repository.add_step(step)
        logger.info(f"Added step '{step.name}' (order {step_order}) to template {template_id}")
        return step_id

    async def add_transition(
        self,
        template_id: str,
        from_step_id: str,
        to_step_id: str,
        condition: str,
        priority: int = 0
    ) -> str:
        template = await self.get_template(template_id)
        await self._ensure_no_live_instances(template_id)

        for label, step_id in (("fromStep", from_step_id), ("toStep", to_step_id)):
            if template.get_step(step_id) is None:
                raise ValidationError(
                    f"{label} '{step_id}' does not belong to template '{template_id}'"
                )

        transition = WorkflowTransition(
            template_id=template_id,
            from_step_id=from_step_id,
            to_step_id=to_step_id,
            condition=_check_action(condition),
            priority=priority
        )
        transition_id = await self.template_repository.add_transition(transition)
        logger.info(
            f"Added transition {from_step_id} -[{transition.condition}/{priority}]-> "
            f"{to_step_id} to template {template_id}"
        )
        return transition_id

    async def validate_template(self, template_id: str) -> ValidationResult:
        template = await self.get_template(template_id)
        result = validate_template(template)
        if not result.is_valid:
            logger.info(f"Template {template_id} failed validation: {sorted(result.codes())}")
        return result

    async def _ensure_no_live_instances(self, template_id: str):
        live = await self.instance_repository.list_instances(
            template_id=template_id, status=InstanceStatus.IN_PROGRESS
        )
        if live:
            raise ValidationError(
                f"Template '{template_id}' has {len(live)} instances in progress; "
                f"its steps and transitions are frozen"
            )
