"""
Transition engine: the approval state machine

States are step ids; ``InstanceStatus`` is the coarse view on top. Every
mutation is a conditional write on the version observed when the instance
was loaded, so concurrent callers (web requests, the timeout sweeper) never
need a lock: the loser of a race gets ``ConcurrencyConflict`` and retries
from a fresh read.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..config import EngineSettings
from ..exceptions import (
    AuthorizationError, InvalidActionError, NotFoundError, ValidationError
)
from ..models.template import Action, WorkflowStep, WorkflowTemplate, utcnow
from ..models.instance import (
    Actor, InstanceStatus, WorkflowExecution, WorkflowInstance
)
from ..storage.repository import InstanceRepository, TemplateRepository
from ..integrations.event_bus import EventBus, Topics
from .validator import select_transition, validate_template


logger = logging.getLogger(__name__)


# action -> status when the action has no outgoing transition
TERMINAL_OUTCOMES = {
    Action.COMPLETE.value: InstanceStatus.COMPLETED,
    Action.REJECT.value: InstanceStatus.REJECTED,
    Action.TIMEOUT.value: InstanceStatus.TIMED_OUT,
}

CANCEL_ACTION = "CANCEL"

_STATUS_TOPICS = {
    InstanceStatus.IN_PROGRESS: Topics.INSTANCE_ADVANCED,
    InstanceStatus.COMPLETED: Topics.INSTANCE_COMPLETED,
    InstanceStatus.REJECTED: Topics.INSTANCE_REJECTED,
    InstanceStatus.TIMED_OUT: Topics.INSTANCE_TIMED_OUT,
    InstanceStatus.CANCELLED: Topics.INSTANCE_CANCELLED,
}


@dataclass
class TemplateSummary:
    id: str
    name: str
    entity_type: str
    description: Optional[str] = None


@dataclass
class InstanceDetails:
    """Instance together with its template summary and current step"""
    instance: WorkflowInstance
    template: TemplateSummary
    current_step: WorkflowStep


class TransitionEngine:
    """Drives instances through their template's steps"""

    def __init__(
        self,
        template_repository: TemplateRepository,
        instance_repository: InstanceRepository,
        event_bus: EventBus = None,
        settings: EngineSettings = None
    ):
        self.template_repository = template_repository
        self.instance_repository = instance_repository
        self.event_bus = event_bus or EventBus()
        self.settings = settings or EngineSettings()

    async def start_instance(
        self,
        template_id: str,
        entity_type: str,
        entity_id: str,
        initiated_by: str,
        metadata: Dict[str, Any] = None
    ) -> WorkflowInstance:
        """Create an instance placed at the template's first step"""
        template = await self.template_repository.get_template(template_id)
        if not template:
            raise NotFoundError("Template", template_id)
        if not template.active:
            raise ValidationError(f"Template '{template_id}' is not active")
        if template.entity_type and entity_type != template.entity_type:
            raise ValidationError(
                f"Template '{template_id}' governs '{template.entity_type}', not '{entity_type}'"
            )

        result = validate_template(template)
        if not result.is_valid:
            raise ValidationError(
                f"Template '{template_id}' failed validation",
                errors=[e.to_dict() for e in result.errors]
            )

        initial_step = template.get_initial_step()
        now = utcnow()
        instance = WorkflowInstance(
            template_id=template_id,
            entity_type=entity_type,
            entity_id=entity_id,
            current_step_id=initial_step.id,
            initiated_by=initiated_by,
            started_at=now,
            step_entered_at=now,
            metadata=metadata or {}
        )
        await self.instance_repository.create_instance(instance)

        logger.info(
            f"Started instance {instance.id} of template {template_id} "
            f"for {entity_type}/{entity_id} at step '{initial_step.name}'"
        )
        await self.event_bus.publish(Topics.INSTANCE_STARTED, self._event_payload(instance, [], initiated_by))
        return instance

    async def advance_instance(
        self,
        instance_id: str,
        actor_id: str,
        actor_role: str,
        action: str,
        comments: Optional[str] = None,
        metadata: Dict[str, Any] = None
    ) -> WorkflowInstance:
        """Apply an actor's action to the instance's current step.

        Auto-advance steps reached along the way are passed through with the
        system actor; the whole chain is committed as a single write, so the
        version grows by exactly one per successful call.

        Raises:
            NotFoundError: unknown instance, template or step
            AuthorizationError: role differs from the step's required role
            InvalidActionError: action not declared or not routable
            ConcurrencyConflict: the instance changed since it was read
        """
        instance, template, step = await self._load(instance_id)
        if instance.is_terminal_state():
            raise InvalidActionError(
                action, step.id, f"instance is already {instance.status.value}"
            )

        expected_version = instance.version
        actor = Actor(id=actor_id, role=actor_role)
        sequence = len(await self.instance_repository.get_history(instance_id))
        now = utcnow()

        executions = [
            self._apply_action(instance, template, step, actor, action, comments, metadata, now, sequence + 1)
        ]
        self._chain_auto_advance(instance, template, executions, {step.id}, now)

        await self._commit(instance, expected_version, executions)
        logger.info(
            f"Instance {instance_id}: {actor_role} {actor_id} -> {action} "
            f"({len(executions)} step(s), status {instance.status.value}, version {instance.version})"
        )
        await self._publish(instance, executions, actor_id)
        return instance

    async def cancel_instance(
        self,
        instance_id: str,
        actor_id: str,
        actor_role: str,
        reason: Optional[str] = None
    ) -> WorkflowInstance:
        """Explicitly cancel an in-progress instance (admins or the initiator)"""
        instance, template, step = await self._load(instance_id)
        if instance.is_terminal_state():
            raise InvalidActionError(
                CANCEL_ACTION, step.id, f"instance is already {instance.status.value}"
            )
        if actor_role not in self.settings.admin_roles and actor_id != instance.initiated_by:
            logger.warning(
                f"Cancel denied on instance {instance_id}: actor={actor_id} role={actor_role}"
            )
            raise AuthorizationError(actor_id, actor_role, step.id, "|".join(self.settings.admin_roles))

        expected_version = instance.version
        sequence = len(await self.instance_repository.get_history(instance_id))
        now = utcnow()
        instance.finish(InstanceStatus.CANCELLED, now)
        execution = WorkflowExecution(
            instance_id=instance_id,
            sequence=sequence + 1,
            step_id=step.id,
            actor_id=actor_id,
            actor_role=actor_role,
            action=CANCEL_ACTION,
            comments=reason,
            created_at=now
        )

        await self._commit(instance, expected_version, [execution])
        logger.info(f"Instance {instance_id} cancelled by {actor_id}")
        await self._publish(instance, [execution], actor_id)
        return instance

    async def expire_instance(
        self,
        instance_id: str,
        expected_step_id: str,
        expected_version: int,
        now: Optional[datetime] = None
    ) -> Optional[WorkflowInstance]:
        """Force the timeout outcome of the current step.

        Follows the step's TIMEOUT transition when it has one, otherwise
        marks the instance TIMED_OUT. Returns None without writing when the
        instance has moved on since the caller looked at it.
        """
        instance, template, step = await self._load(instance_id)
        if (
            instance.status != InstanceStatus.IN_PROGRESS
            or instance.current_step_id != expected_step_id
            or instance.version != expected_version
        ):
            return None

        now = now or utcnow()
        system = Actor(id=self.settings.system_actor_id, role=step.required_role, is_system=True)
        sequence = len(await self.instance_repository.get_history(instance_id))

        execution = WorkflowExecution(
            instance_id=instance_id,
            sequence=sequence + 1,
            step_id=step.id,
            actor_id=system.id,
            actor_role=system.role,
            action=Action.TIMEOUT.value,
            metadata={"timeout_hours": step.timeout_hours},
            created_at=now
        )
        # a TIMEOUT transition is followed whether or not the step lists TIMEOUT among its actions
        self._route(instance, template, step, execution, now)
        executions = [execution]
        self._chain_auto_advance(instance, template, executions, {step.id}, now)

        await self._commit(instance, expected_version, executions)
        logger.info(
            f"Instance {instance_id} timed out at step '{step.name}' -> {instance.status.value}"
        )
        await self._publish(instance, executions, system.id)
        return instance

    async def get_instance(self, instance_id: str) -> InstanceDetails:
        instance, template, step = await self._load(instance_id)
        return InstanceDetails(
            instance=instance,
            template=TemplateSummary(
                id=template.id,
                name=template.name,
                entity_type=template.entity_type,
                description=template.description
            ),
            current_step=step
        )

    async def get_history(self, instance_id: str) -> List[WorkflowExecution]:
        instance = await self.instance_repository.get_instance(instance_id)
        if not instance:
            raise NotFoundError("Instance", instance_id)
        return await self.instance_repository.get_history(instance_id)

    async def list_instances_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        status: Optional[InstanceStatus] = None
    ) -> List[WorkflowInstance]:
        return await self.instance_repository.list_instances(
            entity_type=entity_type, entity_id=entity_id, status=status
        )

    async def _load(self, instance_id: str):
        instance = await self.instance_repository.get_instance(instance_id)
        if not instance:
            raise NotFoundError("Instance", instance_id)
        template = await self.template_repository.get_template(instance.template_id)
        if not template:
            raise NotFoundError("Template", instance.template_id)
        step = template.get_step(instance.current_step_id)
        if not step:
            raise NotFoundError("Step", instance.current_step_id)
        return instance, template, step

    def _apply_action(
        self,
        instance: WorkflowInstance,
        template: WorkflowTemplate,
        step: WorkflowStep,
        actor: Actor,
        action: str,
        comments: Optional[str],
        metadata: Optional[Dict[str, Any]],
        now: datetime,
        sequence: int
    ) -> WorkflowExecution:
        """Mutate the in-memory instance for one action and describe it"""
        if actor.role != step.required_role:
            logger.warning(
                f"Authorization failed on instance {instance.id}: actor={actor.id} "
                f"role={actor.role} step={step.id} required={step.required_role}"
            )
            raise AuthorizationError(actor.id, actor.role, step.id, step.required_role)

        if action not in step.actions:
            raise InvalidActionError(
                action, step.id, f"step '{step.name}' accepts {sorted(step.actions)}"
            )

        execution = WorkflowExecution(
            instance_id=instance.id,
            sequence=sequence,
            step_id=step.id,
            actor_id=actor.id,
            actor_role=actor.role,
            action=action,
            comments=comments,
            metadata=dict(metadata or {}),
            created_at=now
        )
        self._route(instance, template, step, execution, now)
        return execution

    def _route(
        self,
        instance: WorkflowInstance,
        template: WorkflowTemplate,
        step: WorkflowStep,
        execution: WorkflowExecution,
        now: datetime
    ):
        """Move the instance along the execution's action or end it by the terminal convention"""
        action = execution.action
        transition, tied = select_transition(template, step.id, action)
        if tied:
            raise InvalidActionError(
                action, step.id, f"several transitions share priority {transition.priority}"
            )

        if transition is None:
            outcome = TERMINAL_OUTCOMES.get(action)
            if outcome is None:
                raise InvalidActionError(action, step.id, "no transition is defined for it")
            instance.finish(outcome, now)
        else:
            instance.move_to(transition.to_step_id, now)
            execution.to_step_id = transition.to_step_id

    def _chain_auto_advance(
        self,
        instance: WorkflowInstance,
        template: WorkflowTemplate,
        executions: List[WorkflowExecution],
        visited: Set[str],
        now: datetime
    ):
        """Pass through auto-advance steps until a human step or a terminal status"""
        while instance.status == InstanceStatus.IN_PROGRESS:
            step = template.get_step(instance.current_step_id)
            if step is None:
                raise NotFoundError("Step", instance.current_step_id)
            if not step.auto_advance:
                return
            if step.id in visited:
                logger.warning(
                    f"Auto-advance chain of instance {instance.id} returned to step "
                    f"'{step.name}'; stopping there"
                )
                return
            if len(step.actions) != 1:
                raise InvalidActionError(
                    ",".join(step.actions), step.id, "auto-advance step must declare exactly one action"
                )

            visited.add(step.id)
            system = Actor(id=self.settings.system_actor_id, role=step.required_role, is_system=True)
            executions.append(self._apply_action(
                instance, template, step, system, step.actions[0],
                None, {"auto_advance": True}, now, executions[-1].sequence + 1
            ))

    async def _commit(
        self,
        instance: WorkflowInstance,
        expected_version: int,
        executions: List[WorkflowExecution]
    ):
        instance.version = expected_version + 1
        await self.instance_repository.commit_transition(instance, expected_version, executions)

    async def _publish(self, instance: WorkflowInstance, executions: List[WorkflowExecution], actor_id: str):
        topic = _STATUS_TOPICS[instance.status]
        await self.event_bus.publish(topic, self._event_payload(instance, executions, actor_id))

    def _event_payload(
        self,
        instance: WorkflowInstance,
        executions: List[WorkflowExecution],
        actor_id: str
    ) -> Dict[str, Any]:
        return {
            "instance_id": instance.id,
            "template_id": instance.template_id,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "status": instance.status.value,
            "current_step_id": instance.current_step_id,
            "version": instance.version,
            "actor_id": actor_id,
            "actions": [e.action for e in executions]
        }
