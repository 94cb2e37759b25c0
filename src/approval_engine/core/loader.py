"""
Template definition loader

Reads a template from YAML or JSON. Steps carry a local ``key`` that
transitions refer to, so a definition file never needs generated ids::

    template:
      name: Contestant approval
      entity_type: CONTESTANT
      steps:
        - key: review
          name: Organizer review
          order: 1
          role: ORGANIZER
          actions: [APPROVE, REJECT]
          timeout_hours: 48
        - key: board
          ...
      transitions:
        - from: review
          to: board
          action: APPROVE
          priority: 0
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from jsonschema import Draft7Validator

from ..exceptions import TemplateParseError
from ..models.template import (
    Action, Role, WorkflowStep, WorkflowTemplate, WorkflowTransition
)
from .templates import TemplateStore


logger = logging.getLogger(__name__)


# Shape only; roles, actions, numbers and step keys are checked while parsing
DEFINITION_SCHEMA = {
    "type": "object",
    "required": ["name", "entity_type"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "entity_type": {"type": "string", "minLength": 1},
        "description": {"type": ["string", "null"]},
        "active": {"type": "boolean"},
        "steps": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "key": {"type": "string"},
                    "name": {"type": "string", "minLength": 1},
                    "actions": {
                        "type": ["array", "string"],
                        "items": {"type": "string"}
                    },
                    "auto_advance": {"type": "boolean"}
                }
            }
        },
        "transitions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["from", "to"]
            }
        }
    }
}


class TemplateLoader:
    """Template definition parser"""

    def __init__(self):
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }
        self.schema_validator = Draft7Validator(DEFINITION_SCHEMA)

    def parse(self, source: Union[str, Path, Dict[str, Any]]) -> WorkflowTemplate:
        """Parse a definition given as a dict, a file path or a YAML/JSON string"""
        if isinstance(source, dict):
            return self._parse_dict(source)

        if isinstance(source, Path):
            return self.parse_file(source)

        if isinstance(source, str):
            path = Path(source)
            if '\n' not in source and path.suffix.lower().lstrip('.') in self.parsers and path.is_file():
                return self.parse_file(path)
            return self.parse_string(source)

        raise TemplateParseError(f"Unsupported source type: {type(source)}")

    def parse_file(self, file_path: Path) -> WorkflowTemplate:
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise TemplateParseError(f"Unsupported file format: {suffix}")

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        return self._parse_dict(self.parsers[suffix](content))

    def parse_string(self, content: str) -> WorkflowTemplate:
        # JSON documents are valid YAML
        return self._parse_dict(self._parse_yaml(content))

    async def install(self, template: WorkflowTemplate, store: TemplateStore) -> str:
        """Create a parsed template through the store; returns the new template id"""
        template_id = await store.create_template(
            name=template.name,
            description=template.description,
            entity_type=template.entity_type,
            active=template.active
        )

        step_ids = {}
        for step in template.ordered_steps():
            step_ids[step.id] = await store.add_step(
                template_id,
                name=step.name,
                step_order=step.step_order,
                required_role=step.required_role,
                actions=step.actions,
                auto_advance=step.auto_advance,
                timeout_hours=step.timeout_hours,
                description=step.description
            )

        for transition in template.transitions:
            await store.add_transition(
                template_id,
                from_step_id=step_ids[transition.from_step_id],
                to_step_id=step_ids[transition.to_step_id],
                condition=transition.condition,
                priority=transition.priority
            )

        logger.info(
            f"Installed template '{template.name}' as {template_id} "
            f"({len(template.steps)} steps, {len(template.transitions)} transitions)"
        )
        return template_id

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise TemplateParseError(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise TemplateParseError(f"Failed to parse JSON: {e}")

    def _parse_dict(self, data: Any) -> WorkflowTemplate:
        if not isinstance(data, dict):
            raise TemplateParseError("Template definition must be a mapping")
        if 'template' in data:
            data = data['template']

        errors = self._schema_errors(data)
        if errors:
            raise TemplateParseError(f"Invalid template definition: {'; '.join(errors)}")

        template = WorkflowTemplate(
            name=data['name'],
            entity_type=data['entity_type'],
            description=data.get('description'),
            active=bool(data.get('active', True))
        )

        keys: Dict[str, str] = {}
        for index, step_data in enumerate(data.get('steps') or [], start=1):
            step = self._parse_step(template.id, step_data, index)
            key = str(step_data.get('key') or step.name)
            if key in keys:
                raise TemplateParseError(f"Duplicate step key: {key}")
            keys[key] = step.id
            template.steps.append(step)

        for transition_data in data.get('transitions') or []:
            template.transitions.append(self._parse_transition(template.id, transition_data, keys))

        template.steps.sort(key=lambda s: s.step_order)
        return template

    def _schema_errors(self, data: Any) -> List[str]:
        errors = []
        for error in self.schema_validator.iter_errors(data):
            path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
            errors.append(f"{path}: {error.message}")
        return errors

    def _parse_step(self, template_id: str, data: Dict[str, Any], index: int) -> WorkflowStep:
        actions = data.get('actions') or []
        if isinstance(actions, str):
            actions = [actions]

        timeout_hours = data.get('timeout_hours')
        try:
            step_order = int(data.get('order', data.get('step_order', index)))
            if timeout_hours is not None:
                timeout_hours = float(timeout_hours)
        except (TypeError, ValueError) as e:
            raise TemplateParseError(f"Step '{data['name']}' has a malformed number: {e}")

        return WorkflowStep(
            template_id=template_id,
            name=data['name'],
            description=data.get('description'),
            step_order=step_order,
            required_role=self._enum_value(Role, data.get('role', data.get('required_role')), 'role'),
            actions=[self._enum_value(Action, a, 'action') for a in actions],
            auto_advance=bool(data.get('auto_advance', False)),
            timeout_hours=timeout_hours
        )

    def _parse_transition(
        self,
        template_id: str,
        data: Dict[str, Any],
        keys: Dict[str, str]
    ) -> WorkflowTransition:
        ends = {}
        for end in ('from', 'to'):
            key = data.get(end)
            if key not in keys:
                raise TemplateParseError(f"Transition '{end}' refers to unknown step key: {key}")
            ends[end] = keys[key]

        try:
            priority = int(data.get('priority', 0))
        except (TypeError, ValueError) as e:
            raise TemplateParseError(f"Transition {data['from']} -> {data['to']} has a malformed number: {e}")

        return WorkflowTransition(
            template_id=template_id,
            from_step_id=ends['from'],
            to_step_id=ends['to'],
            condition=self._enum_value(Action, data.get('action', data.get('condition')), 'action'),
            priority=priority
        )

    @staticmethod
    def _enum_value(enum_cls, value, label: str) -> str:
        try:
            return enum_cls(value).value
        except ValueError:
            raise TemplateParseError(f"Unknown {label}: {value}")
