"""
Structural template validation

Pure functions over a template's step/transition graph. Every check reports
its own issues, so one template can fail several checks at once; nothing here
raises.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..models.template import Action, WorkflowTemplate


# actions resolved by the terminal convention when no transition exists
TERMINAL_ACTIONS = frozenset({Action.COMPLETE.value, Action.REJECT.value, Action.TIMEOUT.value})


class IssueCode:
    EMPTY_TEMPLATE = "EMPTY_TEMPLATE"
    MISSING_INITIAL_STEP = "MISSING_INITIAL_STEP"
    UNREACHABLE_STEP = "UNREACHABLE_STEP"
    UNCOVERED_ACTION = "UNCOVERED_ACTION"
    AMBIGUOUS_ROUTING = "AMBIGUOUS_ROUTING"
    ORPHAN_TRANSITION = "ORPHAN_TRANSITION"
    AUTO_ADVANCE_ACTIONS = "AUTO_ADVANCE_ACTIONS"
    AUTO_ADVANCE_CYCLE = "AUTO_ADVANCE_CYCLE"
    TERMINAL_STEP_ACTION = "TERMINAL_STEP_ACTION"


@dataclass
class ValidationIssue:
    code: str
    message: str
    step_id: Optional[str] = None
    transition_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "code": self.code,
            "message": self.message,
            "step_id": self.step_id,
            "transition_id": self.transition_id
        }


@dataclass
class ValidationResult:
    errors: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def codes(self) -> Set[str]:
        return {e.code for e in self.errors}


def validate_template(template: WorkflowTemplate) -> ValidationResult:
    """Run every structural check and collect the issues"""
    result = ValidationResult()
    if not template.steps:
        result.errors.append(ValidationIssue(
            IssueCode.EMPTY_TEMPLATE, f"Template '{template.name}' has no steps"
        ))
        return result

    result.errors.extend(check_initial_step(template))
    result.errors.extend(check_orphan_transitions(template))
    result.errors.extend(check_unreachable_steps(template))
    result.errors.extend(check_uncovered_actions(template))
    result.errors.extend(check_ambiguous_routing(template))
    result.errors.extend(check_auto_advance(template))
    return result


def check_initial_step(template: WorkflowTemplate) -> List[ValidationIssue]:
    if template.get_initial_step() is None:
        return [ValidationIssue(
            IssueCode.MISSING_INITIAL_STEP, "No step with step_order 1"
        )]
    return []


def check_orphan_transitions(template: WorkflowTemplate) -> List[ValidationIssue]:
    step_ids = {s.id for s in template.steps}
    issues = []
    for transition in template.transitions:
        for end, step_id in (("from", transition.from_step_id), ("to", transition.to_step_id)):
            if step_id not in step_ids:
                issues.append(ValidationIssue(
                    IssueCode.ORPHAN_TRANSITION,
                    f"Transition '{transition.id}' {end}-step '{step_id}' is not part of the template",
                    step_id=step_id,
                    transition_id=transition.id
                ))
    return issues


def check_unreachable_steps(template: WorkflowTemplate) -> List[ValidationIssue]:
    targets = {t.to_step_id for t in template.transitions}
    initial = template.get_initial_step()
    issues = []
    for step in template.ordered_steps():
        if initial is not None and step.id == initial.id:
            continue
        if step.id not in targets:
            issues.append(ValidationIssue(
                IssueCode.UNREACHABLE_STEP,
                f"Step '{step.name}' is not the target of any transition",
                step_id=step.id
            ))
    return issues


def check_uncovered_actions(template: WorkflowTemplate) -> List[ValidationIssue]:
    """Every declared action must route somewhere or end the instance.

    A step with no outgoing transitions is a terminal step; it may only
    declare actions the terminal convention resolves.
    """
    issues = []
    for step in template.ordered_steps():
        outgoing = template.get_outgoing(step.id)
        covered = {t.condition for t in outgoing}
        for action in step.actions:
            if action in covered or action in TERMINAL_ACTIONS:
                continue
            if outgoing:
                issues.append(ValidationIssue(
                    IssueCode.UNCOVERED_ACTION,
                    f"Action '{action}' of step '{step.name}' has no transition",
                    step_id=step.id
                ))
            else:
                issues.append(ValidationIssue(
                    IssueCode.TERMINAL_STEP_ACTION,
                    f"Terminal step '{step.name}' declares '{action}', which cannot end "
                    f"the instance; use one of {sorted(TERMINAL_ACTIONS)}",
                    step_id=step.id
                ))
    return issues


def check_ambiguous_routing(template: WorkflowTemplate) -> List[ValidationIssue]:
    groups = defaultdict(list)
    for transition in template.transitions:
        groups[(transition.from_step_id, transition.condition, transition.priority)].append(transition)

    issues = []
    for (from_step_id, condition, priority), transitions in groups.items():
        if len(transitions) > 1:
            issues.append(ValidationIssue(
                IssueCode.AMBIGUOUS_ROUTING,
                f"{len(transitions)} transitions share condition '{condition}' "
                f"and priority {priority}",
                step_id=from_step_id,
                transition_id=transitions[0].id
            ))
    return issues


def check_auto_advance(template: WorkflowTemplate) -> List[ValidationIssue]:
    issues = []
    for step in template.ordered_steps():
        if not step.auto_advance:
            continue
        if len(step.actions) != 1:
            issues.append(ValidationIssue(
                IssueCode.AUTO_ADVANCE_ACTIONS,
                f"Auto-advance step '{step.name}' must declare exactly one action",
                step_id=step.id
            ))
            continue
        if _auto_chain_loops(template, step.id):
            issues.append(ValidationIssue(
                IssueCode.AUTO_ADVANCE_CYCLE,
                f"Auto-advance chain starting at step '{step.name}' loops back on itself",
                step_id=step.id
            ))
    return issues


def select_transition(template: WorkflowTemplate, step_id: str, action: str):
    """Highest-priority transition for (step, action).

    Returns ``(transition, tied)``; ``tied`` is True when the top priority is
    shared and the route cannot be resolved.
    """
    candidates = sorted(template.get_outgoing(step_id, action), key=lambda t: t.priority, reverse=True)
    if not candidates:
        return None, False
    tied = len(candidates) > 1 and candidates[0].priority == candidates[1].priority
    return candidates[0], tied


def _auto_chain_loops(template: WorkflowTemplate, start_step_id: str) -> bool:
    visited = set()
    step = template.get_step(start_step_id)
    while step is not None and step.auto_advance and len(step.actions) == 1:
        if step.id in visited:
            return True
        visited.add(step.id)
        transition, _ = select_transition(template, step.id, step.actions[0])
        if transition is None:
            return False
        step = template.get_step(transition.to_step_id)
    return False
