"""
Template validator tests
"""
import pytest

from approval_engine.core.validator import IssueCode, select_transition, validate_template
from approval_engine.models.template import WorkflowStep, WorkflowTemplate, WorkflowTransition


def make_template(steps, transitions):
    """steps: (key, order, actions, auto_advance); transitions: (from, to, condition, priority)"""
    template = WorkflowTemplate(name="T", entity_type="CONTESTANT")
    ids = {}
    for key, order, actions, auto_advance in steps:
        step = WorkflowStep(
            template_id=template.id,
            name=key,
            step_order=order,
            required_role="ORGANIZER",
            actions=actions,
            auto_advance=auto_advance
        )
        ids[key] = step.id
        template.steps.append(step)
    for from_key, to_key, condition, priority in transitions:
        template.transitions.append(WorkflowTransition(
            template_id=template.id,
            from_step_id=ids.get(from_key, from_key),
            to_step_id=ids.get(to_key, to_key),
            condition=condition,
            priority=priority
        ))
    return template, ids


class TestValidateTemplate:
    """validate_template tests"""

    def test_valid_linear_template(self):
        template, _ = make_template(
            [("a", 1, ["APPROVE", "REJECT"], False), ("b", 2, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 0)]
        )
        result = validate_template(template)
        assert result.is_valid
        assert result.errors == []

    def test_empty_template(self):
        template, _ = make_template([], [])
        result = validate_template(template)
        assert not result.is_valid
        assert result.codes() == {IssueCode.EMPTY_TEMPLATE}

    def test_missing_initial_step(self):
        template, _ = make_template(
            [("a", 2, ["COMPLETE"], False)],
            []
        )
        result = validate_template(template)
        assert IssueCode.MISSING_INITIAL_STEP in result.codes()

    def test_unreachable_step(self):
        template, ids = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["COMPLETE"], False), ("c", 3, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 0)]
        )
        result = validate_template(template)
        unreachable = [e for e in result.errors if e.code == IssueCode.UNREACHABLE_STEP]
        assert [e.step_id for e in unreachable] == [ids["c"]]

    def test_uncovered_action(self):
        template, ids = make_template(
            [("a", 1, ["APPROVE", "REQUEST_CHANGES"], False), ("b", 2, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 0)]
        )
        result = validate_template(template)
        uncovered = [e for e in result.errors if e.code == IssueCode.UNCOVERED_ACTION]
        assert len(uncovered) == 1
        assert uncovered[0].step_id == ids["a"]
        assert "REQUEST_CHANGES" in uncovered[0].message

    def test_terminal_actions_need_no_transition(self):
        template, _ = make_template(
            [("a", 1, ["APPROVE", "REJECT", "TIMEOUT"], False), ("b", 2, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 0)]
        )
        assert validate_template(template).is_valid

    def test_terminal_step_with_terminal_actions(self):
        template, _ = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["COMPLETE", "REJECT"], False)],
            [("a", "b", "APPROVE", 0)]
        )
        assert validate_template(template).is_valid

    def test_terminal_step_with_action_that_cannot_end_instance(self):
        template, ids = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["APPROVE", "REJECT"], False)],
            [("a", "b", "APPROVE", 0)]
        )
        result = validate_template(template)

        assert result.codes() == {IssueCode.TERMINAL_STEP_ACTION}
        assert [e.step_id for e in result.errors] == [ids["b"]]
        assert "APPROVE" in result.errors[0].message

    def test_ambiguous_routing(self):
        template, _ = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["COMPLETE"], False), ("c", 3, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 5), ("a", "c", "APPROVE", 5)]
        )
        result = validate_template(template)
        assert IssueCode.AMBIGUOUS_ROUTING in result.codes()

    def test_distinct_priorities_are_not_ambiguous(self):
        template, _ = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["COMPLETE"], False), ("c", 3, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 1), ("a", "c", "APPROVE", 2)]
        )
        assert validate_template(template).is_valid

    def test_orphan_transition(self):
        template, _ = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 0), ("a", "foreign-step", "APPROVE", 1)]
        )
        result = validate_template(template)
        orphans = [e for e in result.errors if e.code == IssueCode.ORPHAN_TRANSITION]
        assert len(orphans) == 1
        assert orphans[0].step_id == "foreign-step"

    def test_several_failures_reported_together(self):
        template, _ = make_template(
            [
                ("a", 1, ["APPROVE", "REQUEST_CHANGES"], False),
                ("b", 2, ["COMPLETE"], False),
                ("c", 3, ["COMPLETE"], False),
                ("d", 4, ["COMPLETE"], False),
            ],
            [("a", "b", "APPROVE", 0), ("a", "c", "APPROVE", 0)]
        )
        codes = validate_template(template).codes()
        assert {
            IssueCode.UNREACHABLE_STEP,
            IssueCode.UNCOVERED_ACTION,
            IssueCode.AMBIGUOUS_ROUTING,
        } <= codes

    def test_auto_advance_step_needs_single_action(self):
        template, _ = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["COMPLETE", "REJECT"], True)],
            [("a", "b", "APPROVE", 0)]
        )
        assert IssueCode.AUTO_ADVANCE_ACTIONS in validate_template(template).codes()

    def test_auto_advance_cycle(self):
        template, _ = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["REVIEW"], True), ("c", 3, ["REVIEW"], True)],
            [("a", "b", "APPROVE", 0), ("b", "c", "REVIEW", 0), ("c", "b", "REVIEW", 0)]
        )
        assert IssueCode.AUTO_ADVANCE_CYCLE in validate_template(template).codes()

    def test_issue_serialization(self):
        template, _ = make_template([("a", 2, ["COMPLETE"], False)], [])
        issue = validate_template(template).errors[0].to_dict()
        assert set(issue) == {"code", "message", "step_id", "transition_id"}


class TestSelectTransition:
    """select_transition tests"""

    def test_highest_priority_wins(self):
        template, ids = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["COMPLETE"], False), ("c", 3, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 1), ("a", "c", "APPROVE", 10)]
        )
        transition, tied = select_transition(template, ids["a"], "APPROVE")
        assert transition.to_step_id == ids["c"]
        assert tied is False

    def test_tie_is_reported(self):
        template, ids = make_template(
            [("a", 1, ["APPROVE"], False), ("b", 2, ["COMPLETE"], False), ("c", 3, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 3), ("a", "c", "APPROVE", 3)]
        )
        _, tied = select_transition(template, ids["a"], "APPROVE")
        assert tied is True

    @pytest.mark.parametrize("action", ["REJECT", "COMPLETE"])
    def test_no_match(self, action):
        template, ids = make_template(
            [("a", 1, ["APPROVE", "REJECT"], False), ("b", 2, ["COMPLETE"], False)],
            [("a", "b", "APPROVE", 0)]
        )
        assert select_transition(template, ids["a"], action) == (None, False)
