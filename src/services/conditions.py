"""
Condition evaluator - decides which funnel questions are visible for the
current answers. Re-run over the whole question set on every change.

An unanswered dependency hides the question (default-hidden-until-answered).
Answers and targets are compared as strings so a numeric answer matches "3".
"""
from typing import Any, Iterable, Mapping, Optional, Union

from src.schemas.conditional_display import CompoundCondition, SingleCondition, parse_rule

Rule = Union[SingleCondition, CompoundCondition]


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == ()


def _answer_values(value: Any) -> set[str]:
    if isinstance(value, (list, tuple, set)):
        return {str(v) for v in value if not _is_empty(v)}
    if isinstance(value, bool):
        return {"true" if value else "false"}
    return {str(value)}


def evaluate_condition(condition: SingleCondition, answers: Mapping[str, Any]) -> bool:
    """
    Evaluate one condition against the answers.

    OR: any answer value is one of the targets.
    AND: every target value is among the answer values.
    """
    answer = answers.get(condition.dependent_on_question_id)
    if _is_empty(answer):
        return False

    values = _answer_values(answer)
    if not values:
        return False
    targets = set(condition.show_when_answer_equals)
    if not targets:
        return False

    if condition.logical_operator == "AND":
        return targets.issubset(values)
    return bool(values & targets)


def evaluate_rule(rule: Optional[Rule], answers: Mapping[str, Any]) -> bool:
    if rule is None:
        return True
    if isinstance(rule, CompoundCondition):
        if not rule.conditions:
            return True
        results = [evaluate_condition(c, answers) for c in rule.conditions]
        if rule.group_logical_operator == "OR":
            return any(results)
        return all(results)
    return evaluate_condition(rule, answers)


def is_visible(question: Any, answers: Mapping[str, Any]) -> bool:
    """Whether a question (anything with conditional_display and id) should be shown."""
    rule = parse_rule(
        getattr(question, "conditional_display", None),
        question_id=str(getattr(question, "id", "")),
    )
    return evaluate_rule(rule, answers)


def visible_questions(questions: Iterable[Any], answers: Mapping[str, Any]) -> list:
    return [q for q in questions if is_visible(q, answers)]
