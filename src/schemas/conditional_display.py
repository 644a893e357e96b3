"""
Conditional display rules - when a funnel question is shown.

A rule is stored as JSONB on form_questions.conditional_display in one of two shapes:
    single:   {"dependent_on_question_id": ..., "show_when_answer_equals": [...], "logical_operator": "OR"}
    compound: {"conditions": [<single>, ...], "group_logical_operator": "AND"}
The presence of a "conditions" array selects the compound shape.
"""
import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Discriminator, Field, Tag, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger(__name__)

LogicalOperator = Literal["AND", "OR"]


class SingleCondition(BaseModel):
    dependent_on_question_id: str
    show_when_answer_equals: list[str] = Field(default_factory=list)
    logical_operator: LogicalOperator = "OR"

    @field_validator("dependent_on_question_id", mode="before")
    @classmethod
    def _coerce_question_id(cls, value: Any) -> str:
        return str(value) if value is not None else value

    @field_validator("show_when_answer_equals", mode="before")
    @classmethod
    def _coerce_targets(cls, value: Any) -> list[str]:
        # Admin edits sometimes store a bare value or numbers
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            value = [value]
        return [str(v) for v in value]

    @field_validator("logical_operator", mode="before")
    @classmethod
    def _upper_operator(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class CompoundCondition(BaseModel):
    conditions: list[SingleCondition] = Field(default_factory=list)
    group_logical_operator: LogicalOperator = "AND"

    @field_validator("group_logical_operator", mode="before")
    @classmethod
    def _upper_operator(cls, value: Any) -> Any:
        if value is None:
            return "AND"
        return value.upper() if isinstance(value, str) else value


def _rule_shape(raw: Any) -> str:
    if isinstance(raw, dict):
        return "compound" if isinstance(raw.get("conditions"), list) else "single"
    if isinstance(raw, CompoundCondition):
        return "compound"
    return "single"


ConditionalDisplayRule = Annotated[
    Union[
        Annotated[SingleCondition, Tag("single")],
        Annotated[CompoundCondition, Tag("compound")],
    ],
    Discriminator(_rule_shape),
]

_rule_adapter = TypeAdapter(ConditionalDisplayRule)


def parse_rule(raw: Any, question_id: Optional[str] = None) -> Optional[Union[SingleCondition, CompoundCondition]]:
    """
    Parse a stored conditional_display value.

    Empty values mean "no rule". A value that fails validation is also
    treated as "no rule" and logged, so one broken admin edit cannot take
    the whole funnel down.
    """
    if raw is None or raw == {} or raw == "":
        return None
    if isinstance(raw, (SingleCondition, CompoundCondition)):
        return raw
    try:
        return _rule_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(
            "Ignoring invalid conditional display rule on question %s: %s",
            question_id or "unknown", str(e),
        )
        return None
