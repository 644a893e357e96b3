"""
Step planner - turns the visible question set into the wizard's ordered steps.

Question steps come first (distinct step_number of visible questions, ascending),
followed by the fixed steps: postcode/address capture, roof mapping (solar
partners with the feature on only) and the contact form. Pure: the same
questions and answers always give an equal plan.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from src.services.conditions import visible_questions

STEP_QUESTION = "question"
STEP_POSTCODE = "postcode"
STEP_ROOF_MAPPING = "roof_mapping"
STEP_CONTACT = "contact"


@dataclass(frozen=True)
class Step:
    kind: str
    name: str
    step_number: Optional[int] = None


@dataclass(frozen=True)
class StepPlan:
    active_steps: tuple[int, ...]
    total_steps: int
    steps: tuple[Step, ...] = field(default_factory=tuple)

    def step_at(self, index: int) -> Step:
        """1-based lookup. Out-of-range indexes are clamped onto the plan."""
        return self.steps[clamp_step(index, self) - 1]

    def to_dict(self) -> dict:
        return {
            "active_steps": list(self.active_steps),
            "total_steps": self.total_steps,
            "steps": [
                {"kind": s.kind, "name": s.name, "step_number": s.step_number}
                for s in self.steps
            ],
        }


def plan_steps(
    questions: Iterable[Any],
    answers: Mapping[str, Any],
    include_roof_mapping: bool = False,
) -> StepPlan:
    visible = visible_questions(questions, answers)
    active_steps = tuple(sorted({q.step_number for q in visible}))

    steps = [Step(kind=STEP_QUESTION, name=f"step_{n}", step_number=n) for n in active_steps]
    steps.append(Step(kind=STEP_POSTCODE, name="postcode"))
    if include_roof_mapping:
        steps.append(Step(kind=STEP_ROOF_MAPPING, name="roof_mapping"))
    steps.append(Step(kind=STEP_CONTACT, name="contact"))

    return StepPlan(active_steps=active_steps, total_steps=len(steps), steps=tuple(steps))


def clamp_step(current: int, plan: StepPlan) -> int:
    return min(max(current, 1), plan.total_steps)


def questions_for_step(questions: Iterable[Any], answers: Mapping[str, Any], step: Step) -> list:
    """Visible questions of one question step, in display order."""
    if step.kind != STEP_QUESTION:
        return []
    return sorted(
        (q for q in visible_questions(questions, answers) if q.step_number == step.step_number),
        key=lambda q: (q.display_order_in_step or 0),
    )
