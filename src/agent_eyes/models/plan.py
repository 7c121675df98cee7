"""Plan models — the ordered action sequence executed by ``StepRunner``.

Steps form a closed tagged union keyed on ``action``; each action carries its
own typed ``args`` model.  A step with an unknown action or bad args is kept
in place as an ``InvalidStep``, which the runner reports as a failed
``BAD_INPUT`` step.

Example plan JSON::

    {
      "goal": "Open a site and interact",
      "steps": [
        {"action": "navigate", "args": {"url": "https://example.com", "wait": "domcontentloaded"}},
        {"action": "wait", "args": {"for": "selector", "selector": "h1", "timeout_ms": 5000}},
        {"action": "scroll", "args": {"y": 800}}
      ],
      "abort_on_error": true,
      "max_duration_ms": 60000
    }
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

MAX_PLAN_STEPS = 50


class ActionType(str, Enum):
    """Primitive actions a plan step can perform."""

    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    WAIT = "wait"
    SCROLL = "scroll"
    KEYS = "keys"
    EXEC = "exec"


class WaitMode(str, Enum):
    """What a ``wait`` step waits for."""

    SELECTOR = "selector"
    NETWORK_IDLE = "networkidle"
    TIMEOUT = "timeout"


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------


class NavigateArgs(BaseModel):
    url: str
    wait: Literal["commit", "domcontentloaded", "load", "networkidle"] = "load"
    timeout_ms: int | None = None


class ClickArgs(BaseModel):
    selector: str | None = None
    text: str | None = None
    nth: int | None = None
    timeout_ms: int | None = None


class TypeArgs(BaseModel):
    selector: str = ""
    text: str = ""
    delay_ms: int | None = None


class WaitArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: str = Field(validation_alias=AliasChoices("mode", "for"))
    selector: str | None = None
    timeout_ms: int | None = None


class ScrollArgs(BaseModel):
    x: float | None = None
    y: float | None = None
    into_view_selector: str | None = None


class KeysArgs(BaseModel):
    press: str


class ExecArgs(BaseModel):
    expression: str


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class NavigateStep(BaseModel):
    action: Literal["navigate"] = "navigate"
    args: NavigateArgs


class ClickStep(BaseModel):
    action: Literal["click"] = "click"
    args: ClickArgs = Field(default_factory=ClickArgs)


class TypeStep(BaseModel):
    action: Literal["type"] = "type"
    args: TypeArgs = Field(default_factory=TypeArgs)


class WaitStep(BaseModel):
    action: Literal["wait"] = "wait"
    args: WaitArgs


class ScrollStep(BaseModel):
    action: Literal["scroll"] = "scroll"
    args: ScrollArgs = Field(default_factory=ScrollArgs)


class KeysStep(BaseModel):
    action: Literal["keys"] = "keys"
    args: KeysArgs


class ExecStep(BaseModel):
    action: Literal["exec"] = "exec"
    args: ExecArgs


Step = Annotated[
    Union[NavigateStep, ClickStep, TypeStep, WaitStep, ScrollStep, KeysStep, ExecStep],
    Field(discriminator="action"),
]

_STEP_ADAPTER: TypeAdapter[Step] = TypeAdapter(Step)


class InvalidStep(BaseModel):
    """A step entry that could not be parsed.

    It keeps its place in the plan so the runner can report it as a
    ``BAD_INPUT`` step failure instead of rejecting the whole plan.
    """

    action: str = ""
    args: Any = None
    error: str
    hint: str = ""

    @classmethod
    def from_raw(cls, raw: Any, exc: ValidationError) -> InvalidStep:
        data = raw if isinstance(raw, dict) else {}
        action = data.get("action")
        action = action if isinstance(action, str) else ""
        if action not in {a.value for a in ActionType}:
            return cls(action=action, args=data.get("args"), error=f"Unknown action: {action or '(missing)'}")
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        return cls(
            action=action,
            args=data.get("args"),
            error=f"Invalid {action} step: {first.get('msg', 'validation failed')}",
            hint=location,
        )


PlanStep = Union[Step, InvalidStep]


def parse_step(raw: Any) -> PlanStep:
    """Parse one raw step, returning an ``InvalidStep`` when it does not validate."""
    try:
        return _STEP_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        return InvalidStep.from_raw(raw, exc)


def is_fragile(step: PlanStep) -> bool:
    """True for steps whose success depends on transient render state."""
    if isinstance(step, InvalidStep):
        return False
    if step.action == ActionType.CLICK.value:
        return True
    return step.action == ActionType.WAIT.value and step.args.mode == WaitMode.SELECTOR.value


class Plan(BaseModel):
    """An ordered sequence of steps plus run policy.

    Each step is parsed on its own; one that does not validate is kept as an
    ``InvalidStep`` so earlier and later steps still run.
    """

    model_config = ConfigDict(frozen=True)

    goal: str = ""
    steps: list[PlanStep]
    abort_on_error: bool = True
    max_duration_ms: int | None = None

    @field_validator("steps", mode="before")
    @classmethod
    def _parse_steps(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        return [s if isinstance(s, BaseModel) else parse_step(s) for s in v]

    @field_validator("steps")
    @classmethod
    def _limit_steps(cls, v: list[PlanStep]) -> list[PlanStep]:
        if len(v) > MAX_PLAN_STEPS:
            raise ValueError(f"Too many steps (>{MAX_PLAN_STEPS})")
        return v
