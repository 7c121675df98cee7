"""Pydantic data contract: plans, run reports and observations."""

from agent_eyes.models.observation import (
    CanvasInfo,
    DomSignature,
    Screenshot,
    SessionState,
    StabilityReport,
    Viewport,
)
from agent_eyes.models.plan import MAX_PLAN_STEPS, ActionType, InvalidStep, Plan, PlanStep, Step, WaitMode
from agent_eyes.models.report import ErrorInfo, RunArtifacts, RunReport, StepOutcome

__all__ = [
    "MAX_PLAN_STEPS",
    "ActionType",
    "CanvasInfo",
    "DomSignature",
    "ErrorInfo",
    "InvalidStep",
    "Plan",
    "PlanStep",
    "RunArtifacts",
    "RunReport",
    "Screenshot",
    "SessionState",
    "StabilityReport",
    "Step",
    "StepOutcome",
    "Viewport",
    "WaitMode",
]
