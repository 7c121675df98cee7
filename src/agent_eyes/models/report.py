"""Run report models produced by ``StepRunner``."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from agent_eyes.exceptions import EyesError
from agent_eyes.models.observation import Screenshot, SessionState


class ErrorInfo(BaseModel):
    """The ``{code, message, hint}`` triple of a typed failure."""

    code: str
    message: str
    hint: str = ""

    @classmethod
    def from_error(cls, err: EyesError) -> ErrorInfo:
        return cls(**err.to_dict())


class StepOutcome(BaseModel):
    """What happened to one plan step."""

    index: int
    action: str
    success: bool
    attempts: int = 1
    duration_ms: int = 0
    error: ErrorInfo | None = None


class RunArtifacts(BaseModel):
    """Best-effort artifacts collected after a run; each is ``None`` if capture failed."""

    screenshot: Screenshot | None = None
    dom_snippet: dict[str, Any] | None = None


class RunReport(BaseModel):
    """Result of executing a plan against a session."""

    success: bool
    trace_id: str
    goal: str = ""
    last_state: SessionState | None = None
    artifacts: RunArtifacts = Field(default_factory=RunArtifacts)
    error: ErrorInfo | None = None
    steps: list[StepOutcome] = Field(default_factory=list)
    duration_ms: int = 0

    def to_json(self, indent: int = 2) -> str:
        """Serialize to a JSON string."""
        return self.model_dump_json(indent=indent)
