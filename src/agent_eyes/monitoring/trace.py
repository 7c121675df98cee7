"""Structured per-action trace written as JSON lines.

One ``TraceRecord`` per action invocation.  The target file is opened in
append mode on the first write, so an enabled-but-idle trace leaves nothing
on disk.  A failed write is logged and dropped; tracing never fails an action.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import IO, Any

from pydantic import BaseModel, Field

from agent_eyes.exceptions import EyesError
from agent_eyes.models.report import ErrorInfo

logger = logging.getLogger(__name__)


def default_trace_path() -> Path:
    """``eyes-trace-<epoch ms>.jsonl`` in the working directory."""
    return Path(f"eyes-trace-{int(time.time() * 1000)}.jsonl")


class TraceRecord(BaseModel):
    """One traced action invocation."""

    ts: int = Field(default_factory=lambda: int(time.time() * 1000))
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    duration_ms: int
    success: bool
    error: ErrorInfo | None = None

    @classmethod
    def for_action(
        cls,
        action: str,
        payload: dict[str, Any],
        duration_ms: int,
        error: EyesError | None = None,
    ) -> TraceRecord:
        return cls(
            action=action,
            payload=payload,
            duration_ms=duration_ms,
            success=error is None,
            error=ErrorInfo.from_error(error) if error else None,
        )


class TraceWriter:
    """Append-only JSONL trace file, created lazily."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else default_trace_path()
        self._stream: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: TraceRecord) -> None:
        """Append *record* as one JSON line."""
        try:
            if self._stream is None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._stream = open(self._path, "a", encoding="utf-8")  # noqa: SIM115
            self._stream.write(record.model_dump_json(exclude_none=True) + "\n")
            self._stream.flush()
        except OSError as e:
            logger.warning("Trace write to %s failed: %s", self._path, e)

    def close(self) -> None:
        if self._stream is not None:
            try:
                self._stream.close()
            except OSError as e:
                logger.debug("Trace close failed: %s", e)
            self._stream = None
