"""Observation models returned by ``ActionSession`` read operations."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Viewport(BaseModel):
    """Viewport size in CSS pixels."""

    width: int = 1280
    height: int = 800


class SessionState(BaseModel):
    """Current observable state of a session."""

    url: str = ""
    title: str = ""
    viewport: Viewport = Field(default_factory=Viewport)
    console_count: int = 0
    network_count: int = 0


class Screenshot(BaseModel):
    """Raw screenshot bytes plus their mime type and data-URL encoding.

    ``data`` is serialized as base64 in JSON so reports round-trip losslessly.
    """

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    data: bytes
    mime: str
    data_url: str

    @property
    def size(self) -> int:
        return len(self.data)


class DomSignature(BaseModel):
    """Content hash and serialized size of a shallow DOM snapshot."""

    hash: str
    size: int


class StabilityReport(BaseModel):
    """Aggregated pairwise pixel diffs over a sampling window."""

    stable: bool
    avg_diff: float = 0.0
    max_diff: float = 0.0
    samples: int = 0


class CanvasInfo(BaseModel):
    """What the canvas hook has observed on the current page."""

    has_canvas: bool = False
    ctx_types: list[str] = Field(default_factory=list)
