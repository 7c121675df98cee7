"""Configuration loader for Agent Eyes using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags / explicit constructor values
  2. Environment variables (EYES_* with __ for nesting)
  3. settings.local.toml
  4. settings.<env>.toml
  5. settings.default.toml
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("EYES_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "EYES_ENV"
DEFAULT_ENV = "local"


def _resolve_env() -> str:
    return (os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class BrowserSettings(BaseSettings):
    """Playwright browser and per-action timing settings."""

    model_config = SettingsConfigDict(env_prefix="EYES_BROWSER__")

    headless: bool = True
    viewport_width: int = Field(default=1280, gt=0)
    viewport_height: int = Field(default=800, gt=0)
    user_agent: str = ""
    channel: str = ""
    flags: list[str] = Field(default_factory=list)
    canvas_hook: bool = True
    navigation_timeout_ms: int = 30_000
    action_timeout_ms: int = 10_000
    content_timeout_ms: int = 15_000
    settle_ms: int = 100
    type_delay_ms: int = 20


class GuardSettings(BaseSettings):
    """Navigation guard policy."""

    model_config = SettingsConfigDict(env_prefix="EYES_GUARD__")

    block_private_ips: bool = True
    allow_pattern: str = ""  # regex; empty = no allowlist


class BufferSettings(BaseSettings):
    """Console / network ring buffer capacities."""

    model_config = SettingsConfigDict(env_prefix="EYES_BUFFERS__")

    console_capacity: int = Field(default=500, gt=0)
    network_capacity: int = Field(default=1000, gt=0)


class FrameStreamSettings(BaseSettings):
    """Low-rate preview frame stream."""

    model_config = SettingsConfigDict(env_prefix="EYES_FRAME_STREAM__")

    enabled: bool = True
    fps: float = 3.0
    quality: int = Field(default=60, ge=0, le=100)


class TraceSettings(BaseSettings):
    """Structured JSONL action trace."""

    model_config = SettingsConfigDict(env_prefix="EYES_TRACE__")

    enabled: bool = False
    file: str = ""  # empty = eyes-trace-<epoch ms>.jsonl in the working directory


class RunnerSettings(BaseSettings):
    """Retry / backoff policy for plan execution."""

    model_config = SettingsConfigDict(env_prefix="EYES_RUNNER__")

    fragile_attempts: int = Field(default=3, ge=1)
    backoff_base_ms: int = 300
    backoff_cap_ms: int = 2000
    backoff_jitter_ms: int = 100


class StabilitySettings(BaseSettings):
    """Defaults for the visual stability window."""

    model_config = SettingsConfigDict(env_prefix="EYES_STABILITY__")

    duration_ms: int = 2000
    fps: float = 3.0
    threshold: float = 0.02
    sample_stride: int = 3
    resize_width: int = 256


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root Agent Eyes settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="EYES_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    log_level: str = "INFO"
    log_json: bool = False

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    guard: GuardSettings = Field(default_factory=GuardSettings)
    buffers: BufferSettings = Field(default_factory=BufferSettings)
    frame_stream: FrameStreamSettings = Field(default_factory=FrameStreamSettings)
    trace: TraceSettings = Field(default_factory=TraceSettings)
    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    stability: StabilitySettings = Field(default_factory=StabilitySettings)

    @model_validator(mode="before")
    @classmethod
    def _merge_toml_files(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Layer TOML config files before env var overrides."""
        defaults = _load_toml(CONFIG_DIR / "settings.default.toml")
        env_name = (values.get("env") or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()
        env_overrides = _load_toml(CONFIG_DIR / f"settings.{env_name}.toml")
        local_overrides = _load_toml(CONFIG_DIR / "settings.local.toml")

        # Merge: defaults < env-specific < local < explicit values
        merged: dict[str, Any] = {}
        for layer in (defaults, env_overrides, local_overrides, values):
            for key, val in layer.items():
                if isinstance(val, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **val}
                else:
                    merged[key] = val
        return merged

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize a relative trace file path against project_root."""
        if self.trace.file and not Path(self.trace.file).is_absolute():
            self.trace.file = str(self.project_root / self.trace.file)
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
