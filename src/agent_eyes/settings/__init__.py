"""Settings package — layered TOML + environment configuration."""

from agent_eyes.settings.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
