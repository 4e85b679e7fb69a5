"""Configuration: pydantic-settings ``Settings`` plus the YAML layer."""

from avatar_knowledge.config.loader import load_settings
from avatar_knowledge.config.settings import Settings

__all__ = ["Settings", "load_settings"]
