"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. Field defaults on :class:`Settings`
  2. ``config/config.yaml`` -- static defaults checked into the repo
  3. ``.env`` file and environment variables

The YAML file groups settings into sections; a key ``target_size`` inside
the ``chunk`` section maps to the ``chunk_target_size`` field.  Top-level
scalars map to the field of the same name::

    chunk:
      target_size: 2000      # -> chunk_target_size
    max_upload_bytes: 10485760
"""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from avatar_knowledge.config.settings import Settings
from avatar_knowledge.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


def load_settings(path: str = "config/config.yaml") -> Settings:
    """Build :class:`Settings` from the YAML file with env vars on top.

    Args:
        path: Path to the YAML configuration file.  A missing file is not an
              error; the environment and field defaults are used alone.

    Returns:
        The resolved settings.

    Raises:
        ConfigurationError: If the YAML is malformed, names an unknown
            setting, or a value fails validation.
    """
    yaml_values = _flatten(_read_yaml(Path(path)))

    unknown = sorted(set(yaml_values) - set(Settings.model_fields))
    if unknown:
        raise ConfigurationError(
            message=f"Unknown settings in {path}: {', '.join(unknown)}",
            provider_name="config",
        )

    try:
        env_settings = Settings()
        # Fields set from env / .env win over YAML.
        env_values = {name: getattr(env_settings, name) for name in env_settings.model_fields_set}
        settings = Settings(**{**yaml_values, **env_values})
    except ValidationError as exc:
        raise ConfigurationError(
            message=f"Invalid configuration: {exc}",
            provider_name="config",
        ) from exc

    if settings.chunk_overlap_size >= settings.chunk_target_size:
        raise ConfigurationError(
            message="chunk_overlap_size must be smaller than chunk_target_size",
            provider_name="config",
        )

    logger.debug(
        "settings_loaded",
        path=path,
        yaml_keys=sorted(yaml_values),
        env_keys=sorted(env_values),
    )
    return settings


def _read_yaml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            message=f"Malformed YAML in {config_path}: {exc}",
            provider_name="config",
        ) from exc
    if not isinstance(loaded, dict):
        raise ConfigurationError(
            message=f"{config_path} must contain a mapping at the top level",
            provider_name="config",
        )
    return loaded


def _flatten(config: dict[str, Any]) -> dict[str, Any]:
    """Flatten one level of sections into ``section_key`` field names."""
    flat: dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                flat[f"{key}_{sub_key}"] = sub_value
        else:
            flat[key] = value
    return flat
