"""
Configuration hierarchy:
1. Explicit keyword overrides (highest priority)
2. Environment variables (MAPREDUCER_<FIELD>, e.g. MAPREDUCER_TOKENS_PER_MINUTE)
3. Settings TOML file, [mapreducer] table
4. Defaults (lowest priority)
"""

from __future__ import annotations
from pathlib import Path
from typing import Any
import tomllib
import os
import logging
from importlib.metadata import version, PackageNotFoundError
from xdg_base_dirs import xdg_config_home

from mapreducer.domain.config.summarize_config import DEFAULTS, SummarizeConfig
from mapreducer.domain.exceptions.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Directories
CONFIG_DIR = Path(xdg_config_home()) / "mapreducer"

# File paths
SETTINGS_TOML_PATH = CONFIG_DIR / "settings.toml"

ENV_PREFIX = "MAPREDUCER_"

# Version
try:
    __version__ = version("mapreducer")
except PackageNotFoundError:
    __version__ = "unknown"


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            toml_config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed settings file {path}: {e}") from e
    table = toml_config.get("mapreducer", {})
    if not isinstance(table, dict):
        raise ConfigurationError(f"[mapreducer] in {path} must be a table")
    return table


def _read_env(environ: dict[str, str] | os._Environ) -> dict[str, str]:
    values: dict[str, str] = {}
    for field in SummarizeConfig.model_fields:
        raw = environ.get(ENV_PREFIX + field.upper())
        if raw:
            values[field] = raw
    return values


def load_config(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
    **overrides: Any,
) -> SummarizeConfig:
    """
    Resolve a SummarizeConfig from defaults, the settings file, the environment and
    explicit overrides. String values from the environment are coerced by pydantic.

    An explicitly passed path must exist; the default XDG path is optional.
    """
    config: dict[str, Any] = dict(DEFAULTS)

    # Config file (medium priority)
    if path is not None:
        settings_path = Path(path)
        if not settings_path.exists():
            raise ConfigurationError(f"Missing config file: {settings_path}")
    else:
        settings_path = SETTINGS_TOML_PATH
    if settings_path.exists():
        logger.debug(f"Loading settings from {settings_path}")
        config.update(_read_toml(settings_path))

    # Environment variables (high priority)
    config.update(_read_env(os.environ if environ is None else environ))

    # Explicit overrides (highest priority)
    config.update({k: v for k, v in overrides.items() if v is not None})

    return SummarizeConfig.from_mapping(config)
