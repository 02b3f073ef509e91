"""Layered configuration: model defaults, a YAML file, then the environment.

Strings in the YAML file may reference ``${VAR}`` or ``${VAR:default}``;
they expand against the same environment that supplies the overrides, so
a test can inject one mapping and see both effects.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv

from binfeat.config.defaults import CONFIG_ENV_VAR, CONFIG_FILE_NAMES, ENV_OVERRIDES, config_search_paths
from binfeat.config.models import BinFeatConfig

_ENV_REF = re.compile(r"\$\{(\w+)(?::([^}]*))?\}")


def interpolate(value: Any, environ: Mapping[str, str]) -> Any:
    """Expand variable references in every string of a parsed YAML tree.

    An unset variable without a default expands to the empty string.
    """
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {key: interpolate(item, environ) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate(item, environ) for item in value]
    return value


def _apply_env_overrides(raw: dict, environ: Mapping[str, str]) -> dict:
    """Layer GHIDRA_HOME / BATCH_SIZE / TIMEOUT_PER_BINARY over file values."""
    if not isinstance(raw, dict):
        return raw
    for var_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var_name)
        if value is None or value == "":
            continue
        section_data = raw.get(section)
        if not isinstance(section_data, dict):
            section_data = {}
            raw[section] = section_data
        section_data[key] = value
    return raw


def find_config_file(
    explicit_path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> Path | None:
    """The explicit path, else ``$BINFEAT_CONFIG``, else the first file found on the search path."""
    if explicit_path is None and environ:
        explicit_path = environ.get(CONFIG_ENV_VAR) or None
    if explicit_path is not None:
        candidate = Path(explicit_path).expanduser()
        return candidate if candidate.is_file() else None

    for directory in config_search_paths():
        found = next((directory / n for n in CONFIG_FILE_NAMES if (directory / n).is_file()), None)
        if found is not None:
            return found
    return None


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    dotenv_path: str | Path | None = None,
) -> BinFeatConfig:
    """Load and validate configuration, falling back to defaults.

    Precedence, lowest first: model defaults, YAML file, environment
    (including a ``.env`` file, which never overrides variables already set).
    """
    if environ is None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        environ = os.environ

    raw: dict = {}
    config_path = find_config_file(path, environ)
    if config_path is not None:
        raw = interpolate(yaml.safe_load(config_path.read_text()) or {}, environ)

    return BinFeatConfig.model_validate(_apply_env_overrides(raw, environ))
