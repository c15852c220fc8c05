"""
Configuration loader — reads wsmigrate.yml into the Settings model.

The settings file is optional: with no file every default applies.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from wsmigrate.core.errors import ConfigError
from wsmigrate.core.models.settings import Settings

logger = logging.getLogger(__name__)

SETTINGS_FILE = "wsmigrate.yml"


def find_settings_file(start_dir: Path | None = None) -> Path | None:
    """Search for wsmigrate.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to wsmigrate.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SETTINGS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_settings(path: Path | None = None, search: bool = True) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit settings file (``--config``).  Must exist.
        search: When no path is given, look upward from cwd.

    Returns:
        Validated Settings; defaults when no file is found.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None:
        path = find_settings_file() if search else None
        if path is None:
            logger.debug("No %s found; using defaults", SETTINGS_FILE)
            return Settings()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = Settings.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    # relative state_dir is relative to the settings file
    state_dir = Path(settings.state_dir)
    if not state_dir.is_absolute():
        settings.state_dir = str(path.parent.resolve() / state_dir)
    return settings
