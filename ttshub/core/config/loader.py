"""
Configuration loader — reads hub.yml into a HubConfig.

hub.yml is optional.  When none is found every default applies and the
working directory acts as the config root.  A file that exists but does
not parse or validate is an error: silently ignoring a typo'd port is
worse than refusing to start.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from ttshub.core.errors import ConfigError
from ttshub.core.models.hub import HubConfig

logger = logging.getLogger(__name__)

HUB_CONFIG_FILE = "hub.yml"


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for hub.yml starting from ``start_dir`` (default: cwd), walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / HUB_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_config(path: Path | None = None, *, search: bool = True) -> HubConfig:
    """Load and validate hub configuration.

    Args:
        path: Explicit path to hub.yml.  Must exist when given.
        search: Walk up from the cwd when ``path`` is None.

    Raises:
        ConfigError: the explicit file is missing, or a file is invalid.
    """
    if path is None and search:
        path = find_config_file()

    if path is None:
        logger.debug("No %s found; using defaults", HUB_CONFIG_FILE)
        return HubConfig(root=str(Path.cwd()))

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading hub config from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "hub" key or be flat
    data = dict(data.get("hub", data))
    data["root"] = str(path.parent.resolve())

    try:
        config = HubConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid hub configuration in {path}: {e}") from e

    logger.info("Loaded hub config from %s", path)
    return config


def dump_config(config: HubConfig) -> str:
    """Render a config as hub.yml text (``root`` is implied by location)."""
    data = config.model_dump(mode="json", exclude={"root"})
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
