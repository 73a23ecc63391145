"""
Locating and reading the guardian's YAML configuration.

The file is optional: a guardian with no config file runs on defaults plus
environment overrides. ${VAR} and $VAR references are expanded from the
environment before parsing.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from halo.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/halo.yaml"
CONFIG_PATH_ENV = "HALO_CONFIG_PATH"

# Top-level sections AppConfig understands
KNOWN_SECTIONS = frozenset({"backend", "classifier", "reflex", "speech", "health", "logging"})

# Project root directory (parent of halo/)
_PROJ_DIR = Path(__file__).parent.parent.parent.resolve()


def resolve_config_path(path: Optional[str] = None) -> str:
    """
    Pick the configuration file to read.

    An explicit path wins, then HALO_CONFIG_PATH, then config/halo.yaml.
    Relative paths are taken from the project root so the service behaves
    the same whatever directory it is launched from.
    """
    chosen = path or os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    if not os.path.isabs(chosen):
        return os.path.join(_PROJ_DIR, chosen)
    return chosen


def read_config_file(path: str) -> Dict[str, Any]:
    """
    Read one YAML configuration file into a plain dict.

    Returns {} for a missing or empty file. Unknown top-level sections are
    dropped with a warning so a typo like 'clasifier:' is visible in the logs.

    Raises:
        yaml.YAMLError: If the file does not parse or is not a mapping
    """
    try:
        with open(path, 'r') as f:
            raw = f.read()
    except FileNotFoundError:
        logger.info("Configuration file not found; using defaults", path=path)
        return {}

    try:
        data = yaml.safe_load(os.path.expandvars(raw))
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"{path}: top level must be a mapping of sections, got {type(data).__name__}")

    unknown = sorted(str(k) for k in data if k not in KNOWN_SECTIONS)
    if unknown:
        logger.warning("Ignoring unknown configuration sections", path=path, sections=unknown)
    return {k: v for k, v in data.items() if k in KNOWN_SECTIONS}
