"""
Alfred Memory Platform Paths
----------------------------
Cross-platform resolution of the data, config and model-cache directories.

Priority for every directory: explicit environment override, then
``ALFRED_HOME``, then the platformdirs location for the current OS.
"""

import os
import logging
from pathlib import Path

import platformdirs

logger = logging.getLogger("Alfred.Platform")

_APP_NAME = "alfred"
_APP_AUTHOR = "Alfred"


def get_home_dir() -> Path:
    """
    Return ALFRED_HOME when set, otherwise the per-user data directory.
    """
    home = os.environ.get("ALFRED_HOME")
    if home:
        return Path(home).expanduser()
    return Path(platformdirs.user_data_dir(_APP_NAME, _APP_AUTHOR))


def get_data_dir() -> Path:
    """
    Get the memory data directory.

    Priority: ALFRED_DATA_DIR > ALFRED_HOME/memory > platformdirs/memory.
    Contains: vectors.db and its store lock.
    """
    override = os.environ.get("ALFRED_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return get_home_dir() / "memory"


def get_cache_dir() -> Path:
    """Shared embedding model cache: ALFRED_HOME/cache/embeddings."""
    override = os.environ.get("ALFRED_CACHE_DIR")
    if override:
        return Path(override).expanduser()
    return get_home_dir() / "cache" / "embeddings"


def get_config_dir() -> Path:
    """Directory holding config.yaml."""
    override = os.environ.get("ALFRED_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    if os.environ.get("ALFRED_HOME"):
        return get_home_dir()
    return Path(platformdirs.user_config_dir(_APP_NAME, _APP_AUTHOR))


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path
