from __future__ import annotations

from pathlib import Path
from typing import Optional

import platformdirs

APP_NAME = "cve-matcher"


def _ensure_dir(p: Path) -> Path:
    """Ensure directory exists and return it."""
    p.mkdir(parents=True, exist_ok=True)
    return p


def resolve_data_dir(configured: Optional[str | Path] = None) -> Path:
    """Return the data directory (database, update lock), defaulting to platformdirs' user data dir."""
    if configured:
        return _ensure_dir(Path(configured))
    return _ensure_dir(Path(platformdirs.user_data_dir(APP_NAME)))


def resolve_cache_dir(configured: Optional[str | Path] = None) -> Path:
    """Return the cache directory for downloaded feed files, defaulting to platformdirs' user cache dir."""
    if configured:
        return _ensure_dir(Path(configured))
    return _ensure_dir(Path(platformdirs.user_cache_dir(APP_NAME)))
