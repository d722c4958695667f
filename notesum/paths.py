"""
Store path resolution.
"""

import os
from pathlib import Path
from typing import Optional

DEFAULT_STORE_DIRNAME = ".notesum"


def get_default_store_path() -> Path:
    """Store directory: NOTESUM_STORE_PATH if set, else ~/.notesum."""
    env = os.environ.get("NOTESUM_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / DEFAULT_STORE_DIRNAME


def resolve_store_path(store: Optional[Path] = None) -> Path:
    """Explicit path wins over the environment and the default."""
    if store is not None:
        return Path(store).expanduser().resolve()
    return get_default_store_path()
