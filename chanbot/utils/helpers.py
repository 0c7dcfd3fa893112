"""Small filesystem helpers."""

import re
from pathlib import Path

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*#\x00-\x1f]')


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing, return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_filename(name: str) -> str:
    """Replace characters that are unsafe in file names with underscores.

    IRC channel names start with '#', which several tools treat as a comment
    marker, so it is replaced too.
    """
    return _UNSAFE_CHARS.sub("_", name).strip() or "_"
