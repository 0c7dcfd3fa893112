"""Utility functions for chanbot."""

from chanbot.utils.helpers import ensure_dir, safe_filename
from chanbot.utils.sanitize import sanitize_unicode

__all__ = ["ensure_dir", "safe_filename", "sanitize_unicode"]
