"""
Filesystem helpers shared by the conversion and storage code.
"""

from __future__ import annotations

import re
import tempfile
from pathlib import Path

# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")


def sanitize_label(label: str, fallback: str) -> str:
    """
    Generate a filesystem-safe label from user input.

    Example:
        >>> sanitize_label("Lab Report #2", "document")
        "lab-report-2"
        >>> sanitize_label("@#$", "document")
        "document"
    """
    cleaned = SANITIZE_PATTERN.sub("-", label.strip())
    cleaned = cleaned.strip("-_.").lower()
    return cleaned or fallback


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def make_work_dir(root: Path, prefix: str) -> Path:
    """
    Create a fresh, uniquely named directory under ``root``.

    Concurrent callers never share a directory, so each one can remove its own
    without coordinating with anyone else.
    """
    ensure_directory(root)
    return Path(tempfile.mkdtemp(prefix=f"{sanitize_label(prefix, 'work')}-", dir=root))
