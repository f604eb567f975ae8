"""File inventory of the working directory sent along with each request."""

from __future__ import annotations

import os
from pathlib import Path


def list_files(root: str | Path, max_files: int = 1000) -> list[str]:
    """Return up to ``max_files`` relative file paths, skipping hidden entries."""
    base = Path(root)
    files: list[str] = []
    if max_files <= 0:
        return files

    # Unreadable directories are skipped silently by os.walk.
    for current, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            files.append(str((Path(current) / name).relative_to(base)))
            if len(files) >= max_files:
                return files
    return files
