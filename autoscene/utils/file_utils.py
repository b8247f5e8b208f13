"""File system utilities."""

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


def ensure_dirs(*dirs: Optional[str]) -> None:
    """Create directories if they don't exist; empty entries are skipped."""
    for d in dirs:
        if d:
            os.makedirs(d, exist_ok=True)


def write_text_file(path: str, text: str) -> None:
    """Write ``text`` to ``path`` as UTF-8, creating the parent directory."""
    try:
        ensure_dirs(os.path.dirname(path))
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        logger.debug(f"Wrote {len(text)} characters to {path}")
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        raise
