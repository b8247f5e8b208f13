"""Utility helpers."""

from .file_utils import ensure_dirs, write_text_file

__all__ = ["ensure_dirs", "write_text_file"]
