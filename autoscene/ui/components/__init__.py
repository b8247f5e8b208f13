"""UI components package."""

from .status_bar import StatusBar

__all__ = [
    'StatusBar'
]
