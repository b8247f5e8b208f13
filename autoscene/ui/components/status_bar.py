"""Status bar component."""

import tkinter as tk
from tkinter import ttk
from typing import Dict

from ...core.events import StatusEvent, StatusLevel, StatusTopic

# Badge colours per level (background, foreground)
LEVEL_COLORS = {
    StatusLevel.SECONDARY: ("#6c757d", "#ffffff"),
    StatusLevel.INFO: ("#0dcaf0", "#000000"),
    StatusLevel.SUCCESS: ("#198754", "#ffffff"),
    StatusLevel.WARNING: ("#ffc107", "#000000"),
    StatusLevel.DANGER: ("#dc3545", "#ffffff"),
}

BADGE_TOPICS = (
    (StatusTopic.OBS, "OBS", "Disconnected"),
    (StatusTopic.MONITOR, "Monitor", "Stopped"),
    (StatusTopic.DETECTION, "Detection", "Off"),
    (StatusTopic.TEMPLATE, "Template", "None"),
    (StatusTopic.SCORE, "Score", "--"),
    (StatusTopic.SCENE, "Scene", "--"),
)


class StatusBar(ttk.Frame):
    """Status bar showing one coloured badge per status topic."""

    def __init__(self, parent):
        super().__init__(parent)
        self._badges: Dict[StatusTopic, tk.Label] = {}
        self._build_ui()

    def _build_ui(self):
        """Build the status bar UI."""
        for index, (topic, caption, initial) in enumerate(BADGE_TOPICS):
            if index:
                separator = ttk.Separator(self, orient='vertical')
                separator.pack(side='left', fill='y', padx=5)
            ttk.Label(self, text=f"{caption}:").pack(side='left', padx=(0, 4))
            badge = tk.Label(self, text=initial, padx=6, pady=1)
            badge.pack(side='left')
            self._badges[topic] = badge
            self.set_badge(topic, initial, StatusLevel.SECONDARY)

    def set_badge(self, topic: StatusTopic, text: str, level: StatusLevel):
        """Update the badge for ``topic``."""
        badge = self._badges.get(topic)
        if badge is None:
            return
        bg, fg = LEVEL_COLORS.get(level, LEVEL_COLORS[StatusLevel.SECONDARY])
        badge.configure(text=text, bg=bg, fg=fg)

    def badge_text(self, topic: StatusTopic) -> str:
        badge = self._badges.get(topic)
        return badge.cget('text') if badge is not None else ""

    def apply(self, event: StatusEvent) -> bool:
        """Show ``event`` if it belongs to a badge; returns True if it did."""
        if event.topic not in self._badges:
            return False
        self.set_badge(event.topic, event.text, event.level)
        return True

    def grid(self, **kwargs):
        """Override grid to configure the frame properly."""
        super().grid(**kwargs)
        # Make sure the status bar expands to fill width
        if 'sticky' not in kwargs:
            self.configure(padding=5)
