"""Screen capture service providing frames for death detection."""

import logging
import threading
from typing import Optional, Tuple

import cv2
import mss
import mss.exception
import numpy as np

from ..core.exceptions import CaptureUnavailable

logger = logging.getLogger(__name__)


class ScreenCaptureService:
    """Grab the configured monitor as a BGR numpy frame.

    ``mss`` handles are not shareable between threads on every platform, so
    one handle is created lazily per calling thread.
    """

    def __init__(self, monitor_index: int = 1):
        """Initialize screen capture.

        Args:
            monitor_index: mss monitor index (0 = all monitors combined, 1 = primary)
        """
        self.monitor_index = monitor_index
        self._local = threading.local()
        self._last_size: Optional[Tuple[int, int]] = None

    @property
    def last_size(self) -> Optional[Tuple[int, int]]:
        """(width, height) of the most recent frame."""
        return self._last_size

    def _handle(self):
        sct = getattr(self._local, "sct", None)
        if sct is None:
            sct = mss.mss()
            self._local.sct = sct
        return sct

    def grab(self) -> np.ndarray:
        """Capture the current screen contents.

        Returns:
            BGR frame; its resolution may differ from previous grabs

        Raises:
            CaptureUnavailable: If the monitor is missing or the grab fails
        """
        try:
            sct = self._handle()
            monitors = sct.monitors
            if self.monitor_index >= len(monitors):
                raise CaptureUnavailable(
                    f"Monitor {self.monitor_index} not available ({len(monitors) - 1} detected)"
                )
            shot = sct.grab(monitors[self.monitor_index])
        except CaptureUnavailable:
            raise
        except mss.exception.ScreenShotError as e:
            self.close()
            raise CaptureUnavailable(f"Screen capture failed: {e}") from e
        except Exception as e:
            self.close()
            raise CaptureUnavailable(f"Screen capture unavailable: {e}") from e

        frame = cv2.cvtColor(np.asarray(shot), cv2.COLOR_BGRA2BGR)
        size = (frame.shape[1], frame.shape[0])
        if self._last_size is not None and size != self._last_size:
            logger.info(f"Capture resolution changed: {self._last_size} -> {size}")
        self._last_size = size
        return frame

    def close(self) -> None:
        """Release the handle owned by the calling thread."""
        sct = getattr(self._local, "sct", None)
        if sct is not None:
            try:
                sct.close()
            except Exception as e:
                logger.debug(f"Error closing screen capture handle: {e}")
            self._local.sct = None
