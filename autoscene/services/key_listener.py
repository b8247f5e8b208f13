"""Global key hook reporting when the map key is held or released."""

import logging
import threading
import time
from typing import Callable, Optional

import keyboard

from ..core.exceptions import KeyHookUnavailable

logger = logging.getLogger(__name__)


class KeyHoldListener:
    """Watch one key system-wide and report held-state changes.

    Auto-repeat key-down events are collapsed, so the callback fires exactly
    once per press and once per release, with a monotonic timestamp taken
    when the OS event is received.
    """

    def __init__(self, key: str, callback: Callable[[bool, float], None],
                 clock: Callable[[], float] = time.monotonic, hook_module=keyboard):
        """Initialize the listener.

        Args:
            key: Key name understood by the ``keyboard`` library (e.g. "g", "tab")
            callback: Called as ``callback(held, timestamp)`` on every change
            clock: Monotonic time source
            hook_module: Module providing ``hook_key``/``unhook``
        """
        self.key = key
        self._callback = callback
        self._clock = clock
        self._hooks = hook_module
        self._hook = None
        self._held = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._hook is not None

    @property
    def held(self) -> bool:
        return self._held

    def start(self) -> None:
        """Install the hook.

        Raises:
            KeyHookUnavailable: If the OS refuses the hook (e.g. missing permissions)
        """
        if self._hook is not None:
            return
        try:
            self._hook = self._hooks.hook_key(self.key, self._on_event)
        except Exception as e:
            raise KeyHookUnavailable(f"Could not hook key '{self.key}': {e}") from e
        logger.info(f"Listening for map key '{self.key}'")

    def stop(self) -> None:
        hook, self._hook = self._hook, None
        self._held = False
        if hook is None:
            return
        try:
            self._hooks.unhook(hook)
        except Exception as e:
            logger.debug(f"Error removing key hook: {e}")
        logger.info(f"Stopped listening for map key '{self.key}'")

    def _on_event(self, event) -> None:
        held = getattr(event, "event_type", None) == self._hooks.KEY_DOWN
        timestamp = self._clock()
        with self._lock:
            if held == self._held:
                return
            self._held = held
        try:
            self._callback(held, timestamp)
        except Exception as e:
            logger.error(f"Error in key callback: {e}")
