"""Scene arbitration state machine.

The arbiter reconciles the map-key edge stream and the death-detection edge
stream into scene-switch commands. It owns :class:`ArbiterState`, the single
source of truth for which scene should be on air.

Transitions (death always wins over map)::

    LIVE  --MAP_ENTERED-->    MAP    switch to map now
    MAP   --MAP_EXITED-->     LIVE   after respawn delay; MAP_ENTERED ignored meanwhile
    LIVE/MAP --DEATH_ENTERED--> DEATH switch now, cancel pending LIVE, map inert
    DEATH --DEATH_EXITED-->   LIVE   switch now
    DEATH --MAP_*-->          DEATH  ignored

The arbiter is synchronous and not re-entrant. Callers feed it events one
at a time (``handle``) and give it a chance to commit a due delayed
transition (``poll``); ``next_deadline`` tells a driver how long it may
sleep. Failures of the outbound switch call are captured and published as
status, never raised, and never roll ``current_role`` back.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

from .entities import (
    TIMING_TOLERANCE, ArbiterEvent, ArbiterState, PendingTransition, SceneMapping, SceneRole
)
from .events import StatusChannel, StatusLevel, StatusTopic
from .exceptions import SwitchError

logger = logging.getLogger(__name__)


class SceneSink(Protocol):
    def switch_to(self, scene_name: str) -> None: ...


class SceneArbiter:
    """Decide which scene is on air and command OBS accordingly."""

    def __init__(self, controller: SceneSink, mapping: SceneMapping,
                 respawn_delay_ms: int = 200,
                 status: Optional[StatusChannel] = None,
                 on_commit: Optional[Callable[[SceneRole, bool], None]] = None):
        """Initialize the arbiter.

        Args:
            controller: Command sink with a ``switch_to(scene_name)`` method
            mapping: Scene name per role
            respawn_delay_ms: Grace window before returning from map to live
            status: Optional channel for user-visible notifications
            on_commit: Optional callback ``(role, command_ok)`` after each commit
        """
        self.controller = controller
        self.mapping = mapping
        self.respawn_delay = max(0, respawn_delay_ms) / 1000.0
        self.status = status
        self._on_commit = on_commit
        self._state = ArbiterState()
        self._lock = threading.RLock()
        self._in_transition = False
        self.commands_sent = 0
        self.commands_failed = 0

    @property
    def state(self) -> ArbiterState:
        return self._state

    @property
    def current_role(self) -> SceneRole:
        return self._state.current_role

    def next_deadline(self) -> Optional[float]:
        pending = self._state.pending_transition
        return pending.not_before if pending else None

    def handle(self, event: ArbiterEvent, now: float) -> Optional[SceneRole]:
        """Process one event to completion.

        Returns:
            The role committed by this event, or None if nothing changed
        """
        with self._lock:
            if self._in_transition:
                logger.warning(f"Re-entrant arbiter call dropped: {event.value}")
                return None
            self._in_transition = True
            try:
                return self._dispatch(event, now)
            except Exception as e:
                logger.error(f"Arbiter failed handling {event.value}: {e}", exc_info=True)
                self._publish(f"Arbiter error: {e}", StatusLevel.DANGER)
                return None
            finally:
                self._in_transition = False

    def poll(self, now: float) -> Optional[SceneRole]:
        """Commit the pending delayed transition if it is due."""
        with self._lock:
            if self._in_transition:
                return None
            pending = self._state.pending_transition
            if pending is None or now + TIMING_TOLERANCE < pending.not_before:
                return None
            self._in_transition = True
            try:
                self._state.pending_transition = None
                self._commit(pending.target_role, "respawn delay elapsed")
                return pending.target_role
            finally:
                self._in_transition = False

    def reset(self) -> None:
        with self._lock:
            self._state = ArbiterState()

    def _dispatch(self, event: ArbiterEvent, now: float) -> Optional[SceneRole]:
        st = self._state

        if event is ArbiterEvent.DEATH_ENTERED:
            st.death_signal_active = True
            if st.current_role is SceneRole.DEATH:
                return None
            if st.pending_transition is not None:
                logger.info("Pending return to live cancelled by death")
                st.pending_transition = None
            self._commit(SceneRole.DEATH, "death detected")
            return SceneRole.DEATH

        if event is ArbiterEvent.DEATH_EXITED:
            st.death_signal_active = False
            if st.current_role is not SceneRole.DEATH:
                return None
            self._commit(SceneRole.LIVE, "death screen cleared")
            return SceneRole.LIVE

        if event is ArbiterEvent.MAP_ENTERED:
            st.map_signal_active = True
            if st.current_role is SceneRole.DEATH:
                logger.debug("Map key ignored while death scene is active")
                return None
            if st.pending_transition is not None:
                logger.debug("Map key ignored during respawn delay")
                return None
            if st.current_role is SceneRole.MAP:
                return None
            self._commit(SceneRole.MAP, "map opened")
            return SceneRole.MAP

        if event is ArbiterEvent.MAP_EXITED:
            st.map_signal_active = False
            if st.current_role is not SceneRole.MAP or st.pending_transition is not None:
                return None
            if self.respawn_delay <= 0:
                self._commit(SceneRole.LIVE, "map closed")
                return SceneRole.LIVE
            st.pending_transition = PendingTransition(SceneRole.LIVE, now + self.respawn_delay)
            logger.debug(f"Return to live scheduled in {self.respawn_delay * 1000:.0f}ms")
            return None

        logger.warning(f"Unknown arbiter event: {event!r}")
        return None

    def _commit(self, role: SceneRole, reason: str) -> None:
        """Make ``role`` current and send at most one switch command."""
        self._state.current_role = role
        scene_name = self.mapping.name_for(role)
        if not scene_name:
            logger.info(f"{role.value} ({reason}): no scene assigned, nothing sent")
            self._publish(f"{role.value.title()}: no scene assigned", StatusLevel.WARNING, role=role.value)
            self._notify_commit(role, False)
            return

        ok = False
        try:
            self.controller.switch_to(scene_name)
            ok = True
            self.commands_sent += 1
            logger.info(f"Switched to '{scene_name}' ({reason})")
            self._publish(f"{role.value.title()} -> {scene_name}", StatusLevel.SUCCESS,
                          role=role.value, scene=scene_name)
        except SwitchError as e:
            self.commands_failed += 1
            logger.error(f"Switch to '{scene_name}' failed: {e}")
            self._publish(f"Switch to '{scene_name}' failed: {e}", StatusLevel.DANGER,
                          role=role.value, scene=scene_name)
        except Exception as e:
            self.commands_failed += 1
            logger.error(f"Unexpected error switching to '{scene_name}': {e}", exc_info=True)
            self._publish(f"Switch to '{scene_name}' failed: {e}", StatusLevel.DANGER,
                          role=role.value, scene=scene_name)
        self._notify_commit(role, ok)

    def _notify_commit(self, role: SceneRole, ok: bool) -> None:
        if self._on_commit:
            try:
                self._on_commit(role, ok)
            except Exception as e:
                logger.error(f"Error in commit callback: {e}")

    def _publish(self, text: str, level: StatusLevel, **data) -> None:
        if self.status:
            self.status.publish(StatusTopic.SCENE, text, level, **data)
