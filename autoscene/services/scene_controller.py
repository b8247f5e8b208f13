"""OBS scene controller over the WebSocket v5 protocol.

Thin pass-through to ``obsws_python.ReqClient`` that normalises every
failure into :class:`ConnectError`, :class:`ListError` or
:class:`SwitchError`. No retry or backoff lives here; reconnecting is a user
action.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import obsws_python as obs

from ..core.events import StatusChannel, StatusLevel, StatusTopic
from ..core.exceptions import ConnectError, ListError, SwitchError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4455


@dataclass(frozen=True)
class SceneList:
    """Scene names in the order OBS reports them, plus the program scene."""
    scenes: List[str] = field(default_factory=list)
    current: Optional[str] = None


def parse_endpoint(host: str, port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """Split a bare host or a ``ws://``/``wss://`` URL into (host, port).

    Raises:
        ConnectError: If the endpoint cannot be parsed
    """
    trimmed = str(host or "").strip()
    if not trimmed:
        raise ConnectError("OBS host is empty")
    if trimmed.startswith(("ws://", "wss://")):
        parsed = urlparse(trimmed)
        if not parsed.hostname:
            raise ConnectError(f"Invalid OBS URL: {trimmed}")
        try:
            url_port = parsed.port
        except ValueError as e:
            raise ConnectError(f"Invalid port in OBS URL {trimmed}: {e}") from e
        return parsed.hostname, url_port or port
    return trimmed, int(port)


class SceneController:
    """Connect to OBS, list scenes and switch the program scene."""

    def __init__(self, timeout: int = 5, status: Optional[StatusChannel] = None,
                 client_factory=obs.ReqClient):
        """Initialize the controller.

        Args:
            timeout: Connection timeout in seconds
            status: Optional channel for connection state notifications
            client_factory: Callable building the request client
        """
        self.timeout = timeout
        self.status = status
        self._client_factory = client_factory
        self._client = None
        self._endpoint: Optional[Tuple[str, int]] = None
        self._current_scene: Optional[str] = None
        # Held for every request; ReqClient shares one socket between callers
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def endpoint(self) -> Optional[Tuple[str, int]]:
        return self._endpoint

    def connect(self, host: str, port: int = DEFAULT_PORT, password: str = "") -> Tuple[str, int]:
        """Open the WebSocket connection.

        Returns:
            The (host, port) actually connected to

        Raises:
            ConnectError: On network, handshake or authentication failure
        """
        if self._client is not None:
            return self._endpoint

        endpoint = parse_endpoint(host, port)
        self._publish(f"Connecting to ws://{endpoint[0]}:{endpoint[1]}", StatusLevel.WARNING,
                      state="connecting")
        try:
            client = self._client_factory(
                host=endpoint[0], port=endpoint[1], password=password or "", timeout=self.timeout
            )
        except Exception as e:
            # Handshake, auth and socket failures all surface from the constructor
            self._publish(f"OBS connect failed: {e}", StatusLevel.DANGER, state="error")
            raise ConnectError(f"Failed to connect to OBS at {endpoint[0]}:{endpoint[1]}: {e}") from e

        with self._lock:
            self._client = client
            self._endpoint = endpoint
        logger.info(f"Connected to OBS at {endpoint[0]}:{endpoint[1]}")
        self._publish("Connected", StatusLevel.SUCCESS, state="connected")
        return endpoint

    def disconnect(self) -> None:
        """Close the connection; never raises."""
        with self._lock:
            client, self._client = self._client, None
            self._endpoint = None
            if client is None:
                return
            try:
                client.disconnect()
            except Exception as e:
                logger.debug(f"Ignoring error while disconnecting from OBS: {e}")
        logger.info("Disconnected from OBS")
        self._publish("Disconnected", StatusLevel.SECONDARY, state="disconnected")

    def list_scenes(self) -> SceneList:
        """Return scene names and the current program scene.

        Raises:
            ListError: If not connected or the request fails
        """
        with self._lock:
            client = self._client
            if client is None:
                raise ListError("Not connected to OBS")
            try:
                response = client.get_scene_list()
            except Exception as e:
                raise ListError(f"GetSceneList failed: {e}") from e

        scenes = [s.get("sceneName", "") for s in getattr(response, "scenes", []) or []]
        current = getattr(response, "current_program_scene_name", None)
        if current:
            self._current_scene = current
        logger.info(f"Loaded {len(scenes)} scenes")
        return SceneList(scenes=[s for s in scenes if s], current=current)

    def switch_to(self, scene_name: str) -> None:
        """Make ``scene_name`` the program scene.

        Raises:
            SwitchError: If not connected, the name is empty or OBS rejects it
        """
        if not scene_name:
            raise SwitchError("No scene name given", scene_name)
        with self._lock:
            client = self._client
            if client is None:
                raise SwitchError("Not connected to OBS", scene_name)
            try:
                client.set_current_program_scene(scene_name)
            except Exception as e:
                raise SwitchError(f"SetCurrentProgramScene('{scene_name}') failed: {e}", scene_name) from e
        self._current_scene = scene_name

    def current_scene(self) -> Optional[str]:
        """Program scene as reported by OBS, or the last known one."""
        with self._lock:
            client = self._client
            if client is not None:
                try:
                    response = client.get_current_program_scene()
                    name = getattr(response, "current_program_scene_name", None) or \
                        getattr(response, "scene_name", None)
                    if name:
                        self._current_scene = name
                except Exception as e:
                    logger.debug(f"GetCurrentProgramScene failed, using cached scene: {e}")
        return self._current_scene

    def _publish(self, text: str, level: StatusLevel, **data) -> None:
        if self.status:
            self.status.publish(StatusTopic.OBS, text, level, **data)
