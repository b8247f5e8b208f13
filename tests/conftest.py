"""Pytest configuration and shared fixtures for the OBS scene switcher.

Provides a controllable clock, fake signal and frame sources, a recording
scene sink and sample frames/templates so the state machines and services
can be driven deterministically without OBS, a display or a keyboard hook.
"""
import os
import sys
import tempfile
import logging
from pathlib import Path
from typing import Callable, List, Optional
from unittest.mock import Mock

import pytest
import numpy as np
import cv2

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from autoscene.config.settings import Config
from autoscene.core.entities import RegionOfInterest, Template
from autoscene.core.events import StatusChannel
from autoscene.core.exceptions import SwitchError

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)


class FakeClock:
    """Monotonic clock advanced by hand (seconds)."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms / 1000.0
        return self.now


class RecordingController:
    """Scene sink that records every switch command."""

    def __init__(self):
        self.switches: List[str] = []
        self.fail_with: Optional[Exception] = None

    def switch_to(self, scene_name: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.switches.append(scene_name)


class FakeKeyListener:
    """Stand-in for KeyHoldListener driven by the test."""

    def __init__(self, key: str, callback: Callable[[bool, float], None], clock=None):
        self.key = key
        self.callback = callback
        self.clock = clock
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def press(self, timestamp: float):
        self.callback(True, timestamp)

    def release(self, timestamp: float):
        self.callback(False, timestamp)


class FakeFrameSource:
    """Frame source returning a fixed frame, or raising a configured error."""

    def __init__(self, frame: np.ndarray):
        self.frame = frame
        self.error: Optional[Exception] = None
        self.grab_count = 0
        self.closed = False

    def grab(self) -> np.ndarray:
        self.grab_count += 1
        if self.error is not None:
            raise self.error
        return self.frame

    def close(self):
        self.closed = True


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def status_channel():
    return StatusChannel()


@pytest.fixture
def status_events(status_channel):
    """List that receives every published status event."""
    events = []
    status_channel.subscribe(events.append)
    return events


@pytest.fixture
def recording_controller():
    return RecordingController()


@pytest.fixture
def failing_controller():
    controller = RecordingController()
    controller.fail_with = SwitchError("request timed out", scene_name="Map")
    return controller


@pytest.fixture
def mock_obs_client():
    """Mock obsws-python ReqClient with two scenes."""
    client = Mock()
    client.get_scene_list.return_value = Mock(
        scenes=[{"sceneName": "Live"}, {"sceneName": "Map"}, {"sceneName": "Death"}],
        current_program_scene_name="Live",
    )
    client.get_current_program_scene.return_value = Mock(current_program_scene_name="Live")
    return client


@pytest.fixture
def death_roi():
    return RegionOfInterest(x=120, y=80, width=64, height=40)


@pytest.fixture
def sample_frame():
    """Provide a 320x240 BGR frame with a distinctive banner inside the ROI."""
    rng = np.random.default_rng(1234)
    frame = rng.integers(0, 60, (240, 320, 3), dtype=np.uint8)

    # Banner pattern: bright rectangle with text-like stripes
    cv2.rectangle(frame, (122, 82), (181, 117), (40, 40, 220), -1)
    for i in range(5):
        x = 128 + i * 10
        cv2.line(frame, (x, 88), (x + 4, 110), (255, 255, 255), 2)
    return frame


@pytest.fixture
def blank_frame():
    """Frame without the banner (dark noise only)."""
    rng = np.random.default_rng(99)
    return rng.integers(0, 60, (240, 320, 3), dtype=np.uint8)


@pytest.fixture
def death_template(sample_frame, death_roi):
    crop = sample_frame[death_roi.y:death_roi.bottom, death_roi.x:death_roi.right]
    return Template(cv2.cvtColor(crop, cv2.COLOR_BGR2GRAY))


@pytest.fixture
def make_config():
    """Factory building a Config with all three scenes assigned."""
    def _make(**overrides) -> Config:
        values = dict(scene_live="Live", scene_map="Map", scene_death="Death")
        values.update(overrides)
        return Config(**values)
    return _make


@pytest.fixture
def clean_env():
    """Environment mapping without any OBS overrides."""
    return {}


@pytest.fixture
def key_listener_factory():
    """Factory for FakeKeyListener that remembers every listener it built."""
    created = []

    def factory(key, callback, clock=None):
        listener = FakeKeyListener(key, callback, clock)
        created.append(listener)
        return listener

    factory.created = created
    return factory


@pytest.fixture
def frame_source(sample_frame):
    return FakeFrameSource(sample_frame)


# Test markers and utilities
def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "ui: mark test as UI test")
    config.addinivalue_line("markers", "external: mark test as requiring OBS or a display")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers and skip conditions."""
    for item in items:
        # Add markers based on test file location
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if item.get_closest_marker("external") and not os.getenv("RUN_EXTERNAL_TESTS"):
            item.add_marker(pytest.mark.skip(reason="External tests disabled"))
