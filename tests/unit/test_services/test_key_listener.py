"""Unit tests for KeyHoldListener."""
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from autoscene.core.exceptions import KeyHookUnavailable
from autoscene.services.key_listener import KeyHoldListener


@pytest.fixture
def hook_module():
    """Stand-in for the ``keyboard`` module."""
    module = Mock()
    module.KEY_DOWN = "down"
    module.KEY_UP = "up"
    module.hook_key.return_value = "hook-handle"
    return module


def key_event(event_type):
    return SimpleNamespace(event_type=event_type, name="g")


class TestKeyHoldListener:
    """Test suite for KeyHoldListener."""

    def test_start_installs_hook(self, hook_module):
        listener = KeyHoldListener("g", Mock(), hook_module=hook_module)

        listener.start()

        assert listener.running
        hook_module.hook_key.assert_called_once()
        assert hook_module.hook_key.call_args[0][0] == "g"

    def test_start_twice_hooks_once(self, hook_module):
        listener = KeyHoldListener("g", Mock(), hook_module=hook_module)

        listener.start()
        listener.start()

        assert hook_module.hook_key.call_count == 1

    def test_refused_hook_raises(self, hook_module):
        hook_module.hook_key.side_effect = ImportError("You must be root to use this library on linux.")
        listener = KeyHoldListener("g", Mock(), hook_module=hook_module)

        with pytest.raises(KeyHookUnavailable):
            listener.start()
        assert not listener.running

    def test_press_and_release_reported_with_timestamps(self, hook_module, fake_clock):
        changes = []
        listener = KeyHoldListener("g", lambda held, ts: changes.append((held, ts)),
                                   clock=fake_clock, hook_module=hook_module)
        listener.start()
        on_event = hook_module.hook_key.call_args[0][1]

        on_event(key_event("down"))
        fake_clock.advance(250)
        on_event(key_event("up"))

        assert changes == [(True, 100.0), (False, pytest.approx(100.25))]

    def test_auto_repeat_is_collapsed(self, hook_module, fake_clock):
        changes = []
        listener = KeyHoldListener("g", lambda held, ts: changes.append(held),
                                   clock=fake_clock, hook_module=hook_module)
        listener.start()
        on_event = hook_module.hook_key.call_args[0][1]

        for _ in range(5):
            on_event(key_event("down"))
        on_event(key_event("up"))
        on_event(key_event("up"))

        assert changes == [True, False]

    def test_callback_error_is_contained(self, hook_module):
        def explode(held, ts):
            raise RuntimeError("queue closed")

        listener = KeyHoldListener("g", explode, hook_module=hook_module)
        listener.start()
        on_event = hook_module.hook_key.call_args[0][1]

        on_event(key_event("down"))

        assert listener.held

    def test_stop_unhooks_and_clears_held(self, hook_module):
        listener = KeyHoldListener("g", Mock(), hook_module=hook_module)
        listener.start()
        hook_module.hook_key.call_args[0][1](key_event("down"))

        listener.stop()

        hook_module.unhook.assert_called_once_with("hook-handle")
        assert not listener.running
        assert not listener.held

    def test_stop_without_start_is_noop(self, hook_module):
        KeyHoldListener("g", Mock(), hook_module=hook_module).stop()

        hook_module.unhook.assert_not_called()
