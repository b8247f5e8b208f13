"""Unit tests for the SceneArbiter state machine."""
import pytest

from autoscene.core.arbiter import SceneArbiter
from autoscene.core.entities import ArbiterEvent, SceneMapping, SceneRole
from autoscene.core.events import StatusLevel, StatusTopic

MAPPING = SceneMapping(live="Live", map="Map", death="Death")


def scene_events(events):
    return [e for e in events if e.topic is StatusTopic.SCENE]


@pytest.fixture
def arbiter(recording_controller, status_channel):
    return SceneArbiter(recording_controller, MAPPING, respawn_delay_ms=200, status=status_channel)


class TestArbiterTransitions:
    """Transition table coverage."""

    def test_initial_state_is_live(self, arbiter):
        assert arbiter.current_role is SceneRole.LIVE
        assert arbiter.next_deadline() is None

    def test_map_entered_switches_immediately(self, arbiter, recording_controller):
        assert arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0) is SceneRole.MAP

        assert arbiter.current_role is SceneRole.MAP
        assert recording_controller.switches == ["Map"]

    def test_map_exited_schedules_delayed_live(self, arbiter, recording_controller):
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)

        assert arbiter.handle(ArbiterEvent.MAP_EXITED, 2.0) is None
        assert arbiter.current_role is SceneRole.MAP
        assert arbiter.next_deadline() == pytest.approx(2.2)

        assert arbiter.poll(2.1) is None
        assert arbiter.poll(2.2) is SceneRole.LIVE
        assert arbiter.current_role is SceneRole.LIVE
        assert arbiter.state.pending_transition is None
        assert recording_controller.switches == ["Map", "Live"]

    def test_zero_respawn_delay_commits_immediately(self, recording_controller):
        arbiter = SceneArbiter(recording_controller, MAPPING, respawn_delay_ms=0)
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)

        assert arbiter.handle(ArbiterEvent.MAP_EXITED, 1.5) is SceneRole.LIVE
        assert recording_controller.switches == ["Map", "Live"]

    def test_map_entered_ignored_while_return_pending(self, arbiter, recording_controller):
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)
        arbiter.handle(ArbiterEvent.MAP_EXITED, 2.0)

        assert arbiter.handle(ArbiterEvent.MAP_ENTERED, 2.1) is None
        assert arbiter.poll(2.2) is SceneRole.LIVE
        assert recording_controller.switches == ["Map", "Live"]

    def test_death_from_live(self, arbiter, recording_controller):
        assert arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.0) is SceneRole.DEATH
        assert recording_controller.switches == ["Death"]
        assert arbiter.state.death_signal_active

    def test_death_exited_returns_live_now(self, arbiter, recording_controller):
        arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.0)

        assert arbiter.handle(ArbiterEvent.DEATH_EXITED, 5.0) is SceneRole.LIVE
        assert recording_controller.switches == ["Death", "Live"]

    def test_death_exited_outside_death_is_noop(self, arbiter, recording_controller):
        assert arbiter.handle(ArbiterEvent.DEATH_EXITED, 1.0) is None
        assert recording_controller.switches == []

    def test_repeated_map_entered_is_noop(self, arbiter, recording_controller):
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)

        assert arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.1) is None
        assert recording_controller.switches == ["Map"]

    def test_map_exited_in_live_is_noop(self, arbiter):
        assert arbiter.handle(ArbiterEvent.MAP_EXITED, 1.0) is None
        assert arbiter.next_deadline() is None


class TestDeathPriority:
    """Death always wins over map."""

    def test_death_cancels_pending_live(self, arbiter, recording_controller):
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)
        arbiter.handle(ArbiterEvent.MAP_EXITED, 2.0)

        assert arbiter.handle(ArbiterEvent.DEATH_ENTERED, 2.1) is SceneRole.DEATH
        assert arbiter.state.pending_transition is None
        assert arbiter.poll(5.0) is None
        assert arbiter.current_role is SceneRole.DEATH
        assert recording_controller.switches == ["Map", "Death"]

    def test_death_while_map_held(self, arbiter, recording_controller):
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)

        assert arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.5) is SceneRole.DEATH
        assert recording_controller.switches == ["Map", "Death"]

    @pytest.mark.parametrize("event", [ArbiterEvent.MAP_ENTERED, ArbiterEvent.MAP_EXITED])
    def test_map_events_ignored_in_death(self, arbiter, recording_controller, event):
        arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.0)

        assert arbiter.handle(event, 1.5) is None
        assert arbiter.current_role is SceneRole.DEATH
        assert arbiter.next_deadline() is None
        assert recording_controller.switches == ["Death"]

    def test_map_released_during_death_does_not_resume_map(self, arbiter, recording_controller):
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)
        arbiter.handle(ArbiterEvent.DEATH_ENTERED, 2.0)
        arbiter.handle(ArbiterEvent.MAP_EXITED, 3.0)
        arbiter.handle(ArbiterEvent.DEATH_EXITED, 4.0)

        assert arbiter.current_role is SceneRole.LIVE
        assert recording_controller.switches == ["Map", "Death", "Live"]

    def test_repeated_death_entered_sends_one_command(self, arbiter, recording_controller):
        arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.0)
        arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.4)

        assert recording_controller.switches == ["Death"]


class TestArbiterFailures:
    """Command failures and missing scene names."""

    def test_switch_failure_keeps_new_role(self, failing_controller, status_channel, status_events):
        arbiter = SceneArbiter(failing_controller, MAPPING, status=status_channel)

        assert arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0) is SceneRole.MAP

        assert arbiter.current_role is SceneRole.MAP
        assert arbiter.commands_failed == 1
        assert arbiter.commands_sent == 0
        failures = [e for e in scene_events(status_events) if e.level is StatusLevel.DANGER]
        assert len(failures) == 1
        assert "Map" in failures[0].text

    def test_unexpected_controller_error_is_captured(self, recording_controller, status_events,
                                                     status_channel):
        recording_controller.fail_with = RuntimeError("socket closed")
        arbiter = SceneArbiter(recording_controller, MAPPING, status=status_channel)

        assert arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.0) is SceneRole.DEATH
        assert arbiter.current_role is SceneRole.DEATH
        assert arbiter.commands_failed == 1

    def test_failure_is_not_retried(self, failing_controller):
        calls = []
        original = failing_controller.switch_to

        def counting(name):
            calls.append(name)
            original(name)

        failing_controller.switch_to = counting
        arbiter = SceneArbiter(failing_controller, MAPPING)
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)
        arbiter.poll(10.0)

        assert calls == ["Map"]

    def test_unassigned_role_changes_state_without_command(self, recording_controller,
                                                           status_channel, status_events):
        arbiter = SceneArbiter(recording_controller, SceneMapping(live="Live", map=""),
                               status=status_channel)

        assert arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0) is SceneRole.MAP

        assert arbiter.current_role is SceneRole.MAP
        assert recording_controller.switches == []
        warnings = [e for e in scene_events(status_events) if e.level is StatusLevel.WARNING]
        assert len(warnings) == 1

    def test_commit_callback_reports_outcome(self, failing_controller):
        commits = []
        arbiter = SceneArbiter(failing_controller, MAPPING, on_commit=lambda r, ok: commits.append((r, ok)))

        arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.0)

        assert commits == [(SceneRole.DEATH, False)]

    def test_success_publishes_scene_status(self, arbiter, status_events):
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)

        events = scene_events(status_events)
        assert events[-1].level is StatusLevel.SUCCESS
        assert events[-1].data["scene"] == "Map"
        assert events[-1].topic is StatusTopic.SCENE


class TestArbiterReentrancy:

    def test_nested_call_from_side_effect_is_dropped(self, recording_controller):
        nested_results = []

        class ReentrantController:
            def switch_to(self, name):
                recording_controller.switch_to(name)
                nested_results.append(arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.0))

        arbiter = SceneArbiter(ReentrantController(), MAPPING)

        assert arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0) is SceneRole.MAP
        assert nested_results == [None]
        assert arbiter.current_role is SceneRole.MAP
        assert recording_controller.switches == ["Map"]

    def test_arbiter_usable_after_nested_call(self, recording_controller):
        class ReentrantController:
            def switch_to(self, name):
                recording_controller.switch_to(name)
                arbiter.poll(99.0)

        arbiter = SceneArbiter(ReentrantController(), MAPPING)
        arbiter.handle(ArbiterEvent.MAP_ENTERED, 1.0)

        assert arbiter.handle(ArbiterEvent.DEATH_ENTERED, 2.0) is SceneRole.DEATH

    def test_reset_returns_to_live(self, arbiter):
        arbiter.handle(ArbiterEvent.DEATH_ENTERED, 1.0)

        arbiter.reset()

        assert arbiter.current_role is SceneRole.LIVE
