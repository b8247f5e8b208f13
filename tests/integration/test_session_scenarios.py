"""End-to-end scenarios: raw signals in, OBS switch commands out.

The session is driven with explicit timestamps; each switch is recorded
together with the time it was issued.
"""
import random

import numpy as np
import pytest

from autoscene.config.settings import Config
from autoscene.core.entities import RawSignal, RegionOfInterest, SceneRole, SignalKind, Template
from autoscene.core.events import StatusTopic
from autoscene.services.death_detector import DetectionState
from autoscene.services.match_scorer import MatchScorer
from autoscene.services.monitoring_session import MonitoringSession


class TimedController:
    """Scene sink recording (scene, time) using the session clock."""

    def __init__(self, clock):
        self.clock = clock
        self.calls = []

    def switch_to(self, scene_name):
        self.calls.append((scene_name, self.clock()))

    @property
    def scenes(self):
        return [name for name, _ in self.calls]


@pytest.fixture
def timed_controller(fake_clock):
    return TimedController(fake_clock)


@pytest.fixture
def scenario_session(timed_controller, status_channel, frame_source, key_listener_factory, fake_clock):
    config = Config(scene_live="live-scene", scene_map="map-scene", scene_death="death-scene",
                    respawn_delay_ms=200, death_cooldown_ms=0, death_exit_delay_ms=0)
    return MonitoringSession(config, timed_controller, status=status_channel,
                             frame_source=frame_source, scorer=MatchScorer(),
                             key_listener_factory=key_listener_factory, clock=fake_clock)


def run_until(session, clock, end_ms, step_ms=10):
    """Advance the clock in steps, ticking the session like its dispatcher would."""
    end = end_ms / 1000.0
    while clock.now < end - 1e-9:
        clock.now = min(end, clock.now + step_ms / 1000.0)
        session.tick(clock())


def inject(session, clock, kind, active, at_ms):
    clock.now = at_ms / 1000.0
    return session.process(RawSignal(kind, active, clock()))


class TestMapScenario:

    def test_map_then_delayed_live(self, scenario_session, timed_controller, fake_clock):
        fake_clock.now = 0.0

        assert inject(scenario_session, fake_clock, SignalKind.MAP, True, 0) is SceneRole.MAP
        assert timed_controller.calls == [("map-scene", 0.0)]

        inject(scenario_session, fake_clock, SignalKind.MAP, False, 50)
        run_until(scenario_session, fake_clock, 240)
        assert timed_controller.scenes == ["map-scene"]

        run_until(scenario_session, fake_clock, 300)
        assert timed_controller.scenes == ["map-scene", "live-scene"]
        live_at = timed_controller.calls[1][1]
        assert live_at == pytest.approx(0.25, abs=0.011)
        assert live_at >= 0.25 - 1e-6

    def test_map_pairs_produce_matching_switches(self, scenario_session, timed_controller, fake_clock):
        rng = random.Random(7)
        fake_clock.now = 0.0
        t = 0
        presses = 0
        for _ in range(20):
            inject(scenario_session, fake_clock, SignalKind.MAP, True, t)
            presses += 1
            t += rng.randint(20, 400)
            inject(scenario_session, fake_clock, SignalKind.MAP, False, t)
            t += rng.randint(250, 600)
            run_until(scenario_session, fake_clock, t)

        assert timed_controller.scenes.count("map-scene") == presses
        assert timed_controller.scenes == ["map-scene", "live-scene"] * presses


class TestDeathScenario:

    def test_death_cancels_pending_live(self, scenario_session, timed_controller, fake_clock):
        fake_clock.now = 0.0
        inject(scenario_session, fake_clock, SignalKind.MAP, True, 0)
        inject(scenario_session, fake_clock, SignalKind.MAP, False, 50)
        assert scenario_session.next_deadline() == pytest.approx(0.25)

        assert inject(scenario_session, fake_clock, SignalKind.DEATH, True, 100) is SceneRole.DEATH
        assert timed_controller.calls[-1] == ("death-scene", 0.1)

        run_until(scenario_session, fake_clock, 2000)
        assert timed_controller.scenes == ["map-scene", "death-scene"]

    def test_map_ignored_while_dead(self, scenario_session, timed_controller, fake_clock):
        fake_clock.now = 0.0
        inject(scenario_session, fake_clock, SignalKind.DEATH, True, 0)

        for i in range(1, 11):
            inject(scenario_session, fake_clock, SignalKind.MAP, i % 2 == 1, i * 100)
        run_until(scenario_session, fake_clock, 1500)

        assert timed_controller.scenes == ["death-scene"]
        assert inject(scenario_session, fake_clock, SignalKind.DEATH, False, 1600) is SceneRole.LIVE
        assert timed_controller.scenes == ["death-scene", "live-scene"]

    def test_oversized_template_never_signals(self, make_config, timed_controller, status_channel,
                                              status_events, frame_source, key_listener_factory, fake_clock):
        frame_source.frame = np.zeros((300, 300, 3), dtype=np.uint8)
        template = Template(np.full((400, 500), 255, dtype=np.uint8))
        session = MonitoringSession(
            make_config(death_template=template.to_dict(),
                        death_roi=RegionOfInterest(0, 0, 500, 400).to_dict()),
            timed_controller, status=status_channel, frame_source=frame_source,
            scorer=MatchScorer(), key_listener_factory=key_listener_factory, clock=fake_clock,
        )

        assert session.detector.tick() is None

        assert session.detector.state is DetectionState.SIZE_MISMATCH
        assert not [e for e in status_events if e.topic is StatusTopic.SCORE]
        assert session.current_role is SceneRole.LIVE
        assert timed_controller.calls == []
