"""
Tests for the kinematics engine
"""

import math

import pytest

from vor_rehab import constants as const
from vor_rehab.data_acquisition.tracker_adapter import GazeSample, LandmarkFrame
from vor_rehab.metrics.kinematics import (
    KinematicsConfig,
    KinematicsEngine,
    compute_vor_gain,
    fixation_rms,
    head_angle_from_landmarks,
)


def face(nose_x=160.0, nose_index=1):
    """Landmarks with eyes level at y=100 and the nose below them"""
    return LandmarkFrame(positions={
        nose_index: (nose_x, 200.0),
        33: (140.0, 100.0),
        263: (180.0, 100.0),
    })


class TestHeadAngle:
    """Head roll from nose and eye landmarks"""

    def test_upright(self):
        assert head_angle_from_landmarks(face()) == pytest.approx(0.0)

    def test_tilted(self):
        # mirrored nose x is 10 px right of the eye midpoint, 100 px below it
        angle = head_angle_from_landmarks(face(nose_x=150.0))
        assert angle == pytest.approx(math.degrees(math.atan2(10, 100)))

    def test_fallback_nose_index(self):
        assert head_angle_from_landmarks(face(nose_index=4)) == pytest.approx(0.0)

    def test_missing_landmark(self):
        frame = LandmarkFrame(positions={1: (160.0, 200.0), 33: (140.0, 100.0)})
        assert head_angle_from_landmarks(frame) is None
        assert head_angle_from_landmarks(None) is None


class TestFixationAndGain:
    """Pure metric helpers"""

    def test_rms_identical_points(self):
        points = [GazeSample(100.0, 200.0, t) for t in range(5)]
        assert fixation_rms(points) == 0.0

    def test_rms_known_value(self):
        points = [GazeSample(0.0, 0.0, 0), GazeSample(2.0, 0.0, 10)]
        # deviations [-1, 1, 0, 0]
        assert fixation_rms(points) == pytest.approx(math.sqrt(0.5))

    def test_rms_empty(self):
        assert fixation_rms([]) == 0.0

    def test_gain_below_head_threshold(self):
        """3 deg/s of head motion is too little for a gain"""
        assert compute_vor_gain(10.0, 3.0, 5.0) is None

    def test_gain_ratio(self):
        assert compute_vor_gain(-100.0, 50.0, 5.0) == pytest.approx(2.0)


class TestLatencyPairing:
    """Head-onset to eye-response pairing"""

    def test_fifo_matching(self):
        """Onsets at 0 and 10 ms, eye response at 50 ms matches the 0 ms event"""
        engine = KinematicsEngine()
        engine.register_head_movement(0.0, 60.0)
        engine.register_head_movement(10.0, 60.0)

        matched = engine.match_eye_response(50.0, 300.0)
        assert matched is not None
        assert matched.onset_time == 0.0
        assert matched.latency_ms == 50.0
        assert [e.onset_time for e in engine.pending_events] == [10.0]
        assert engine.average_latency_ms == 50.0

    def test_below_thresholds_ignored(self):
        engine = KinematicsEngine()
        assert engine.register_head_movement(0.0, 40.0) is None
        engine.register_head_movement(0.0, 60.0)
        assert engine.match_eye_response(20.0, 150.0) is None
        assert len(engine.pending_events) == 1

    def test_stale_events_pruned(self):
        engine = KinematicsEngine()
        engine.register_head_movement(0.0, 60.0)
        engine.register_head_movement(400.0, 60.0)
        assert engine.prune_stale_events(600.0) == 1
        assert [e.onset_time for e in engine.pending_events] == [400.0]

    def test_pending_queue_bounded(self):
        engine = KinematicsEngine(KinematicsConfig(max_pending_events=3))
        for t in range(5):
            engine.register_head_movement(float(t), 60.0)
        assert [e.onset_time for e in engine.pending_events] == [2.0, 3.0, 4.0]


class TestKinematicsEngine:
    """Per-frame updates"""

    def test_first_frame(self):
        engine = KinematicsEngine()
        snapshot = engine.update(GazeSample(100.0, 100.0, 0.0))
        assert snapshot.head_vel == 0.0
        assert snapshot.eye_vel == 0.0
        assert snapshot.vor_gain is None
        assert snapshot.latency_ms is None
        assert snapshot.fixation_rms == 0.0

    def test_eye_velocity_and_saccade(self):
        engine = KinematicsEngine()
        engine.update(GazeSample(0.0, 0.0, 0.0))
        snapshot = engine.update(GazeSample(100.0, 0.0, 10.0))
        # 100 px in 10 ms
        assert snapshot.eye_vel == pytest.approx(10000.0)
        assert snapshot.saccade_count == 1

    def test_head_velocity_and_onset(self):
        engine = KinematicsEngine()
        engine.update(GazeSample(500.0, 500.0, 0.0), face())
        snapshot = engine.update(GazeSample(500.0, 500.0, 100.0), face(nose_x=150.0))

        expected = math.degrees(math.atan2(10, 100)) / 0.1
        assert snapshot.head_vel == pytest.approx(expected)
        assert snapshot.vor_gain == pytest.approx(0.0)
        assert len(engine.pending_events) == 1
        assert engine.pending_events[0].onset_time == 100.0

    def test_latency_through_updates(self):
        engine = KinematicsEngine()
        engine.update(GazeSample(500.0, 500.0, 0.0), face())
        engine.update(GazeSample(500.0, 500.0, 100.0), face(nose_x=150.0))
        snapshot = engine.update(GazeSample(540.0, 500.0, 150.0), face(nose_x=150.0))
        # 40 px in 50 ms = 800 px/s answers the onset at 100 ms
        assert snapshot.latency_ms == pytest.approx(50.0)
        assert engine.last_matched_latency_ms == pytest.approx(50.0)

    def test_non_monotonic_timestamp(self):
        engine = KinematicsEngine()
        engine.update(GazeSample(0.0, 0.0, 100.0))
        snapshot = engine.update(GazeSample(300.0, 0.0, 50.0))

        assert snapshot.eye_vel == 0.0
        assert snapshot.head_vel == 0.0
        assert engine.state.last_timestamp == 100.0
        assert engine.state.last_gaze.x == 0.0
        # the point still counts for fixation stability
        assert snapshot.fixation_rms > 0.0

    def test_duplicate_timestamp(self):
        engine = KinematicsEngine()
        engine.update(GazeSample(0.0, 0.0, 100.0))
        snapshot = engine.update(GazeSample(10.0, 0.0, 100.0))
        assert snapshot.eye_vel == 0.0
        assert math.isfinite(snapshot.fixation_rms)

    def test_fixation_window_expires(self):
        engine = KinematicsEngine()
        engine.update(GazeSample(0.0, 0.0, 0.0))
        snapshot = engine.update(GazeSample(50.0, 50.0, 500.0))
        assert snapshot.fixation_rms == 0.0

    def test_exercise_fields(self):
        engine = KinematicsEngine()
        snapshot = engine.update(GazeSample(1.0, 2.0, 0.0), level=3, on_target=True)
        assert snapshot.level == 3
        assert snapshot.on_target is True
        relabelled = snapshot.with_exercise(4, False)
        assert relabelled.level == 4
        assert relabelled.on_target is False
        assert relabelled.gaze_x == 1.0

    def test_reset(self):
        engine = KinematicsEngine()
        engine.update(GazeSample(0.0, 0.0, 0.0))
        engine.update(GazeSample(100.0, 0.0, 10.0))
        engine.reset()
        assert engine.saccade_count == 0
        assert engine.state.last_timestamp is None
        assert engine.average_latency_ms is None


class TestTimestampAndMemoryBounds:
    """Invalid timestamps and long sessions"""

    def test_non_finite_timestamp_ignored(self):
        engine = KinematicsEngine()
        snapshot = engine.update(GazeSample(0.0, 0.0, float('nan')))
        assert snapshot.eye_vel == 0.0
        assert engine.state.last_timestamp is None
        assert len(engine.state.fixation_window) == 0

        for i in range(1, 50):
            snapshot = engine.update(GazeSample(100.0 * i, 0.0, 10.0 * i))

        # 100 px every 10 ms once real timestamps arrive
        assert snapshot.eye_vel == pytest.approx(10000.0)
        assert engine.state.last_timestamp == pytest.approx(490.0)
        assert engine.saccade_count == 48
        assert len(engine.state.fixation_window) <= 11

    def test_infinite_timestamp_mid_session(self):
        engine = KinematicsEngine()
        engine.update(GazeSample(0.0, 0.0, 0.0))
        engine.update(GazeSample(50.0, 0.0, float('inf')))
        snapshot = engine.update(GazeSample(10.0, 0.0, 10.0))

        assert engine.state.last_timestamp == 10.0
        assert snapshot.eye_vel == pytest.approx(1000.0)

    def test_responded_events_bounded(self):
        engine = KinematicsEngine()
        for i in range(200):
            engine.register_head_movement(float(i), 60.0)
            engine.match_eye_response(float(i) + 1.0, 300.0)

        assert len(engine.responded_events) == const.RECENT_LATENCY_EVENTS
        assert engine.state.latency_count == 200
        assert engine.average_latency_ms == pytest.approx(1.0)
