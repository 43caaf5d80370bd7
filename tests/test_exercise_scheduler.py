"""
Tests for exercise levels, target trajectories and scoring
"""

import pytest

from vor_rehab.exercise_engine.levels import LEVELS, get_level
from vor_rehab.exercise_engine.scheduler import (
    ExerciseScheduler,
    ExerciseState,
    ExerciseStatus,
    ScoringConfig,
    compute_score,
    stability_pct,
    target_position_at,
)

VIEWPORT = (1000.0, 800.0)
CENTER = (500.0, 400.0)


def make_scheduler():
    return ExerciseScheduler(viewport=VIEWPORT)


class TestLevels:
    """Static level table"""

    def test_five_levels(self):
        assert sorted(LEVELS) == [1, 2, 3, 4, 5]
        assert [LEVELS[i].difficulty for i in range(1, 6)] == [1, 2, 3, 4, 5]

    def test_durations(self):
        assert LEVELS[1].duration_ms == 30000
        assert LEVELS[5].duration_ms == 90000

    def test_get_level(self):
        assert get_level(2).target_pattern == "horizontal"
        assert get_level("3").level_id == 3
        assert get_level(9) is None
        assert get_level(None) is None


class TestTrajectories:
    """Pure target position function"""

    def test_static(self):
        assert target_position_at(LEVELS[1], 12.3, VIEWPORT) == CENTER

    def test_horizontal_peak(self):
        # sin(2*pi*0.5*0.5) = 1
        x, y = target_position_at(LEVELS[2], 0.5, VIEWPORT)
        assert x == pytest.approx(500.0 + 0.3 * 1000.0)
        assert y == pytest.approx(400.0)

    def test_vertical_peak(self):
        # sin(2*pi*0.4*0.625) = 1
        x, y = target_position_at(LEVELS[3], 0.625, VIEWPORT)
        assert x == pytest.approx(500.0)
        assert y == pytest.approx(400.0 + 0.3 * 800.0)

    def test_diagonal_start(self):
        x, y = target_position_at(LEVELS[4], 0.0, VIEWPORT)
        assert x == pytest.approx(500.0)
        assert y == pytest.approx(400.0 + 0.25 * 800.0)

    def test_complex_start_and_bounds(self):
        assert target_position_at(LEVELS[5], 0.0, VIEWPORT) == pytest.approx(CENTER)
        for step in range(100):
            x, y = target_position_at(LEVELS[5], step * 0.37, VIEWPORT)
            assert abs(x - 500.0) <= 200.0 + 1e-9
            assert abs(y - 400.0) <= 150.0 + 1e-9


class TestScoring:
    """Score blending"""

    def test_reference_score(self):
        """80% on target, 60% stability, 0.7/0.3 weights"""
        assert compute_score(80, 60, ScoringConfig(0.7, 0.3, 1000)) == 740

    def test_halves_round_up(self):
        scoring = ScoringConfig(1.0, 0.0, 100)
        assert [compute_score(p, 0, scoring) for p in (0.5, 2.5, 4.5)] == [1, 3, 5]

    def test_stability(self):
        assert stability_pct(0.0, 100.0) == 100.0
        assert stability_pct(50.0, 100.0) == 50.0
        assert stability_pct(150.0, 100.0) == 0.0


class TestExerciseScheduler:
    """Session state machine"""

    def test_start(self):
        scheduler = make_scheduler()
        assert scheduler.state == ExerciseState.IDLE
        assert scheduler.start(1, 0.0) == ExerciseStatus.OK
        assert scheduler.state == ExerciseState.RUNNING
        assert scheduler.session.target_position == CENTER

    def test_second_start_rejected(self):
        scheduler = make_scheduler()
        scheduler.start(1, 0.0)
        session = scheduler.session
        assert scheduler.start(2, 10.0) == ExerciseStatus.ALREADY_ACTIVE
        assert scheduler.session is session
        assert scheduler.session.level.level_id == 1

    def test_unknown_level(self):
        scheduler = make_scheduler()
        assert scheduler.start(42, 0.0) == ExerciseStatus.UNKNOWN_LEVEL
        assert scheduler.state == ExerciseState.IDLE

    def test_not_calibrated(self):
        scheduler = make_scheduler()
        assert scheduler.start(1, 0.0, calibrated=False) == ExerciseStatus.NOT_CALIBRATED
        assert scheduler.session is None

    def test_on_target_tick(self):
        scheduler = make_scheduler()
        scheduler.start(1, 0.0)
        result = scheduler.tick(CENTER, 100.0)

        assert result.on_target is True
        assert result.distance == 0.0
        assert result.time_on_target_pct == 100.0
        assert result.score == 1000

    def test_off_target_tick(self):
        scheduler = make_scheduler()
        scheduler.start(1, 0.0)
        result = scheduler.tick((900.0, 400.0), 100.0)

        assert result.on_target is False
        assert result.distance == pytest.approx(400.0)
        assert result.stability_pct == 0.0
        assert result.score == 0

    def test_missing_gaze_advances_time(self):
        scheduler = make_scheduler()
        scheduler.start(1, 0.0)
        result = scheduler.tick(None, 100.0)

        assert result.on_target is False
        assert result.distance is None
        assert result.elapsed_ms == 100.0
        assert scheduler.session.samples == 0

    def test_tick_without_session(self):
        assert make_scheduler().tick(CENTER, 100.0) is None

    def test_pause_excludes_time(self):
        scheduler = make_scheduler()
        scheduler.start(2, 0.0)
        scheduler.tick(CENTER, 100.0)
        assert scheduler.pause() is True
        assert scheduler.tick(CENTER, 5000.0) is None
        assert scheduler.resume(5000.0) is True

        result = scheduler.tick(CENTER, 5100.0)
        assert result.elapsed_ms == pytest.approx(200.0)

    def test_resume_without_clock(self):
        """Without a resume time the next tick re-anchors the clock"""
        scheduler = make_scheduler()
        scheduler.start(1, 0.0)
        scheduler.tick(CENTER, 100.0)
        scheduler.pause()
        scheduler.resume()

        assert scheduler.tick(CENTER, 9000.0).elapsed_ms == pytest.approx(100.0)
        assert scheduler.tick(CENTER, 9100.0).elapsed_ms == pytest.approx(200.0)

    def test_pause_requires_running(self):
        scheduler = make_scheduler()
        assert scheduler.pause() is False
        assert scheduler.resume() is False

    def test_auto_complete(self):
        scheduler = make_scheduler()
        scheduler.start(1, 0.0)
        result = scheduler.tick(CENTER, 30000.0)

        assert result.completed is True
        assert scheduler.state == ExerciseState.COMPLETED
        assert 1 in scheduler.completed_levels
        assert scheduler.progress == 1.0
        # a completed session no longer blocks a new start
        assert scheduler.start(2, 30000.0) == ExerciseStatus.OK

    def test_stop_summary(self):
        scheduler = make_scheduler()
        scheduler.start(1, 0.0)
        scheduler.tick(CENTER, 100.0)
        scheduler.tick((900.0, 400.0), 200.0)
        summary = scheduler.stop()

        assert summary.level == 1
        assert summary.completed is False
        assert summary.sample_count == 2
        assert summary.accuracy_pct == pytest.approx(50.0)
        assert summary.time_on_target_pct == pytest.approx(50.0)
        assert summary.max_score == 1000
        assert scheduler.state == ExerciseState.IDLE
        assert scheduler.history == [summary]

    def test_stop_without_session(self):
        assert make_scheduler().stop() is None

    def test_progress(self):
        scheduler = make_scheduler()
        scheduler.start(1, 0.0)
        scheduler.tick(CENTER, 15000.0)
        assert scheduler.progress == pytest.approx(0.5)
