"""
Exercise Scheduler

Owns the active exercise session: moves the target along the level's
trajectory, measures how long gaze stays on it and keeps the running score.

State machine:
    IDLE -> RUNNING -> (PAUSED <-> RUNNING) -> COMPLETED | STOPPED
"""

import math
import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from vor_rehab import constants as const
from vor_rehab.exercise_engine.levels import (
    PATTERN_COMPLEX,
    PATTERN_DIAGONAL,
    PATTERN_HORIZONTAL,
    PATTERN_VERTICAL,
    LevelConfig,
    get_level,
)

Point = Tuple[float, float]


class ExerciseState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"


class ExerciseStatus(Enum):
    """Result of a start request"""
    OK = "ok"
    ALREADY_ACTIVE = "already_active"
    UNKNOWN_LEVEL = "unknown_level"
    NOT_CALIBRATED = "not_calibrated"


@dataclass
class ScoringConfig:
    """Score weighting"""
    accuracy_weight: float = const.SCORING_ACCURACY_WEIGHT
    stability_weight: float = const.SCORING_STABILITY_WEIGHT
    max_score: int = const.SCORING_MAX_SCORE

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScoringConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class ExerciseSession:
    """Mutable record of one exercise run"""
    level: LevelConfig
    start_time: Optional[float]
    target_position: Point
    state: ExerciseState = ExerciseState.RUNNING
    time_on_target_ms: float = 0.0
    total_elapsed_ms: float = 0.0
    score: int = 0
    samples: int = 0
    on_target_samples: int = 0
    last_tick_ms: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.state in (ExerciseState.RUNNING, ExerciseState.PAUSED)

    @property
    def time_on_target_pct(self) -> float:
        if self.total_elapsed_ms <= 0:
            return 0.0
        return self.time_on_target_ms / self.total_elapsed_ms * 100.0


@dataclass(frozen=True)
class TickResult:
    """Outcome of a single scheduler tick"""
    target_position: Point
    distance: Optional[float]
    on_target: bool
    score: int
    stability_pct: float
    time_on_target_pct: float
    elapsed_ms: float
    completed: bool = False


@dataclass(frozen=True)
class ExerciseSummary:
    """Final figures for a finished or stopped exercise"""
    level: int
    score: int
    max_score: int
    time_on_target_pct: float
    accuracy_pct: float
    sample_count: int
    elapsed_ms: float
    completed: bool


def target_position_at(level: LevelConfig, elapsed_s: float, viewport: Tuple[float, float]) -> Point:
    """
    Target position for `level` after `elapsed_s` seconds of active exercise.

    Pure, so callers may render the target at any cadence.
    """
    width, height = viewport
    cx, cy = width / 2.0, height / 2.0
    phase = 2 * math.pi * level.frequency_hz * elapsed_s
    pattern = level.target_pattern

    if pattern == PATTERN_HORIZONTAL:
        return cx + level.amplitude_x * width * math.sin(phase), cy
    if pattern == PATTERN_VERTICAL:
        return cx, cy + level.amplitude_y * height * math.sin(phase)
    if pattern == PATTERN_DIAGONAL:
        return (
            cx + level.amplitude_x * width * math.sin(phase),
            cy + level.amplitude_y * height * math.cos(phase * 1.5),
        )
    if pattern == PATTERN_COMPLEX:
        tau = 2 * math.pi * elapsed_s
        return (
            cx + level.amplitude_x * math.sin(tau * 0.3) * math.cos(tau * 0.1),
            cy + level.amplitude_y * math.sin(tau * 0.4) * math.sin(tau * 0.15),
        )
    # static
    return cx, cy


def stability_pct(distance: float, allowed_deviation: float) -> float:
    """How close gaze is to the target, 100 at the centre and 0 at the tolerance edge."""
    if allowed_deviation <= 0:
        return 0.0
    return max(0.0, 100.0 * (1.0 - distance / allowed_deviation))


def compute_score(time_on_target_pct: float, stability: float, scoring: ScoringConfig) -> int:
    """
    Weighted blend of time on target and stability, scaled to max_score.

    >>> compute_score(80, 60, ScoringConfig(0.7, 0.3, 1000))
    740
    """
    blended = time_on_target_pct * scoring.accuracy_weight + stability * scoring.stability_weight
    return int(math.floor(blended * scoring.max_score / 100.0 + 0.5))


class ExerciseScheduler:
    """
    Runs one exercise session at a time.

    Time only advances through `tick()`; pausing excludes the paused interval
    from the elapsed time so the trajectory resumes where it stopped.
    """

    def __init__(
        self,
        viewport: Tuple[float, float] = (const.DEFAULT_VIEWPORT_WIDTH, const.DEFAULT_VIEWPORT_HEIGHT),
        scoring: Optional[ScoringConfig] = None,
    ):
        self.viewport = (float(viewport[0]), float(viewport[1]))
        self.scoring = scoring or ScoringConfig()
        self.logger = logging.getLogger(__name__)

        self.session: Optional[ExerciseSession] = None
        self.completed_levels: Set[int] = set()
        self.history: List[ExerciseSummary] = []

    @property
    def state(self) -> ExerciseState:
        if self.session is None:
            return ExerciseState.IDLE
        return self.session.state

    @property
    def is_active(self) -> bool:
        return self.session is not None and self.session.is_active

    @property
    def progress(self) -> float:
        """Fraction of the level duration elapsed (0..1)"""
        if self.session is None or self.session.level.duration_ms <= 0:
            return 0.0
        return min(1.0, self.session.total_elapsed_ms / self.session.level.duration_ms)

    @property
    def center(self) -> Point:
        return self.viewport[0] / 2.0, self.viewport[1] / 2.0

    def set_viewport(self, width: float, height: float):
        self.viewport = (float(width), float(height))

    def start(self, level_id: int, now_ms: Optional[float] = None, calibrated: bool = True) -> ExerciseStatus:
        """
        Begin a new session.

        Rejections leave the scheduler untouched. Without `now_ms` the clock
        is anchored by the first tick.
        """
        if self.is_active:
            self.logger.warning(f"Exercise already active (level {self.session.level.level_id})")
            return ExerciseStatus.ALREADY_ACTIVE

        level = get_level(level_id)
        if level is None:
            self.logger.warning(f"Unknown exercise level: {level_id}")
            return ExerciseStatus.UNKNOWN_LEVEL

        if not calibrated:
            self.logger.warning("Exercise requested before calibration")
            return ExerciseStatus.NOT_CALIBRATED

        self.session = ExerciseSession(
            level=level,
            start_time=now_ms,
            target_position=self.center,
            last_tick_ms=now_ms,
        )
        self.logger.info(f"Started level {level.level_id}: {level.name}")
        return ExerciseStatus.OK

    def tick(self, gaze: Optional[Point], now_ms: float) -> Optional[TickResult]:
        """
        Advance the running session to `now_ms`.

        Args:
            gaze: Filtered gaze point, or None when no gaze is available yet
            now_ms: Current time in milliseconds

        Returns:
            TickResult, or None if no session is running
        """
        session = self.session
        if session is None or session.state != ExerciseState.RUNNING:
            return None

        if session.last_tick_ms is None:
            delta = 0.0
            session.last_tick_ms = now_ms
        else:
            delta = max(0.0, now_ms - session.last_tick_ms)
            session.last_tick_ms = max(session.last_tick_ms, now_ms)
        session.total_elapsed_ms += delta

        level = session.level
        target = target_position_at(level, session.total_elapsed_ms / 1000.0, self.viewport)
        session.target_position = target

        distance = None
        on_target = False
        stability = 0.0
        if gaze is not None:
            distance = math.hypot(gaze[0] - target[0], gaze[1] - target[1])
            on_target = distance <= level.allowed_deviation_px
            stability = stability_pct(distance, level.allowed_deviation_px)
            session.samples += 1
            if on_target:
                session.on_target_samples += 1
                session.time_on_target_ms += delta

        session.score = compute_score(session.time_on_target_pct, stability, self.scoring)

        completed = session.total_elapsed_ms >= level.duration_ms
        if completed:
            session.state = ExerciseState.COMPLETED
            self.completed_levels.add(level.level_id)
            self.logger.info(f"Level {level.level_id} completed with score {session.score}")

        return TickResult(
            target_position=target,
            distance=distance,
            on_target=on_target,
            score=session.score,
            stability_pct=stability,
            time_on_target_pct=session.time_on_target_pct,
            elapsed_ms=session.total_elapsed_ms,
            completed=completed,
        )

    def pause(self) -> bool:
        if self.session is None or self.session.state != ExerciseState.RUNNING:
            return False
        self.session.state = ExerciseState.PAUSED
        self.logger.info("Exercise paused")
        return True

    def resume(self, now_ms: Optional[float] = None) -> bool:
        """
        Continue a paused session. With `now_ms` the clock re-anchors there;
        without it the next tick re-anchors and contributes no elapsed time.
        """
        if self.session is None or self.session.state != ExerciseState.PAUSED:
            return False
        self.session.state = ExerciseState.RUNNING
        self.session.last_tick_ms = now_ms
        self.logger.info("Exercise resumed")
        return True

    def stop(self) -> Optional[ExerciseSummary]:
        """End the session (STOPPED unless already COMPLETED) and summarize it."""
        session = self.session
        if session is None:
            return None

        if session.is_active:
            session.state = ExerciseState.STOPPED
        summary = self.summarize(session)
        self.history.append(summary)
        self.session = None
        self.logger.info(
            f"Exercise ended: level={summary.level} score={summary.score} "
            f"on_target={summary.time_on_target_pct:.1f}% completed={summary.completed}"
        )
        return summary

    def summarize(self, session: Optional[ExerciseSession] = None) -> Optional[ExerciseSummary]:
        session = session or self.session
        if session is None:
            return None
        accuracy = session.on_target_samples / session.samples * 100.0 if session.samples else 0.0
        return ExerciseSummary(
            level=session.level.level_id,
            score=session.score,
            max_score=self.scoring.max_score,
            time_on_target_pct=session.time_on_target_pct,
            accuracy_pct=accuracy,
            sample_count=session.samples,
            elapsed_ms=session.total_elapsed_ms,
            completed=session.state == ExerciseState.COMPLETED,
        )
