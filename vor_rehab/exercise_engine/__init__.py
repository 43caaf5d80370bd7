"""
Exercise Engine Module

Level definitions and the exercise scheduler (target trajectory, time on
target and scoring).
"""

from vor_rehab.exercise_engine.levels import LEVELS, LevelConfig, get_level
from vor_rehab.exercise_engine.scheduler import (
    ExerciseScheduler,
    ExerciseSession,
    ExerciseState,
    ExerciseStatus,
    ExerciseSummary,
    ScoringConfig,
    TickResult,
    compute_score,
    target_position_at
)

__all__ = [
    'LEVELS',
    'LevelConfig',
    'get_level',
    'ExerciseScheduler',
    'ExerciseSession',
    'ExerciseState',
    'ExerciseStatus',
    'ExerciseSummary',
    'ScoringConfig',
    'TickResult',
    'compute_score',
    'target_position_at'
]
