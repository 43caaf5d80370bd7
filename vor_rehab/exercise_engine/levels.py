"""
Exercise level table.

Each level pairs a target trajectory pattern with its duration and the
on-target tolerance used for scoring.
"""

from dataclasses import dataclass
from typing import Dict, Optional

PATTERN_STATIC = "static"
PATTERN_HORIZONTAL = "horizontal"
PATTERN_VERTICAL = "vertical"
PATTERN_DIAGONAL = "diagonal"
PATTERN_COMPLEX = "complex"

PATTERNS = (
    PATTERN_STATIC,
    PATTERN_HORIZONTAL,
    PATTERN_VERTICAL,
    PATTERN_DIAGONAL,
    PATTERN_COMPLEX,
)


@dataclass(frozen=True)
class LevelConfig:
    """
    Static definition of one exercise level.

    Amplitudes are fractions of the viewport for the sinusoidal patterns and
    pixels for the complex pattern (which ignores the viewport size).
    """
    level_id: int
    name: str
    description: str
    instruction: str
    duration_ms: float
    target_pattern: str
    allowed_deviation_px: float
    target_size_px: float
    difficulty: int
    amplitude_x: float = 0.0
    amplitude_y: float = 0.0
    frequency_hz: float = 0.0

    @property
    def duration_s(self) -> float:
        return self.duration_ms / 1000.0


LEVELS: Dict[int, LevelConfig] = {
    1: LevelConfig(
        level_id=1,
        name="Basic Fixation",
        description="Keep your gaze on a fixed target at the centre of the screen",
        instruction="Look at the target and slowly turn your head left and right",
        duration_ms=30000,
        target_pattern=PATTERN_STATIC,
        allowed_deviation_px=80.0,
        target_size_px=60.0,
        difficulty=1,
    ),
    2: LevelConfig(
        level_id=2,
        name="Horizontal Movement",
        description="Follow a target moving left and right",
        instruction="Keep your head still and follow the target with your eyes",
        duration_ms=45000,
        target_pattern=PATTERN_HORIZONTAL,
        allowed_deviation_px=100.0,
        target_size_px=50.0,
        difficulty=2,
        amplitude_x=0.3,
        frequency_hz=0.5,
    ),
    3: LevelConfig(
        level_id=3,
        name="Vertical Movement",
        description="Follow a target moving up and down",
        instruction="Keep your head still and follow the target with your eyes",
        duration_ms=45000,
        target_pattern=PATTERN_VERTICAL,
        allowed_deviation_px=100.0,
        target_size_px=50.0,
        difficulty=3,
        amplitude_y=0.3,
        frequency_hz=0.4,
    ),
    4: LevelConfig(
        level_id=4,
        name="Diagonal Movement",
        description="Follow a target moving along diagonal paths",
        instruction="Follow the target smoothly without losing it",
        duration_ms=60000,
        target_pattern=PATTERN_DIAGONAL,
        allowed_deviation_px=120.0,
        target_size_px=45.0,
        difficulty=4,
        amplitude_x=0.25,
        amplitude_y=0.25,
        frequency_hz=0.3,
    ),
    5: LevelConfig(
        level_id=5,
        name="Complex Patterns",
        description="Follow a target along combined, unpredictable paths",
        instruction="Stay focused and track the target as closely as you can",
        duration_ms=90000,
        target_pattern=PATTERN_COMPLEX,
        allowed_deviation_px=150.0,
        target_size_px=40.0,
        difficulty=5,
        amplitude_x=200.0,
        amplitude_y=150.0,
    ),
}


def get_level(level_id) -> Optional[LevelConfig]:
    """Look up a level; returns None for unknown ids."""
    try:
        return LEVELS.get(int(level_id))
    except (TypeError, ValueError):
        return None
