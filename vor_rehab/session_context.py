"""
Explicit per-session context passed through each pipeline tick.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Set, Tuple

if TYPE_CHECKING:
    from vor_rehab.metrics.kinematics import MetricsSnapshot


@dataclass
class SessionContext:
    """Flags and latest outputs shared along one pass of the pipeline"""
    calibrated: bool = False
    calibrating: bool = False
    session_active: bool = False
    paused: bool = False
    current_level: Optional[int] = None
    frame_count: int = 0
    current_gaze: Optional[Tuple[float, float]] = None
    last_snapshot: Optional["MetricsSnapshot"] = None
    completed_levels: Set[int] = field(default_factory=set)

    def begin_session(self, level: int):
        self.session_active = True
        self.paused = False
        self.current_level = level
        self.frame_count = 0
        self.last_snapshot = None

    def end_session(self, completed: bool = False):
        if completed and self.current_level is not None:
            self.completed_levels.add(self.current_level)
        self.session_active = False
        self.paused = False
