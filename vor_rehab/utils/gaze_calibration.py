"""
Gaze calibration: maps a normalized gaze vector to a screen coordinate.

- `GazeCalibrator.start_calibration(...)`: reset and return the target grid
- `GazeCalibrator.record_calibration_point(target, samples)`: average one dwell
- `GazeCalibrator.finish_calibration()`: freeze the points, report precision
- `GazeCalibrator.map(vector)`: resolve a live gaze vector to screen pixels
- `GazeCalibrator.load_calibration(...)` / `save_calibration(...)`: persistence

Mapping model:
With fewer than `min_points` calibration points a fixed linear gain around the
screen centre is used:
  x = width * (0.5 + vx * gain),  y = height * (0.5 + vy * gain)
Otherwise the k nearest calibration points (Euclidean distance in gaze-vector
space) are blended with inverse-distance weights 1 / (d + eps). A vector within
eps of a stored point returns that point's target directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
import json
import logging
import math

import numpy as np

from vor_rehab import constants as const


Point = Tuple[float, float]


@dataclass(frozen=True)
class CalibrationPoint:
    target_screen: Point
    gaze_vector: Point
    sample_count: int = 0
    std: Point = (0.0, 0.0)


@dataclass
class CalibrationConfig:
    """Tunables for the calibration mapper"""
    viewport_width: float = const.DEFAULT_VIEWPORT_WIDTH
    viewport_height: float = const.DEFAULT_VIEWPORT_HEIGHT
    neighbors: int = const.CALIBRATION_NEIGHBORS
    epsilon: float = const.CALIBRATION_EPSILON
    fallback_gain: float = const.FALLBACK_GAIN
    min_points: int = const.MIN_CALIBRATION_POINTS
    min_samples: int = const.MIN_CALIBRATION_SAMPLES
    trim_fraction: float = const.CALIBRATION_TRIM_FRACTION
    dwell_ms: float = const.CALIBRATION_DWELL_MS
    grid: Tuple[float, ...] = field(default=const.CALIBRATION_GRID)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CalibrationConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in (data or {}).items() if k in known}
        if 'grid' in kwargs:
            kwargs['grid'] = tuple(float(g) for g in kwargs['grid'])
        return cls(**kwargs)


def default_grid(values: Sequence[float] = const.CALIBRATION_GRID) -> List[Point]:
    """Normalized (0..1) calibration targets, row by row."""
    return [(float(x), float(y)) for y in values for x in values]


class GazeCalibrator:
    def __init__(
        self,
        config: Optional[CalibrationConfig] = None,
        calibration_path: str = "config/gaze_calibration.json",
    ):
        self.config = config or CalibrationConfig()
        self.calibration_path = calibration_path
        self.logger = logging.getLogger(__name__)

        self._points: List[CalibrationPoint] = []
        self._frozen: Optional[Tuple[CalibrationPoint, ...]] = None
        self.mode = 'quick'
        self.precision_percent: Optional[int] = None
        self.mean_error_px: Optional[float] = None

    @property
    def points(self) -> Tuple[CalibrationPoint, ...]:
        if self._frozen is not None:
            return self._frozen
        return tuple(self._points)

    @property
    def is_calibrated(self) -> bool:
        """True once a calibration pass finished with enough points for interpolation."""
        return self._frozen is not None and len(self._frozen) >= self.config.min_points

    @property
    def screen_diagonal(self) -> float:
        return math.hypot(self.config.viewport_width, self.config.viewport_height)

    def set_viewport(self, width: float, height: float) -> None:
        self.config.viewport_width = float(width)
        self.config.viewport_height = float(height)

    # ------------------------------------------------------------------
    # Calibration pass
    # ------------------------------------------------------------------

    def start_calibration(self, mode: str = 'quick') -> List[Point]:
        """
        Reset collected points and return the screen targets for this pass.

        Args:
            mode: 'quick' (9 points) or 'thorough' (the 9-point grid three times)

        Returns:
            Ordered list of screen-space targets
        """
        passes = const.CALIBRATION_PASSES.get(mode)
        if passes is None:
            raise ValueError(f"Unknown calibration mode: {mode}")

        self.mode = mode
        self._points = []
        self._frozen = None
        self.precision_percent = None
        self.mean_error_px = None

        w, h = self.config.viewport_width, self.config.viewport_height
        targets = [(x * w, y * h) for x, y in default_grid(self.config.grid)]
        self.logger.info(f"Calibration started ({mode}, {len(targets) * passes} points)")
        return targets * passes

    def record_calibration_point(
        self,
        target_screen: Point,
        sampled_gaze_vectors: Sequence[Point],
    ) -> Optional[CalibrationPoint]:
        """
        Average the gaze vectors sampled while the subject fixated a target.

        The samples farthest from the per-axis median (``trim_fraction`` of
        them) are discarded before averaging.

        Returns:
            The stored CalibrationPoint, or None if the calibration is frozen
            or fewer than ``min_samples`` usable samples were given.
        """
        if self._frozen is not None:
            self.logger.warning("Calibration already finished; start a new pass first")
            return None

        arr = np.asarray(list(sampled_gaze_vectors), dtype=float).reshape(-1, 2)
        arr = arr[np.all(np.isfinite(arr), axis=1)]
        if len(arr) < self.config.min_samples:
            self.logger.warning(
                f"Too few samples for target {target_screen}: "
                f"{len(arr)} < {self.config.min_samples}"
            )
            return None

        median = np.median(arr, axis=0)
        distances = np.hypot(arr[:, 0] - median[0], arr[:, 1] - median[1])
        keep = len(arr) - int(math.floor(len(arr) * self.config.trim_fraction))
        kept = arr[np.argsort(distances, kind='stable')[:max(1, keep)]]

        point = CalibrationPoint(
            target_screen=(float(target_screen[0]), float(target_screen[1])),
            gaze_vector=(float(np.mean(kept[:, 0])), float(np.mean(kept[:, 1]))),
            sample_count=int(len(kept)),
            std=(float(np.std(kept[:, 0])), float(np.std(kept[:, 1]))),
        )
        self._points.append(point)
        return point

    def finish_calibration(
        self,
        test_points: Optional[Sequence[Tuple[Point, Point]]] = None,
    ) -> int:
        """
        Freeze the collected points and compute the precision percentage.

        Args:
            test_points: Held-out (gaze_vector, target_screen) pairs. When
                omitted, each recorded point is predicted from the others
                (leave-one-out); with too few points to interpolate, the
                recorded points are replayed as-is.

        Returns:
            Precision percentage in [0, 100]
        """
        self._frozen = tuple(self._points)

        if test_points is None:
            mean_error, percent = self._leave_one_out_precision()
        else:
            mean_error, percent = self.measure_precision(test_points)

        self.mean_error_px = mean_error
        self.precision_percent = percent
        self.logger.info(
            f"Calibration finished: {len(self._frozen)} points, "
            f"mean error {mean_error:.1f}px, precision {percent}%"
        )
        return percent

    def _leave_one_out_precision(self) -> Tuple[float, int]:
        points = self.points
        if len(points) <= self.config.min_points:
            return self.measure_precision([(p.gaze_vector, p.target_screen) for p in points])

        errors = []
        for i, held_out in enumerate(points):
            others = points[:i] + points[i + 1:]
            x, y = self._interpolate(held_out.gaze_vector, others)
            errors.append(math.hypot(x - held_out.target_screen[0], y - held_out.target_screen[1]))
        return self._precision_from_errors(errors)

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map(self, gaze_vector: Point) -> Point:
        """
        Resolve a gaze vector to a screen coordinate. Never fails: with no or
        too few calibration points the fixed fallback mapping is used.
        """
        vx, vy = (float(v) if math.isfinite(float(v)) else 0.0 for v in gaze_vector)
        points = self.points
        if len(points) < self.config.min_points:
            return self._fallback_map(vx, vy)
        return self._interpolate((vx, vy), points)

    def _fallback_map(self, vx: float, vy: float) -> Point:
        w, h = self.config.viewport_width, self.config.viewport_height
        gain = self.config.fallback_gain
        return self._clamp(w * (0.5 + vx * gain), h * (0.5 + vy * gain))

    def _interpolate(self, vector: Point, points: Sequence[CalibrationPoint]) -> Point:
        vectors = np.array([p.gaze_vector for p in points], dtype=float)
        targets = np.array([p.target_screen for p in points], dtype=float)

        distances = np.hypot(vectors[:, 0] - vector[0], vectors[:, 1] - vector[1])
        k = max(1, min(self.config.neighbors, len(points)))
        nearest = np.argsort(distances, kind='stable')[:k]

        if distances[nearest[0]] <= self.config.epsilon:
            x, y = targets[nearest[0]]
            return self._clamp(float(x), float(y))

        weights = 1.0 / (distances[nearest] + self.config.epsilon)
        x = float(np.sum(weights * targets[nearest, 0]) / np.sum(weights))
        y = float(np.sum(weights * targets[nearest, 1]) / np.sum(weights))
        return self._clamp(x, y)

    def _clamp(self, x: float, y: float) -> Point:
        x = float(max(0.0, min(self.config.viewport_width, x)))
        y = float(max(0.0, min(self.config.viewport_height, y)))
        return x, y

    # ------------------------------------------------------------------
    # Precision self-test
    # ------------------------------------------------------------------

    def measure_precision(self, test_points: Sequence[Tuple[Point, Point]]) -> Tuple[float, int]:
        """
        Replay the mapping against held-out fixation points.

        Args:
            test_points: (gaze_vector, target_screen) pairs

        Returns:
            (mean Euclidean error in pixels, precision percentage 0..100)
        """
        errors = []
        for vector, target in test_points:
            x, y = self.map(vector)
            errors.append(math.hypot(x - target[0], y - target[1]))
        return self._precision_from_errors(errors)

    def _precision_from_errors(self, errors: Sequence[float]) -> Tuple[float, int]:
        if not errors:
            return 0.0, 0
        mean_error = float(np.mean(errors))
        percent = int(math.floor((1.0 - mean_error / self.screen_diagonal) * 100 + 0.5))
        return mean_error, max(0, min(100, percent))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_calibration(self, path: Optional[str] = None) -> Path:
        """Save the calibration points and precision to a JSON file."""
        p = Path(path or self.calibration_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        payload: Dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "mode": self.mode,
            "viewport": [self.config.viewport_width, self.config.viewport_height],
            "precision_percent": self.precision_percent,
            "mean_error_px": self.mean_error_px,
            "num_points": len(self.points),
            "points": [
                {
                    "target": list(pt.target_screen),
                    "gaze_vector": list(pt.gaze_vector),
                    "sample_count": pt.sample_count,
                    "std": list(pt.std),
                }
                for pt in self.points
            ],
        }
        p.write_text(json.dumps(payload, indent=2, default=str))
        return p

    def load_calibration(self, path: Optional[str] = None, silent: bool = False) -> bool:
        """Load calibration points from a JSON file. Returns False if missing."""
        p = Path(path or self.calibration_path)
        if not p.exists():
            return False

        try:
            data = json.loads(p.read_text())
            points = tuple(
                CalibrationPoint(
                    target_screen=(float(item["target"][0]), float(item["target"][1])),
                    gaze_vector=(float(item["gaze_vector"][0]), float(item["gaze_vector"][1])),
                    sample_count=int(item.get("sample_count", 0)),
                    std=tuple(float(s) for s in item.get("std", (0.0, 0.0))),
                )
                for item in data.get("points", [])
            )
            viewport = data.get("viewport")
            if viewport:
                self.set_viewport(viewport[0], viewport[1])
        except (ValueError, KeyError, TypeError, IndexError) as e:
            if not silent:
                raise
            self.logger.warning(f"Ignoring unreadable calibration file {p}: {e}")
            return False

        self._points = list(points)
        self._frozen = points
        self.mode = data.get("mode", self.mode)
        self.precision_percent = data.get("precision_percent")
        self.mean_error_px = data.get("mean_error_px")
        return True
