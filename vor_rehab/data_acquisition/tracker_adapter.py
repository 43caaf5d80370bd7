"""
Tracker adapters

Every gaze/landmark source (recorded replay, landmark geometry, live camera)
implements the same `produce_sample()` capability so the processing pipeline
never special-cases a tracker variant.
"""

import csv
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, Mapping, Optional, Tuple

from vor_rehab import constants as const


@dataclass(frozen=True)
class GazeSample:
    """A single gaze observation in screen pixels, timestamp in ms"""
    x: float
    y: float
    t: float


@dataclass(frozen=True)
class LandmarkFrame:
    """Facial landmark positions (tracker-video coordinates) for one frame"""
    positions: Mapping[int, Tuple[float, float]]
    scale_ratio: Tuple[float, float] = (1.0, 1.0)

    def first(self, indices: Iterable[int]) -> Optional[Tuple[float, float]]:
        """Position of the first index present, or None."""
        for idx in indices:
            pos = self.positions.get(idx)
            if pos is not None:
                return pos
        return None

    def center(self, indices: Iterable[int]) -> Optional[Tuple[float, float]]:
        """Mean position of the indices that are present, or None if none are."""
        pts = [self.positions[i] for i in indices if i in self.positions]
        if not pts:
            return None
        return (sum(p[0] for p in pts) / len(pts), sum(p[1] for p in pts) / len(pts))


@dataclass(frozen=True)
class GazeObservation:
    """
    One frame from a tracker: a screen point, a normalized gaze vector and/or
    facial landmarks. At least the timestamp is always present.
    """
    timestamp: float
    gaze_point: Optional[Tuple[float, float]] = None
    gaze_vector: Optional[Tuple[float, float]] = None
    landmarks: Optional[LandmarkFrame] = None
    source: str = field(default="unknown", compare=False)


class TrackerAdapter(ABC):
    """Polymorphic gaze source."""

    name = "tracker"

    # Set when the source is permanently gone (e.g. camera unplugged)
    failed = False

    def setup(self) -> bool:
        """Acquire resources. Returns False if the tracker cannot run."""
        return True

    @abstractmethod
    def produce_sample(self) -> Optional[GazeObservation]:
        """Return the next observation, or None when nothing is available."""

    def close(self):
        """Release resources"""

    def __iter__(self) -> Iterator[GazeObservation]:
        while True:
            sample = self.produce_sample()
            if sample is None:
                return
            yield sample


class ReplayTracker(TrackerAdapter):
    """Replays previously recorded observations (lists or CSV files)."""

    name = "replay"

    def __init__(self, observations: Iterable[GazeObservation]):
        self._iterator = iter(observations)
        self.samples_produced = 0

    @classmethod
    def from_csv(cls, path: str) -> "ReplayTracker":
        """
        Load a recording with a `t` column plus either `x`/`y` (screen
        pixels) or `vx`/`vy` (gaze vector). Blank cells mean "missing".
        """
        rows = []
        with open(Path(path), 'r', newline='') as f:
            for row in csv.DictReader(f):
                rows.append(cls._row_to_observation(row))
        return cls(rows)

    @staticmethod
    def _row_to_observation(row: Dict[str, str]) -> GazeObservation:
        def pair(a: str, b: str) -> Optional[Tuple[float, float]]:
            va, vb = (row.get(a) or '').strip(), (row.get(b) or '').strip()
            if not va or not vb:
                return None
            return float(va), float(vb)

        return GazeObservation(
            timestamp=float(row['t']),
            gaze_point=pair('x', 'y'),
            gaze_vector=pair('vx', 'vy'),
            source="replay",
        )

    def produce_sample(self) -> Optional[GazeObservation]:
        sample = next(self._iterator, None)
        if sample is not None:
            self.samples_produced += 1
        return sample


def gaze_vector_from_landmarks(frame: LandmarkFrame) -> Optional[Tuple[float, float]]:
    """
    Estimate a normalized gaze vector from face geometry.

    The eye centre (mean of both eye contours) is expressed relative to the
    face centre (cheeks horizontally, forehead/chin vertically) in units of a
    third of the face width / height.
    """
    left_eye = frame.center(const.LEFT_EYE_CONTOUR)
    right_eye = frame.center(const.RIGHT_EYE_CONTOUR)
    left_cheek = frame.positions.get(const.LEFT_CHEEK_LANDMARK)
    right_cheek = frame.positions.get(const.RIGHT_CHEEK_LANDMARK)
    forehead = frame.positions.get(const.FOREHEAD_LANDMARK)
    chin = frame.positions.get(const.CHIN_LANDMARK)

    if None in (left_eye, right_eye, left_cheek, right_cheek, forehead, chin):
        return None

    face_width = abs(right_cheek[0] - left_cheek[0])
    face_height = abs(chin[1] - forehead[1])
    if face_width <= 0 or face_height <= 0:
        return None

    eye_x = (left_eye[0] + right_eye[0]) / 2.0
    eye_y = (left_eye[1] + right_eye[1]) / 2.0
    face_x = (left_cheek[0] + right_cheek[0]) / 2.0
    face_y = (forehead[1] + chin[1]) / 2.0

    vx = (eye_x - face_x) / (face_width / 3.0)
    vy = (eye_y - face_y) / (face_height / 3.0)
    if not (math.isfinite(vx) and math.isfinite(vy)):
        return None
    return vx, vy


LandmarkSource = Callable[[], Optional[Tuple[float, LandmarkFrame]]]


class LandmarkGazeTracker(TrackerAdapter):
    """
    Derives gaze vectors from a landmark detector.

    The detector is any callable returning (timestamp_ms, LandmarkFrame) or
    None when no face is visible.
    """

    name = "landmarks"

    def __init__(self, detector: LandmarkSource):
        self.detector = detector
        self.logger = logging.getLogger(__name__)
        self.frames_without_face = 0

    def produce_sample(self) -> Optional[GazeObservation]:
        result = self.detector()
        if result is None:
            self.frames_without_face += 1
            return None

        timestamp, frame = result
        return GazeObservation(
            timestamp=float(timestamp),
            gaze_vector=gaze_vector_from_landmarks(frame),
            landmarks=frame,
            source=self.name,
        )
