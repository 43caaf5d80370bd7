"""
Kinematics Engine

Per-frame VOR metrics derived from the filtered gaze stream and face landmarks:
head angle, head angular velocity, eye velocity, VOR gain, saccade count,
reflex latency (head onset -> eye response pairing) and fixation stability.

Timestamps are milliseconds; velocities are per second.
"""

import math
import logging
from collections import deque
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Deque, Dict, List, Optional, Sequence

import numpy as np

from vor_rehab import constants as const
from vor_rehab.data_acquisition.tracker_adapter import GazeSample, LandmarkFrame


@dataclass
class KinematicsConfig:
    """Thresholds for the kinematics engine"""
    saccade_vel_threshold: float = const.SACCADE_VEL_THRESHOLD
    head_vel_threshold: float = const.HEAD_VEL_THRESHOLD
    eye_vel_threshold: float = const.EYE_VEL_THRESHOLD
    min_head_vel_for_gain: float = const.MIN_HEAD_VEL_FOR_GAIN
    fixation_window_ms: float = const.FIXATION_WINDOW_MS
    latency_horizon_ms: float = const.LATENCY_EVENT_HORIZON_MS
    max_pending_events: int = const.MAX_PENDING_LATENCY_EVENTS
    preview_width: float = const.PREVIEW_WIDTH

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "KinematicsConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class LatencyEvent:
    """A head-movement onset waiting for the compensatory eye response"""
    onset_time: float
    head_velocity: float
    responded: bool = False
    response_time: Optional[float] = None
    latency_ms: Optional[float] = None


@dataclass
class KinematicState:
    """Rolling per-session state, owned by KinematicsEngine"""
    max_pending_events: int = const.MAX_PENDING_LATENCY_EVENTS
    last_head_angle: Optional[float] = None
    last_gaze: Optional[GazeSample] = None
    last_timestamp: Optional[float] = None
    pending_events: Deque[LatencyEvent] = field(default_factory=deque)
    fixation_window: Deque[GazeSample] = field(default_factory=deque)
    responded_events: Deque[LatencyEvent] = field(default_factory=deque)
    saccade_count: int = 0
    frames_processed: int = 0
    latency_total_ms: float = 0.0
    latency_count: int = 0

    def __post_init__(self):
        self.pending_events = deque(self.pending_events, maxlen=self.max_pending_events)
        self.responded_events = deque(self.responded_events, maxlen=const.RECENT_LATENCY_EVENTS)


@dataclass(frozen=True)
class MetricsSnapshot:
    """Per-frame output record"""
    t: float
    gaze_x: float
    gaze_y: float
    head_angle: Optional[float]
    head_vel: float
    eye_vel: float
    vor_gain: Optional[float]
    latency_ms: Optional[float]
    fixation_rms: float
    saccade_count: int
    level: Optional[int] = None
    on_target: bool = False

    def with_exercise(self, level: Optional[int], on_target: bool) -> "MetricsSnapshot":
        """Copy with the exercise fields filled in."""
        return replace(self, level=level, on_target=bool(on_target))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def head_angle_from_landmarks(
    landmarks: Optional[LandmarkFrame],
    preview_width: float = const.PREVIEW_WIDTH,
) -> Optional[float]:
    """
    Head roll angle in degrees from nose tip and both eye references.

    Landmarks are mirrored into preview space (x' = preview_width - x * rx,
    y' = y * ry). Returns None if any reference landmark is missing.
    """
    if landmarks is None:
        return None

    nose = landmarks.first(const.NOSE_TIP_LANDMARKS)
    left = landmarks.first(const.LEFT_EYE_LANDMARKS)
    right = landmarks.first(const.RIGHT_EYE_LANDMARKS)
    if nose is None or left is None or right is None:
        return None

    rx, ry = landmarks.scale_ratio
    nx = preview_width - nose[0] * rx
    ny = nose[1] * ry
    lx = preview_width - left[0] * rx
    rgt_x = preview_width - right[0] * rx

    mid_x = (lx + rgt_x) / 2.0
    mid_y = ((left[1] + right[1]) / 2.0) * ry

    angle = math.degrees(math.atan2(nx - mid_x, ny - mid_y))
    return angle if math.isfinite(angle) else None


def fixation_rms(points: Sequence[GazeSample]) -> float:
    """
    RMS of each point's deviation from the window mean, x and y deviations
    concatenated. Zero variance gives exactly 0.
    """
    if not points:
        return 0.0
    xs = np.array([p.x for p in points], dtype=float)
    ys = np.array([p.y for p in points], dtype=float)
    deviations = np.concatenate([xs - xs.mean(), ys - ys.mean()])
    return float(np.sqrt(np.mean(deviations ** 2)))


def compute_vor_gain(eye_vel: float, head_vel: float, min_head_vel: float) -> Optional[float]:
    """|eye| / |head|, or None when head motion is too small for a stable ratio."""
    if abs(head_vel) > min_head_vel:
        return abs(eye_vel) / abs(head_vel)
    return None


class KinematicsEngine:
    """
    Stateful kinematics computation.

    Each `update()` uses the state left by the previous sample. A sample whose
    timestamp does not advance past the previous one contributes to the
    fixation window but leaves velocities at 0 and does not move the state;
    a non-finite timestamp is ignored entirely.
    """

    def __init__(self, config: Optional[KinematicsConfig] = None):
        self.config = config or KinematicsConfig()
        self.logger = logging.getLogger(__name__)
        self.state = KinematicState(max_pending_events=self.config.max_pending_events)
        self.last_matched_latency_ms: Optional[float] = None

    def reset(self):
        """Start a fresh session"""
        self.state = KinematicState(max_pending_events=self.config.max_pending_events)
        self.last_matched_latency_ms = None

    @property
    def saccade_count(self) -> int:
        return self.state.saccade_count

    @property
    def pending_events(self) -> List[LatencyEvent]:
        return list(self.state.pending_events)

    @property
    def responded_events(self) -> List[LatencyEvent]:
        return list(self.state.responded_events)

    @property
    def average_latency_ms(self) -> Optional[float]:
        """Running mean of all responded events' latency"""
        if self.state.latency_count == 0:
            return None
        return self.state.latency_total_ms / self.state.latency_count

    # ------------------------------------------------------------------
    # Latency pairing
    # ------------------------------------------------------------------

    def register_head_movement(self, t: float, head_vel: float) -> Optional[LatencyEvent]:
        """Queue a head-movement onset if it exceeds the head threshold."""
        if abs(head_vel) <= self.config.head_vel_threshold:
            return None
        event = LatencyEvent(onset_time=t, head_velocity=head_vel)
        if len(self.state.pending_events) == self.state.pending_events.maxlen:
            self.logger.debug("Pending latency queue full; dropping oldest onset")
        self.state.pending_events.append(event)
        return event

    def match_eye_response(self, t: float, eye_vel: float) -> Optional[LatencyEvent]:
        """
        Pair an eye movement with the oldest unresponded onset (FIFO).

        Returns the matched event, or None if the eye velocity is below the
        response threshold or nothing is pending.
        """
        if abs(eye_vel) <= self.config.eye_vel_threshold:
            return None
        pending = self.state.pending_events
        if not pending:
            return None

        event = pending.popleft()
        event.responded = True
        event.response_time = t
        event.latency_ms = t - event.onset_time
        self.state.responded_events.append(event)
        self.state.latency_total_ms += event.latency_ms
        self.state.latency_count += 1
        return event

    def prune_stale_events(self, now: float) -> int:
        """Drop unresponded onsets older than the latency horizon."""
        cutoff = now - self.config.latency_horizon_ms
        pending = self.state.pending_events
        dropped = 0
        while pending and pending[0].onset_time < cutoff:
            pending.popleft()
            dropped += 1
        return dropped

    # ------------------------------------------------------------------
    # Fixation window
    # ------------------------------------------------------------------

    def _update_fixation_window(self, gaze: GazeSample, now: float) -> float:
        window = self.state.fixation_window
        window.append(gaze)
        cutoff = now - self.config.fixation_window_ms
        while window and window[0].t < cutoff:
            window.popleft()
        return fixation_rms(window)

    # ------------------------------------------------------------------
    # Per-frame update
    # ------------------------------------------------------------------

    def update(
        self,
        gaze: GazeSample,
        landmarks: Optional[LandmarkFrame] = None,
        level: Optional[int] = None,
        on_target: bool = False,
    ) -> MetricsSnapshot:
        """
        Process one filtered gaze sample.

        Args:
            gaze: Filtered gaze point with timestamp (ms)
            landmarks: Optional landmark frame for head angle
            level: Active exercise level (recorded in the snapshot)
            on_target: Whether gaze was on target this frame

        Returns:
            MetricsSnapshot for this frame
        """
        state = self.state
        state.frames_processed += 1
        self.last_matched_latency_ms = None

        head_angle = head_angle_from_landmarks(landmarks, self.config.preview_width)

        if not math.isfinite(gaze.t):
            self.logger.debug(f"Non-finite timestamp {gaze.t}; frame ignored")
            return self._snapshot(gaze, head_angle, 0.0, 0.0, None, fixation_rms(state.fixation_window),
                                  level, on_target)

        advanced = state.last_timestamp is None or gaze.t > state.last_timestamp
        head_vel = 0.0
        eye_vel = 0.0

        if state.last_timestamp is not None and advanced:
            dt = (gaze.t - state.last_timestamp) / 1000.0
            if head_angle is not None and state.last_head_angle is not None:
                head_vel = (head_angle - state.last_head_angle) / dt
            if state.last_gaze is not None:
                eye_vel = math.hypot(gaze.x - state.last_gaze.x, gaze.y - state.last_gaze.y) / dt

        now = gaze.t if advanced else state.last_timestamp

        if eye_vel > self.config.saccade_vel_threshold:
            state.saccade_count += 1

        self.prune_stale_events(now)
        matched = self.match_eye_response(gaze.t, eye_vel) if advanced else None
        if matched is not None:
            self.last_matched_latency_ms = matched.latency_ms
        if advanced and state.last_timestamp is not None:
            self.register_head_movement(gaze.t, head_vel)

        rms = self._update_fixation_window(gaze, now)
        gain = compute_vor_gain(eye_vel, head_vel, self.config.min_head_vel_for_gain)

        if advanced:
            state.last_head_angle = head_angle
            state.last_gaze = gaze
            state.last_timestamp = gaze.t
        else:
            self.logger.debug(f"Non-monotonic timestamp {gaze.t} (last {state.last_timestamp}); velocities skipped")

        return self._snapshot(gaze, head_angle, head_vel, eye_vel, gain, rms, level, on_target)

    def _snapshot(self, gaze, head_angle, head_vel, eye_vel, gain, rms, level, on_target) -> MetricsSnapshot:
        return MetricsSnapshot(
            t=gaze.t,
            gaze_x=gaze.x,
            gaze_y=gaze.y,
            head_angle=head_angle,
            head_vel=head_vel,
            eye_vel=eye_vel,
            vor_gain=gain,
            latency_ms=self.average_latency_ms,
            fixation_rms=rms,
            saccade_count=self.state.saccade_count,
            level=level,
            on_target=bool(on_target),
        )
