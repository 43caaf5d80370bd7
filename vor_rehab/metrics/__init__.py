"""
Metrics Module

Includes:
- Kinematics Engine - head/eye velocity, VOR gain, saccades, latency, fixation stability
- Session Recorder - per-frame records and CSV export
"""

from vor_rehab.metrics.kinematics import (
    KinematicsConfig,
    KinematicsEngine,
    KinematicState,
    LatencyEvent,
    MetricsSnapshot,
    compute_vor_gain,
    fixation_rms,
    head_angle_from_landmarks
)

from vor_rehab.metrics.session_recorder import (
    ExportResult,
    ExportStatus,
    SessionRecorder,
    export_filename,
    parse_export
)

__all__ = [
    'KinematicsConfig',
    'KinematicsEngine',
    'KinematicState',
    'LatencyEvent',
    'MetricsSnapshot',
    'compute_vor_gain',
    'fixation_rms',
    'head_angle_from_landmarks',
    'ExportResult',
    'ExportStatus',
    'SessionRecorder',
    'export_filename',
    'parse_export'
]
