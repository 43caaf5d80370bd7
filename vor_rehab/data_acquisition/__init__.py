"""
Data Acquisition Module
Tracker adapters, sample types and gaze filtering
"""

from vor_rehab.data_acquisition.tracker_adapter import (
    GazeSample,
    GazeObservation,
    LandmarkFrame,
    TrackerAdapter,
    ReplayTracker,
    LandmarkGazeTracker,
    gaze_vector_from_landmarks,
)
from vor_rehab.data_acquisition.gaze_filter import GazeFilter, GazeFilterConfig

__all__ = [
    'GazeSample',
    'GazeObservation',
    'LandmarkFrame',
    'TrackerAdapter',
    'ReplayTracker',
    'LandmarkGazeTracker',
    'gaze_vector_from_landmarks',
    'GazeFilter',
    'GazeFilterConfig',
]
