"""
Utility helpers: configuration, logging and gaze calibration
"""

from vor_rehab.utils.config_loader import load_config, get_section
from vor_rehab.utils.logger import setup_logger, setup_logger_from_config, get_logger
from vor_rehab.utils.gaze_calibration import GazeCalibrator, CalibrationPoint

__all__ = [
    'load_config',
    'get_section',
    'setup_logger',
    'setup_logger_from_config',
    'get_logger',
    'GazeCalibrator',
    'CalibrationPoint',
]
