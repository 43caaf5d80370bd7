"""
VOR Rehabilitation Core

Turns a stream of gaze / facial-landmark samples into calibrated gaze points,
vestibulo-ocular kinematics and an exercise score.
"""

__version__ = '1.0.0'
