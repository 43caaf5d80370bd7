"""
Camera landmark tracker
OpenCV capture + MediaPipe FaceLandmarker feeding the landmark gaze geometry.
"""

import os
import time
import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from vor_rehab import constants as const
from vor_rehab.data_acquisition.tracker_adapter import (
    GazeObservation,
    LandmarkFrame,
    LandmarkGazeTracker,
    TrackerAdapter,
)

MODEL_URL = (
    'https://storage.googleapis.com/mediapipe-models/face_landmarker/'
    'face_landmarker/float16/1/face_landmarker.task'
)


def landmarks_to_frame(face_landmarks, frame_width: int, frame_height: int,
                       preview_width: float = const.PREVIEW_WIDTH) -> LandmarkFrame:
    """
    Convert MediaPipe normalized landmarks to a LandmarkFrame in video pixels.

    The scale ratio maps video pixels onto the preview the head angle is
    measured in.
    """
    positions = {
        i: (float(lm.x) * frame_width, float(lm.y) * frame_height)
        for i, lm in enumerate(face_landmarks)
    }
    ratio = preview_width / float(frame_width) if frame_width else 1.0
    return LandmarkFrame(positions=positions, scale_ratio=(ratio, ratio))


class CameraLandmarkTracker(TrackerAdapter):
    """Live webcam tracker"""

    name = "camera"

    def __init__(
        self,
        camera_index: int = 0,
        model_path: str = 'face_landmarker.task',
        preview_width: float = const.PREVIEW_WIDTH,
        mirror: bool = True,
        max_read_failures: int = const.MAX_CAMERA_READ_FAILURES,
    ):
        self.camera_index = camera_index
        self.model_path = model_path
        self.preview_width = preview_width
        self.mirror = mirror
        self.max_read_failures = max_read_failures
        self.read_failures = 0
        self.failed = False
        self.logger = logging.getLogger(__name__)

        self.camera: Optional[cv2.VideoCapture] = None
        self.face_landmarker = None
        self.initialized = False
        self._start = time.monotonic()
        self._last_detect_ms = -1
        self._geometry = LandmarkGazeTracker(self._detect)

    def setup(self) -> bool:
        """Open the camera and initialize MediaPipe"""
        try:
            from mediapipe.tasks import python
            from mediapipe.tasks.python import vision
            import urllib.request

            if not os.path.exists(self.model_path):
                self.logger.info("Downloading MediaPipe face landmarker model...")
                urllib.request.urlretrieve(MODEL_URL, self.model_path)

            base_options = python.BaseOptions(
                model_asset_path=self.model_path,
                delegate=python.BaseOptions.Delegate.CPU
            )
            options = vision.FaceLandmarkerOptions(
                base_options=base_options,
                running_mode=vision.RunningMode.VIDEO,
                num_faces=1,
                min_face_detection_confidence=0.5,
                min_face_presence_confidence=0.5,
                min_tracking_confidence=0.5,
            )
            self.face_landmarker = vision.FaceLandmarker.create_from_options(options)
        except Exception as e:
            self.logger.error(f"MediaPipe init failed: {e}")
            self.initialized = False
            return False

        self.camera = cv2.VideoCapture(self.camera_index)
        if not self.camera.isOpened():
            self.logger.error(f"Failed to open camera {self.camera_index}")
            self.initialized = False
            return False

        self._start = time.monotonic()
        self.read_failures = 0
        self.failed = False
        self.initialized = True
        self.logger.info("Camera landmark tracker initialized")
        return True

    def _now_ms(self) -> float:
        return (time.monotonic() - self._start) * 1000.0

    def _detect(self) -> Optional[Tuple[float, LandmarkFrame]]:
        if not self.initialized or self.camera is None:
            return None

        ret, frame = self.camera.read()
        if not ret:
            self.read_failures += 1
            if self.read_failures >= self.max_read_failures:
                if not self.failed:
                    self.logger.error(f"Camera {self.camera_index} stopped delivering frames")
                self.failed = True
            elif self.read_failures == 1:
                self.logger.warning("Failed to read frame from camera")
            return None
        self.read_failures = 0
        if self.mirror:
            frame = cv2.flip(frame, 1)

        return self.detect_frame(frame, self._now_ms())

    def detect_frame(self, frame: np.ndarray, timestamp_ms: float) -> Optional[Tuple[float, LandmarkFrame]]:
        """Run the landmarker on one BGR frame."""
        import mediapipe as mp

        # VIDEO mode requires strictly increasing integer timestamps
        detect_ms = max(int(timestamp_ms), self._last_detect_ms + 1)
        self._last_detect_ms = detect_ms

        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)
        results = self.face_landmarker.detect_for_video(mp_image, detect_ms)

        if not results.face_landmarks:
            return None

        h, w = frame.shape[:2]
        return timestamp_ms, landmarks_to_frame(results.face_landmarks[0], w, h, self.preview_width)

    def produce_sample(self) -> Optional[GazeObservation]:
        sample = self._geometry.produce_sample()
        if sample is None:
            return None
        return GazeObservation(
            timestamp=sample.timestamp,
            gaze_vector=sample.gaze_vector,
            landmarks=sample.landmarks,
            source=self.name,
        )

    def close(self):
        if self.camera is not None:
            self.camera.release()
            self.camera = None
        if self.face_landmarker is not None:
            self.face_landmarker.close()
            self.face_landmarker = None
        self.initialized = False
