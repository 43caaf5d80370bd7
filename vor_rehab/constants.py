"""
Tunable constants for the VOR rehabilitation pipeline.

Every value here can be overridden from config/config.yaml; components read
these as their defaults.
"""

# Viewport (screen pixels)
DEFAULT_VIEWPORT_WIDTH = 1920
DEFAULT_VIEWPORT_HEIGHT = 1080

# Tracker preview width used when mirroring landmark x coordinates
PREVIEW_WIDTH = 320

# Kinematics thresholds
SACCADE_VEL_THRESHOLD = 1500.0      # px/s
HEAD_VEL_THRESHOLD = 50.0           # deg/s, head-movement onset for latency pairing
EYE_VEL_THRESHOLD = 200.0           # px/s, eye response for latency pairing
MIN_HEAD_VEL_FOR_GAIN = 5.0         # deg/s
FIXATION_WINDOW_MS = 100.0
LATENCY_EVENT_HORIZON_MS = 500.0    # unresponded head events older than this are dropped
MAX_PENDING_LATENCY_EVENTS = 64
RECENT_LATENCY_EVENTS = 64          # answered events kept for inspection; the average uses running totals

# Live tracker polling
TRACKER_IDLE_SLEEP_S = 0.01         # back-off after an empty sample
MAX_CONSECUTIVE_EMPTY_SAMPLES = 1000  # ~10 s of silence ends a live run
MAX_CAMERA_READ_FAILURES = 30       # consecutive failed cv2 reads before the camera is marked failed

# Landmark indices (MediaPipe face mesh)
NOSE_TIP_LANDMARKS = (1, 4)
LEFT_EYE_LANDMARKS = (33, 145)
RIGHT_EYE_LANDMARKS = (263, 374)
LEFT_EYE_CONTOUR = (33, 7, 163, 144, 145, 153, 154, 155, 133, 173, 157, 158, 159, 160, 161, 246)
RIGHT_EYE_CONTOUR = (362, 382, 381, 380, 374, 373, 390, 249, 263, 466, 388, 387, 386, 385, 384, 398)
LEFT_CHEEK_LANDMARK = 234
RIGHT_CHEEK_LANDMARK = 454
FOREHEAD_LANDMARK = 9
CHIN_LANDMARK = 175

# Gaze filter
FILTER_BUFFER_SIZE = 3
SMOOTHING_JUMP_THRESHOLD_PX = 50.0
SMOOTHING_ALPHA_FAST = 0.6
SMOOTHING_ALPHA_SLOW = 0.2

# Calibration
MIN_CALIBRATION_POINTS = 4          # below this the fixed fallback mapping is used
CALIBRATION_NEIGHBORS = 4
CALIBRATION_EPSILON = 1e-6
FALLBACK_GAIN = 0.8
CALIBRATION_DWELL_MS = 1500.0
MIN_CALIBRATION_SAMPLES = 10
CALIBRATION_TRIM_FRACTION = 0.2
CALIBRATION_GRID = (0.1, 0.5, 0.9)
CALIBRATION_PASSES = {'quick': 1, 'thorough': 3}

# Exercise scoring
SCORING_ACCURACY_WEIGHT = 0.7
SCORING_STABILITY_WEIGHT = 0.3
SCORING_MAX_SCORE = 1000

# Export
EXPORT_COLUMNS = (
    'timestamp', 'level', 'gazeX', 'gazeY', 'headAngle', 'headVel', 'eyeVel',
    'vorGain', 'latencyMs', 'fixationRMS', 'saccadeCount', 'onTarget',
)
EXPORT_DECIMALS = 2
EXPORT_FILE_PREFIX = 'vor_session'
