"""
Main entry point for the VOR rehabilitation core
Runs the per-sample pipeline: calibrate -> filter -> kinematics -> exercise -> record
"""

import argparse
import math
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from vor_rehab.data_acquisition.gaze_filter import GazeFilter, GazeFilterConfig
from vor_rehab.data_acquisition.tracker_adapter import (
    GazeObservation,
    GazeSample,
    ReplayTracker,
    TrackerAdapter,
)
from vor_rehab.exercise_engine.scheduler import (
    ExerciseScheduler,
    ExerciseStatus,
    ExerciseSummary,
    ScoringConfig,
    TickResult,
)
from vor_rehab.metrics.kinematics import KinematicsConfig, KinematicsEngine, MetricsSnapshot
from vor_rehab.metrics.session_recorder import SessionRecorder
from vor_rehab.session_context import SessionContext
from vor_rehab.utils.config_loader import get_section, load_config
from vor_rehab.utils.gaze_calibration import CalibrationConfig, CalibrationPoint, GazeCalibrator
from vor_rehab.utils.logger import get_logger, setup_logger_from_config
from vor_rehab import constants as const

Point = Tuple[float, float]


class VORRehabSystem:
    """
    Orchestrates one instance of each pipeline component around an explicit
    SessionContext.
    """

    def __init__(
        self,
        config_path: str = "config/config.yaml",
        config: Optional[Dict[str, Any]] = None,
        require_calibration: Optional[bool] = None,
    ):
        """
        Initialize the system

        Args:
            config_path: Path to configuration YAML file (ignored if `config` is given)
            config: Already-loaded configuration dict
            require_calibration: Refuse to start exercises before calibrating (overrides config)
        """
        config_missing = False
        if config is not None:
            self.config = config
        else:
            try:
                self.config = load_config(config_path)
            except FileNotFoundError:
                self.config = {}
                config_missing = True

        self.logger = setup_logger_from_config(self.config)
        if config_missing:
            self.logger.warning(f"Config file not found at {config_path}, using defaults")

        viewport_cfg = get_section(self.config, 'viewport')
        self.viewport = (
            float(viewport_cfg.get('width', const.DEFAULT_VIEWPORT_WIDTH)),
            float(viewport_cfg.get('height', const.DEFAULT_VIEWPORT_HEIGHT)),
        )

        calibration_cfg = get_section(self.config, 'calibration')
        self.require_calibration = (
            require_calibration if require_calibration is not None
            else bool(calibration_cfg.get('required', True))
        )
        self.save_calibration = bool(calibration_cfg.get('save', False))

        cal_config = CalibrationConfig.from_dict(calibration_cfg)
        cal_config.viewport_width, cal_config.viewport_height = self.viewport
        self.calibrator = GazeCalibrator(
            config=cal_config,
            calibration_path=calibration_cfg.get('file', 'config/gaze_calibration.json'),
        )
        self.gaze_filter = GazeFilter(GazeFilterConfig.from_dict(get_section(self.config, 'gaze_filter')))
        self.kinematics = KinematicsEngine(KinematicsConfig.from_dict(get_section(self.config, 'kinematics')))
        self.scheduler = ExerciseScheduler(
            viewport=self.viewport,
            scoring=ScoringConfig.from_dict(get_section(self.config, 'scoring')),
        )
        self.recorder = SessionRecorder()
        self.context = SessionContext()

        self.last_tick: Optional[TickResult] = None
        self.last_summary: Optional[ExerciseSummary] = None
        self.last_start_status: Optional[ExerciseStatus] = None

        if calibration_cfg.get('load_saved', False):
            if self.calibrator.load_calibration(silent=True):
                self.context.calibrated = self.calibrator.is_calibrated
                self.logger.info(f"Loaded saved calibration ({len(self.calibrator.points)} points)")

        self.logger.info("VOR rehabilitation system initialized")

    def _clamp_to_viewport(self, point: Point) -> Point:
        x, y = float(point[0]), float(point[1])
        if not (math.isfinite(x) and math.isfinite(y)):
            # left for the gaze filter to reject
            return x, y
        width, height = self.viewport
        return (
            max(0.0, min(width, x)),
            max(0.0, min(height, y)),
        )

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def start_calibration(self, mode: str = 'quick') -> List[Point]:
        """Begin a calibration pass; returns the screen targets to show."""
        targets = self.calibrator.start_calibration(mode)
        self.context.calibrating = True
        return targets

    def record_calibration_point(self, target: Point, samples: Sequence[Point]) -> Optional[CalibrationPoint]:
        return self.calibrator.record_calibration_point(target, samples)

    def finish_calibration(self, test_points: Optional[Sequence[Tuple[Point, Point]]] = None) -> int:
        """Freeze the calibration and return its precision percentage."""
        percent = self.calibrator.finish_calibration(test_points)
        self.context.calibrating = False
        self.context.calibrated = self.calibrator.is_calibrated
        if not self.context.calibrated:
            self.logger.warning(
                f"Calibration has {len(self.calibrator.points)} points; "
                f"using the fallback mapping"
            )
        if self.save_calibration:
            try:
                path = self.calibrator.save_calibration()
                self.logger.info(f"Calibration saved to {path}")
            except OSError as e:
                self.logger.error(f"Failed to save calibration: {e}")
        return percent

    # ------------------------------------------------------------------
    # Exercise control
    # ------------------------------------------------------------------

    def start_exercise(self, level_id: int, now_ms: Optional[float] = None) -> bool:
        """
        Start an exercise level. Returns False (and leaves state untouched)
        when the scheduler rejects the request.
        """
        calibrated = self.context.calibrated or not self.require_calibration
        status = self.scheduler.start(level_id, now_ms, calibrated=calibrated)
        self.last_start_status = status
        if status != ExerciseStatus.OK:
            return False

        self.kinematics.reset()
        self.recorder.clear()
        self.last_tick = None
        self.last_summary = None
        self.context.begin_session(int(level_id))
        return True

    def pause_exercise(self) -> bool:
        paused = self.scheduler.pause()
        if paused:
            self.context.paused = True
        return paused

    def resume_exercise(self, now_ms: Optional[float] = None) -> bool:
        resumed = self.scheduler.resume(now_ms)
        if resumed:
            self.context.paused = False
        return resumed

    def stop_exercise(self) -> Optional[ExerciseSummary]:
        """Stop the current exercise; recorded rows stay available for export."""
        summary = self.scheduler.stop()
        if summary is not None:
            self.last_summary = summary
            self.context.end_session(completed=summary.completed)
        return summary

    def _finish_if_completed(self, tick: Optional[TickResult]):
        if tick is not None and tick.completed:
            self.stop_exercise()

    # ------------------------------------------------------------------
    # Queries and export
    # ------------------------------------------------------------------

    def get_current_gaze(self) -> Optional[Point]:
        return self.context.current_gaze

    def get_current_metrics(self) -> Optional[MetricsSnapshot]:
        return self.context.last_snapshot

    def export_session(self) -> Optional[bytes]:
        """CSV bytes of the recorded session, or None if nothing was recorded."""
        result = self.recorder.export()
        return result.data if result.ok else None

    def write_export(self, directory: str = "exports") -> Optional[Path]:
        return self.recorder.write(directory)

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the session state for status displays"""
        ctx = self.context
        return {
            'calibrated': ctx.calibrated,
            'calibrating': ctx.calibrating,
            'session_active': ctx.session_active,
            'paused': ctx.paused,
            'level': ctx.current_level,
            'state': self.scheduler.state.value,
            'progress': self.scheduler.progress,
            'frame_count': ctx.frame_count,
            'recorded_rows': len(self.recorder),
            'completed_levels': sorted(self.scheduler.completed_levels),
        }

    # ------------------------------------------------------------------
    # Per-sample pipeline
    # ------------------------------------------------------------------

    def tick(self, now_ms: float) -> Optional[TickResult]:
        """Advance the exercise clock without a new gaze sample."""
        try:
            tick = self.scheduler.tick(self.context.current_gaze, now_ms)
        except Exception as e:
            self.logger.error(f"Error in exercise tick: {e}", exc_info=True)
            return None
        if tick is not None:
            self.last_tick = tick
            self._finish_if_completed(tick)
        return tick

    def process_observation(self, observation: GazeObservation) -> Optional[MetricsSnapshot]:
        """
        Run one observation through the pipeline.

        Args:
            observation: Tracker output (screen point and/or gaze vector, landmarks)

        Returns:
            MetricsSnapshot for this frame, or None until a gaze point is available
        """
        ctx = self.context
        ctx.frame_count += 1
        t = float(observation.timestamp)
        if not math.isfinite(t):
            self.logger.warning(f"Dropping observation with non-finite timestamp {observation.timestamp}")
            return None

        # SENSE: screen point from the tracker or the calibration mapping
        try:
            point = observation.gaze_point
            if point is not None:
                point = self._clamp_to_viewport(point)
            elif observation.gaze_vector is not None:
                point = self.calibrator.map(observation.gaze_vector)
        except Exception as e:
            self.logger.error(f"Error in calibration mapping: {e}", exc_info=True)
            point = None

        try:
            if point is not None:
                gaze = self.gaze_filter.filter(point, t)
            else:
                gaze = self.gaze_filter.current
        except Exception as e:
            self.logger.error(f"Error in gaze filter: {e}", exc_info=True)
            gaze = self.gaze_filter.current
        ctx.current_gaze = gaze

        if gaze is None:
            # Nothing to measure yet, but the exercise clock keeps running
            self.tick(t)
            return None

        # ANALYZE: kinematics
        try:
            snapshot = self.kinematics.update(GazeSample(gaze[0], gaze[1], t), observation.landmarks)
        except Exception as e:
            self.logger.error(f"Error in kinematics: {e}", exc_info=True)
            snapshot = None

        # EXERCISE: target and score
        try:
            tick = self.scheduler.tick(gaze, t)
        except Exception as e:
            self.logger.error(f"Error in exercise tick: {e}", exc_info=True)
            tick = None
        if tick is not None:
            self.last_tick = tick

        if snapshot is None:
            self._finish_if_completed(tick)
            return None

        level = ctx.current_level if ctx.session_active else None
        snapshot = snapshot.with_exercise(level, tick.on_target if tick else False)
        ctx.last_snapshot = snapshot

        # RECORD
        try:
            self.recorder.record(snapshot, ctx)
        except Exception as e:
            self.logger.error(f"Error recording frame: {e}", exc_info=True)

        self._finish_if_completed(tick)
        return snapshot

    def run(self, tracker: TrackerAdapter, max_frames: Optional[int] = None,
            stop_on_empty: bool = True,
            max_consecutive_empty: Optional[int] = const.MAX_CONSECUTIVE_EMPTY_SAMPLES,
            idle_sleep_s: float = const.TRACKER_IDLE_SLEEP_S) -> int:
        """
        Pull observations from a tracker until it runs dry.

        Args:
            tracker: Any TrackerAdapter
            max_frames: Maximum number of observations to process (None = unlimited)
            stop_on_empty: Stop at the first empty sample (replay); live
                trackers keep polling
            max_consecutive_empty: Give up on a live tracker after this many
                empty samples in a row (None = never)
            idle_sleep_s: Pause after each empty sample while polling

        Returns:
            Number of observations processed
        """
        if not tracker.setup():
            self.logger.error(f"Tracker '{tracker.name}' failed to initialize")
            return 0

        processed = 0
        empty_streak = 0
        try:
            while max_frames is None or processed < max_frames:
                observation = tracker.produce_sample()
                if observation is None:
                    if stop_on_empty:
                        break
                    if tracker.failed:
                        self.logger.error(f"Tracker '{tracker.name}' failed; stopping")
                        break
                    empty_streak += 1
                    if max_consecutive_empty is not None and empty_streak >= max_consecutive_empty:
                        self.logger.warning(f"No samples from '{tracker.name}' for {empty_streak} polls; stopping")
                        break
                    if idle_sleep_s > 0:
                        time.sleep(idle_sleep_s)
                    continue
                empty_streak = 0
                self.process_observation(observation)
                processed += 1
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            tracker.close()

        self.logger.info(f"Processed {processed} observations")
        return processed


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="VOR rehabilitation session runner")
    parser.add_argument("--config", type=str, default="config/config.yaml",
                        help="Path to configuration file (default: config/config.yaml)")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--replay", type=str, help="CSV recording with t,x,y or t,vx,vy columns")
    source.add_argument("--camera", action="store_true", help="Track live from a webcam")
    parser.add_argument("--camera-index", type=int, default=0, help="Camera device index")
    parser.add_argument("--level", type=int, default=1, help="Exercise level to run (1-5)")
    parser.add_argument("--max-frames", type=int, default=None, help="Stop after this many frames")
    parser.add_argument("--output", type=str, default="exports", help="Directory for the CSV export")
    parser.add_argument("--skip-calibration", action="store_true",
                        help="Allow exercises without a calibration pass")
    args = parser.parse_args(argv)

    system = VORRehabSystem(config_path=args.config, require_calibration=not args.skip_calibration)
    logger = get_logger()

    if args.camera:
        from vor_rehab.data_acquisition.camera_tracker import CameraLandmarkTracker
        tracker: TrackerAdapter = CameraLandmarkTracker(camera_index=args.camera_index)
    else:
        try:
            tracker = ReplayTracker.from_csv(args.replay)
        except (OSError, KeyError, ValueError) as e:
            logger.error(f"Cannot read replay file {args.replay}: {e}")
            return 1

    if not system.start_exercise(args.level):
        logger.error(f"Could not start level {args.level}: {system.last_start_status.value}")
        return 1

    system.run(tracker, max_frames=args.max_frames, stop_on_empty=not args.camera)

    summary = system.stop_exercise() or system.last_summary
    if summary is not None:
        logger.info(
            f"Level {summary.level}: score {summary.score}/{summary.max_score}, "
            f"on target {summary.time_on_target_pct:.1f}%, "
            f"accuracy {summary.accuracy_pct:.1f}% over {summary.sample_count} samples"
        )

    path = system.write_export(args.output)
    if path is None:
        logger.warning("No frames recorded; nothing exported")
    return 0


if __name__ == "__main__":
    sys.exit(main())
