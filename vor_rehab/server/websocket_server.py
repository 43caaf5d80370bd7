"""
WebSocket server for the VOR rehabilitation core.

Clients push gaze samples and control commands as JSON; a single consumer
task runs each queued observation through VORRehabSystem and the latest
metrics are broadcast to every connected client.
"""

import asyncio
import json
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Set

import numpy as np
import websockets

from vor_rehab.data_acquisition.tracker_adapter import GazeObservation, LandmarkFrame, TrackerAdapter
from vor_rehab.main import VORRehabSystem
from vor_rehab.metrics.kinematics import MetricsSnapshot
from vor_rehab.metrics.session_recorder import export_filename
from vor_rehab.utils.config_loader import get_section, load_config
from vor_rehab.utils.logger import setup_logger

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_QUEUE_SIZE = 256


class NumpyJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles NumPy scalars and arrays."""
    def default(self, obj):
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


@dataclass
class MetricsMessage:
    """Per-frame metrics sent to clients."""
    type: str = "metrics_update"
    timestamp: float = 0.0
    data: dict = None

    def __post_init__(self):
        if self.data is None:
            self.data = {}

    def to_json(self) -> str:
        return json.dumps(asdict(self), cls=NumpyJSONEncoder)


@dataclass
class StatusMessage:
    """Server and session status."""
    type: str = "status"
    data: dict = None

    def __post_init__(self):
        if self.data is None:
            self.data = {}

    def to_json(self) -> str:
        return json.dumps(asdict(self), cls=NumpyJSONEncoder)


def _pair(value) -> Optional[tuple]:
    if value is None:
        return None
    return float(value[0]), float(value[1])


def observation_from_message(data: Dict[str, Any]) -> GazeObservation:
    """
    Build a GazeObservation from a `gaze_sample` message.

    Accepted keys: t (ms, required), x/y or point, vx/vy or vector,
    landmarks ({index: [x, y]}) and scale_ratio ([rx, ry]).
    """
    if 't' not in data and 'timestamp' not in data:
        raise ValueError("gaze_sample requires a timestamp 't'")
    t = float(data.get('t', data.get('timestamp')))

    point = _pair(data.get('point'))
    if point is None and data.get('x') is not None and data.get('y') is not None:
        point = float(data['x']), float(data['y'])

    vector = _pair(data.get('vector'))
    if vector is None and data.get('vx') is not None and data.get('vy') is not None:
        vector = float(data['vx']), float(data['vy'])

    landmarks = None
    raw_landmarks = data.get('landmarks')
    if raw_landmarks:
        positions = {int(k): (float(v[0]), float(v[1])) for k, v in raw_landmarks.items()}
        ratio = _pair(data.get('scale_ratio')) or (1.0, 1.0)
        landmarks = LandmarkFrame(positions=positions, scale_ratio=ratio)

    return GazeObservation(
        timestamp=t,
        gaze_point=point,
        gaze_vector=vector,
        landmarks=landmarks,
        source=str(data.get('source', 'websocket')),
    )


class VORSessionServer:
    """
    WebSocket server that wraps VORRehabSystem.

    Observations from clients (or from a tracker adapter) go through an
    asyncio.Queue consumed by one task, so the pipeline never runs reentrantly.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        config_path: str = "config/config.yaml",
        system: Optional[VORRehabSystem] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """
        Initialize the WebSocket server.

        Args:
            host: Host address to bind to (default localhost only)
            port: Port to listen on
            config_path: Path to VORRehabSystem config
            system: Pre-built system (a new one is created from config_path otherwise)
            queue_size: Maximum number of observations waiting to be processed
        """
        self.host = host
        self.port = port
        self.config_path = config_path
        self.queue_size = queue_size

        self.logger = setup_logger(
            name="vor_rehab_server",
            log_level="INFO",
            console_output=True
        )

        self.system = system if system is not None else VORRehabSystem(config_path=config_path)

        # WebSocket state
        self.clients: Set[Any] = set()
        self.server = None
        self.running = False

        # Created on first use so they bind to the running loop
        self._observation_queue: Optional[asyncio.Queue] = None
        self._result_queue: Optional[asyncio.Queue] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._tasks = []

        self.frames_processed = 0
        self.samples_dropped = 0
        self._last_metrics_message: Optional[MetricsMessage] = None

    @property
    def observation_queue(self) -> asyncio.Queue:
        if self._observation_queue is None:
            self._observation_queue = asyncio.Queue(maxsize=self.queue_size)
        return self._observation_queue

    @property
    def result_queue(self) -> asyncio.Queue:
        # Only the latest result is kept
        if self._result_queue is None:
            self._result_queue = asyncio.Queue(maxsize=1)
        return self._result_queue

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def submit_observation(self, observation: GazeObservation) -> bool:
        """Queue an observation, dropping the oldest one when full."""
        queue = self.observation_queue
        dropped = False
        if queue.full():
            queue.get_nowait()
            self.samples_dropped += 1
            dropped = True
            self.logger.warning("Observation queue full; dropped oldest sample")
        queue.put_nowait(observation)
        return not dropped

    def _process_observation(self, observation: GazeObservation):
        try:
            snapshot = self.system.process_observation(observation)
        except Exception as e:
            self.logger.error(f"Error processing observation: {e}", exc_info=True)
            return
        self.frames_processed += 1
        if snapshot is None:
            return

        message = self._create_metrics_message(snapshot)
        self._last_metrics_message = message
        try:
            self.result_queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        self.result_queue.put_nowait(message)

    def process_pending(self) -> int:
        """Process everything currently queued. Returns the number processed."""
        processed = 0
        queue = self.observation_queue
        while not queue.empty():
            self._process_observation(queue.get_nowait())
            processed += 1
        return processed

    async def _process_loop(self):
        """Single consumer running the pipeline for each queued observation."""
        self.logger.info("Starting processing loop...")
        queue = self.observation_queue
        while self.running:
            try:
                observation = await asyncio.wait_for(queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            self._process_observation(observation)
        self.logger.info("Processing loop stopped")

    async def feed_from_tracker(self, tracker: TrackerAdapter, interval_s: float = 0.0):
        """Pull observations from a tracker adapter (in a worker thread) into the queue."""
        ok = await asyncio.to_thread(tracker.setup)
        if not ok:
            self.logger.error(f"Tracker '{tracker.name}' failed to initialize")
            return
        try:
            while self.running:
                observation = await asyncio.to_thread(tracker.produce_sample)
                if observation is None:
                    break
                self.submit_observation(observation)
                await asyncio.sleep(interval_s)
        finally:
            await asyncio.to_thread(tracker.close)
        self.logger.info(f"Tracker '{tracker.name}' exhausted")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _create_metrics_message(self, snapshot: MetricsSnapshot) -> MetricsMessage:
        tick = self.system.last_tick
        exercise = None
        if tick is not None:
            exercise = {
                'target': [float(tick.target_position[0]), float(tick.target_position[1])],
                'on_target': tick.on_target,
                'score': tick.score,
                'time_on_target_pct': tick.time_on_target_pct,
                'elapsed_ms': tick.elapsed_ms,
                'completed': tick.completed,
            }
        return MetricsMessage(
            timestamp=time.time(),
            data={
                'frame_count': self.system.context.frame_count,
                'metrics': snapshot.to_dict(),
                'exercise': exercise,
            }
        )

    def _create_status_message(self) -> StatusMessage:
        data = self.system.get_status()
        data.update({
            'connected': True,
            'frames_processed': self.frames_processed,
            'samples_dropped': self.samples_dropped,
            'clients_connected': len(self.clients),
        })
        return StatusMessage(data=data)

    async def _respond(self, websocket, command: str, success: bool,
                       message: Optional[str] = None, data: Any = None):
        payload: Dict[str, Any] = {
            'type': 'command_response',
            'command': command,
            'success': bool(success),
        }
        if message is not None:
            payload['message'] = message
        if data is not None:
            payload['data'] = data
        await websocket.send(json.dumps(payload, cls=NumpyJSONEncoder))

    # ------------------------------------------------------------------
    # Client handling
    # ------------------------------------------------------------------

    async def _handle_client(self, websocket):
        """
        Handle a connected client.

        Args:
            websocket: The client's WebSocket connection
        """
        client_id = f"{websocket.remote_address[0]}:{websocket.remote_address[1]}"
        self.logger.info(f"Client connected: {client_id}")
        self.clients.add(websocket)

        try:
            await websocket.send(self._create_status_message().to_json())
            async for message in websocket:
                await self._handle_client_message(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            self.logger.info(f"Client disconnected: {client_id}")
        except Exception as e:
            self.logger.error(f"Error handling client {client_id}: {e}")
        finally:
            self.clients.discard(websocket)
            self.logger.info(f"Client removed: {client_id} (Total clients: {len(self.clients)})")

    async def _handle_client_message(self, websocket, message: str):
        """
        Handle incoming message from a client.

        Args:
            websocket: The client's WebSocket connection
            message: The message received
        """
        try:
            data = json.loads(message)
            msg_type = data.get('type')

            if msg_type == 'gaze_sample':
                self.submit_observation(observation_from_message(data))
            elif msg_type == 'command':
                await self._handle_command(websocket, data.get('command'), data)
            elif msg_type == 'config':
                await self._handle_config(websocket, data.get('config', {}))
            elif msg_type == 'get_latest':
                if self._last_metrics_message is not None:
                    await websocket.send(self._last_metrics_message.to_json())
                else:
                    await websocket.send(MetricsMessage(timestamp=time.time()).to_json())
            elif msg_type == 'ping':
                await websocket.send(json.dumps({'type': 'pong', 'timestamp': time.time()}))
            else:
                self.logger.warning(f"Unknown message type: {msg_type}")

        except json.JSONDecodeError:
            self.logger.warning(f"Invalid JSON received: {message[:100]}")
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Malformed message: {e}")
            await websocket.send(json.dumps({'type': 'error', 'message': str(e)}))
        except Exception as e:
            self.logger.error(f"Error handling message: {e}", exc_info=True)

    async def _handle_command(self, websocket, command: str, data: Dict[str, Any]):
        """Handle a command from a client."""
        self.logger.info(f"Received command: {command}")
        system = self.system

        if command == 'start_calibration':
            targets = system.start_calibration(str(data.get('mode', 'quick')))
            calibration = system.calibrator.config
            await self._respond(websocket, command, True, data={
                'targets': [list(t) for t in targets],
                'dwell_ms': calibration.dwell_ms,
                'min_samples': calibration.min_samples,
            })
        elif command == 'record_calibration_point':
            target = data['target']
            samples = [tuple(s) for s in data.get('samples', [])]
            point = system.record_calibration_point((float(target[0]), float(target[1])), samples)
            if point is None:
                await self._respond(websocket, command, False, message='Not enough samples for this target')
            else:
                await self._respond(websocket, command, True, data={
                    'target': list(point.target_screen),
                    'gaze_vector': list(point.gaze_vector),
                    'sample_count': point.sample_count,
                })
        elif command == 'finish_calibration':
            raw = data.get('test_points')
            test_points = None
            if raw is not None:
                test_points = [(tuple(item['gaze_vector']), tuple(item['target'])) for item in raw]
            percent = system.finish_calibration(test_points)
            await self._respond(websocket, command, True, data={
                'precision_percent': percent,
                'calibrated': system.context.calibrated,
            })
        elif command == 'start_exercise':
            self.process_pending()
            level = data.get('level', 1)
            ok = system.start_exercise(level, data.get('now_ms'))
            status = system.last_start_status.value if system.last_start_status else None
            await self._respond(websocket, command, ok, message=status)
        elif command == 'pause':
            self.process_pending()
            await self._respond(websocket, command, system.pause_exercise())
        elif command == 'resume':
            self.process_pending()
            await self._respond(websocket, command, system.resume_exercise(data.get('now_ms')))
        elif command == 'stop':
            self.process_pending()
            summary = system.stop_exercise()
            await self._respond(websocket, command, summary is not None,
                                data=asdict(summary) if summary else None)
        elif command == 'export':
            self.process_pending()
            csv_bytes = system.export_session()
            if csv_bytes is None:
                await self._respond(websocket, command, False, message='No frames recorded')
            else:
                await self._respond(websocket, command, True, data={
                    'filename': export_filename(),
                    'csv': csv_bytes.decode('utf-8'),
                })
        elif command == 'get_gaze':
            gaze = system.get_current_gaze()
            await self._respond(websocket, command, True, data={'gaze': list(gaze) if gaze else None})
        elif command == 'get_metrics':
            snapshot = system.get_current_metrics()
            await self._respond(websocket, command, True, data=snapshot.to_dict() if snapshot else None)
        elif command == 'status':
            await websocket.send(self._create_status_message().to_json())
        elif command in ('shutdown', 'stop_server'):
            await self._respond(websocket, command, True, message='Server shutting down')
            if self._shutdown_event is not None:
                self._shutdown_event.set()
        else:
            self.logger.warning(f"Unknown command: {command}")
            await self._respond(websocket, command, False, message='Unknown command')

    async def _handle_config(self, websocket, config: dict):
        """Apply runtime configuration (viewport, smoothing)."""
        self.logger.info(f"Received config update: {config}")
        viewport = config.get('viewport')
        if viewport:
            width, height = float(viewport[0]), float(viewport[1])
            self.system.calibrator.set_viewport(width, height)
            self.system.scheduler.set_viewport(width, height)
            self.system.viewport = (width, height)

        smoothing = config.get('smoothing')
        if smoothing:
            self.system.gaze_filter.set_smoothing(
                alpha_fast=smoothing.get('alpha_fast'),
                alpha_slow=smoothing.get('alpha_slow'),
                jump_threshold_px=smoothing.get('jump_threshold_px'),
            )

        await websocket.send(json.dumps({
            'type': 'config_response',
            'success': True,
            'applied': config
        }))

    # ------------------------------------------------------------------
    # Broadcast / lifecycle
    # ------------------------------------------------------------------

    async def _broadcast_loop(self):
        """Continuously broadcast the latest metrics to all connected clients."""
        self.logger.info("Starting broadcast loop...")
        queue = self.result_queue

        while self.running:
            try:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=0.1)
                except asyncio.TimeoutError:
                    continue

                if self.clients:
                    payload = message.to_json()
                    tasks = [asyncio.create_task(self._safe_send(client, payload))
                             for client in self.clients.copy()]
                    await asyncio.gather(*tasks, return_exceptions=True)

            except Exception as e:
                self.logger.error(f"Error in broadcast loop: {e}")
                await asyncio.sleep(0.1)

        self.logger.info("Broadcast loop stopped")

    async def _safe_send(self, websocket, message: str):
        """Send to one client, dropping it on disconnection."""
        try:
            await websocket.send(message)
        except websockets.exceptions.ConnectionClosed:
            self.clients.discard(websocket)
        except Exception as e:
            self.logger.debug(f"Error sending to client: {e}")
            self.clients.discard(websocket)

    async def start(self, tracker: Optional[TrackerAdapter] = None):
        """Start the WebSocket server (optionally fed by a tracker adapter)."""
        self.logger.info(f"Starting VOR WebSocket Server on ws://{self.host}:{self.port}")

        self._shutdown_event = asyncio.Event()
        self.running = True

        self.server = await websockets.serve(self._handle_client, self.host, self.port)
        self.logger.info(f"WebSocket server listening on ws://{self.host}:{self.port}")
        self.logger.info("Press Ctrl+C to stop")

        self._tasks = [
            asyncio.create_task(self._process_loop()),
            asyncio.create_task(self._broadcast_loop()),
        ]
        if tracker is not None:
            self._tasks.append(asyncio.create_task(self.feed_from_tracker(tracker)))

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def stop(self):
        """Stop the WebSocket server and cleanup resources."""
        self.logger.info("Stopping server...")

        if self._shutdown_event is not None:
            self._shutdown_event.set()
        self.running = False

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.clients:
            await asyncio.gather(*[client.close() for client in self.clients], return_exceptions=True)

        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None

        self.logger.info("Server stopped")


def server_settings(config_path: str, host: Optional[str] = None, port: Optional[int] = None,
                    queue_size: Optional[int] = None) -> Dict[str, Any]:
    """
    Resolve host/port/queue_size: explicit arguments win over the `server`
    section of the config file, which wins over the built-in defaults.
    """
    try:
        section = get_section(load_config(config_path), 'server')
    except FileNotFoundError:
        section = {}

    return {
        'host': host if host is not None else str(section.get('host', DEFAULT_HOST)),
        'port': port if port is not None else int(section.get('port', DEFAULT_PORT)),
        'queue_size': queue_size if queue_size is not None else int(section.get('queue_size', DEFAULT_QUEUE_SIZE)),
    }


def run_server(host: Optional[str] = None, port: Optional[int] = None, config_path: str = "config/config.yaml",
               tracker: Optional[TrackerAdapter] = None, queue_size: Optional[int] = None):
    """
    Run the WebSocket server.

    Args:
        host: Host address to bind to (config `server.host` when None)
        port: Port to listen on (config `server.port` when None)
        config_path: Path to config file
        tracker: Optional tracker adapter feeding observations
        queue_size: Observation queue bound (config `server.queue_size` when None)
    """
    settings = server_settings(config_path, host, port, queue_size)
    server = VORSessionServer(config_path=config_path, **settings)

    try:
        asyncio.run(server.start(tracker))
    except KeyboardInterrupt:
        print("\nServer stopped by user")


if __name__ == "__main__":
    run_server()
