"""
Tests for the WebSocket server message handling
"""

import asyncio
import json

import pytest

from vor_rehab.main import VORRehabSystem
from vor_rehab.server.websocket_server import VORSessionServer, observation_from_message, server_settings


class FakeWebSocket:
    """Collects everything the server sends"""

    remote_address = ("127.0.0.1", 50000)

    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def close(self):
        pass


def make_server():
    system = VORRehabSystem(config={}, require_calibration=False)
    return VORSessionServer(system=system)


def run(coro):
    return asyncio.run(coro)


async def send_all(server, websocket, messages):
    for message in messages:
        await server._handle_client_message(websocket, json.dumps(message))


def gaze_samples(count, start=0.0, step=33.0):
    return [{'type': 'gaze_sample', 't': start + i * step, 'x': 960, 'y': 540} for i in range(count)]


class TestObservationFromMessage:
    """gaze_sample payload parsing"""

    def test_point(self):
        observation = observation_from_message({'t': 12, 'x': 1, 'y': 2})
        assert observation.timestamp == 12.0
        assert observation.gaze_point == (1.0, 2.0)
        assert observation.gaze_vector is None

    def test_vector_and_landmarks(self):
        observation = observation_from_message({
            't': 5,
            'vector': [0.1, -0.1],
            'landmarks': {'1': [10, 20], '33': [5, 5]},
            'scale_ratio': [0.5, 0.5],
        })
        assert observation.gaze_vector == (0.1, -0.1)
        assert observation.landmarks.positions[1] == (10.0, 20.0)
        assert observation.landmarks.scale_ratio == (0.5, 0.5)

    def test_missing_timestamp(self):
        with pytest.raises(ValueError):
            observation_from_message({'x': 1, 'y': 2})


class TestVORSessionServer:
    """Command and sample handling"""

    def test_ping(self):
        server = make_server()
        ws = FakeWebSocket()
        run(send_all(server, ws, [{'type': 'ping'}]))
        assert ws.sent[0]['type'] == 'pong'

    def test_invalid_json_ignored(self):
        server = make_server()
        ws = FakeWebSocket()
        run(server._handle_client_message(ws, "{not json"))
        assert ws.sent == []

    def test_malformed_sample_reports_error(self):
        server = make_server()
        ws = FakeWebSocket()
        run(send_all(server, ws, [{'type': 'gaze_sample', 'x': 1}]))
        assert ws.sent[0]['type'] == 'error'

    def test_unknown_command(self):
        server = make_server()
        ws = FakeWebSocket()
        run(send_all(server, ws, [{'type': 'command', 'command': 'fly'}]))
        assert ws.sent[0]['success'] is False

    def test_exercise_session(self):
        """Start, stream samples, stop and export over the socket"""
        server = make_server()
        ws = FakeWebSocket()

        async def scenario():
            await send_all(server, ws, [{'type': 'command', 'command': 'start_exercise', 'level': 1}])
            await send_all(server, ws, gaze_samples(5))
            processed = server.process_pending()
            await send_all(server, ws, [
                {'type': 'command', 'command': 'get_metrics'},
                {'type': 'command', 'command': 'stop'},
                {'type': 'command', 'command': 'export'},
            ])
            return processed

        processed = run(scenario())
        responses = {m['command']: m for m in ws.sent if m['type'] == 'command_response'}

        assert processed == 5
        assert responses['start_exercise']['success'] is True
        assert responses['get_metrics']['data']['gaze_x'] == pytest.approx(960.0)
        assert responses['stop']['data']['level'] == 1
        export = responses['export']
        assert export['success'] is True
        assert export['data']['filename'].endswith('.csv')
        assert len(export['data']['csv'].strip().splitlines()) == 6

    def test_start_rejected_reports_status(self):
        server = VORSessionServer(system=VORRehabSystem(config={}, require_calibration=True))
        ws = FakeWebSocket()
        run(send_all(server, ws, [{'type': 'command', 'command': 'start_exercise', 'level': 1}]))
        assert ws.sent[0]['success'] is False
        assert ws.sent[0]['message'] == 'not_calibrated'

    def test_export_empty(self):
        server = make_server()
        ws = FakeWebSocket()
        run(send_all(server, ws, [{'type': 'command', 'command': 'export'}]))
        assert ws.sent[0]['success'] is False

    def test_calibration_commands(self):
        server = make_server()
        ws = FakeWebSocket()

        async def scenario():
            await send_all(server, ws, [{'type': 'command', 'command': 'start_calibration'}])
            started = ws.sent[-1]['data']
            assert started['dwell_ms'] == 1500.0
            assert started['min_samples'] == 10
            targets = started['targets']
            for x, y in targets:
                vector = [x / 1920.0 - 0.5, y / 1080.0 - 0.5]
                await send_all(server, ws, [{
                    'type': 'command',
                    'command': 'record_calibration_point',
                    'target': [x, y],
                    'samples': [vector] * 10,
                }])
            await send_all(server, ws, [{'type': 'command', 'command': 'finish_calibration'}])
            return targets

        targets = run(scenario())
        assert len(targets) == 9
        finish = ws.sent[-1]
        assert finish['command'] == 'finish_calibration'
        assert finish['data']['calibrated'] is True
        assert 0 <= finish['data']['precision_percent'] <= 100

    def test_latest_metrics_queued_for_broadcast(self):
        server = make_server()
        ws = FakeWebSocket()

        async def scenario():
            await send_all(server, ws, gaze_samples(3))
            server.process_pending()
            await send_all(server, ws, [{'type': 'get_latest'}])
            return server.result_queue.qsize()

        queued = run(scenario())
        assert queued == 1
        latest = ws.sent[-1]
        assert latest['type'] == 'metrics_update'
        assert latest['data']['metrics']['gaze_x'] == pytest.approx(960.0)
        assert server.frames_processed == 3

    def test_queue_drops_oldest_when_full(self):
        server = VORSessionServer(system=VORRehabSystem(config={}, require_calibration=False), queue_size=2)
        ws = FakeWebSocket()

        async def scenario():
            await send_all(server, ws, gaze_samples(3))
            return server.observation_queue.get_nowait().timestamp

        assert run(scenario()) == pytest.approx(33.0)
        assert server.samples_dropped == 1

    def test_status_and_config(self):
        server = make_server()
        ws = FakeWebSocket()
        run(send_all(server, ws, [
            {'type': 'config', 'config': {'viewport': [800, 600]}},
            {'type': 'command', 'command': 'status'},
        ]))

        assert ws.sent[0]['type'] == 'config_response'
        assert server.system.scheduler.viewport == (800.0, 600.0)
        status = ws.sent[1]
        assert status['type'] == 'status'
        assert status['data']['session_active'] is False


class TestServerSettings:
    """host/port/queue_size resolution"""

    def test_missing_config_uses_defaults(self, tmp_path):
        settings = server_settings(str(tmp_path / "missing.yaml"))
        assert settings == {'host': '127.0.0.1', 'port': 8765, 'queue_size': 256}

    def test_config_section_and_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  host: 0.0.0.0\n  port: 9100\n  queue_size: 32\n")

        assert server_settings(str(path)) == {'host': '0.0.0.0', 'port': 9100, 'queue_size': 32}
        assert server_settings(str(path), port=9200)['port'] == 9200


class TestPauseResume:
    """Queued samples around pause/resume"""

    def test_backlog_from_pause_not_counted_after_resume(self):
        server = make_server()
        ws = FakeWebSocket()
        server.system.start_exercise(1, now_ms=0.0)

        async def scenario():
            await send_all(server, ws, gaze_samples(2))
            server.process_pending()
            await send_all(server, ws, [{'type': 'command', 'command': 'pause'}])
            # arrive while paused, still queued when resume comes in
            await send_all(server, ws, gaze_samples(3, start=5000.0))
            await send_all(server, ws, [{'type': 'command', 'command': 'resume'}])
            remaining = server.observation_queue.qsize()
            server.process_pending()
            return remaining

        assert run(scenario()) == 0
        responses = {m['command']: m for m in ws.sent if m['type'] == 'command_response'}
        assert responses['resume']['success'] is True
        assert server.system.last_tick.elapsed_ms == pytest.approx(33.0)
