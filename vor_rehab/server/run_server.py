#!/usr/bin/env python3
"""
CLI entry point for the VOR WebSocket Server.

Usage:
    python -m vor_rehab.server.run_server [--host HOST] [--port PORT] [--config CONFIG] [--replay CSV]

Host, port and queue size default to the `server` section of the config file.
"""

import argparse
import sys

from vor_rehab.data_acquisition.tracker_adapter import ReplayTracker
from vor_rehab.server.websocket_server import run_server, server_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="VOR Rehabilitation WebSocket Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Start server with the settings from config/config.yaml:
        python -m vor_rehab.server.run_server

    Override the port:
        python -m vor_rehab.server.run_server --port 9000

    Feed a recorded session instead of live client samples:
        python -m vor_rehab.server.run_server --replay samples.csv

Clients send {"type": "gaze_sample", "t": ..., "x": ..., "y": ...} messages and
{"type": "command", "command": "start_exercise", "level": 2} style commands,
and receive metrics_update broadcasts.
        """
    )
    parser.add_argument("--host", type=str, default=None,
                        help="Host address to bind to (default: server.host, 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None,
                        help="Port to listen on (default: server.port, 8765)")
    parser.add_argument("--queue-size", type=int, default=None,
                        help="Maximum queued observations before the oldest is dropped")
    parser.add_argument("--config", type=str, default="config/config.yaml",
                        help="Path to configuration file (default: config/config.yaml)")
    parser.add_argument("--replay", type=str, default=None,
                        help="CSV recording to replay into the pipeline")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = server_settings(args.config, args.host, args.port, args.queue_size)

    print(f"VOR WebSocket Server: ws://{settings['host']}:{settings['port']} (config: {args.config})")

    try:
        tracker = ReplayTracker.from_csv(args.replay) if args.replay else None
        run_server(config_path=args.config, tracker=tracker, **settings)
    except KeyboardInterrupt:
        print("\n\nServer stopped.")
        sys.exit(0)
    except Exception as e:
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
