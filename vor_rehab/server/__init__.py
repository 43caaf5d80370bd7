"""
WebSocket server module for the VOR rehabilitation core.

This module exposes VORRehabSystem via WebSocket for browser front-ends.
"""

from .websocket_server import VORSessionServer, observation_from_message

__all__ = ["VORSessionServer", "observation_from_message"]
