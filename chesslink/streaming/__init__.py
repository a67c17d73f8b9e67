"""
Server streams: NDJSON framing, game-stream reconciliation, connection
health and the account event feed.
"""

from __future__ import annotations

from chesslink.streaming.dispatcher import EventDispatcher
from chesslink.streaming.health import StreamHealth, StreamState
from chesslink.streaming.reconciler import StreamController, StreamReconciler

__all__ = [
    "EventDispatcher",
    "StreamController",
    "StreamHealth",
    "StreamReconciler",
    "StreamState",
]
