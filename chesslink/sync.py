"""
State sync — the single RulesEngine listener.

After every engine mutation: refresh the move history, let the animation
pipeline decide about a visual resync, and publish the new position.
"""

from __future__ import annotations

from typing import Callable

from chesslink.animation import AnimationPipeline
from chesslink.board import RulesEngine
from chesslink.events import BoardChangedEvent, EventChannel
from chesslink.history import MoveHistoryTracker


class StateSync:
    def __init__(
        self,
        engine: RulesEngine,
        history: MoveHistoryTracker,
        pipeline: AnimationPipeline,
        channel: EventChannel,
    ) -> None:
        self._engine = engine
        self._history = history
        self._pipeline = pipeline
        self._channel = channel
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._engine.subscribe(self)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __call__(self, engine: RulesEngine) -> None:
        self._history.update()
        self._pipeline.on_engine_change()
        self._channel.emit(BoardChangedEvent(fen=engine.fen, turn=engine.turn, ply=engine.ply))
