"""Change-suppressed SAN move list for display."""

from __future__ import annotations

from chesslink.board import RulesEngine
from chesslink.events import EventChannel, MoveHistoryEvent


class MoveHistoryTracker:
    """
    Remembers the last move list it published and only publishes on change.

    An empty engine history while a non-empty one is displayed is treated as
    the middle of a reload, not a new game, and is ignored. Call reset() to
    really start over.
    """

    def __init__(self, engine: RulesEngine, channel: EventChannel) -> None:
        self._engine = engine
        self._channel = channel
        self._displayed: list[str] = []

    @property
    def displayed(self) -> list[str]:
        return list(self._displayed)

    def update(self) -> bool:
        """Publish the engine history if it changed. Returns True when published."""
        history = self._engine.export_move_history()
        if not history and self._displayed:
            return False
        if history == self._displayed:
            return False
        self._displayed = history
        self._channel.emit(MoveHistoryEvent(moves_san=list(history)))
        return True

    def reset(self) -> None:
        self._displayed = []
