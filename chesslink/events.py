"""
Typed event dataclasses — the outbound notification channel of the core.

The controller, stream reconciler, animation pipeline and puzzle flow emit
these; the CLI (or any other front-end, or a test) consumes them.
All events are frozen so they are safe to pass across async boundaries and
serialise trivially via dataclasses.asdict().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable, Literal

logger = logging.getLogger(__name__)

Color = Literal["white", "black"]
PuzzleState = Literal["idle", "loaded", "solved", "failed"]


@dataclass(frozen=True)
class BoardChangedEvent:
    """Fired after every RulesEngine mutation."""
    fen: str
    turn: Color
    ply: int


@dataclass(frozen=True)
class MoveHistoryEvent:
    moves_san: list[str]


@dataclass(frozen=True)
class ClockEvent:
    white: str   # formatted m:ss, "--:--" when unknown
    black: str


@dataclass(frozen=True)
class PlayersEvent:
    white: str
    black: str
    player_color: Color | None = None


@dataclass(frozen=True)
class ConnectionStatusEvent:
    status: str   # "Connecting...", "Live", "Reconnecting...", "Stream failed", ...


@dataclass(frozen=True)
class DrawStatusEvent:
    status: str   # "" when no offer is pending


@dataclass(frozen=True)
class ChallengeEvent:
    challenge_id: str
    challenger: str
    rated: bool
    time_control: str
    variant: str


@dataclass(frozen=True)
class ChatMessageEvent:
    author: str
    text: str
    room: str = "player"


@dataclass(frozen=True)
class GameResultEvent:
    """Immediate result text, emitted once per game id."""
    game_id: str | None
    result_text: str
    status: str
    winner: Color | None


@dataclass(frozen=True)
class GameSummaryEvent:
    """Result summary, possibly enriched with rating changes after the fact."""
    game_id: str | None
    white: str
    black: str
    result_text: str
    status: str
    winner: Color | None
    white_rating_diff: int | None = None
    black_rating_diff: int | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class PuzzleStatusEvent:
    status: str
    state: PuzzleState = "idle"


@dataclass(frozen=True)
class PuzzleRatingEvent:
    rating: str   # "--" when unknown


@dataclass(frozen=True)
class PuzzleSolutionEvent:
    solution: list[str]


@dataclass(frozen=True)
class InvalidMoveEvent:
    from_square: str | None
    to_square: str | None
    reason: str


@dataclass(frozen=True)
class PromotionRequestEvent:
    from_square: str
    to_square: str
    options: list[str]
    color: Color


@dataclass(frozen=True)
class MoveAnimatedEvent:
    """A queued move finished its visual transition."""
    move_uci: str
    move_san: str
    color: Color


@dataclass(frozen=True)
class BoardResyncedEvent:
    """The visual board was rebuilt wholesale from the engine position."""
    fen: str


# Union type for type-safe pattern matching in consumers
ClientEvent = (
    BoardChangedEvent
    | MoveHistoryEvent
    | ClockEvent
    | PlayersEvent
    | ConnectionStatusEvent
    | DrawStatusEvent
    | ChallengeEvent
    | ChatMessageEvent
    | GameResultEvent
    | GameSummaryEvent
    | PuzzleStatusEvent
    | PuzzleRatingEvent
    | PuzzleSolutionEvent
    | InvalidMoveEvent
    | PromotionRequestEvent
    | MoveAnimatedEvent
    | BoardResyncedEvent
)

EventListener = Callable[[ClientEvent], None]


class EventChannel:
    """
    One tagged-event channel instead of a callback per concern.

    Synchronous listeners are called in registration order. stream() hands
    out an async iterator backed by a queue for consumers that prefer
    `async for`.
    """

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []
        self._queues: list[asyncio.Queue[ClientEvent | None]] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: ClientEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", type(event).__name__)
        for q in self._queues:
            q.put_nowait(event)

    def close(self) -> None:
        """End every open stream() iterator."""
        for q in self._queues:
            q.put_nowait(None)

    async def stream(self) -> AsyncIterator[ClientEvent]:
        q: asyncio.Queue[ClientEvent | None] = asyncio.Queue()
        self._queues.append(q)
        try:
            while True:
                event = await q.get()
                if event is None:
                    return
                yield event
        finally:
            self._queues.remove(q)
