"""
Game stream reconciliation and connection management.

StreamReconciler turns NDJSON game events into engine mutations while
keeping the visual queue consistent:

  gameFull   -> drop the queue, load the whole move list, publish players,
                colour, clock, draw offer and any terminal result
  gameState  -> if the moves we know are a prefix of the incoming list,
                animate only the new suffix; otherwise reload from scratch
  chatLine   -> ChatMessageEvent

StreamController owns the single active connection: starting a stream for
any game cancels the previous connection and all of its timers first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Callable

from chesslink.animation import AnimationPipeline
from chesslink.board import RulesEngine
from chesslink.client.base import ClientError, LichessClient, MissingTokenError
from chesslink.clocks import clock_event
from chesslink.config import StreamConfig
from chesslink.events import (
    ChatMessageEvent,
    Color,
    ConnectionStatusEvent,
    DrawStatusEvent,
    EventChannel,
)
from chesslink.history import MoveHistoryTracker
from chesslink.live import GameRecord, LiveGameManager, LiveSession, format_player
from chesslink.stream_logger import StreamRecorder
from chesslink.streaming.health import StreamHealth
from chesslink.streaming.ndjson import iter_lines, parse_line, split_moves

logger = logging.getLogger(__name__)


def _as_color(value: Any) -> Color | None:
    if value in ("white", "w"):
        return "white"
    if value in ("black", "b"):
        return "black"
    return None


def _has_draw_offer(state: dict[str, Any]) -> bool:
    return bool(state.get("drawOffer") or state.get("wdraw") or state.get("bdraw"))


class StreamReconciler:
    """Applies one game's stream events to the shared engine and pipeline."""

    def __init__(
        self,
        game_id: str,
        engine: RulesEngine,
        pipeline: AnimationPipeline,
        history: MoveHistoryTracker,
        live: LiveGameManager,
        channel: EventChannel,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self.game_id = game_id
        self.session = LiveSession(game_id=game_id)
        self._engine = engine
        self._pipeline = pipeline
        self._history = history
        self._live = live
        self._channel = channel
        self._now = now
        self._contacted = False

    # ------------------------------------------------------------------ #
    # Public API                                                           #
    # ------------------------------------------------------------------ #

    def handle_line(self, line: str) -> None:
        data = parse_line(line)
        if data is None:
            return
        kind = data.get("type")
        if kind == "gameFull":
            self.apply_full_state(data)
        elif kind == "gameState":
            self.apply_delta_state(data)
        elif kind == "chatLine":
            self._channel.emit(
                ChatMessageEvent(
                    author=data.get("username") or "Anonymous",
                    text=data.get("text") or "",
                    room=data.get("room") or "player",
                )
            )
        else:
            logger.debug("Ignoring game stream event %r", kind)

    def note_local_move(self, token: str) -> None:
        """Record a move we just played so the echoing delta is a pure prefix match."""
        self.session.known_moves.append(token)

    def apply_full_state(self, data: dict[str, Any]) -> None:
        session = self.session
        state = data.get("state") or {}
        initial_fen = data.get("initialFen")
        session.initial_fen = initial_fen if initial_fen and initial_fen != "startpos" else None
        moves = split_moves(state.get("moves"))

        if not self._contacted:
            self._contacted = True
            self._pipeline.view.reset_trays()
            self._history.reset()

        self._pipeline.clear()
        if not self._engine.load_from_moves(session.initial_fen, moves):
            logger.warning("Game %s: full state did not replay (%d moves)", self.game_id, len(moves))
        session.known_moves = list(moves)

        white = data.get("white") or {}
        black = data.get("black") or {}
        color = _as_color(data.get("orientation"))
        account_id = self._live.account_id
        if color is None and account_id:
            if white.get("id") == account_id:
                color = "white"
            elif black.get("id") == account_id:
                color = "black"
        session.color = color
        self._live.set_player_info(data.get("white"), data.get("black"), color)

        perf = data.get("perf") or {}
        self._live.remember_game(
            GameRecord(
                game_id=self.game_id,
                white=format_player(data.get("white"), "White"),
                black=format_player(data.get("black"), "Black"),
                white_id=white.get("id"),
                black_id=black.get("id"),
                rated=data.get("rated"),
                perf_key=perf.get("key") or data.get("speed"),
                player_color=color,
                white_rating_diff=white.get("ratingDiff"),
                black_rating_diff=black.get("ratingDiff"),
            )
        )

        session.clock.white_ms = state.get("wtime")
        session.clock.black_ms = state.get("btime")
        session.clock.turn = _as_color(state.get("turn")) or self._engine.turn
        session.clock.last_update = self._now()
        self._channel.emit(clock_event(session.clock))

        self._live.set_live_game(self.game_id, color, clock=session.clock)
        self._channel.emit(ConnectionStatusEvent("Live"))
        self._publish_tail(state)

    def apply_delta_state(self, data: dict[str, Any]) -> None:
        session = self.session
        incoming = split_moves(data.get("moves"))
        known = session.known_moves
        if len(known) <= len(incoming) and incoming[: len(known)] == known:
            for token in incoming[len(known):]:
                if self._pipeline.make_animated_move(token) is None:
                    logger.info(
                        "Game %s: %r not playable on the local board; reloading", self.game_id, token
                    )
                    self._resync(incoming)
                    break
        else:
            logger.info(
                "Game %s: local moves diverged from server (%d vs %d); reloading",
                self.game_id, len(known), len(incoming),
            )
            self._resync(incoming)
        session.known_moves = list(incoming)

        session.clock.correct(
            data.get("wtime"),
            data.get("btime"),
            _as_color(data.get("turn")) or self._engine.turn,
            self._now(),
        )
        self._channel.emit(clock_event(session.clock))
        self._publish_tail(data)

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    def _resync(self, moves: list[str]) -> None:
        self._pipeline.clear()
        if not self._engine.load_from_moves(self.session.initial_fen, moves):
            logger.warning("Game %s: server move list did not replay", self.game_id)

    def _publish_tail(self, state: dict[str, Any]) -> None:
        session = self.session
        session.draw_offer = _has_draw_offer(state)
        self._channel.emit(DrawStatusEvent("Draw offered" if session.draw_offer else ""))
        status = state.get("status")
        if status:
            session.status = status
            session.winner = _as_color(state.get("winner"))
            self._live.set_game_result(status, session.winner)


class StreamController:
    """Owns the one live game-stream connection and its reconnect timers."""

    def __init__(
        self,
        client: LichessClient,
        make_reconciler: Callable[[str], StreamReconciler],
        live: LiveGameManager,
        channel: EventChannel,
        config: StreamConfig,
        record_dir: Path | None = None,
    ) -> None:
        self._client = client
        self._make_reconciler = make_reconciler
        self._live = live
        self._channel = channel
        self._config = config
        self._record_dir = record_dir
        self.reconciler: StreamReconciler | None = None
        self._health: StreamHealth | None = None
        self._task: asyncio.Task | None = None
        self._recorder: StreamRecorder | None = None

    @property
    def game_id(self) -> str | None:
        return self.reconciler.game_id if self.reconciler else None

    @property
    def health(self) -> StreamHealth | None:
        return self._health

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self, game_id: str) -> None:
        self.stop()
        if self.reconciler is None or self.reconciler.game_id != game_id:
            self.reconciler = self._make_reconciler(game_id)
            self._recorder = (
                StreamRecorder(self._record_dir, game_id) if self._record_dir is not None else None
            )
        self._connect(game_id, attempt=1)

    def stop(self) -> None:
        if self._health is not None:
            self._health.close()
            self._health = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def note_local_move(self, game_id: str, token: str) -> None:
        if self.reconciler is not None and self.reconciler.game_id == game_id:
            self.reconciler.note_local_move(token)

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    def _connect(self, game_id: str, attempt: int) -> None:
        if self._health is not None:
            self._health.close()
        cfg = self._config
        health = StreamHealth(
            stale_timeout=cfg.stale_timeout,
            poll_interval=cfg.health_poll_interval,
            retry_delay=cfg.retry_delay,
            abort=self._abort_current,
            reconnect=lambda: self._connect(game_id, attempt + 1),
            should_retry=lambda: self._live.live_game_id == game_id,
        )
        self._health = health
        logger.info("Connecting game stream %s (attempt %d)", game_id, attempt)
        self._channel.emit(ConnectionStatusEvent("Connecting..." if attempt == 1 else "Reconnecting..."))
        if self._recorder is not None:
            self._recorder.mark_connect(attempt)
        self._task = asyncio.get_running_loop().create_task(self._consume(game_id, health))

    def _abort_current(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _consume(self, game_id: str, health: StreamHealth) -> None:
        reconciler = self.reconciler
        if reconciler is None:
            return
        health.start_monitor()
        try:
            async for line in iter_lines(self._client.stream_game(game_id), on_chunk=health.touch):
                if self._recorder is not None:
                    self._recorder.record(line)
                reconciler.handle_line(line)
            self._on_failure(game_id, health, "stream ended")
        except asyncio.CancelledError:
            raise
        except MissingTokenError:
            logger.error("Cannot stream game %s without a token", game_id)
            health.close()
            self._channel.emit(ConnectionStatusEvent("Stream failed"))
        except (ClientError, OSError) as exc:
            self._on_failure(game_id, health, str(exc))
        finally:
            health.stop_monitor()

    def _on_failure(self, game_id: str, health: StreamHealth, reason: str) -> None:
        health.transport_failed(reason)
        if health.retry_pending:
            self._channel.emit(ConnectionStatusEvent("Reconnecting..."))
        elif self._live.live_game_id == game_id:
            self._channel.emit(ConnectionStatusEvent("Stream failed"))
