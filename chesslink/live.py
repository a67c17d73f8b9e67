"""
Live game bookkeeping: the LiveSession, result resolution and rating enrichment.

A game result is resolved exactly once per game id. The summary is
published immediately; rating changes are filled in afterwards, first by
polling the game export (the server may not have settled ratings yet), and
failing that by comparing account snapshots taken before and after the
game. The snapshot comparison is a heuristic: a second rated game finished
concurrently can be mis-attributed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from chesslink.client.base import ClientError, LichessClient
from chesslink.clocks import ClockTicker, LiveClock
from chesslink.events import (
    Color,
    EventChannel,
    GameResultEvent,
    GameSummaryEvent,
    PlayersEvent,
)

if TYPE_CHECKING:
    from chesslink.config import StreamConfig
    from chesslink.puzzles.flow import PuzzleFlow

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset(
    {"mate", "resign", "draw", "outoftime", "timeout", "stalemate", "aborted"}
)


@dataclass
class LiveSession:
    game_id: str
    color: Color | None = None
    known_moves: list[str] = field(default_factory=list)
    initial_fen: str | None = None
    clock: LiveClock = field(default_factory=LiveClock)
    draw_offer: bool = False
    status: str | None = None
    winner: Color | None = None


@dataclass(frozen=True)
class GameRecord:
    """What we know about a game's players, kept for the end-of-game summary."""

    game_id: str | None
    white: str = "White"
    black: str = "Black"
    white_id: str | None = None
    black_id: str | None = None
    rated: bool | None = None
    perf_key: str | None = None
    player_color: Color | None = None
    white_rating_diff: int | None = None
    black_rating_diff: int | None = None


def format_player(player: dict[str, Any] | None, fallback: str) -> str:
    if not player:
        return fallback
    name = player.get("name") or player.get("id") or fallback
    rating = player.get("rating")
    return f"{name} {rating}" if rating else str(name)


def result_text(status: str, winner: str | None) -> str:
    if status in ("draw", "stalemate"):
        return "Draw"
    if status == "aborted":
        return "Aborted"
    label = {"white": "White", "black": "Black"}.get(winner or "", "Unknown")
    return f"{label} wins ({status})"


def _perf_rating(perfs: dict[str, Any], key: str) -> int | None:
    rating = (perfs.get(key) or {}).get("rating")
    return rating if isinstance(rating, int) else None


def select_rating_diff(
    prev_account: dict[str, Any] | None,
    next_account: dict[str, Any] | None,
    record: GameRecord,
) -> tuple[str, int] | None:
    """
    Guess which perf the finished game changed, and by how much.

    Prefers the game's own perf key; otherwise the perf with the largest
    absolute change between the two snapshots.
    """
    if not next_account or record.rated is False:
        return None
    prev_perfs = (prev_account or {}).get("perfs") or {}
    next_perfs = next_account.get("perfs") or {}
    if record.perf_key:
        before = _perf_rating(prev_perfs, record.perf_key)
        after = _perf_rating(next_perfs, record.perf_key)
        if before is not None and after is not None:
            return record.perf_key, after - before
    changes: list[tuple[str, int]] = []
    for key in sorted(set(prev_perfs) | set(next_perfs)):
        before = _perf_rating(prev_perfs, key)
        after = _perf_rating(next_perfs, key)
        if before is None or after is None or before == after:
            continue
        changes.append((key, after - before))
    if not changes:
        return None
    return max(changes, key=lambda c: abs(c[1]))


def resolve_player_side(record: GameRecord, account: dict[str, Any] | None) -> Color | None:
    account_id = (account or {}).get("id")
    if account_id and record.white_id == account_id:
        return "white"
    if account_id and record.black_id == account_id:
        return "black"
    return record.player_color


class LiveGameManager:
    """Tracks which live game is active and resolves its result once."""

    def __init__(
        self,
        client: LichessClient,
        channel: EventChannel,
        ticker: ClockTicker,
        stream_config: StreamConfig,
        puzzle: PuzzleFlow | None = None,
    ) -> None:
        self._client = client
        self._channel = channel
        self._ticker = ticker
        self._config = stream_config
        self._puzzle = puzzle
        self.live_game_id: str | None = None
        self.live_color: Color | None = None
        self.last_record: GameRecord | None = None
        self.account: dict[str, Any] | None = None
        self._last_result_game_id: str | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def account_id(self) -> str | None:
        return (self.account or {}).get("id")

    # ------------------------------------------------------------------ #
    # Session                                                              #
    # ------------------------------------------------------------------ #

    def set_live_game(self, game_id: str | None, color: Color | None = None, clock: LiveClock | None = None) -> None:
        self.live_game_id = game_id
        self.live_color = color
        if game_id:
            if self._puzzle is not None:
                self._puzzle.deactivate()
            if clock is not None:
                self._ticker.start(clock)
        else:
            self._ticker.stop()

    def set_player_info(self, white: dict[str, Any] | None, black: dict[str, Any] | None, color: Color | None) -> None:
        self._channel.emit(
            PlayersEvent(
                white=format_player(white, "White") if white else "--",
                black=format_player(black, "Black") if black else "--",
                player_color=color,
            )
        )

    def remember_game(self, record: GameRecord) -> None:
        self.last_record = record

    async def refresh_account(self) -> dict[str, Any] | None:
        try:
            self.account = await self._client.fetch_account()
        except ClientError as exc:
            logger.warning("Account fetch failed: %s", exc)
            self.account = None
        return self.account

    # ------------------------------------------------------------------ #
    # Result                                                               #
    # ------------------------------------------------------------------ #

    def set_game_result(self, status: str | None, winner: Color | None) -> bool:
        """Resolve a terminal status once per game id. Returns True when it resolved now."""
        if not status or status not in TERMINAL_STATUSES:
            return False
        game_id = self.live_game_id or (self.last_record.game_id if self.last_record else None)
        if game_id and game_id == self._last_result_game_id:
            # Already resolved; a replayed stream of it must not stay live.
            if self.live_game_id == game_id:
                self.set_live_game(None)
            return False
        self._last_result_game_id = game_id

        text = result_text(status, winner)
        self._channel.emit(GameResultEvent(game_id=game_id, result_text=text, status=status, winner=winner))

        record = self.last_record or GameRecord(game_id=game_id)
        summary = GameSummaryEvent(
            game_id=game_id,
            white=record.white,
            black=record.black,
            result_text=text,
            status=status,
            winner=winner,
            white_rating_diff=record.white_rating_diff,
            black_rating_diff=record.black_rating_diff,
        )
        self._channel.emit(summary)
        if game_id and (summary.white_rating_diff is None or summary.black_rating_diff is None):
            self._spawn(self._enrich(record, summary, self.account))

        if self.live_game_id:
            self.set_live_game(None)
        return True

    async def fetch_rating_diff_with_retry(self, game_id: str) -> dict[str, int | None] | None:
        """Poll the game export until a rating diff shows up, or give up."""
        cfg = self._config
        delay = cfg.summary_initial_delay
        for attempt in range(cfg.summary_attempts):
            try:
                info = await self._client.fetch_game_summary(game_id)
                if info.get("white_rating_diff") is not None or info.get("black_rating_diff") is not None:
                    return info
            except ClientError:
                if attempt == cfg.summary_attempts - 1:
                    raise
            if attempt < cfg.summary_attempts - 1:
                await asyncio.sleep(delay)
                delay *= cfg.summary_backoff
        return None

    async def _enrich(
        self,
        record: GameRecord,
        summary: GameSummaryEvent,
        account_before: dict[str, Any] | None,
    ) -> None:
        if summary.game_id is None:
            return
        try:
            info = await self.fetch_rating_diff_with_retry(summary.game_id)
        except ClientError as exc:
            logger.warning("Game summary fetch failed for %s: %s", summary.game_id, exc)
            info = None
        if info:
            summary = replace(
                summary,
                white_rating_diff=info.get("white_rating_diff"),
                black_rating_diff=info.get("black_rating_diff"),
            )
            self.last_record = replace(
                record,
                white_rating_diff=summary.white_rating_diff,
                black_rating_diff=summary.black_rating_diff,
            )
            self._channel.emit(summary)

        if not self._client.has_token:
            return
        side = resolve_player_side(record, account_before)
        if side == "white" and summary.white_rating_diff is not None:
            return
        if side == "black" and summary.black_rating_diff is not None:
            return
        account_after = await self.refresh_account()
        change = select_rating_diff(account_before, account_after, record)
        side = resolve_player_side(record, account_after)
        if change is None or side is None:
            return
        _, diff = change
        if side == "white":
            summary = replace(summary, white_rating_diff=diff)
        else:
            summary = replace(summary, black_rating_diff=diff)
        self._channel.emit(summary)

    # ------------------------------------------------------------------ #
    # Teardown                                                             #
    # ------------------------------------------------------------------ #

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background result task failed", exc_info=task.exception())

    async def wait_background(self) -> None:
        if self._tasks:
            await asyncio.wait(set(self._tasks))

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.set_live_game(None)
