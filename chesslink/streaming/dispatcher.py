"""Account-wide event stream: incoming challenges and game starts."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from chesslink.client.base import ClientError, LichessClient
from chesslink.events import ChallengeEvent, EventChannel
from chesslink.streaming.ndjson import iter_lines, parse_line

logger = logging.getLogger(__name__)


def time_control_label(time_control: dict[str, Any] | None) -> str:
    """'5 + 3' for clock games, else the control type ('unlimited', ...) or 'Custom'."""
    tc = time_control or {}
    if tc.get("type") == "clock":
        minutes = round((tc.get("limit") or 0) / 60)
        return f"{minutes} + {tc.get('increment') or 0}"
    return tc.get("type") or "Custom"


def challenge_event(challenge: dict[str, Any]) -> ChallengeEvent:
    challenger = challenge.get("challenger") or {}
    return ChallengeEvent(
        challenge_id=challenge["id"],
        challenger=challenger.get("name") or challenger.get("id") or "Anonymous",
        rated=bool(challenge.get("rated")),
        time_control=time_control_label(challenge.get("timeControl")),
        variant=(challenge.get("variant") or {}).get("name") or "Standard",
    )


class EventDispatcher:
    """
    Reads the account event stream and routes what it finds.

    Only one reader runs at a time: start() cancels the previous one, and
    stop() cancels the current one without waiting for the next chunk.
    """

    def __init__(
        self,
        client: LichessClient,
        channel: EventChannel,
        on_game_start: Callable[[str], None],
    ) -> None:
        self._client = client
        self._channel = channel
        self._on_game_start = on_game_start
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self) -> None:
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def handle_line(self, line: str) -> None:
        data = parse_line(line)
        if data is None:
            return
        kind = data.get("type")
        if kind == "challenge":
            challenge = data.get("challenge") or {}
            if challenge.get("id"):
                self._channel.emit(challenge_event(challenge))
        elif kind == "gameStart":
            game_id = (data.get("game") or {}).get("id")
            if game_id:
                logger.info("Game %s started", game_id)
                self._on_game_start(game_id)
        else:
            logger.debug("Ignoring account event %r", kind)

    async def _run(self) -> None:
        try:
            async for line in iter_lines(self._client.stream_events()):
                self.handle_line(line)
            logger.info("Account event stream ended")
        except asyncio.CancelledError:
            raise
        except (ClientError, OSError) as exc:
            logger.warning("Account event stream failed: %s", exc)
