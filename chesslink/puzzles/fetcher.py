"""
Puzzle acquisition with client-side throttling.

Requests are spaced by a minimum gap; an HTTP 429 opens a rate-limit window
(from Retry-After, or a default) and is retried with doubling backoff. The
ids of recently served puzzles are remembered so a repeat can be replaced.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from chesslink.client.base import ClientError, LichessClient, PuzzleEndpoint, RateLimitedError
from chesslink.config import PuzzleConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PuzzleFetchResult:
    data: dict[str, Any]
    repeated: bool
    requires_auth: bool

    @property
    def puzzle_id(self) -> str | None:
        return _puzzle_id(self.data)


def _puzzle_id(data: dict[str, Any] | None) -> str | None:
    return ((data or {}).get("puzzle") or {}).get("id")


class PuzzleFetcher:
    def __init__(
        self,
        client: LichessClient,
        config: PuzzleConfig | None = None,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._config = config or PuzzleConfig()
        self._now = now
        self._sleep = sleep
        self._last_fetch_at: float | None = None
        self._rate_limit_until = 0.0
        self._last_puzzle_id: str | None = None
        self._recent: deque[str] = deque(maxlen=self._config.recent_size)

    @property
    def recent_ids(self) -> list[str]:
        return list(self._recent)

    async def fetch(self) -> PuzzleFetchResult:
        """
        Fetch a puzzle that was not served recently, if the server allows.

        Raises RateLimitedError when throttling outlasts the retry budget,
        ClientError for any other failure.
        """
        await self._throttle()
        authed = self._client.has_token
        endpoint: PuzzleEndpoint = "next" if authed else "daily"

        data: dict[str, Any] = {}
        for attempt in range(self._config.duplicate_retries):
            data = await self._request_with_backoff(endpoint)
            puzzle_id = _puzzle_id(data)
            if not puzzle_id or puzzle_id not in self._recent:
                break
            logger.debug("Puzzle %s served recently (try %d)", puzzle_id, attempt + 1)
            await self._sleep(self._config.duplicate_retry_delay)

        if self._last_puzzle_id and _puzzle_id(data) == self._last_puzzle_id:
            data = await self._skip_repeat(data, authed)

        puzzle_id = _puzzle_id(data)
        repeated = bool(self._last_puzzle_id and puzzle_id == self._last_puzzle_id)
        if puzzle_id:
            self._recent.append(puzzle_id)
            self._last_puzzle_id = puzzle_id
        logger.info("Puzzle fetch endpoint=%s authed=%s id=%s repeated=%s", endpoint, authed, puzzle_id, repeated)
        return PuzzleFetchResult(data=data, repeated=repeated, requires_auth=not authed)

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    async def _throttle(self) -> None:
        cfg = self._config
        if self._last_fetch_at is not None:
            gap = self._now() - self._last_fetch_at
            if gap < cfg.min_fetch_gap:
                await self._sleep(cfg.min_fetch_gap - gap)
        wait = self._rate_limit_until - self._now()
        if wait > 0:
            await self._sleep(wait)

    async def _skip_repeat(self, data: dict[str, Any], authed: bool) -> dict[str, Any]:
        """Ask explicitly for the next puzzle when the server keeps handing back the last one."""
        attempts: list[Literal["GET", "POST"]] = ["POST"] if authed else ["GET", "POST"]
        for method in attempts:
            try:
                candidate = await self._request_with_backoff("next", method=method, authenticated=authed)
            except ClientError as exc:
                logger.warning("Puzzle skip (%s) failed: %s", method, exc)
                continue
            if _puzzle_id(candidate) and _puzzle_id(candidate) != self._last_puzzle_id:
                return candidate
            return data
        return data

    async def _request_with_backoff(
        self,
        endpoint: PuzzleEndpoint,
        *,
        method: Literal["GET", "POST"] = "GET",
        authenticated: bool = True,
    ) -> dict[str, Any]:
        cfg = self._config
        delay = cfg.initial_backoff
        for attempt in range(cfg.max_attempts):
            try:
                data = await self._client.fetch_puzzle(
                    endpoint, method=method, authenticated=authenticated
                )
            except RateLimitedError as exc:
                hint = exc.retry_after if exc.retry_after is not None else cfg.rate_limit_default_wait
                self._rate_limit_until = max(self._rate_limit_until, self._now() + hint)
                if attempt == cfg.max_attempts - 1:
                    raise
                wait = max(delay, self._rate_limit_until - self._now())
                logger.info("Puzzle request rate limited; retrying in %.1fs", wait)
                await self._sleep(wait)
                delay *= 2
                continue
            self._last_fetch_at = self._now()
            return data
        raise RateLimitedError("puzzle request rate limited")
