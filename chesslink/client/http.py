"""
HTTP implementation of LichessClient on aiohttp.

One ClientSession is created lazily and reused; streams use a session-less
timeout so a long quiet game is not cut off by the request timeout
(staleness is StreamHealth's job, not the transport's).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Literal

import aiohttp

from chesslink.client.base import (
    ClientError,
    LichessClient,
    MissingTokenError,
    PuzzleEndpoint,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

_USER_AGENT = "chesslink/0.1"


def _retry_after_seconds(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(int(value))
    except ValueError:
        return None


class HttpLichessClient(LichessClient):
    def __init__(self, api_base: str, token: str = "", request_timeout: float = 15.0) -> None:
        self._api_base = api_base.rstrip("/")
        self._token = token
        self._timeout = request_timeout
        self._session: aiohttp.ClientSession | None = None

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    # ------------------------------------------------------------------ #
    # Session plumbing                                                     #
    # ------------------------------------------------------------------ #

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": _USER_AGENT})
        return self._session

    def _headers(self, authenticated: bool = True, accept: str = "application/json") -> dict[str, str]:
        headers = {"Accept": accept}
        if authenticated and self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _require_token(self) -> None:
        if not self._token:
            raise MissingTokenError()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        authenticated: bool = True,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        json_body: Any = None,
        expect_json: bool = True,
    ) -> Any:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        try:
            async with session.request(
                method,
                f"{self._api_base}{path}",
                headers=self._headers(authenticated),
                params=params,
                data=data,
                json=json_body,
                timeout=timeout,
            ) as resp:
                if resp.status == 429:
                    raise RateLimitedError(
                        f"{method} {path} rate limited",
                        retry_after=_retry_after_seconds(resp.headers.get("Retry-After")),
                    )
                if resp.status >= 400:
                    details = await resp.text()
                    raise ClientError(f"{method} {path} failed: {details[:200]}", status=resp.status)
                if not expect_json:
                    await resp.read()
                    return None
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise ClientError(f"{method} {path} timed out", cause=exc) from exc
        except aiohttp.ClientError as exc:
            raise ClientError(f"{method} {path} failed: {exc}", cause=exc) from exc

    async def _stream(self, path: str) -> AsyncIterator[bytes]:
        self._require_token()
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._timeout)
        try:
            async with session.get(
                f"{self._api_base}{path}",
                headers=self._headers(accept="application/x-ndjson"),
                timeout=timeout,
            ) as resp:
                if resp.status >= 400:
                    raise ClientError(f"stream {path} failed", status=resp.status)
                async for chunk in resp.content.iter_any():
                    yield chunk
        except asyncio.TimeoutError as exc:
            raise ClientError(f"stream {path} timed out", cause=exc) from exc
        except aiohttp.ClientError as exc:
            raise ClientError(f"stream {path} failed: {exc}", cause=exc) from exc

    # ------------------------------------------------------------------ #
    # LichessClient                                                        #
    # ------------------------------------------------------------------ #

    async def send_move(self, game_id: str, move_token: str) -> None:
        self._require_token()
        await self._request("POST", f"/board/game/{game_id}/move/{move_token}", expect_json=False)

    def stream_game(self, game_id: str) -> AsyncIterator[bytes]:
        return self._stream(f"/board/game/stream/{game_id}")

    def stream_events(self) -> AsyncIterator[bytes]:
        return self._stream("/stream/event")

    async def fetch_game_summary(self, game_id: str) -> dict[str, int | None]:
        data = await self._request(
            "GET",
            f"/game/export/{game_id}",
            params={
                "pgnInJson": "true",
                "moves": "false",
                "clocks": "false",
                "evals": "false",
                "opening": "false",
            },
        )
        players = (data or {}).get("players") or {}
        return {
            "white_rating_diff": (players.get("white") or {}).get("ratingDiff"),
            "black_rating_diff": (players.get("black") or {}).get("ratingDiff"),
        }

    async def fetch_puzzle(
        self,
        endpoint: PuzzleEndpoint = "next",
        *,
        method: Literal["GET", "POST"] = "GET",
        authenticated: bool = True,
    ) -> dict[str, Any]:
        data = await self._request(method, f"/puzzle/{endpoint}", authenticated=authenticated)
        return data if isinstance(data, dict) else {}

    async def submit_puzzle_results(self, solutions: list[dict[str, Any]]) -> None:
        self._require_token()
        if not solutions:
            raise ValueError("Missing puzzle solutions")
        await self._request(
            "POST",
            "/puzzle/batch/mix",
            params={"nb": "0"},
            json_body={"solutions": solutions},
        )

    async def fetch_account(self) -> dict[str, Any] | None:
        if not self._token:
            return None
        data = await self._request("GET", "/account")
        return data if isinstance(data, dict) else None

    async def fetch_now_playing(self) -> list[dict[str, Any]]:
        self._require_token()
        data = await self._request("GET", "/account/playing")
        playing = (data or {}).get("nowPlaying")
        return playing if isinstance(playing, list) else []

    async def challenge_ai(self, level: int = 3) -> dict[str, Any]:
        self._require_token()
        data = await self._request(
            "POST", "/challenge/ai", data={"level": str(level), "rated": "false"}
        )
        return data if isinstance(data, dict) else {}

    async def accept_challenge(self, challenge_id: str) -> None:
        self._require_token()
        await self._request("POST", f"/challenge/{challenge_id}/accept", expect_json=False)

    async def decline_challenge(self, challenge_id: str) -> None:
        self._require_token()
        await self._request("POST", f"/challenge/{challenge_id}/decline", expect_json=False)

    async def resign_game(self, game_id: str) -> None:
        self._require_token()
        await self._request("POST", f"/board/game/{game_id}/resign", expect_json=False)

    async def offer_draw(self, game_id: str, accept: bool = True) -> None:
        self._require_token()
        decision = "yes" if accept else "no"
        await self._request("POST", f"/board/game/{game_id}/draw/{decision}", expect_json=False)
