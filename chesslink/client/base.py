"""
Abstract remote client interface.

Everything the core needs from the game server goes through LichessClient.
The HTTP implementation lives in chesslink/client/http.py; tests supply
in-memory fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Literal

PuzzleEndpoint = Literal["daily", "next"]


class ClientError(Exception):
    """Raised when a remote call fails. status is the HTTP status when known."""

    def __init__(self, message: str, status: int | None = None, cause: Exception | None = None) -> None:
        self.status = status
        self.cause = cause
        super().__init__(message if status is None else f"HTTP {status}: {message}")


class RateLimitedError(ClientError):
    """HTTP 429. retry_after is the server hint in seconds, when it sent one."""

    def __init__(self, message: str = "rate limited", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message, status=429)


class MissingTokenError(ClientError):
    def __init__(self) -> None:
        super().__init__("Missing token")


class LichessClient(ABC):
    """Capability set of the remote game server used by the core."""

    @property
    @abstractmethod
    def has_token(self) -> bool:
        ...

    # -- live play ---------------------------------------------------- #

    @abstractmethod
    async def send_move(self, game_id: str, move_token: str) -> None:
        ...

    @abstractmethod
    def stream_game(self, game_id: str) -> AsyncIterator[bytes]:
        """
        Yield raw body chunks of the game's NDJSON event stream.

        Implementors define this as an async generator. Raises ClientError
        when the stream cannot be opened.
        """
        raise NotImplementedError

    @abstractmethod
    def stream_events(self) -> AsyncIterator[bytes]:
        """Yield raw body chunks of the account-wide NDJSON event stream."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_game_summary(self, game_id: str) -> dict[str, int | None]:
        """Return {"white_rating_diff": ..., "black_rating_diff": ...}."""
        ...

    # -- puzzles ------------------------------------------------------ #

    @abstractmethod
    async def fetch_puzzle(
        self,
        endpoint: PuzzleEndpoint = "next",
        *,
        method: Literal["GET", "POST"] = "GET",
        authenticated: bool = True,
    ) -> dict[str, Any]:
        """
        Fetch a puzzle payload {"puzzle": {...}, "game": {...}}.

        Raises RateLimitedError on HTTP 429, ClientError otherwise.
        """
        ...

    @abstractmethod
    async def submit_puzzle_results(self, solutions: list[dict[str, Any]]) -> None:
        ...

    # -- account / challenges ----------------------------------------- #

    @abstractmethod
    async def fetch_account(self) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def fetch_now_playing(self) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def challenge_ai(self, level: int = 3) -> dict[str, Any]:
        ...

    @abstractmethod
    async def accept_challenge(self, challenge_id: str) -> None:
        ...

    @abstractmethod
    async def decline_challenge(self, challenge_id: str) -> None:
        ...

    @abstractmethod
    async def resign_game(self, game_id: str) -> None:
        ...

    @abstractmethod
    async def offer_draw(self, game_id: str, accept: bool = True) -> None:
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
