"""
Puzzle mode: acquisition (PuzzleFetcher) and the attempt state machine (PuzzleFlow).
"""

from __future__ import annotations

from chesslink.puzzles.fetcher import PuzzleFetcher, PuzzleFetchResult
from chesslink.puzzles.flow import PuzzleAttempt, PuzzleFlow, PuzzleMoveResult

__all__ = [
    "PuzzleAttempt",
    "PuzzleFetcher",
    "PuzzleFetchResult",
    "PuzzleFlow",
    "PuzzleMoveResult",
]
