"""
Selection gate: which squares the user may pick, and what a pick turns into.

Selection is refused unless a live game or puzzle is active, and in a live
game only while it is the player's turn. A completed pick either executes a
move, or (for a pawn reaching the last rank with several choices) waits for
a promotion piece.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from chesslink.board import MoveSpec, RulesEngine
from chesslink.events import Color, EventChannel, InvalidMoveEvent, PromotionRequestEvent

if TYPE_CHECKING:
    from chesslink.live import LiveGameManager
    from chesslink.puzzles.flow import PuzzleFlow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingPromotion:
    from_square: str
    to_square: str
    options: list[str]
    color: Color


class SelectionGate:
    def __init__(
        self,
        engine: RulesEngine,
        channel: EventChannel,
        live: LiveGameManager,
        puzzle: PuzzleFlow,
        execute: Callable[[MoveSpec], bool],
    ) -> None:
        self._engine = engine
        self._channel = channel
        self._live = live
        self._puzzle = puzzle
        self._execute = execute
        self.selected: str | None = None
        self.highlights: list[str] = []
        self.pending_promotion: PendingPromotion | None = None

    def is_interaction_enabled(self) -> bool:
        return bool(self._live.live_game_id) or self._puzzle.active

    def can_select(self, square: str) -> bool:
        if not self.is_interaction_enabled():
            return False
        turn = self._engine.turn
        if self._live.live_game_id and self._live.live_color and turn != self._live.live_color:
            return False
        piece = self._engine.piece_at(square)
        return piece is not None and piece.color == turn

    def select(self, square: str) -> list[str]:
        """Select a square and return its legal destinations; [] when refused."""
        if not self.can_select(square):
            return []
        self.selected = square
        self.highlights = [m.to_square for m in self._engine.legal_moves_from(square)]
        return list(self.highlights)

    def clear_selection(self) -> None:
        self.selected = None
        self.highlights = []

    def click(self, square: str | None) -> bool:
        """
        One click of the pick-then-drop interaction.

        Returns True only when the click resulted in an executed move.
        """
        if not self.is_interaction_enabled():
            return False
        if square is None:
            self.clear_selection()
            return False
        if self.selected is None:
            self.select(square)
            return False
        if square == self.selected:
            self.clear_selection()
            return False
        piece = self._engine.piece_at(square)
        if piece is not None and piece.color == self._engine.turn:
            self.clear_selection()
            self.select(square)
            return False
        origin = self.selected
        self.clear_selection()
        return self.attempt(origin, square)

    def is_legal_destination(self, from_square: str, to_square: str) -> bool:
        return any(m.to_square == to_square for m in self._engine.legal_moves_from(from_square))

    # ------------------------------------------------------------------ #
    # Moves                                                                #
    # ------------------------------------------------------------------ #

    def attempt(self, from_square: str | None, to_square: str | None) -> bool:
        if not from_square or not to_square or from_square == to_square:
            return False
        if not self.can_select(from_square):
            return False
        if not self.is_legal_destination(from_square, to_square):
            self._channel.emit(InvalidMoveEvent(from_square, to_square, "illegal move"))
            return False
        options = self._engine.promotion_options(from_square, to_square)
        if len(options) == 1:
            return self._execute(MoveSpec(from_square, to_square, options[0]))
        if options:
            pending = PendingPromotion(from_square, to_square, list(options), self._engine.turn)
            self.pending_promotion = pending
            self._channel.emit(
                PromotionRequestEvent(
                    from_square=pending.from_square,
                    to_square=pending.to_square,
                    options=list(pending.options),
                    color=pending.color,
                )
            )
            return False
        return self._execute(MoveSpec(from_square, to_square))

    def confirm_promotion(self, piece: str) -> bool:
        pending = self.pending_promotion
        if pending is None:
            return False
        self.pending_promotion = None
        choice = piece if piece in pending.options else pending.options[0]
        return self._execute(MoveSpec(pending.from_square, pending.to_square, choice))

    def cancel_promotion(self) -> bool:
        if self.pending_promotion is None:
            return False
        self.pending_promotion = None
        return True
