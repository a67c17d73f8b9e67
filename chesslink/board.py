"""
Rules engine — thin facade over python-chess Board.

The rest of chesslink only talks to RulesEngine: load a position, replay a
move list, apply a move, query legal moves, export SAN history and subscribe
to mutations. Keeping python-chess behind this seam means any validated rules
implementation could be swapped in without touching the sync logic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import StringIO
from typing import Callable, NamedTuple

import chess
import chess.pgn

from chesslink.events import Color

logger = logging.getLogger(__name__)

_RESULT_TOKENS = {"1-0", "0-1", "1/2-1/2", "*"}


class MoveSpec(NamedTuple):
    """A requested move: origin, destination and optional promotion letter."""
    from_square: str
    to_square: str
    promotion: str | None = None

    @property
    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"


@dataclass(frozen=True)
class PieceInfo:
    type: str    # "p" | "n" | "b" | "r" | "q" | "k"
    color: Color


@dataclass(frozen=True)
class Move:
    """A move as applied by the engine. Never constructed outside RulesEngine."""

    from_square: str
    to_square: str
    promotion: str | None
    flags: str           # n, b, c, e, k, q, p  (combinable, e.g. "cp")
    color: Color
    san: str
    piece: str
    captured: str | None = None

    @property
    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"

    @property
    def is_capture(self) -> bool:
        return "c" in self.flags or "e" in self.flags

    @property
    def is_en_passant(self) -> bool:
        return "e" in self.flags

    @property
    def is_castling(self) -> bool:
        return "k" in self.flags or "q" in self.flags


Listener = Callable[["RulesEngine"], None]


def parse_move_token(token: str | None) -> MoveSpec | None:
    """Split a UCI token ("e2e4", "a7a8q") into a MoveSpec. None if malformed."""
    if not token or len(token) < 4:
        return None
    s = token.strip().lower()
    if len(s) not in (4, 5):
        return None
    from_sq, to_sq = s[0:2], s[2:4]
    if from_sq not in chess.SQUARE_NAMES or to_sq not in chess.SQUARE_NAMES:
        return None
    promotion = s[4] if len(s) == 5 else None
    if promotion is not None and promotion not in "nbrq":
        return None
    return MoveSpec(from_sq, to_sq, promotion)


def _color(value: chess.Color) -> Color:
    return "white" if value == chess.WHITE else "black"


class RulesEngine:
    """Owns the one evolving position and notifies listeners after each mutation."""

    def __init__(self, fen: str | None = None) -> None:
        self._starting_fen = fen
        self._board = chess.Board(fen) if fen else chess.Board()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------ #
    # State queries                                                        #
    # ------------------------------------------------------------------ #

    @property
    def fen(self) -> str:
        return self._board.fen()

    @property
    def turn(self) -> Color:
        return _color(self._board.turn)

    @property
    def ply(self) -> int:
        return len(self._board.move_stack)

    @property
    def is_check(self) -> bool:
        return self._board.is_check()

    @property
    def is_game_over(self) -> bool:
        return self._board.is_game_over(claim_draw=True)

    def piece_at(self, square: str) -> PieceInfo | None:
        try:
            piece = self._board.piece_at(chess.parse_square(square))
        except ValueError:
            return None
        if piece is None:
            return None
        return PieceInfo(type=piece.symbol().lower(), color=_color(piece.color))

    def board_snapshot(self) -> dict[str, PieceInfo]:
        """Every occupied square mapped to its piece."""
        return {
            chess.square_name(sq): PieceInfo(type=p.symbol().lower(), color=_color(p.color))
            for sq, p in self._board.piece_map().items()
        }

    def legal_moves_from(self, square: str) -> list[Move]:
        try:
            origin = chess.parse_square(square)
        except ValueError:
            return []
        return [
            self._describe(self._board, m)
            for m in self._board.legal_moves
            if m.from_square == origin
        ]

    def promotion_options(self, from_square: str, to_square: str) -> list[str]:
        """Promotion letters available for a pawn move, in generation order."""
        options: list[str] = []
        for move in self.legal_moves_from(from_square):
            if move.to_square == to_square and move.promotion and move.promotion not in options:
                options.append(move.promotion)
        return options

    def is_move_legal(self, spec: MoveSpec | str) -> bool:
        return self._to_legal(self._board, spec) is not None

    def export_move_history(self) -> list[str]:
        """All moves played so far in SAN notation (replays from the start)."""
        board_copy = chess.Board(self._starting_fen) if self._starting_fen else chess.Board()
        san_moves: list[str] = []
        for move in self._board.move_stack:
            san_moves.append(board_copy.san(move))
            board_copy.push(move)
        return san_moves

    # ------------------------------------------------------------------ #
    # Mutation                                                             #
    # ------------------------------------------------------------------ #

    def apply_move(self, spec: MoveSpec | str) -> Move | None:
        """Apply a move if legal. Returns None (and changes nothing) otherwise."""
        legal = self._to_legal(self._board, spec)
        if legal is None:
            return None
        applied = self._describe(self._board, legal)
        self._board.push(legal)
        self._emit()
        return applied

    def load_position(self, fen: str) -> bool:
        try:
            board = chess.Board(fen)
        except ValueError:
            return False
        if not board.is_valid():
            return False
        self._board = board
        self._starting_fen = fen
        self._emit()
        return True

    def load_from_moves(self, initial_fen: str | None, tokens: list[str]) -> bool:
        """
        Reset, optionally load initial_fen, then replay tokens in order.

        Atomic: if the FEN or any token is invalid the previous position is
        kept untouched, no listener fires, and False is returned.
        """
        try:
            board = chess.Board(initial_fen) if initial_fen else chess.Board()
        except ValueError:
            return False
        for token in tokens:
            legal = self._to_legal(board, token)
            if legal is None:
                logger.debug("load_from_moves rejected %r at ply %d", token, len(board.move_stack))
                return False
            board.push(legal)
        self._board = board
        self._starting_fen = initial_fen
        self._emit()
        return True

    def load_pgn_to_ply(self, pgn: str, ply: int) -> bool:
        """
        Load the mainline of a PGN and keep only the first `ply` half-moves.

        Falls back to reading bare SAN tokens when the PGN parser reports
        errors. Atomic like load_from_moves.
        """
        if ply < 0:
            return False
        sans = _pgn_mainline_san(pgn)
        if sans is None or len(sans) < ply:
            return False
        board = chess.Board()
        for san in sans[:ply]:
            try:
                board.push_san(san)
            except ValueError:
                return False
        self._board = board
        self._starting_fen = None
        self._emit()
        return True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a mutation listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    @staticmethod
    def _to_legal(board: chess.Board, spec: MoveSpec | str) -> chess.Move | None:
        if isinstance(spec, str):
            parsed = parse_move_token(spec)
            if parsed is None:
                return None
            spec = parsed
        try:
            move = chess.Move.from_uci(spec.uci)
        except ValueError:
            return None
        if move in board.legal_moves:
            return move
        return None

    @staticmethod
    def _describe(board: chess.Board, move: chess.Move) -> Move:
        piece = board.piece_at(move.from_square)
        if piece is None:
            raise ValueError(f"no piece on {chess.square_name(move.from_square)}")
        flags = ""
        captured: str | None = None
        if board.is_en_passant(move):
            flags += "e"
            captured = "p"
        elif board.is_capture(move):
            flags += "c"
            target = board.piece_at(move.to_square)
            captured = target.symbol().lower() if target else None
        if board.is_kingside_castling(move):
            flags += "k"
        elif board.is_queenside_castling(move):
            flags += "q"
        if piece.piece_type == chess.PAWN and abs(move.to_square - move.from_square) == 16:
            flags += "b"
        promotion = chess.piece_symbol(move.promotion) if move.promotion else None
        if promotion:
            flags += "p"
        return Move(
            from_square=chess.square_name(move.from_square),
            to_square=chess.square_name(move.to_square),
            promotion=promotion,
            flags=flags or "n",
            color=_color(piece.color),
            san=board.san(move),
            piece=piece.symbol().lower(),
            captured=captured,
        )


def _pgn_mainline_san(pgn: str) -> list[str] | None:
    game = chess.pgn.read_game(StringIO(pgn))
    if game is not None and not game.errors:
        board = game.board()
        sans: list[str] = []
        for move in game.mainline_moves():
            sans.append(board.san(move))
            board.push(move)
        return sans

    # Lenient path: strip comments, variations and move numbers.
    tokens: list[str] = []
    depth = 0
    in_comment = False
    cleaned = []
    for ch in pgn:
        if in_comment:
            in_comment = ch != "}"
            continue
        if ch == "{":
            in_comment = True
            continue
        if ch == "(":
            depth += 1
            continue
        if ch == ")":
            depth = max(0, depth - 1)
            continue
        if depth == 0:
            cleaned.append(ch)
    for line in "".join(cleaned).splitlines():
        if line.strip().startswith("["):
            continue
        for tok in line.split():
            tok = tok.split(".")[-1]
            if tok and tok not in _RESULT_TOKENS:
                tokens.append(tok)
    return tokens or None
