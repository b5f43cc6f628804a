"""Live game state for London Trainer.

GameStateManager is the only owner of the live ``chess.Board``. Every
other component either reads a snapshot or works on its own board built
from FEN, so background analysis and replay navigation can never touch
the position the player is moving on.

Illegal moves are an expected outcome here, not an error: the attempt
methods return ``None`` and leave the position unchanged.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict

import chess
import chess.pgn

from trainer.errors import HistoryMismatchError
from trainer.models import (
    CoordinateMove,
    GameResult,
    GameState,
    LastMove,
    MoveRecord,
)

logger = logging.getLogger(__name__)

_PROMOTION_PIECES = {
    "q": chess.QUEEN,
    "r": chess.ROOK,
    "b": chess.BISHOP,
    "n": chess.KNIGHT,
}


def describe_move(board: chess.Board, move: chess.Move) -> MoveRecord:
    """Build a MoveRecord for a legal move without applying it.

    Args:
        board: Position the move is played from.
        move: A legal move in that position.

    Returns:
        MoveRecord with SAN, capture tag and check flag.
    """
    captured = None
    if board.is_en_passant(move):
        captured = "p"
    else:
        target = board.piece_at(move.to_square)
        if target is not None and target.color != board.turn:
            captured = target.symbol().lower()

    return MoveRecord(
        from_square=chess.square_name(move.from_square),
        to_square=chess.square_name(move.to_square),
        san=board.san(move),
        promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
        captured=captured,
        is_check=board.gives_check(move),
    )


def push_move(board: chess.Board, move: chess.Move) -> MoveRecord:
    """Apply a legal move to ``board`` and return its record."""
    record = describe_move(board, move)
    board.push(move)
    return record


def parse_notation(board: chess.Board, notation: str) -> chess.Move | None:
    """Resolve SAN (or UCI, for scripted input) to a legal move.

    Returns:
        The legal move, or None if the notation is illegal or unparseable.
    """
    text = notation.strip()
    if not text:
        return None
    try:
        move = board.parse_san(text)
    except ValueError:
        try:
            move = board.parse_uci(text.lower())
        except ValueError:
            return None
    # Null moves ("--", "0000") parse but are never playable here.
    return move if move else None


def coordinate_to_move(
    board: chess.Board,
    from_square: str,
    to_square: str,
    promotion: str | None = None,
) -> chess.Move | None:
    """Resolve an origin/destination pair to a legal move.

    The promotion letter is only used when the move really is a pawn
    reaching the last rank; otherwise it is ignored.

    Returns:
        The legal move, or None if no legal move matches.
    """
    try:
        origin = chess.parse_square(from_square)
        target = chess.parse_square(to_square)
    except ValueError:
        return None

    plain = chess.Move(origin, target)
    if board.is_legal(plain):
        return plain

    piece = board.piece_at(origin)
    if piece is None or piece.piece_type != chess.PAWN:
        return None
    promotion_piece = _PROMOTION_PIECES.get((promotion or "q").lower())
    if promotion_piece is None:
        return None
    promoted = chess.Move(origin, target, promotion=promotion_piece)
    if board.is_legal(promoted):
        return promoted
    return None


def game_result_of(board: chess.Board) -> GameResult:
    """Classify a position as checkmate, stalemate, draw or still playing."""
    if board.is_checkmate():
        winner = "b" if board.turn == chess.WHITE else "w"
        return GameResult("checkmate", winner)
    if board.is_stalemate():
        return GameResult("stalemate")
    if (
        board.is_insufficient_material()
        or board.is_seventyfive_moves()
        or board.is_fivefold_repetition()
        or board.can_claim_draw()
    ):
        return GameResult("draw")
    return GameResult("playing")


class GameStateManager:
    """Single source of truth for the live position and selection state."""

    def __init__(self, starting_fen: str = chess.STARTING_FEN) -> None:
        self._starting_fen = starting_fen
        self._board = chess.Board(starting_fen)
        self._history: list[MoveRecord] = []
        self._selected: str | None = None
        self._legal_targets: list[str] = []
        self._last_move: LastMove | None = None
        self._listeners: list[Callable[[GameStateManager], None]] = []

    # ── Listeners ───────────────────────────────────────────────────

    def add_listener(self, callback: Callable[[GameStateManager], None]) -> None:
        """Register a callback fired after every state change."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[GameStateManager], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)

    # ── Read-only views ─────────────────────────────────────────────

    @property
    def fen(self) -> str:
        return self._board.fen()

    @property
    def starting_fen(self) -> str:
        return self._starting_fen

    @property
    def turn(self) -> bool:
        return self._board.turn

    @property
    def selected_square(self) -> str | None:
        return self._selected

    @property
    def legal_targets(self) -> list[str]:
        return list(self._legal_targets)

    @property
    def last_move(self) -> LastMove | None:
        return self._last_move

    @property
    def ply_count(self) -> int:
        return len(self._history)

    def board_copy(self) -> chess.Board:
        """Return an independent copy of the live board."""
        return self._board.copy()

    def history(self) -> list[MoveRecord]:
        return list(self._history)

    def history_san(self) -> list[str]:
        return [record.san for record in self._history]

    def history_as_coordinates(self) -> list[CoordinateMove]:
        """Move history in coordinate form, promotions included."""
        return [record.coordinates() for record in self._history]

    def history_as_uci(self) -> list[str]:
        """Move history as UCI strings, the key the move database indexes by."""
        return [record.uci for record in self._history]

    def legal_moves_san(self) -> list[str]:
        return [self._board.san(move) for move in self._board.legal_moves]

    def is_game_over(self) -> bool:
        return self.game_result().is_over

    def game_result(self) -> GameResult:
        return game_result_of(self._board)

    # ── Mutations ───────────────────────────────────────────────────

    def _apply(self, move: chess.Move) -> MoveRecord:
        record = push_move(self._board, move)
        self._history.append(record)
        self._last_move = LastMove(record.from_square, record.to_square)
        self._selected = None
        self._legal_targets = []
        self._notify()
        return record

    def attempt_move(
        self,
        from_square: str,
        to_square: str,
        promotion: str | None = "q",
    ) -> MoveRecord | None:
        """Attempt a move given by origin and destination squares.

        Args:
            from_square: Origin square name, e.g. "d2".
            to_square: Destination square name, e.g. "d4".
            promotion: Piece letter used if the move is a promotion.

        Returns:
            MoveRecord on success, None if the move is illegal.
        """
        move = coordinate_to_move(self._board, from_square, to_square, promotion)
        if move is None:
            logger.debug("Rejected move %s%s in %s", from_square, to_square, self.fen)
            return None
        return self._apply(move)

    def attempt_move_san(self, notation: str) -> MoveRecord | None:
        """Attempt a move given in SAN (or UCI). Returns None if illegal."""
        move = parse_notation(self._board, notation)
        if move is None:
            logger.debug("Rejected move %r in %s", notation, self.fen)
            return None
        return self._apply(move)

    def undo_last(self) -> MoveRecord | None:
        """Revert the most recent move. No-op on an empty history.

        Returns:
            The record of the undone move, or None if nothing was undone.
        """
        if not self._history:
            return None
        self._board.pop()
        record = self._history.pop()
        if self._history:
            previous = self._history[-1]
            self._last_move = LastMove(previous.from_square, previous.to_square)
        else:
            self._last_move = None
        self._selected = None
        self._legal_targets = []
        self._notify()
        return record

    def reset(self) -> None:
        """Restore the standard starting position and clear derived state."""
        self._starting_fen = chess.STARTING_FEN
        self._board = chess.Board()
        self._history = []
        self._selected = None
        self._legal_targets = []
        self._last_move = None
        self._notify()

    def select_square(self, square: str) -> bool:
        """Select a piece of the side to move and cache its legal targets.

        Returns:
            True if the square was selected, False if it was a no-op.
        """
        try:
            index = chess.parse_square(square)
        except ValueError:
            return False
        piece = self._board.piece_at(index)
        if piece is None or piece.color != self._board.turn:
            return False

        self._selected = square
        self._legal_targets = sorted({
            chess.square_name(move.to_square)
            for move in self._board.legal_moves
            if move.from_square == index
        })
        self._notify()
        return True

    def clear_selection(self) -> None:
        self._selected = None
        self._legal_targets = []
        self._notify()

    # ── Invariants and serialization ────────────────────────────────

    def verify_history(self) -> None:
        """Replay the SAN history from the starting position.

        Raises:
            HistoryMismatchError: If the replay does not reproduce the live FEN.
        """
        replayed = replay_san(self.history_san(), self._starting_fen)
        if replayed.fen() != self._board.fen():
            raise HistoryMismatchError(self._board.fen(), replayed.fen())

    def to_pgn(self, headers: dict[str, str] | None = None) -> str:
        """Serialize the game as PGN text."""
        game = chess.pgn.Game.from_board(self._board)
        for key, value in (headers or {}).items():
            game.headers[key] = value
        result = self.game_result()
        if result.is_over:
            game.headers["Result"] = self._board.result(claim_draw=True)
        return str(game)

    @classmethod
    def from_pgn(cls, pgn_text: str) -> GameStateManager:
        """Load the mainline of a PGN game into a new manager.

        Raises:
            ValueError: If the text does not contain a game.
        """
        game = chess.pgn.read_game(io.StringIO(pgn_text))
        if game is None:
            raise ValueError("No game found in PGN text")
        manager = cls(game.board().fen())
        for move in game.mainline_moves():
            manager._history.append(push_move(manager._board, move))
        if manager._history:
            last = manager._history[-1]
            manager._last_move = LastMove(last.from_square, last.to_square)
        return manager

    def snapshot(self) -> GameState:
        """Build a read-only GameState for rendering."""
        last = self._history[-1] if self._history else None
        return GameState(
            fen=self._board.fen(),
            board_display=str(self._board),
            move_list=self.history_san(),
            last_move=last.uci if last else None,
            last_move_san=last.san if last else None,
            selected_square=self._selected,
            legal_targets=list(self._legal_targets),
            side_to_move="white" if self._board.turn == chess.WHITE else "black",
            is_check=self._board.is_check(),
            is_game_over=self.is_game_over(),
            result=asdict(self.game_result()),
            legal_moves=self.legal_moves_san(),
        )


def replay_san(
    moves: Iterable[str],
    starting_fen: str = chess.STARTING_FEN,
) -> chess.Board:
    """Replay SAN moves onto a fresh board.

    Raises:
        ValueError: If a move is illegal in the position it is played from.
    """
    board = chess.Board(starting_fen)
    for san in moves:
        board.push_san(san)
    return board
