"""Computer opponent for practice games.

Three difficulty tiers:
- beginner: uniform random legal move
- intermediate: master-database move weighted by popularity, falling back
  to a capture/check/centre heuristic when the database has nothing
- advanced: remote evaluator's best move, falling back to intermediate

Each request is independent. The board passed in is never mutated.
"""

from __future__ import annotations

import logging
import random

import chess

from trainer.errors import TrainerServiceError
from trainer.evaluator import EvaluatorClient
from trainer.explorer import ExplorerClient, ExplorerMove
from trainer.game import coordinate_to_move, parse_notation
from trainer.models import DIFFICULTIES, CoordinateMove

logger = logging.getLogger(__name__)

ADVANCED_DEPTH = 15
BOOK_CANDIDATES = 3

_CENTER_SQUARES = {chess.D4, chess.D5, chess.E4, chess.E5}
_SEMI_CENTER_SQUARES = {
    chess.C3, chess.C4, chess.C5, chess.C6,
    chess.F3, chess.F4, chess.F5, chess.F6,
}


def weighted_book_choice(
    candidates: list[ExplorerMove],
    rng: random.Random | None = None,
) -> ExplorerMove | None:
    """Pick from the top continuations, weighted by recorded game count.

    Uses a running draw: subtract each candidate's count from a random
    point in [0, total) until it goes non-positive.
    """
    top = candidates[:BOOK_CANDIDATES]
    if not top:
        return None
    rng = rng or random
    total = sum(m.total for m in top)
    point = rng.random() * total
    for move in top:
        point -= move.total
        if point <= 0:
            return move
    return top[0]


def heuristic_score(board: chess.Board, move: chess.Move, jitter: float) -> float:
    """Score a move by captures, checks and centre control."""
    score = jitter
    if board.is_capture(move):
        score += 30
    if board.gives_check(move):
        score += 20
    if move.to_square in _CENTER_SQUARES:
        score += 15
    if move.to_square in _SEMI_CENTER_SQUARES:
        score += 5
    return score


class OpponentMoveSelector:
    """Chooses a reply move for the computer side."""

    def __init__(
        self,
        explorer: ExplorerClient | None = None,
        evaluator: EvaluatorClient | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._explorer = explorer
        self._evaluator = evaluator
        self._rng = rng or random.Random()

    async def choose_move(
        self,
        board: chess.Board,
        difficulty: str = "intermediate",
    ) -> str | None:
        """Choose a move for the side to move.

        Args:
            board: Current position (not modified).
            difficulty: "beginner", "intermediate" or "advanced".

        Returns:
            The chosen move in SAN, or None if there is no legal move.

        Raises:
            ValueError: If the difficulty is unknown.
        """
        if difficulty not in DIFFICULTIES:
            raise ValueError(f"Unknown difficulty: {difficulty!r}")

        legal = list(board.legal_moves)
        if not legal:
            return None

        if difficulty == "beginner":
            return board.san(self._rng.choice(legal))
        if difficulty == "advanced":
            return await self._advanced(board)
        return await self._intermediate(board)

    async def _intermediate(self, board: chess.Board) -> str:
        san = await self._book_move(board)
        if san is not None:
            return san
        return self._heuristic_move(board)

    async def _book_move(self, board: chess.Board) -> str | None:
        if self._explorer is None:
            return None
        uci_moves = [move.uci() for move in board.move_stack]
        try:
            data = await self._explorer.fetch(uci_moves, 0)
        except TrainerServiceError as exc:
            logger.warning("Move database unavailable, using heuristic: %s", exc)
            return None

        chosen = weighted_book_choice(list(data.moves), self._rng)
        if chosen is None:
            return None
        # The database may list moves reached by a different move order.
        move = parse_notation(board, chosen.san) or parse_notation(board, chosen.uci)
        if move is None:
            logger.warning("Move database suggested unplayable move %s", chosen.san)
            return None
        return board.san(move)

    def _heuristic_move(self, board: chess.Board) -> str:
        scored = [
            (heuristic_score(board, move, self._rng.random() * 10), move)
            for move in board.legal_moves
        ]
        best = max(scored, key=lambda item: item[0])[1]
        return board.san(best)

    async def _advanced(self, board: chess.Board) -> str:
        if self._evaluator is not None:
            try:
                analysis = await self._evaluator.analyze(board.fen(), ADVANCED_DEPTH)
            except TrainerServiceError as exc:
                logger.warning("Evaluator failed, falling back to intermediate: %s", exc)
            else:
                san = self._validated_best_move(board, analysis.best_move)
                if san is not None:
                    return san
        return await self._intermediate(board)

    def _validated_best_move(self, board: chess.Board, best_uci: str | None) -> str | None:
        if not best_uci:
            return None
        try:
            coords = CoordinateMove.from_uci(best_uci)
        except ValueError:
            logger.warning("Evaluator returned malformed move %r", best_uci)
            return None
        move = coordinate_to_move(board, coords.from_square, coords.to_square, coords.promotion)
        if move is None:
            logger.warning("Evaluator suggested illegal move %s", best_uci)
            return None
        return board.san(move)
