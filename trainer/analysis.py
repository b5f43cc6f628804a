"""Move-quality analysis for London Trainer.

Scores an already-played move by asking the remote evaluator about the
position before and after it, then buckets the evaluation drop into a
quality tier. All boards used here are built fresh from FEN for the
single call and thrown away; the live game is never touched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import chess

from trainer.errors import TrainerServiceError
from trainer.evaluator import EvaluatorClient
from trainer.game import coordinate_to_move, parse_notation
from trainer.models import CoordinateMove, MoveQuality

logger = logging.getLogger(__name__)

ANALYSIS_DEPTH = 12

# Move classification thresholds (eval_drop upper bound -> classification)
_CLASSIFICATION_THRESHOLDS = [
    (25, "excellent"),
    (50, "good"),
    (100, "inaccuracy"),
    (200, "mistake"),
]

_ANNOTATED_CLASSIFICATIONS = {"inaccuracy", "mistake", "blunder"}


def classify_move(eval_drop: float) -> str:
    """Classify a move based on its evaluation drop in centipawns.

    Negative drops (the move improved the position) count as zero.
    """
    drop = max(0.0, eval_drop)
    for threshold, label in _CLASSIFICATION_THRESHOLDS:
        if drop <= threshold:
            return label
    return "blunder"


def mover_eval_drop(mover: chess.Color, before_cp: float, after_cp: float) -> float:
    """Evaluation drop from the mover's point of view, clamped at zero.

    Args:
        mover: Side that played the move.
        before_cp: White-perspective score before the move.
        after_cp: White-perspective score after the move.
    """
    sign = 1 if mover == chess.WHITE else -1
    return max(0.0, sign * before_cp - sign * after_cp)


def move_number_for_ply(ply: int) -> int:
    """Full-move number of a 0-based half-move index."""
    return ply // 2 + 1


def is_analyzed_ply(ply: int, analyzed_color: chess.Color = chess.WHITE) -> bool:
    """True if the half-move at ``ply`` was played by the analyzed side."""
    white_to_move = ply % 2 == 0
    return white_to_move == (analyzed_color == chess.WHITE)


def needs_annotation(quality: MoveQuality | None) -> bool:
    """True if the move is worse than "good" and gets a better-move hint."""
    return quality is not None and quality.classification in _ANNOTATED_CLASSIFICATIONS


def _best_move_san(fen_before: str, best_uci: str) -> tuple[str, str | None, str | None]:
    """Convert the evaluator's UCI best move to SAN on a throwaway board.

    Returns:
        (notation, from_square, to_square). The notation falls back to the
        raw UCI text when it cannot be played.
    """
    try:
        coords = CoordinateMove.from_uci(best_uci)
    except ValueError:
        return best_uci, None, None
    board = chess.Board(fen_before)
    move = coordinate_to_move(board, coords.from_square, coords.to_square, coords.promotion)
    if move is None:
        return best_uci, coords.from_square, coords.to_square
    return board.san(move), coords.from_square, coords.to_square


async def analyze_move_quality(
    evaluator: EvaluatorClient,
    fen_before: str,
    move_san: str,
    move_number: int,
    *,
    ply: int | None = None,
    depth: int = ANALYSIS_DEPTH,
) -> MoveQuality | None:
    """Analyze the quality of one move.

    ``eval_before`` and ``eval_after`` in the result are from the mover's
    point of view, so ``eval_drop`` always means "got worse for the mover".

    Args:
        evaluator: Position evaluator client.
        fen_before: FEN of the position BEFORE the move was played.
        move_san: The move that was played.
        move_number: Move number the result is attached to.
        ply: Optional 0-based half-move index of the move.
        depth: Evaluator search depth.

    Returns:
        MoveQuality, or None if the analysis could not be completed.
    """
    try:
        board_after = chess.Board(fen_before)
    except ValueError:
        logger.warning("Cannot analyze move %s: bad FEN %r", move_san, fen_before)
        return None
    mover = board_after.turn
    played = parse_notation(board_after, move_san)
    if played is None:
        logger.warning("Cannot analyze move %s: illegal in %s", move_san, fen_before)
        return None
    played_san = board_after.san(played)
    board_after.push(played)
    fen_after = board_after.fen()

    try:
        before = await evaluator.analyze(fen_before, depth)
        after = await evaluator.analyze(fen_after, depth)
    except TrainerServiceError as exc:
        logger.warning("Move analysis failed for %s: %s", move_san, exc)
        return None

    sign = 1 if mover == chess.WHITE else -1
    eval_before = sign * before.score_cp
    eval_after = sign * after.score_cp
    eval_drop = mover_eval_drop(mover, before.score_cp, after.score_cp)

    best_move = best_from = best_to = None
    if before.best_move:
        best_move, best_from, best_to = _best_move_san(fen_before, before.best_move)

    return MoveQuality(
        move_number=move_number,
        move=played_san,
        eval_before=eval_before,
        eval_after=eval_after,
        eval_drop=eval_drop,
        classification=classify_move(eval_drop),
        best_move=best_move,
        move_from=chess.square_name(played.from_square),
        move_to=chess.square_name(played.to_square),
        best_move_from=best_from,
        best_move_to=best_to,
        ply=ply,
    )


class MoveAnalyzer:
    """Runs move analyses as independent background tasks.

    Results are kept by move number, so a result that arrives after
    further moves were played still lands on the right move.
    """

    def __init__(
        self,
        evaluator: EvaluatorClient,
        *,
        depth: int = ANALYSIS_DEPTH,
        on_result: Callable[[MoveQuality], None] | None = None,
    ) -> None:
        self._evaluator = evaluator
        self._depth = depth
        self._on_result = on_result
        self._results: dict[int, MoveQuality] = {}
        self._tasks: set[asyncio.Task] = set()
        self._generation = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        fen_before: str,
        move_san: str,
        move_number: int,
        ply: int | None = None,
    ) -> asyncio.Task:
        """Start analyzing a move without waiting for it.

        Must be called from within a running event loop.
        """
        task = asyncio.get_running_loop().create_task(
            self._run(self._generation, fen_before, move_san, move_number, ply)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        generation: int,
        fen_before: str,
        move_san: str,
        move_number: int,
        ply: int | None,
    ) -> MoveQuality | None:
        quality = await analyze_move_quality(
            self._evaluator, fen_before, move_san, move_number, ply=ply, depth=self._depth
        )
        if quality is None or generation != self._generation:
            return None
        self._results[move_number] = quality
        if self._on_result is not None:
            self._on_result(quality)
        return quality

    def result_for(self, move_number: int) -> MoveQuality | None:
        return self._results.get(move_number)

    def results(self) -> list[MoveQuality]:
        """All finished analyses, ordered by move number."""
        return [self._results[n] for n in sorted(self._results)]

    async def wait_idle(self) -> None:
        """Wait until every scheduled analysis has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def discard_from(self, move_number: int) -> None:
        """Forget results for ``move_number`` and later, e.g. after a takeback."""
        for number in [n for n in self._results if n >= move_number]:
            del self._results[number]

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    def clear(self) -> None:
        """Drop all results and ignore analyses still in flight."""
        self._generation += 1
        self.cancel_all()
        self._results = {}
