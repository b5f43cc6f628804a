"""Practice games against the computer.

PracticeSession wires the pieces together: the player's move is applied
synchronously, its analysis is started in the background, the game-over
check runs, and only then is the opponent's reply requested and
applied. A finished game is recorded exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable

import chess

from trainer.analysis import MoveAnalyzer, move_number_for_ply
from trainer.errors import TrainerServiceError
from trainer.evaluator import EvaluatorClient, evaluation_label
from trainer.explorer import ExplorerClient
from trainer.game import GameStateManager
from trainer.models import (
    DIFFICULTIES,
    GameResult,
    MoveQuality,
    MoveRecord,
    RecordedGame,
)
from trainer.opponent import OpponentMoveSelector
from trainer.storage import GameStore, ProgressStore

logger = logging.getLogger(__name__)

STATS_MAX_PLY = 20
STATS_TOP_MOVES = 5
ANALYSIS_GRACE_S = 5.0
EVALUATION_DEPTH = 15


def _new_game_id() -> str:
    return f"game_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class PracticeSession:
    """A practice game: the player has White, the computer has Black."""

    def __init__(
        self,
        game: GameStateManager | None = None,
        *,
        explorer: ExplorerClient | None = None,
        evaluator: EvaluatorClient | None = None,
        opponent: OpponentMoveSelector | None = None,
        game_store: GameStore | None = None,
        progress_store: ProgressStore | None = None,
        difficulty: str = "intermediate",
        analysis_grace: float = ANALYSIS_GRACE_S,
        on_quality: Callable[[MoveQuality], None] | None = None,
    ) -> None:
        if difficulty not in DIFFICULTIES:
            raise ValueError(f"Unknown difficulty: {difficulty!r}")
        self.game = game or GameStateManager()
        self._explorer = explorer
        self._evaluator = evaluator
        self._opponent = opponent or OpponentMoveSelector(explorer, evaluator)
        self._analyzer = (
            MoveAnalyzer(evaluator, on_result=self._on_quality) if evaluator else None
        )
        self._on_quality_cb = on_quality
        self._game_store = game_store
        self._progress_store = progress_store
        self._difficulty = difficulty
        self._analysis_grace = analysis_grace
        self._result = GameResult()
        self._recorded: RecordedGame | None = None
        self.last_quality: MoveQuality | None = None

    # ── State ───────────────────────────────────────────────────────

    @property
    def difficulty(self) -> str:
        return self._difficulty

    @difficulty.setter
    def difficulty(self, value: str) -> None:
        if value not in DIFFICULTIES:
            raise ValueError(f"Unknown difficulty: {value!r}")
        self._difficulty = value

    @property
    def result(self) -> GameResult:
        return self._result

    @property
    def recorded_game(self) -> RecordedGame | None:
        return self._recorded

    @property
    def analyzing(self) -> bool:
        return self._analyzer is not None and self._analyzer.pending > 0

    def move_qualities(self) -> list[MoveQuality]:
        return self._analyzer.results() if self._analyzer is not None else []

    def _on_quality(self, quality: MoveQuality) -> None:
        self.last_quality = quality
        if self._on_quality_cb is not None:
            self._on_quality_cb(quality)

    def new_game(self) -> None:
        """Reset the board and discard analyses from the previous game."""
        if self._analyzer is not None:
            self._analyzer.clear()
        self.game.reset()
        self._result = GameResult()
        self._recorded = None
        self.last_quality = None

    # ── Moves ───────────────────────────────────────────────────────

    async def play_human_move(
        self,
        from_square: str,
        to_square: str,
        promotion: str | None = "q",
    ) -> MoveRecord | None:
        """Apply the player's move, then let the computer reply.

        Returns:
            The player's MoveRecord, or None if the move was rejected.
        """
        if not self._players_turn():
            return None
        fen_before = self.game.fen
        ply = self.game.ply_count
        record = self.game.attempt_move(from_square, to_square, promotion)
        if record is None:
            return None
        await self._after_human_move(fen_before, ply, record)
        return record

    async def play_human_san(self, notation: str) -> MoveRecord | None:
        """Same as play_human_move, for a move given in notation."""
        if not self._players_turn():
            return None
        fen_before = self.game.fen
        ply = self.game.ply_count
        record = self.game.attempt_move_san(notation)
        if record is None:
            return None
        await self._after_human_move(fen_before, ply, record)
        return record

    def _players_turn(self) -> bool:
        return not self._result.is_over and self.game.turn == chess.WHITE

    async def _after_human_move(self, fen_before: str, ply: int, record: MoveRecord) -> None:
        if self._analyzer is not None:
            self._analyzer.schedule(fen_before, record.san, move_number_for_ply(ply), ply)
        if await self._check_game_over():
            return
        await self.play_opponent_move()

    async def play_opponent_move(self) -> MoveRecord | None:
        """Ask the opponent for a reply and apply it."""
        if self._result.is_over or self.game.is_game_over():
            return None
        san = await self._opponent.choose_move(self.game.board_copy(), self._difficulty)
        if san is None:
            return None
        record = self.game.attempt_move_san(san)
        if record is None:
            logger.warning("Opponent chose unplayable move %s", san)
            return None
        await self._check_game_over()
        return record

    def undo_player_move(self) -> list[MoveRecord]:
        """Take back moves until it is the player's turn again.

        A finished, recorded game cannot be taken back.

        Returns:
            The undone records, most recent first.
        """
        if self._recorded is not None:
            return []
        undone: list[MoveRecord] = []
        record = self.game.undo_last()
        while record is not None:
            undone.append(record)
            if self.game.turn == chess.WHITE:
                break
            record = self.game.undo_last()
        if undone and self._analyzer is not None:
            self._analyzer.discard_from(move_number_for_ply(self.game.ply_count))
        self._result = GameResult()
        return undone

    # ── Game end ────────────────────────────────────────────────────

    async def _check_game_over(self) -> bool:
        result = self.game.game_result()
        if not result.is_over:
            return False
        if self._recorded is None:
            self._result = result
            if self._progress_store is not None:
                self._progress_store.record_result(result, player="w")
            await self.wait_for_analysis()
            self._recorded = self.build_recorded_game(result)
            if self._game_store is not None:
                self._game_store.save_game(self._recorded)
        return True

    async def wait_for_analysis(self) -> None:
        if self._analyzer is None or self._analyzer.pending == 0:
            return
        try:
            await asyncio.wait_for(self._analyzer.wait_idle(), self._analysis_grace)
        except asyncio.TimeoutError:
            logger.warning("Recording game before all move analyses finished")

    def build_recorded_game(self, result: GameResult | None = None) -> RecordedGame:
        """Snapshot the current game as a RecordedGame."""
        result = result or self.game.game_result()
        opponent_name = f"{self._difficulty.capitalize()} AI"
        return RecordedGame(
            id=_new_game_id(),
            timestamp=int(time.time() * 1000),
            difficulty=self._difficulty,
            result=result,
            pgn=self.game.to_pgn({
                "Event": "London Trainer practice",
                "White": "You",
                "Black": opponent_name,
            }),
            move_history=tuple(self.game.history_san()),
            move_qualities=tuple(self.move_qualities()),
            white_player="You",
            black_player=opponent_name,
        )

    # ── Position information ────────────────────────────────────────

    async def position_stats(self) -> dict | None:
        """Master statistics for the current position (first 20 plies only)."""
        if self._explorer is None or self.game.ply_count > STATS_MAX_PLY:
            return None
        try:
            data = await self._explorer.fetch(self.game.history_as_uci(), 0)
        except TrainerServiceError as exc:
            logger.warning("Position stats unavailable: %s", exc)
            return None
        return {
            "white": data.white,
            "draws": data.draws,
            "black": data.black,
            "top_moves": [
                {"san": m.san, "total": m.total, "win_rate": m.white_win_rate}
                for m in data.moves[:STATS_TOP_MOVES]
            ],
        }

    async def evaluate_position(self) -> dict | None:
        """Evaluator score and label for the current position."""
        if self._evaluator is None:
            return None
        try:
            analysis = await self._evaluator.analyze(self.game.fen, EVALUATION_DEPTH)
        except TrainerServiceError as exc:
            logger.warning("Position evaluation unavailable: %s", exc)
            return None
        return {"score": analysis.score_cp, "label": evaluation_label(analysis.score_cp)}

    def london_checks(self) -> list[dict] | None:
        """How closely White followed the London System setup."""
        history = self.game.history_san()
        if len(history) < 2:
            return None
        white_moves = history[0::2]
        return [
            {"name": "Played d4 first", "pass": history[0] == "d4"},
            {"name": "Developed Bf4 early (before move 5)", "pass": "Bf4" in white_moves[:4]},
            {"name": "Played e3 (solid structure)", "pass": "e3" in white_moves},
            {"name": "Castled kingside", "pass": "O-O" in white_moves},
            {"name": "Played Nbd2 (flexible knight)", "pass": "Nbd2" in white_moves},
        ]

    async def close(self) -> None:
        """Stop background analyses."""
        if self._analyzer is not None:
            self._analyzer.cancel_all()
