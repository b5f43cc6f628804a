"""Replay and review of recorded games.

The controller is a small state machine::

    idle -> reviewing <-> playing -> idle

The position shown at index K is always rebuilt by replaying moves
[0, K) onto a fresh board, so jumping around (3 -> 0 -> 7) gives the
same result as stepping one move at a time. Nothing here shares a board
with live play.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Callable, Sequence

import chess
import chess.pgn

from trainer.analysis import is_analyzed_ply, move_number_for_ply, needs_annotation
from trainer.game import GameStateManager, parse_notation
from trainer.models import ArrowHint, LastMove, MoveQuality, RecordedGame, ReplayState

logger = logging.getLogger(__name__)

IDLE = "idle"
REVIEWING = "reviewing"
PLAYING = "playing"

REPLAY_SPEEDS = (0.5, 1.0, 2.0)
REPLAY_INTERVAL_S = 1.0


def board_at(
    moves: Sequence[str],
    index: int,
    starting_fen: str = chess.STARTING_FEN,
) -> chess.Board:
    """Build a fresh board with the first ``index`` moves applied.

    Raises:
        ValueError: If a recorded move is illegal.
    """
    board = chess.Board(starting_fen)
    for san in moves[:index]:
        board.push_san(san)
    return board


def starting_fen_of(pgn_text: str) -> str:
    """Starting position of a PGN record (standard start if not set up)."""
    if not pgn_text:
        return chess.STARTING_FEN
    game = chess.pgn.read_game(io.StringIO(pgn_text))
    if game is None:
        return chess.STARTING_FEN
    return game.board().fen()


def quality_for_ply(
    qualities: Sequence[MoveQuality],
    ply: int,
    analyzed_color: chess.Color = chess.WHITE,
) -> MoveQuality | None:
    """Find the analysis attached to the half-move at ``ply``, if any."""
    if ply < 0 or not is_analyzed_ply(ply, analyzed_color):
        return None
    for quality in qualities:
        if quality.ply == ply:
            return quality
    move_number = move_number_for_ply(ply)
    for quality in qualities:
        if quality.ply is None and quality.move_number == move_number:
            return quality
    return None


def annotation_arrows(quality: MoveQuality | None) -> list[ArrowHint]:
    """Played-move and better-move arrows for an inferior move."""
    if not needs_annotation(quality):
        return []
    arrows: list[ArrowHint] = []
    if quality.move_from and quality.move_to:
        arrows.append(ArrowHint(quality.move_from, quality.move_to, "played"))
    if quality.best_move_from and quality.best_move_to:
        arrows.append(ArrowHint(quality.best_move_from, quality.best_move_to, "best"))
    return arrows


class ReplayController:
    """Step through a finished game without touching the live board."""

    def __init__(
        self,
        live_game: GameStateManager | None = None,
        *,
        base_interval: float = REPLAY_INTERVAL_S,
        analyzed_color: chess.Color = chess.WHITE,
        on_change: Callable[[ReplayState], None] | None = None,
    ) -> None:
        self._live_game = live_game
        self._base_interval = base_interval
        self._analyzed_color = analyzed_color
        self.on_change = on_change
        self._phase = IDLE
        self._game: RecordedGame | None = None
        self._starting_fen = chess.STARTING_FEN
        self._index = 0
        self._speed = 1.0
        self._timer: asyncio.Task | None = None

    # ── State ───────────────────────────────────────────────────────

    @property
    def phase(self) -> str:
        return self._phase

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def move_count(self) -> int:
        return self._game.move_count if self._game is not None else 0

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def interval(self) -> float:
        """Seconds between auto-advance ticks at the current speed."""
        return self._base_interval / self._speed

    @property
    def at_end(self) -> bool:
        return self._index >= self.move_count

    def state(self) -> ReplayState:
        return ReplayState(
            is_replaying=self._phase != IDLE,
            current_move_index=self._index,
            is_playing=self._phase == PLAYING,
            speed=self._speed,
            game=self._game,
        )

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self.state())

    # ── Transitions ─────────────────────────────────────────────────

    def enter_replay(self, game: RecordedGame) -> None:
        """Start reviewing ``game`` from its initial position."""
        self._cancel_timer()
        self._game = game
        self._starting_fen = starting_fen_of(game.pgn)
        self._index = 0
        self._phase = REVIEWING
        self._notify()

    def step(self, delta: int) -> int:
        """Move the index by ``delta``, clamped to [0, move_count].

        Reaching the final index while playing drops back to reviewing.
        """
        if self._phase == IDLE:
            return self._index
        self._index = max(0, min(self.move_count, self._index + delta))
        if self._phase == PLAYING and self.at_end:
            self._phase = REVIEWING
            self._cancel_timer()
        self._notify()
        return self._index

    def go_to(self, index: int) -> int:
        """Jump directly to ``index`` (clamped)."""
        return self.step(index - self._index)

    def toggle_play(self) -> str:
        """Switch between reviewing and playing.

        Starting playback at the final index is a no-op.
        """
        if self._phase == PLAYING:
            self._phase = REVIEWING
            self._cancel_timer()
        elif self._phase == REVIEWING and not self.at_end:
            self._phase = PLAYING
            self._start_timer()
        self._notify()
        return self._phase

    def set_speed(self, multiplier: float) -> None:
        """Change the auto-advance speed; takes effect on the next tick.

        Raises:
            ValueError: If the multiplier is not positive.
        """
        if multiplier <= 0:
            raise ValueError(f"Replay speed must be positive, got {multiplier}")
        self._speed = float(multiplier)
        self._notify()

    def exit(self) -> None:
        """Leave replay and reset the live game to a fresh position."""
        self._cancel_timer()
        self._game = None
        self._starting_fen = chess.STARTING_FEN
        self._index = 0
        self._phase = IDLE
        if self._live_game is not None:
            self._live_game.reset()
        self._notify()

    # ── Auto-advance ────────────────────────────────────────────────

    def tick(self) -> None:
        """One auto-advance step; ignored unless playing."""
        if self._phase != PLAYING:
            return
        self.step(+1)

    def _start_timer(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the caller drives playback through tick().
            return
        self._timer = loop.create_task(self._auto_advance())

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _auto_advance(self) -> None:
        while self._phase == PLAYING:
            await asyncio.sleep(self.interval)
            self.tick()

    async def wait_stopped(self) -> None:
        """Wait for auto-advance to stop by itself."""
        timer = self._timer
        if timer is not None:
            try:
                await timer
            except asyncio.CancelledError:
                pass

    # ── Derived views ───────────────────────────────────────────────

    def _resolve(self, index: int | None) -> int:
        if index is None:
            return self._index
        return max(0, min(self.move_count, index))

    def position_at(self, index: int | None = None) -> chess.Board:
        """Fresh board for the position after ``index`` moves."""
        if self._game is None:
            return chess.Board()
        return board_at(self._game.move_history, self._resolve(index), self._starting_fen)

    def fen_at(self, index: int | None = None) -> str:
        return self.position_at(index).fen()

    def last_move_at(self, index: int | None = None) -> LastMove | None:
        """Squares of the move that led to ``index`` (None at index 0)."""
        index = self._resolve(index)
        if self._game is None or index == 0:
            return None
        board = board_at(self._game.move_history, index - 1, self._starting_fen)
        move = parse_notation(board, self._game.move_history[index - 1])
        if move is None:
            return None
        return LastMove(chess.square_name(move.from_square), chess.square_name(move.to_square))

    def quality_at(self, index: int | None = None) -> MoveQuality | None:
        """Analysis of the move that led to ``index``, if it was analyzed."""
        index = self._resolve(index)
        if self._game is None or index == 0:
            return None
        return quality_for_ply(self._game.move_qualities, index - 1, self._analyzed_color)

    def arrows_at(self, index: int | None = None) -> list[ArrowHint]:
        return annotation_arrows(self.quality_at(index))


def replay_view(controller: ReplayController) -> dict:
    """Build a renderable state dict for the controller's current index."""
    state = controller.state()
    game = state.game
    index = state.current_move_index
    last = controller.last_move_at()
    quality = controller.quality_at()
    return {
        "fen": controller.fen_at(),
        "move_list": list(game.move_history[:index]) if game else [],
        "last_move": f"{last.from_square}{last.to_square}" if last else None,
        "arrows": [
            {"from_square": a.from_square, "to_square": a.to_square, "kind": a.kind}
            for a in controller.arrows_at()
        ],
        "quality": quality.to_dict() if quality else None,
        "replay": {
            "index": index,
            "total": controller.move_count,
            "phase": controller.phase,
            "speed": controller.speed,
        },
    }
