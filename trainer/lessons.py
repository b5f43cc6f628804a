"""Guided London System lessons.

Each lesson is a scripted move sequence. A LessonSession walks the
player through it on the live game: the player's moves are checked
against the script, and the opponent's scripted replies are played
automatically. Lessons can be enriched with master-game statistics
from the opening explorer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace

import chess

from trainer.errors import TrainerServiceError
from trainer.explorer import ExplorerClient
from trainer.game import GameStateManager, coordinate_to_move, parse_notation

logger = logging.getLogger(__name__)

_REQUEST_SPACING_S = 0.1


@dataclass(frozen=True)
class MasterStats:
    """How a lesson move has fared in master games."""

    total_games: int
    white_wins: int
    draws: int
    black_wins: int
    win_rate: int
    popularity: int


@dataclass(frozen=True)
class LessonStep:
    move: str
    side: str
    explanation: str
    highlight: str | None = None
    master_stats: MasterStats | None = None


@dataclass(frozen=True)
class Lesson:
    id: str
    name: str
    description: str
    key_ideas: tuple[str, ...]
    steps: tuple[LessonStep, ...]


def _w(move: str, explanation: str, highlight: str | None = None) -> LessonStep:
    return LessonStep(move, "w", explanation, highlight)


def _b(move: str, explanation: str) -> LessonStep:
    return LessonStep(move, "b", explanation)


LESSONS: dict[str, Lesson] = {
    "kid": Lesson(
        id="kid",
        name="vs King's Indian Defense",
        description="Black plays ...Nf6, ...g6, ...Bg7, ...d6",
        key_ideas=(
            "Develop Bf4 before e3",
            "Be2 rather than Bd3 since Black has not played ...d5",
            "Plan: h3, Nbd2, c3, then consider the e4 break",
        ),
        steps=(
            _w("d4", "The London System starts with 1.d4, taking the centre.", "Opening Move"),
            _b("Nf6", "A flexible knight move that often leads to a King's Indian setup."),
            _w("Bf4", "The signature London move: the bishop comes out before e3.", "Key Principle"),
            _b("g6", "Black prepares to fianchetto the bishop on g7."),
            _w("e3", "Now e3 is safe because the bishop is already outside the pawn chain.", "Structure"),
            _b("Bg7", "The fianchetto is complete."),
            _w("Nf3", "Natural development supporting d4 and eyeing e5."),
            _b("d6", "Typical King's Indian play, aiming for ...e5 later."),
            _w("Be2", "Be2 is preferred here; there is no d5 pawn for Bd3 to target.", "Variation Choice"),
            _b("O-O", "Black castles kingside."),
            _w("O-O", "Castle and connect the rooks.", "Setup Complete"),
            _b("Nbd7", "Black develops the second knight. Next for White: h3, Nbd2, c3."),
        ),
    ),
    "qgd": Lesson(
        id="qgd",
        name="vs Queen's Gambit Declined",
        description="Black plays ...d5, ...e6, ...Nf6, ...Be7",
        key_ideas=(
            "Bd3 pairs with Bf4 to aim at the kingside",
            "Nbd2 rather than Nc3 keeps the c-pawn free for c3",
            "Plan: c3, Qe2, then Ne5",
        ),
        steps=(
            _w("d4", "Start with the queen's pawn.", "Opening Move"),
            _b("d5", "The classical reply, leading to a QGD structure."),
            _w("Bf4", "Bishop out before e3.", "Key Principle"),
            _b("Nf6", "Natural development."),
            _w("e3", "Supports d4 and opens the f1-a6 diagonal.", "Structure"),
            _b("e6", "Solid but slightly passive."),
            _w("Nf3", "Develops and controls central squares."),
            _b("Be7", "A modest bishop development."),
            _w("Bd3", "Eyes h7 and forms the London attacking battery.", "Attacking Setup"),
            _b("O-O", "Black castles."),
            _w("Nbd2", "Knight to d2, keeping c3 available.", "Key Principle"),
            _b("c5", "Black challenges the centre; c3 keeps it stable."),
        ),
    ),
    "qid": Lesson(
        id="qid",
        name="vs Queen's Indian Defense",
        description="Black plays ...Nf6, ...e6, ...b6, ...Bb7",
        key_ideas=(
            "Control e4, the square Black's b7 bishop aims at",
            "Bd3 and Nbd2 before choosing between c3 and c4",
            "Plan: h3, O-O, then c3 or c4 depending on Black's setup",
        ),
        steps=(
            _w("d4", "The usual London first move.", "Opening Move"),
            _b("Nf6", "Flexible; Black waits to see White's setup."),
            _w("Bf4", "The bishop comes out at once, before e3.", "Key Principle"),
            _b("e6", "Black prepares ...b6 and ...Bb7."),
            _w("e3", "With the bishop already out, e3 costs nothing.", "Structure"),
            _b("b6", "The Queen's Indian move: the bishop will go to b7."),
            _w("Nf3", "Supports d4 and watches e5.", "Development"),
            _b("Bb7", "The fianchetto is complete and the bishop eyes e4."),
            _w("Bd3", "Contests e4 and prepares to castle.", "Control e4"),
            _b("Be7", "Quiet, slightly passive development."),
            _w("Nbd2", "Another guard on e4; the c-pawn stays free.", "Flexible Setup"),
            _b("O-O", "Black castles."),
            _w("O-O", "Development is complete with clear plans ahead.", "Setup Complete"),
            _b("d5", "Black takes space in the centre. Answer with c3 for solidity or c4 to challenge."),
        ),
    ),
    "dutch": Lesson(
        id="dutch",
        name="vs Dutch Defense",
        description="Black plays ...f5, aggressive but loosening",
        key_ideas=(
            "...f5 weakens Black's kingside",
            "Aim pieces at the light squares around Black's king",
            "Plan: Bd3, Nbd2, and kingside pressure",
        ),
        steps=(
            _w("d4", "Our standard first move.", "Opening Move"),
            _b("f5", "The Dutch: aggressive, but the kingside is weakened."),
            _w("Bf4", "The bishop eyes the dark squares around Black's king.", "Exploiting Weakness"),
            _b("Nf6", "Standard Dutch development."),
            _w("e3", "A solid structure; no need to hurry.", "Structure"),
            _b("e6", "Black supports ...d5 and develops."),
            _w("Nf3", "Natural development with ideas of Ne5.", "Development"),
            _b("d6", "Black keeps the position closed."),
            _w("Bd3", "Strong against the Dutch: f5 becomes a target.", "Attacking Setup"),
            _b("Be7", "Modest development."),
            _w("O-O", "Castle and prepare the attack.", "Preparation"),
            _b("O-O", "Black castles into potential danger."),
        ),
    ),
}

_lesson_cache: dict[str, Lesson] = {}


def get_lesson(lesson_id: str) -> Lesson:
    """Look up a lesson by id.

    Raises:
        KeyError: If no lesson has that id.
    """
    if lesson_id not in LESSONS:
        raise KeyError(f"Lesson {lesson_id} not found")
    return LESSONS[lesson_id]


def master_stats_for(data, san: str) -> MasterStats | None:
    """Summarise one move from explorer data, or None if it is not listed."""
    move = data.find_move(san)
    if move is None:
        return None
    total = move.total
    return MasterStats(
        total_games=total,
        white_wins=move.white,
        draws=move.draws,
        black_wins=move.black,
        win_rate=round(move.white / total * 100) if total else 0,
        popularity=round(total / data.total * 100) if data.total else 0,
    )


async def fetch_lesson_with_stats(
    explorer: ExplorerClient,
    lesson_id: str,
    spacing: float | None = None,
) -> Lesson:
    """Attach master statistics to every step of a lesson.

    A failed lookup leaves that step without stats; the rest continue.
    """
    if spacing is None:
        spacing = _REQUEST_SPACING_S
    lesson = get_lesson(lesson_id)
    board = chess.Board()
    enriched: list[LessonStep] = []

    for i, step in enumerate(lesson.steps):
        stats = None
        try:
            data = await explorer.fetch([m.uci() for m in board.move_stack], 0)
            stats = master_stats_for(data, step.move)
        except TrainerServiceError as exc:
            logger.warning("No master stats for %s step %d: %s", lesson_id, i, exc)
        enriched.append(replace(step, master_stats=stats))

        move = parse_notation(board, step.move)
        if move is None:
            logger.warning("Lesson %s step %d has illegal move %s", lesson_id, i, step.move)
            break
        board.push(move)

        if i < len(lesson.steps) - 1 and spacing > 0:
            await asyncio.sleep(spacing)

    return replace(lesson, steps=tuple(enriched))


async def get_lesson_with_stats(explorer: ExplorerClient, lesson_id: str) -> Lesson:
    """Cached version of fetch_lesson_with_stats."""
    cached = _lesson_cache.get(lesson_id)
    if cached is not None:
        return cached
    enriched = await fetch_lesson_with_stats(explorer, lesson_id)
    _lesson_cache[lesson_id] = enriched
    return enriched


class LessonSession:
    """Walk the player through a lesson on the live game."""

    def __init__(self, lesson: Lesson, game: GameStateManager, player_side: str = "w") -> None:
        self.lesson = lesson
        self._game = game
        self._player_side = player_side
        self._step_index = 0
        self._mistakes = 0
        self._game.reset()
        self._play_scripted_replies()

    @property
    def step_index(self) -> int:
        return self._step_index

    @property
    def mistakes(self) -> int:
        return self._mistakes

    @property
    def is_complete(self) -> bool:
        return self._step_index >= len(self.lesson.steps)

    @property
    def current_step(self) -> LessonStep | None:
        if self.is_complete:
            return None
        return self.lesson.steps[self._step_index]

    def _play_scripted_replies(self) -> None:
        while not self.is_complete and self.current_step.side != self._player_side:
            step = self.current_step
            if self._game.attempt_move_san(step.move) is None:
                logger.warning("Scripted move %s is illegal, stopping lesson", step.move)
                self._step_index = len(self.lesson.steps)
                return
            self._step_index += 1

    def try_move(self, from_square: str, to_square: str, promotion: str | None = "q") -> str:
        """Check a board move against the script.

        Returns:
            "correct" (played, replies auto-played), "wrong" (legal but
            not the lesson move, not played), "illegal", or "complete".
        """
        if self.is_complete:
            return "complete"
        board = self._game.board_copy()
        move = coordinate_to_move(board, from_square, to_square, promotion)
        if move is None:
            return "illegal"
        return self.try_san(board.san(move))

    def try_san(self, san: str) -> str:
        """Same as try_move, for a move given in notation."""
        if self.is_complete:
            return "complete"
        board = self._game.board_copy()
        move = parse_notation(board, san)
        if move is None:
            return "illegal"
        if board.san(move) != self.current_step.move:
            self._mistakes += 1
            return "wrong"
        self._game.attempt_move_san(self.current_step.move)
        self._step_index += 1
        self._play_scripted_replies()
        return "correct"

    def hint(self) -> str | None:
        step = self.current_step
        return step.move if step is not None else None
