"""Shared data models for London Trainer.

GameState, MoveQuality and RecordedGame are the shared contract between
the trainer core, the MCP server and the TUI. Everything that is stored
on disk round-trips through ``to_dict`` / ``from_dict``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Literal

Difficulty = Literal["beginner", "intermediate", "advanced"]
DIFFICULTIES: tuple[str, ...] = ("beginner", "intermediate", "advanced")

MoveClassification = Literal["excellent", "good", "inaccuracy", "mistake", "blunder"]
CLASSIFICATIONS: tuple[str, ...] = ("excellent", "good", "inaccuracy", "mistake", "blunder")

ResultType = Literal["checkmate", "stalemate", "draw", "playing"]


@dataclass(frozen=True)
class CoordinateMove:
    """A move in coordinate form: origin, destination, optional promotion letter."""

    from_square: str
    to_square: str
    promotion: str | None = None

    @property
    def uci(self) -> str:
        return self.from_square + self.to_square + (self.promotion or "")

    @classmethod
    def from_uci(cls, uci: str) -> CoordinateMove:
        """Split a UCI string such as ``e7e8q`` into its parts.

        Raises:
            ValueError: If the string is too short to hold two squares.
        """
        text = uci.strip()
        if len(text) < 4:
            raise ValueError(f"Not a coordinate move: {uci!r}")
        promotion = text[4].lower() if len(text) > 4 else None
        return cls(text[0:2], text[2:4], promotion)


@dataclass(frozen=True)
class MoveRecord:
    """An applied move, as produced by the rules engine."""

    from_square: str
    to_square: str
    san: str
    promotion: str | None = None
    captured: str | None = None
    is_check: bool = False

    @property
    def uci(self) -> str:
        return self.from_square + self.to_square + (self.promotion or "")

    def coordinates(self) -> CoordinateMove:
        return CoordinateMove(self.from_square, self.to_square, self.promotion)


@dataclass(frozen=True)
class LastMove:
    """Squares to highlight for the most recently applied move."""

    from_square: str
    to_square: str


@dataclass(frozen=True)
class ArrowHint:
    """A review annotation arrow; kind is "played" or "best"."""

    from_square: str
    to_square: str
    kind: str


@dataclass(frozen=True)
class MoveQuality:
    """Analysis of a single move compared to the evaluator's best move."""

    move_number: int
    move: str
    eval_before: float
    eval_after: float
    eval_drop: float
    classification: str
    best_move: str | None = None
    move_from: str | None = None
    move_to: str | None = None
    best_move_from: str | None = None
    best_move_to: str | None = None
    ply: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> MoveQuality:
        return cls(
            move_number=int(data["move_number"]),
            move=data["move"],
            eval_before=data["eval_before"],
            eval_after=data["eval_after"],
            eval_drop=data["eval_drop"],
            classification=data["classification"],
            best_move=data.get("best_move"),
            move_from=data.get("move_from"),
            move_to=data.get("move_to"),
            best_move_from=data.get("best_move_from"),
            best_move_to=data.get("best_move_to"),
            ply=data.get("ply"),
        )


@dataclass(frozen=True)
class GameResult:
    """Terminal (or ongoing) state of a game; winner is "w" or "b"."""

    type: str = "playing"
    winner: str | None = None

    @property
    def is_over(self) -> bool:
        return self.type != "playing"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> GameResult:
        return cls(type=data.get("type", "playing"), winner=data.get("winner"))


@dataclass(frozen=True)
class RecordedGame:
    """A finished practice game. Never mutated after creation."""

    id: str
    timestamp: int
    difficulty: str
    result: GameResult
    pgn: str
    move_history: tuple[str, ...]
    move_qualities: tuple[MoveQuality, ...] = ()
    white_player: str = "You"
    black_player: str = "AI"

    @property
    def move_count(self) -> int:
        return len(self.move_history)

    def quality_for(self, move_number: int) -> MoveQuality | None:
        for quality in self.move_qualities:
            if quality.move_number == move_number:
                return quality
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "difficulty": self.difficulty,
            "result": self.result.to_dict(),
            "pgn": self.pgn,
            "move_history": list(self.move_history),
            "move_qualities": [q.to_dict() for q in self.move_qualities],
            "white_player": self.white_player,
            "black_player": self.black_player,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RecordedGame:
        """Rebuild a RecordedGame from its stored dict.

        Raises:
            KeyError: If a required field is missing.
        """
        return cls(
            id=data["id"],
            timestamp=int(data["timestamp"]),
            difficulty=data["difficulty"],
            result=GameResult.from_dict(data.get("result", {})),
            pgn=data.get("pgn", ""),
            move_history=tuple(data.get("move_history", [])),
            move_qualities=tuple(
                MoveQuality.from_dict(q) for q in data.get("move_qualities", [])
            ),
            white_player=data.get("white_player", "You"),
            black_player=data.get("black_player", "AI"),
        )


@dataclass(frozen=True)
class ReplayState:
    """Read-only snapshot of the replay controller."""

    is_replaying: bool = False
    current_move_index: int = 0
    is_playing: bool = False
    speed: float = 1.0
    game: RecordedGame | None = None


@dataclass
class GameState:
    """Represents the full state of the live game for display and sync."""

    fen: str
    board_display: str
    move_list: list[str] = field(default_factory=list)
    last_move: str | None = None
    last_move_san: str | None = None
    selected_square: str | None = None
    legal_targets: list[str] = field(default_factory=list)
    side_to_move: str = "white"
    is_check: bool = False
    is_game_over: bool = False
    result: dict = field(default_factory=lambda: {"type": "playing", "winner": None})
    legal_moves: list[str] = field(default_factory=list)


@dataclass
class UserProgress:
    """Persistent user progress."""

    completed_lessons: list[str] = field(default_factory=list)
    wins: int = 0
    losses: int = 0
    draws: int = 0

    def to_dict(self) -> dict:
        return {
            "completed_lessons": list(self.completed_lessons),
            "practice_games": {"wins": self.wins, "losses": self.losses, "draws": self.draws},
        }

    @classmethod
    def from_dict(cls, data: dict) -> UserProgress:
        games = data.get("practice_games")
        if not isinstance(games, dict):
            games = {}
        return cls(
            completed_lessons=list(data.get("completed_lessons", [])),
            wins=int(games.get("wins", 0)),
            losses=int(games.get("losses", 0)),
            draws=int(games.get("draws", 0)),
        )
