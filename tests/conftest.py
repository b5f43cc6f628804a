"""Shared test fixtures: in-memory stand-ins for the remote services.

No test talks to the network. The explorer and evaluator fakes expose
the same coroutine methods as ExplorerClient / EvaluatorClient and are
configured per test through plain attributes.

Fixtures:
    fake_explorer      - FakeExplorer with an empty move book.
    fake_evaluator     - FakeEvaluator scoring every position 0.
    json_store         - JsonStore rooted in tmp_path.
    game_store         - GameStore over json_store.
    progress_store     - ProgressStore over json_store.
    enable_validation  - Sets TRAINER_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import asyncio

import chess
import pytest

from trainer.errors import ServiceUnavailableError
from trainer.evaluator import PositionEvaluation
from trainer.explorer import ExplorerData, ExplorerMove
from trainer.storage import GameStore, JsonStore, ProgressStore


# ---------------------------------------------------------------------------
# Fake services
# ---------------------------------------------------------------------------


class FakeExplorer:
    """Serves explorer answers from ``book``: "d2d4,g8f6" -> [ExplorerMove]."""

    def __init__(self) -> None:
        self.book: dict[str, list[ExplorerMove]] = {}
        self.fail = False
        self.calls: list[tuple[str, int]] = []

    def add(self, uci_moves: list[str], *moves: ExplorerMove) -> None:
        self.book[",".join(uci_moves)] = list(moves)

    async def fetch(self, uci_moves: list[str], top_games: int = 0) -> ExplorerData:
        play = ",".join(uci_moves)
        self.calls.append((play, top_games))
        if self.fail:
            raise ServiceUnavailableError("explorer", "service down", status=503)
        moves = tuple(self.book.get(play, ()))
        return ExplorerData(
            white=sum(m.white for m in moves),
            draws=sum(m.draws for m in moves),
            black=sum(m.black for m in moves),
            moves=moves,
        )


class FakeEvaluator:
    """Scores positions from ``scores`` (keyed by FEN board part) or ``default_score``.

    ``best_moves`` maps the same key to the UCI move the evaluator suggests.
    """

    def __init__(self) -> None:
        self.scores: dict[str, int] = {}
        self.best_moves: dict[str, str] = {}
        self.default_score = 0
        self.default_best: str | None = None
        self.fail = False
        self.delay = 0.0
        self.calls: list[tuple[str, int]] = []

    @staticmethod
    def key(fen: str) -> str:
        return fen.split(" ")[0]

    def set_after(self, fen_before: str, san: str, score_cp: int) -> None:
        """Score the position reached by playing ``san`` from ``fen_before``."""
        board = chess.Board(fen_before)
        board.push_san(san)
        self.scores[self.key(board.fen())] = score_cp

    async def analyze(self, fen: str, depth: int = 15) -> PositionEvaluation:
        self.calls.append((fen, depth))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ServiceUnavailableError("evaluator", "service down", status=503)
        key = self.key(fen)
        return PositionEvaluation(
            score_cp=self.scores.get(key, self.default_score),
            best_move=self.best_moves.get(key, self.default_best),
        )


@pytest.fixture
def fake_explorer() -> FakeExplorer:
    return FakeExplorer()


@pytest.fixture
def fake_evaluator() -> FakeEvaluator:
    return FakeEvaluator()


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def json_store(tmp_path) -> JsonStore:
    return JsonStore(tmp_path / "data")


@pytest.fixture
def game_store(json_store) -> GameStore:
    return GameStore(json_store)


@pytest.fixture
def progress_store(json_store) -> ProgressStore:
    return ProgressStore(json_store)


# ---------------------------------------------------------------------------
# Validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def enable_validation(monkeypatch):
    """Set TRAINER_VALIDATE=1 for the duration of the test."""
    monkeypatch.setenv("TRAINER_VALIDATE", "1")
