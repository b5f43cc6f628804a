"""Pytest tests for local persistence.

Tests cover the JSON store (atomic writes, corrupted file recovery),
the capped recorded-games list and user progress counters.
All tests use tmp_path for isolation from real data.
"""

from __future__ import annotations

import json

import pytest

from trainer.models import GameResult, MoveQuality, RecordedGame
from trainer.storage import GAMES_KEY, MAX_GAMES, JsonStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _game(game_id: str, result: GameResult | None = None) -> RecordedGame:
    return RecordedGame(
        id=game_id,
        timestamp=1_700_000_000_000,
        difficulty="beginner",
        result=result or GameResult("checkmate", "w"),
        pgn="1. d4 d5 *",
        move_history=("d4", "d5"),
        move_qualities=(
            MoveQuality(1, "d4", 20, 25, 0, "excellent", "d4", "d2", "d4", "d2", "d4", 0),
        ),
    )


# ---------------------------------------------------------------------------
# JsonStore
# ---------------------------------------------------------------------------


class TestJsonStore:

    def test_missing_key_returns_default(self, json_store):
        assert json_store.read("nothing", default={"a": 1}) == {"a": 1}

    def test_write_then_read(self, json_store):
        assert json_store.write("settings", {"speed": 2}) is True
        assert json_store.read("settings") == {"speed": 2}
        assert not (json_store.data_dir / "settings.tmp").exists()

    def test_corrupted_file_backed_up(self, json_store):
        json_store.data_dir.mkdir(parents=True, exist_ok=True)
        path = json_store.data_dir / "progress.json"
        path.write_text("{not json", encoding="utf-8")

        assert json_store.read("progress", default=[]) == []
        backup = json_store.data_dir / "progress.bak"
        assert backup.exists()
        assert backup.read_text(encoding="utf-8") == "{not json"

    def test_invalid_utf8_backed_up(self, json_store):
        json_store.data_dir.mkdir(parents=True, exist_ok=True)
        path = json_store.data_dir / "progress.json"
        path.write_bytes(b'[{"id": "\xff\xfe"}]')

        assert json_store.read("progress", default=[]) == []
        assert (json_store.data_dir / "progress.bak").read_bytes() == path.read_bytes()

    def test_unserializable_value_is_skipped(self, json_store):
        assert json_store.write("bad", {"value": object()}) is False
        assert json_store.read("bad") is None

    def test_invalid_key_rejected(self, json_store):
        with pytest.raises(ValueError):
            json_store.read("../escape")

    def test_write_failure_does_not_raise(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        store = JsonStore(blocker / "data")
        assert store.write("settings", {}) is False

    def test_delete(self, json_store):
        json_store.write("settings", {})
        assert json_store.delete("settings") is True
        assert json_store.read("settings") is None
        assert json_store.delete("settings") is True


# ---------------------------------------------------------------------------
# GameStore
# ---------------------------------------------------------------------------


class TestGameStore:

    def test_save_and_get(self, game_store):
        game_store.save_game(_game("game_a"))
        loaded = game_store.get_game("game_a")
        assert loaded == _game("game_a")
        assert loaded.move_qualities[0].classification == "excellent"

    def test_newest_first(self, game_store):
        for game_id in ("game_a", "game_b", "game_c"):
            game_store.save_game(_game(game_id))
        assert [g.id for g in game_store.list_games()] == ["game_c", "game_b", "game_a"]

    def test_capped_at_ten(self, game_store):
        for i in range(MAX_GAMES + 3):
            game_store.save_game(_game(f"game_{i}"))
        games = game_store.list_games()
        assert len(games) == MAX_GAMES
        assert games[0].id == f"game_{MAX_GAMES + 2}"
        assert game_store.get_game("game_0") is None

    def test_resave_does_not_duplicate(self, game_store):
        game_store.save_game(_game("game_a"))
        game_store.save_game(_game("game_b"))
        game_store.save_game(_game("game_a"))
        assert [g.id for g in game_store.list_games()] == ["game_a", "game_b"]

    def test_delete_and_clear(self, game_store):
        game_store.save_game(_game("game_a"))
        game_store.save_game(_game("game_b"))
        game_store.delete_game("game_a")
        assert [g.id for g in game_store.list_games()] == ["game_b"]
        game_store.clear_all()
        assert game_store.list_games() == []

    def test_undecodable_file_does_not_break_saving(self, json_store, game_store):
        json_store.data_dir.mkdir(parents=True, exist_ok=True)
        (json_store.data_dir / f"{GAMES_KEY}.json").write_bytes(b'[{"id": "\xff\xfe"}]')

        assert game_store.list_games() == []
        assert game_store.save_game(_game("game_a")) is True
        assert [g.id for g in game_store.list_games()] == ["game_a"]
        assert (json_store.data_dir / f"{GAMES_KEY}.bak").exists()

    def test_malformed_result_entry_skipped(self, json_store, game_store):
        broken = _game("game_bad").to_dict()
        broken["result"] = ["checkmate"]
        json_store.write(GAMES_KEY, [broken, _game("game_ok").to_dict()])
        assert [g.id for g in game_store.list_games()] == ["game_ok"]

    def test_unreadable_entries_skipped(self, json_store, game_store):
        json_store.write(GAMES_KEY, [{"id": "broken"}, _game("game_ok").to_dict(), "junk"])
        assert [g.id for g in game_store.list_games()] == ["game_ok"]

    def test_stored_field_names(self, json_store, game_store):
        game_store.save_game(_game("game_a"))
        raw = json.loads((json_store.data_dir / f"{GAMES_KEY}.json").read_text(encoding="utf-8"))
        assert set(raw[0]) == {
            "id", "timestamp", "difficulty", "result", "pgn", "move_history",
            "move_qualities", "white_player", "black_player",
        }


# ---------------------------------------------------------------------------
# ProgressStore
# ---------------------------------------------------------------------------


class TestProgressStore:

    def test_defaults(self, progress_store):
        progress = progress_store.load()
        assert progress.completed_lessons == []
        assert (progress.wins, progress.losses, progress.draws) == (0, 0, 0)

    def test_record_results(self, progress_store):
        progress_store.record_result(GameResult("checkmate", "w"))
        progress_store.record_result(GameResult("checkmate", "b"))
        progress_store.record_result(GameResult("stalemate"))
        progress_store.record_result(GameResult("draw"))
        progress_store.record_result(GameResult("playing"))
        progress = progress_store.load()
        assert (progress.wins, progress.losses, progress.draws) == (1, 1, 2)

    def test_complete_lesson_once(self, progress_store):
        progress_store.complete_lesson("kid")
        progress_store.complete_lesson("kid")
        progress_store.complete_lesson("qgd")
        assert progress_store.load().completed_lessons == ["kid", "qgd"]

    def test_corrupted_progress_uses_defaults(self, json_store, progress_store):
        json_store.data_dir.mkdir(parents=True, exist_ok=True)
        (json_store.data_dir / "progress.json").write_text("[]", encoding="utf-8")
        assert progress_store.load().wins == 0

    @pytest.mark.parametrize("stored", [
        {"practice_games": [1, 2]},
        {"practice_games": "3-0-1"},
        {"completed_lessons": 5},
    ])
    def test_wrongly_typed_fields_use_defaults(self, json_store, progress_store, stored):
        json_store.write("progress", stored)
        progress = progress_store.load()
        assert (progress.wins, progress.losses, progress.draws) == (0, 0, 0)

    def test_record_result_over_wrongly_typed_file(self, json_store, progress_store):
        json_store.write("progress", {"completed_lessons": ["kid"], "practice_games": None})
        progress_store.record_result(GameResult("checkmate", "w"))
        progress = progress_store.load()
        assert progress.wins == 1
        assert progress.completed_lessons == ["kid"]
