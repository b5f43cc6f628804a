"""Local persistence for London Trainer.

A JsonStore maps keys to JSON files in the data directory. Read and
write failures never propagate: reads fall back to the caller's
default, writes are skipped and logged, and in-memory state carries on.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

from trainer.models import GameResult, RecordedGame, UserProgress

logger = logging.getLogger(__name__)

GAMES_KEY = "recorded_games"
PROGRESS_KEY = "progress"
MAX_GAMES = 10

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonStore:
    """Key -> JSON blob store backed by one file per key."""

    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self._data_dir / f"{key}.json"

    def read(self, key: str, default: Any = None) -> Any:
        """Load the value stored under ``key``.

        A corrupted file (bad JSON or bad UTF-8) is backed up as .bak and the
        default returned.
        """
        path = self._path(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except ValueError:
            # JSONDecodeError and UnicodeDecodeError are both ValueErrors.
            logger.warning("Corrupted store file %s, backing up and using defaults", path)
            try:
                shutil.copy2(path, path.with_suffix(".bak"))
            except OSError as exc:
                logger.warning("Could not back up %s: %s", path, exc)
            return default
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return default

    def write(self, key: str, value: Any) -> bool:
        """Save ``value`` under ``key`` with an atomic write.

        Returns:
            True if the value was written, False if the write was skipped.
        """
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(value, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            os.replace(tmp_path, path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Skipping save of %s: %s", key, exc)
            return False

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink(missing_ok=True)
            return True
        except OSError as exc:
            logger.warning("Could not delete %s: %s", key, exc)
            return False


class GameStore:
    """Most-recent-first list of recorded games, capped at ``max_games``."""

    def __init__(self, store: JsonStore, max_games: int = MAX_GAMES) -> None:
        self._store = store
        self._max_games = max_games

    def _raw_games(self) -> list[dict]:
        data = self._store.read(GAMES_KEY, [])
        if not isinstance(data, list):
            logger.warning("Recorded games file is not a list, ignoring it")
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def list_games(self) -> list[RecordedGame]:
        """All stored games, newest first. Unreadable entries are skipped."""
        games: list[RecordedGame] = []
        for entry in self._raw_games():
            try:
                games.append(RecordedGame.from_dict(entry))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable recorded game: %s", exc)
        return games

    def get_game(self, game_id: str) -> RecordedGame | None:
        for game in self.list_games():
            if game.id == game_id:
                return game
        return None

    def save_game(self, game: RecordedGame) -> bool:
        """Prepend ``game`` and drop anything beyond the cap."""
        updated = [game.to_dict()] + [
            entry for entry in self._raw_games() if entry.get("id") != game.id
        ]
        return self._store.write(GAMES_KEY, updated[: self._max_games])

    def delete_game(self, game_id: str) -> bool:
        remaining = [entry for entry in self._raw_games() if entry.get("id") != game_id]
        return self._store.write(GAMES_KEY, remaining)

    def clear_all(self) -> bool:
        return self._store.delete(GAMES_KEY)


class ProgressStore:
    """User progress: completed lessons and practice game record."""

    def __init__(self, store: JsonStore) -> None:
        self._store = store

    def load(self) -> UserProgress:
        data = self._store.read(PROGRESS_KEY, None)
        if not isinstance(data, dict):
            return UserProgress()
        try:
            return UserProgress.from_dict(data)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Unreadable progress data, using defaults: %s", exc)
            return UserProgress()

    def save(self, progress: UserProgress) -> bool:
        return self._store.write(PROGRESS_KEY, progress.to_dict())

    def update(self, fn: Callable[[UserProgress], UserProgress]) -> UserProgress:
        """Apply ``fn`` to the stored progress and save the result."""
        progress = fn(self.load())
        self.save(progress)
        return progress

    def record_result(self, result: GameResult, player: str = "w") -> UserProgress:
        """Count a finished practice game as a win, loss or draw for ``player``."""
        def _apply(progress: UserProgress) -> UserProgress:
            if result.type == "checkmate":
                if result.winner == player:
                    progress.wins += 1
                else:
                    progress.losses += 1
            elif result.is_over:
                progress.draws += 1
            return progress

        return self.update(_apply)

    def complete_lesson(self, lesson_id: str) -> UserProgress:
        def _apply(progress: UserProgress) -> UserProgress:
            if lesson_id not in progress.completed_lessons:
                progress.completed_lessons.append(lesson_id)
            return progress

        return self.update(_apply)
