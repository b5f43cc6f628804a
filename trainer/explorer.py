"""Lichess masters opening explorer client with caching.

The explorer indexes positions by the sequence of moves that reached
them, in UCI form (``d2d4,g8f6``). An empty sequence queries the
starting position.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import aiohttp

from trainer.config import Settings, load_settings
from trainer.errors import MalformedResponseError
from trainer.http_client import JsonServiceClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExplorerMove:
    """One continuation with its recorded results."""

    uci: str
    san: str
    white: int = 0
    draws: int = 0
    black: int = 0
    average_rating: int | None = None

    @property
    def total(self) -> int:
        return self.white + self.draws + self.black

    @property
    def white_win_rate(self) -> int:
        """White's win percentage, rounded."""
        return round(self.white / self.total * 100) if self.total else 0


@dataclass(frozen=True)
class ExplorerGame:
    """A notable master game that reached the position."""

    id: str
    white: str
    black: str
    year: int | None = None
    result: str = "*"


@dataclass(frozen=True)
class ExplorerData:
    """Aggregate statistics for one position."""

    white: int = 0
    draws: int = 0
    black: int = 0
    moves: tuple[ExplorerMove, ...] = ()
    top_games: tuple[ExplorerGame, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return self.white + self.draws + self.black

    def find_move(self, san: str) -> ExplorerMove | None:
        for move in self.moves:
            if move.san == san:
                return move
        return None


def _player_name(value) -> str:
    if isinstance(value, dict):
        return str(value.get("name", "?"))
    return str(value) if value is not None else "?"


def _game_result(raw: dict) -> str:
    winner = raw.get("winner")
    if winner == "white":
        return "1-0"
    if winner == "black":
        return "0-1"
    if "winner" in raw:
        return "1/2-1/2"
    return str(raw.get("result", "*"))


def parse_explorer_payload(payload) -> ExplorerData:
    """Convert a raw explorer JSON payload into ExplorerData.

    Raises:
        MalformedResponseError: If the payload is not shaped like an explorer answer.
    """
    if not isinstance(payload, dict):
        raise MalformedResponseError("explorer", "payload is not an object")
    try:
        moves = tuple(
            ExplorerMove(
                uci=str(m["uci"]),
                san=str(m["san"]),
                white=int(m.get("white", 0)),
                draws=int(m.get("draws", 0)),
                black=int(m.get("black", 0)),
                average_rating=m.get("averageRating"),
            )
            for m in payload.get("moves") or []
        )
        games = tuple(
            ExplorerGame(
                id=str(g.get("id", "")),
                white=_player_name(g.get("white")),
                black=_player_name(g.get("black")),
                year=g.get("year"),
                result=_game_result(g),
            )
            for g in payload.get("topGames") or []
        )
        return ExplorerData(
            white=int(payload.get("white", 0)),
            draws=int(payload.get("draws", 0)),
            black=int(payload.get("black", 0)),
            moves=moves,
            top_games=games,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedResponseError("explorer", f"unexpected payload: {exc}") from exc


class ExplorerClient(JsonServiceClient):
    """Client for the Lichess masters opening explorer."""

    service_name = "explorer"
    CACHE_TTL = 3600  # 1 hour
    CACHE_MAX_ENTRIES = 512

    def __init__(
        self,
        base_url: str | None = None,
        *,
        settings: Settings | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        settings = settings or load_settings()
        super().__init__(
            base_url or settings.explorer_url,
            timeout=settings.http_timeout,
            retries=settings.http_retries,
            session=session,
        )
        self._cache: dict[tuple[str, int], tuple[ExplorerData, float]] = {}

    def _get_cached(self, key: tuple[str, int]) -> ExplorerData | None:
        if key in self._cache:
            data, stored_at = self._cache[key]
            if time.time() - stored_at < self.CACHE_TTL:
                return data
            del self._cache[key]
        return None

    def _store_cached(self, key: tuple[str, int], data: ExplorerData) -> None:
        """Insert into the cache, dropping expired entries and then the oldest."""
        now = time.time()
        expired = [
            k for k, (_, stored_at) in self._cache.items() if now - stored_at >= self.CACHE_TTL
        ]
        for k in expired:
            del self._cache[k]
        self._cache.pop(key, None)
        while self._cache and len(self._cache) >= self.CACHE_MAX_ENTRIES:
            del self._cache[next(iter(self._cache))]
        self._cache[key] = (data, now)

    async def fetch(self, uci_moves: list[str], top_games: int = 0) -> ExplorerData:
        """Fetch statistics for the position reached by ``uci_moves``.

        Args:
            uci_moves: Moves from the starting position in UCI form.
            top_games: How many notable games to include.

        Returns:
            ExplorerData for the position.

        Raises:
            ServiceUnavailableError: If the explorer cannot be reached.
            MalformedResponseError: If the answer cannot be parsed.
        """
        play = ",".join(uci_moves)
        key = (play, top_games)
        cached = self._get_cached(key)
        if cached is not None:
            logger.debug("explorer cache hit for %r", play)
            return cached

        payload = await self._request_json(
            "GET",
            self.base_url,
            params={"play": play, "topGames": str(top_games)},
        )
        data = parse_explorer_payload(payload)
        self._store_cached(key, data)
        return data
