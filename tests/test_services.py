"""Pytest tests for the remote service clients.

Tests cover the shared HTTP plumbing (retry, rate-limit backoff, error
mapping) and payload parsing for the opening explorer and the position
evaluator. A scripted stand-in for aiohttp.ClientSession replaces the
network.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import aiohttp
import pytest

from trainer.config import Settings
from trainer.errors import MalformedResponseError, ServiceUnavailableError
from trainer.evaluator import EvaluatorClient, evaluation_label, parse_evaluation_payload
from trainer.explorer import ExplorerClient, parse_explorer_payload
from trainer.http_client import JsonServiceClient


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeResponse:
    def __init__(self, status: int = 200, payload=None, body_error: Exception | None = None):
        self.status = status
        self._payload = payload
        self._body_error = body_error

    async def json(self, content_type=None):
        if self._body_error is not None:
            raise self._body_error
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class _FakeSession:
    """Plays back one outcome (response or exception) per request."""

    closed = False

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests: list[tuple[str, str, dict]] = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


_NO_RETRY = Settings(http_retries=0)

_EXPLORER_PAYLOAD = {
    "white": 1000,
    "draws": 600,
    "black": 400,
    "moves": [
        {"uci": "g8f6", "san": "Nf6", "white": 500, "draws": 300, "black": 200,
         "averageRating": 2450},
        {"uci": "d7d5", "san": "d5", "white": 500, "draws": 300, "black": 200},
    ],
    "topGames": [
        {"id": "abc123", "white": {"name": "Carlsen", "rating": 2860},
         "black": {"name": "Nakamura", "rating": 2790}, "winner": "white", "year": 2019},
        {"id": "def456", "white": {"name": "A"}, "black": {"name": "B"}, "winner": None},
    ],
}


def _client(session: _FakeSession, retries: int = 1) -> JsonServiceClient:
    return JsonServiceClient("https://example.test/api", retries=retries, retry_delay=0,
                             session=session)


# ---------------------------------------------------------------------------
# JsonServiceClient
# ---------------------------------------------------------------------------


class TestJsonServiceClient:

    @pytest.mark.asyncio
    async def test_success(self):
        session = _FakeSession(_FakeResponse(payload={"ok": True}))
        client = _client(session)
        assert await client._request_json("GET", client.base_url, params={"a": "1"}) == {"ok": True}
        method, url, kwargs = session.requests[0]
        assert (method, url) == ("GET", "https://example.test/api")
        assert kwargs["params"] == {"a": "1"}
        assert isinstance(kwargs["timeout"], aiohttp.ClientTimeout)

    @pytest.mark.asyncio
    async def test_server_error_retried_once(self):
        session = _FakeSession(_FakeResponse(status=502), _FakeResponse(payload=[1]))
        assert await _client(session)._request_json("GET", "u") == [1]
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self):
        session = _FakeSession(
            asyncio.TimeoutError(),
            aiohttp.ClientConnectionError("refused"),
            _FakeResponse(payload="never reached"),
        )
        with pytest.raises(ServiceUnavailableError):
            await _client(session)._request_json("GET", "u")
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_last_failure_is_raised(self):
        session = _FakeSession(asyncio.TimeoutError(), _FakeResponse(status=503))
        with pytest.raises(ServiceUnavailableError) as excinfo:
            await _client(session)._request_json("GET", "u")
        assert excinfo.value.status == 503

    @pytest.mark.asyncio
    async def test_no_retries_single_attempt(self):
        session = _FakeSession(aiohttp.ClientConnectionError("refused"), _FakeResponse(payload={}))
        with pytest.raises(ServiceUnavailableError, match="connection failed"):
            await _client(session, retries=0)._request_json("GET", "u")
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        session = _FakeSession(_FakeResponse(status=404), _FakeResponse(payload={}))
        with pytest.raises(ServiceUnavailableError) as excinfo:
            await _client(session)._request_json("GET", "u")
        assert excinfo.value.status == 404
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_opens_backoff_window(self):
        session = _FakeSession(_FakeResponse(status=429), _FakeResponse(payload={}))
        client = _client(session)
        with pytest.raises(ServiceUnavailableError) as excinfo:
            await client._request_json("GET", "u")
        assert excinfo.value.status == 429
        # Second call fails fast without touching the network.
        with pytest.raises(ServiceUnavailableError):
            await client._request_json("GET", "u")
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self):
        session = _FakeSession(
            _FakeResponse(body_error=json.JSONDecodeError("Expecting value", "<html>", 0))
        )
        with pytest.raises(MalformedResponseError) as excinfo:
            await _client(session)._request_json("GET", "u")
        assert excinfo.value.service == "service"

    @pytest.mark.asyncio
    async def test_borrowed_session_not_closed(self):
        session = _FakeSession()
        async with _client(session):
            pass
        assert session.outcomes == []


# ---------------------------------------------------------------------------
# Explorer
# ---------------------------------------------------------------------------


class TestExplorer:

    def test_parse_payload(self):
        data = parse_explorer_payload(_EXPLORER_PAYLOAD)
        assert data.total == 2000
        assert [m.san for m in data.moves] == ["Nf6", "d5"]
        assert data.moves[0].average_rating == 2450
        assert data.moves[0].white_win_rate == 50
        assert data.top_games[0].white == "Carlsen"
        assert data.top_games[0].result == "1-0"
        assert data.top_games[1].result == "1/2-1/2"
        assert data.find_move("d5").uci == "d7d5"
        assert data.find_move("e5") is None

    def test_parse_empty_position(self):
        data = parse_explorer_payload({"white": 0, "draws": 0, "black": 0, "moves": []})
        assert data.moves == ()
        assert data.total == 0

    @pytest.mark.parametrize("payload", [[], "text", {"moves": [{"san": "e4"}]}])
    def test_parse_malformed(self, payload):
        with pytest.raises(MalformedResponseError):
            parse_explorer_payload(payload)

    @pytest.mark.asyncio
    async def test_fetch_builds_query_and_caches(self):
        session = _FakeSession(_FakeResponse(payload=_EXPLORER_PAYLOAD))
        client = ExplorerClient(settings=_NO_RETRY, session=session)

        first = await client.fetch(["d2d4"], 0)
        second = await client.fetch(["d2d4"], 0)

        assert first is second
        assert len(session.requests) == 1
        _, url, kwargs = session.requests[0]
        assert url == "https://explorer.lichess.ovh/masters"
        assert kwargs["params"] == {"play": "d2d4", "topGames": "0"}

    @pytest.mark.asyncio
    async def test_cache_is_bounded(self):
        session = _FakeSession(*(_FakeResponse(payload=_EXPLORER_PAYLOAD) for _ in range(4)))
        client = ExplorerClient(settings=_NO_RETRY, session=session)
        client.CACHE_MAX_ENTRIES = 2

        with patch("trainer.explorer.time.time", return_value=1000.0):
            for moves in (["d2d4"], ["e2e4"], ["c2c4"]):
                await client.fetch(moves)
        assert list(client._cache) == [("e2e4", 0), ("c2c4", 0)]

        # Expired entries are dropped on the next insert.
        with patch("trainer.explorer.time.time", return_value=1000.0 + client.CACHE_TTL):
            await client.fetch(["g1f3"])
        assert list(client._cache) == [("g1f3", 0)]
        assert len(session.requests) == 4

    @pytest.mark.asyncio
    async def test_starting_position_query(self):
        session = _FakeSession(_FakeResponse(payload=_EXPLORER_PAYLOAD))
        client = ExplorerClient(settings=_NO_RETRY, session=session)
        await client.fetch([], 5)
        assert session.requests[0][2]["params"] == {"play": "", "topGames": "5"}


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class TestEvaluator:

    def test_pawns_converted_to_centipawns(self):
        result = parse_evaluation_payload({"eval": 0.34, "move": "d2d4", "depth": 12})
        assert result.score_cp == 34
        assert result.best_move == "d2d4"
        assert result.depth == 12

    def test_negative_score(self):
        assert parse_evaluation_payload({"eval": -1.5}).score_cp == -150

    @pytest.mark.parametrize("mate,expected", [(3, 10000), (-2, -10000)])
    def test_mate_only(self, mate, expected):
        result = parse_evaluation_payload({"mate": mate, "move": "h5f7"})
        assert result.score_cp == expected
        assert result.mate == mate

    def test_continuation(self):
        result = parse_evaluation_payload({"eval": 0, "continuationArr": ["d2d4", "d7d5"]})
        assert result.continuation == ("d2d4", "d7d5")

    @pytest.mark.parametrize("payload", [
        {"type": "error", "text": "invalid fen"},
        {"move": "d2d4"},
        {"eval": "high"},
        ["not", "an", "object"],
    ])
    def test_malformed(self, payload):
        with pytest.raises(MalformedResponseError):
            parse_evaluation_payload(payload)

    @pytest.mark.parametrize("cp,label", [
        (350, "White is winning"),
        (150, "White is better"),
        (50, "White is slightly better"),
        (0, "Equal position"),
        (-50, "Black is slightly better"),
        (-150, "Black is better"),
        (-350, "Black is winning"),
    ])
    def test_evaluation_label(self, cp, label):
        assert evaluation_label(cp) == label

    @pytest.mark.asyncio
    async def test_analyze_posts_fen_and_depth(self):
        session = _FakeSession(_FakeResponse(payload={"eval": 0.2, "move": "g1f3"}))
        client = EvaluatorClient(settings=_NO_RETRY, session=session)
        result = await client.analyze("some fen", 12)
        method, url, kwargs = session.requests[0]
        assert (method, url) == ("POST", "https://chess-api.com/v1")
        assert kwargs["json"] == {"fen": "some fen", "depth": 12}
        assert result.score_cp == 20
