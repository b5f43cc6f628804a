"""Remote position evaluator (chess-api.com, Stockfish-backed).

Scores come back in pawns from White's point of view; they are converted
to integer centipawns here so the rest of the trainer only ever sees
centipawns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import aiohttp

from trainer.config import Settings, load_settings
from trainer.errors import MalformedResponseError
from trainer.http_client import JsonServiceClient

logger = logging.getLogger(__name__)

_MATE_SCORE = 10000

# Label bands (centipawns, White's perspective)
_EVAL_LABELS = [
    (300, "White is winning"),
    (100, "White is better"),
    (25, "White is slightly better"),
    (-25, "Equal position"),
    (-100, "Black is slightly better"),
    (-300, "Black is better"),
]


@dataclass(frozen=True)
class PositionEvaluation:
    """Evaluator answer for a single position."""

    score_cp: int
    best_move: str | None
    mate: int | None = None
    continuation: tuple[str, ...] = ()
    depth: int | None = None


def evaluation_label(centipawns: float) -> str:
    """Describe a White-perspective score in words."""
    for threshold, label in _EVAL_LABELS:
        if centipawns > threshold:
            return label
    return "Black is winning"


def parse_evaluation_payload(payload) -> PositionEvaluation:
    """Convert a raw evaluator payload into a PositionEvaluation.

    Raises:
        MalformedResponseError: If no usable score is present.
    """
    if not isinstance(payload, dict):
        raise MalformedResponseError("evaluator", "payload is not an object")
    if payload.get("type") == "error":
        raise MalformedResponseError(
            "evaluator", str(payload.get("text") or payload.get("error") or "error reply")
        )

    mate = payload.get("mate")
    raw_eval = payload.get("eval")
    try:
        if raw_eval is not None:
            score_cp = round(float(raw_eval) * 100)
        elif mate is not None:
            score_cp = _MATE_SCORE if int(mate) > 0 else -_MATE_SCORE
        else:
            raise MalformedResponseError("evaluator", "no eval or mate in payload")
        mate = int(mate) if mate is not None else None
    except (TypeError, ValueError) as exc:
        raise MalformedResponseError("evaluator", f"bad score: {exc}") from exc

    continuation = (
        payload.get("continuationArr")
        or payload.get("continuation")
        or payload.get("pv")
        or []
    )
    if isinstance(continuation, str):
        continuation = continuation.split()

    best_move = payload.get("move") or None
    depth = payload.get("depth")
    return PositionEvaluation(
        score_cp=score_cp,
        best_move=str(best_move) if best_move else None,
        mate=mate,
        continuation=tuple(str(m) for m in continuation),
        depth=int(depth) if isinstance(depth, (int, float)) else None,
    )


class EvaluatorClient(JsonServiceClient):
    """Client for the chess-api.com evaluation endpoint."""

    service_name = "evaluator"

    def __init__(
        self,
        base_url: str | None = None,
        *,
        settings: Settings | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        settings = settings or load_settings()
        super().__init__(
            base_url or settings.evaluator_url,
            timeout=settings.http_timeout,
            retries=settings.http_retries,
            session=session,
        )

    async def analyze(self, fen: str, depth: int = 15) -> PositionEvaluation:
        """Evaluate a position.

        Args:
            fen: Position in FEN.
            depth: Search depth bound.

        Returns:
            PositionEvaluation with White-perspective centipawns.

        Raises:
            ServiceUnavailableError: If the evaluator cannot be reached.
            MalformedResponseError: If the answer cannot be parsed.
        """
        payload = await self._request_json(
            "POST", self.base_url, json_body={"fen": fen, "depth": depth}
        )
        return parse_evaluation_payload(payload)
