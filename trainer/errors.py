"""Exception types shared across the trainer core."""

from __future__ import annotations


class TrainerServiceError(Exception):
    """Base class for failures talking to an external service."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class ServiceUnavailableError(TrainerServiceError):
    """The service timed out, refused the connection or returned an error status."""

    def __init__(self, service: str, message: str, status: int | None = None) -> None:
        super().__init__(service, message)
        self.status = status


class MalformedResponseError(TrainerServiceError):
    """The service answered, but the payload could not be interpreted."""


class HistoryMismatchError(RuntimeError):
    """Replaying the move history did not reproduce the live position."""

    def __init__(self, expected_fen: str, replayed_fen: str) -> None:
        super().__init__(
            f"History replay produced {replayed_fen!r}, live position is {expected_fen!r}"
        )
        self.expected_fen = expected_fen
        self.replayed_fen = replayed_fen
