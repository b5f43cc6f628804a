"""Runtime settings for London Trainer.

Values come from environment variables with sensible defaults, so the
MCP server, the TUI and the tests can all point at a different data
directory or service endpoint without code changes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DEFAULT_DATA_DIR = _PROJECT_ROOT / "data"

_DEFAULT_EXPLORER_URL = "https://explorer.lichess.ovh/masters"
_DEFAULT_EVALUATOR_URL = "https://chess-api.com/v1"


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration."""

    data_dir: Path = _DEFAULT_DATA_DIR
    explorer_url: str = _DEFAULT_EXPLORER_URL
    evaluator_url: str = _DEFAULT_EVALUATOR_URL
    http_timeout: float = 10.0
    http_retries: int = 1
    log_level: str = "WARNING"
    validate_responses: bool = False


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    """Build Settings from TRAINER_* environment variables.

    Returns:
        A frozen Settings instance.
    """
    data_dir = os.environ.get("TRAINER_DATA_DIR")
    return Settings(
        data_dir=Path(data_dir) if data_dir else _DEFAULT_DATA_DIR,
        explorer_url=os.environ.get("TRAINER_EXPLORER_URL", _DEFAULT_EXPLORER_URL),
        evaluator_url=os.environ.get("TRAINER_EVALUATOR_URL", _DEFAULT_EVALUATOR_URL),
        http_timeout=_env_float("TRAINER_HTTP_TIMEOUT", 10.0),
        http_retries=max(0, _env_int("TRAINER_HTTP_RETRIES", 1)),
        log_level=os.environ.get("TRAINER_LOG_LEVEL", "WARNING").upper(),
        validate_responses=os.environ.get("TRAINER_VALIDATE") == "1",
    )


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logging for CLI entry points."""
    settings = settings or load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
