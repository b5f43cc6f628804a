"""MCP server for London Trainer.

Exposes practice-game, review, lesson and middlegame tools to an LLM tutor via
FastMCP. Games are stored in memory keyed by UUID. Board state is synced
to data/current_game.json after every change for TUI consumption.
"""

from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP  # noqa: E402

from trainer.config import configure_logging, load_settings  # noqa: E402
from trainer.evaluator import EvaluatorClient  # noqa: E402
from trainer.explorer import ExplorerClient  # noqa: E402
from trainer.lessons import LESSONS, LessonSession, get_lesson_with_stats  # noqa: E402
from trainer.models import DIFFICULTIES  # noqa: E402
from trainer.replay import ReplayController  # noqa: E402
from trainer.session import PracticeSession  # noqa: E402
from trainer.storage import GameStore, JsonStore, ProgressStore  # noqa: E402

from middlegame_tools import register_middlegame_tools  # noqa: E402
from replay_tools import register_replay_tools  # noqa: E402
from response_schemas import (  # noqa: E402
    GAME_STATE_SCHEMA,
    MOVE_QUALITY_SCHEMA,
    minify_game_state,
    minify_move_quality,
    validate_response,
)

logger = logging.getLogger(__name__)

mcp = FastMCP("london-trainer")

_settings = load_settings()
configure_logging(_settings)

_store = JsonStore(_settings.data_dir)
_game_store = GameStore(_store)
_progress_store = ProgressStore(_store)
_explorer = ExplorerClient(settings=_settings)
_evaluator = EvaluatorClient(settings=_settings)

# In-memory game store: game_id -> {session, replay, lesson}
_games: dict[str, dict] = {}

CURRENT_GAME_KEY = "current_game"


def _sync_game_json(state: dict) -> None:
    """Write state to data/current_game.json atomically for the TUI."""
    _store.write(CURRENT_GAME_KEY, state)


def _get_game(game_id: str) -> dict | None:
    return _games.get(game_id)


def _not_found(game_id: str) -> dict:
    return {"error": f"Game not found: {game_id}"}


def _lesson_in_progress() -> dict:
    return {"error": "A lesson is in progress. Use lesson_move or end_lesson."}


def _build_game_state(game_id: str, game: dict) -> dict:
    """Full state dict for the live game, including any visible analysis."""
    session: PracticeSession = game["session"]
    state = asdict(session.game.snapshot())
    state["game_id"] = game_id
    state["difficulty"] = session.difficulty
    if session.last_quality is not None:
        state["quality"] = session.last_quality.to_dict()
    return state


def _respond(game_id: str, game: dict, **extra) -> dict:
    """Sync the TUI and return the minified state plus ``extra`` keys."""
    state = _build_game_state(game_id, game)
    _sync_game_json(state)
    response = minify_game_state(state)
    errors = validate_response(response, GAME_STATE_SCHEMA)
    if errors:
        logger.warning("Game state response failed validation: %s", errors)
    response.update(extra)
    return response


# ---------------------------------------------------------------------------
# Practice game tools
# ---------------------------------------------------------------------------


@mcp.tool()
def new_game(difficulty: str = "intermediate") -> dict:
    """Start a new practice game. The player has White.

    Args:
        difficulty: 'beginner', 'intermediate' or 'advanced'.

    Returns:
        GameState dict with the initial position.
    """
    if difficulty not in DIFFICULTIES:
        return {"error": f"Unknown difficulty: {difficulty}. Use one of {list(DIFFICULTIES)}"}

    game_id = str(uuid.uuid4())
    session = PracticeSession(
        explorer=_explorer,
        evaluator=_evaluator,
        game_store=_game_store,
        progress_store=_progress_store,
        difficulty=difficulty,
    )
    game = {
        "session": session,
        "replay": ReplayController(session.game),
        "lesson": None,
        "study": None,
    }
    _games[game_id] = game
    return _respond(game_id, game)


@mcp.tool()
def get_board(game_id: str) -> dict:
    """Get the current board state for a game.

    Args:
        game_id: UUID of the game.

    Returns:
        GameState dict with current position and metadata.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    return minify_game_state(_build_game_state(game_id, game))


@mcp.tool()
def select_square(game_id: str, square: str) -> dict:
    """Select a piece and list the squares it can move to.

    Args:
        game_id: UUID of the game.
        square: Square name, e.g. 'c1'.

    Returns:
        GameState dict with selected_square and legal_targets.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    session: PracticeSession = game["session"]
    if not session.game.select_square(square):
        return {"error": f"No piece of the side to move on {square}"}
    return _respond(game_id, game)


@mcp.tool()
async def make_move(game_id: str, move: str) -> dict:
    """Play the player's move in SAN; the computer replies automatically.

    Args:
        game_id: UUID of the game.
        move: Move in SAN notation (e.g., 'd4', 'Bf4', 'O-O').

    Returns:
        Updated GameState dict plus the computer's reply.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    if game.get("lesson") is not None:
        return _lesson_in_progress()
    session: PracticeSession = game["session"]
    if session.result.is_over:
        return {"error": f"Game is already over: {session.result.type}"}

    ply = session.game.ply_count
    record = await session.play_human_san(move)
    if record is None:
        return {"error": f"Illegal move: {move}. Legal moves: {session.game.legal_moves_san()}"}
    return _respond(game_id, game, **_reply_info(session, ply))


@mcp.tool()
async def move_piece(
    game_id: str,
    from_square: str,
    to_square: str,
    promotion: str = "q",
) -> dict:
    """Play the player's move by squares; the computer replies automatically.

    Args:
        game_id: UUID of the game.
        from_square: Origin square, e.g. 'c1'.
        to_square: Destination square, e.g. 'f4'.
        promotion: Piece letter for pawn promotion (default 'q').

    Returns:
        Updated GameState dict plus the computer's reply.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    if game.get("lesson") is not None:
        return _lesson_in_progress()
    session: PracticeSession = game["session"]
    if session.result.is_over:
        return {"error": f"Game is already over: {session.result.type}"}

    ply = session.game.ply_count
    record = await session.play_human_move(from_square, to_square, promotion)
    if record is None:
        return {"error": f"Illegal move: {from_square}{to_square}"}
    return _respond(game_id, game, **_reply_info(session, ply))


def _reply_info(session: PracticeSession, ply_before: int) -> dict:
    history = session.game.history_san()
    reply = history[ply_before + 1] if len(history) > ply_before + 1 else None
    info = {"reply": reply, "analysis_pending": session.analyzing}
    if session.recorded_game is not None:
        info["recorded_game_id"] = session.recorded_game.id
    return info


@mcp.tool()
async def opponent_move(game_id: str) -> dict:
    """Ask the computer to move now (e.g. after a failed reply).

    Args:
        game_id: UUID of the game.

    Returns:
        Updated GameState dict.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    if game.get("lesson") is not None:
        return _lesson_in_progress()
    session: PracticeSession = game["session"]
    if session.game.turn:
        return {"error": "It is the player's turn"}
    record = await session.play_opponent_move()
    if record is None:
        return {"error": "The computer could not find a move"}
    return _respond(game_id, game, reply=record.san)


@mcp.tool()
def undo_move(game_id: str) -> dict:
    """Take back the last move pair so the player can try again.

    Args:
        game_id: UUID of the game.

    Returns:
        Updated GameState dict with the undone moves.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    if game.get("lesson") is not None:
        return _lesson_in_progress()
    session: PracticeSession = game["session"]
    undone = session.undo_player_move()
    if not undone:
        return {"error": "Nothing to undo"}
    return _respond(game_id, game, undone=[r.san for r in undone])


@mcp.tool()
def set_difficulty(game_id: str, difficulty: str) -> dict:
    """Change the computer's strength mid-game.

    Args:
        game_id: UUID of the game.
        difficulty: 'beginner', 'intermediate' or 'advanced'.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    try:
        game["session"].difficulty = difficulty
    except ValueError as exc:
        return {"error": str(exc)}
    return {"game_id": game_id, "difficulty": difficulty}


@mcp.tool()
def get_game_pgn(game_id: str) -> dict:
    """Export the live game as a PGN string.

    Args:
        game_id: UUID of the game.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    session: PracticeSession = game["session"]
    pgn = session.game.to_pgn({
        "Event": "London Trainer practice",
        "Date": datetime.now().strftime("%Y.%m.%d"),
        "White": "You",
        "Black": f"{session.difficulty.capitalize()} AI",
    })
    return {"game_id": game_id, "pgn": pgn}


# ---------------------------------------------------------------------------
# Analysis tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_move_qualities(game_id: str, wait: bool = False) -> dict:
    """List the quality classification of each analyzed player move.

    Args:
        game_id: UUID of the game.
        wait: If true, wait for analyses still in progress.

    Returns:
        Dict with a qualities list ordered by move number.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    session: PracticeSession = game["session"]
    if wait:
        await session.wait_for_analysis()
    qualities = []
    for quality in session.move_qualities():
        entry = minify_move_quality(quality.to_dict())
        errors = validate_response(entry, MOVE_QUALITY_SCHEMA)
        if errors:
            logger.warning("Move quality response failed validation: %s", errors)
        qualities.append(entry)
    return {"game_id": game_id, "qualities": qualities, "pending": session.analyzing}


@mcp.tool()
async def position_stats(game_id: str) -> dict:
    """Master-game statistics for the current position (opening phase only).

    Args:
        game_id: UUID of the game.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    stats = await game["session"].position_stats()
    if stats is None:
        return {"error": "No master statistics available for this position"}
    return stats


@mcp.tool()
async def evaluate_position(game_id: str) -> dict:
    """Engine evaluation of the current position with a short label.

    Args:
        game_id: UUID of the game.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    evaluation = await game["session"].evaluate_position()
    if evaluation is None:
        return {"error": "Evaluation service unavailable"}
    return evaluation


@mcp.tool()
def london_checks(game_id: str) -> dict:
    """Check how closely White followed the London System setup.

    Args:
        game_id: UUID of the game.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    checks = game["session"].london_checks()
    if checks is None:
        return {"error": "Play at least one move pair first"}
    return {"checks": checks, "passed": sum(1 for c in checks if c["pass"])}


# ---------------------------------------------------------------------------
# Recorded games and progress
# ---------------------------------------------------------------------------


@mcp.tool()
def list_recorded_games() -> dict:
    """List stored games, newest first."""
    games = []
    for recorded in _game_store.list_games():
        games.append({
            "id": recorded.id,
            "date": datetime.fromtimestamp(recorded.timestamp / 1000).isoformat(timespec="minutes"),
            "difficulty": recorded.difficulty,
            "result": recorded.result.to_dict(),
            "moves": recorded.move_count,
        })
    return {"games": games, "count": len(games)}


@mcp.tool()
def delete_recorded_game(recorded_game_id: str) -> dict:
    """Delete a stored game.

    Args:
        recorded_game_id: ID from list_recorded_games.
    """
    if _game_store.get_game(recorded_game_id) is None:
        return {"error": f"Recorded game not found: {recorded_game_id}"}
    if not _game_store.delete_game(recorded_game_id):
        return {"error": "Could not update the game store"}
    return {"deleted": recorded_game_id}


@mcp.tool()
def get_progress() -> dict:
    """Completed lessons and practice game record."""
    return _progress_store.load().to_dict()


# ---------------------------------------------------------------------------
# Lesson tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_lessons() -> dict:
    """List the available London System lessons."""
    completed = set(_progress_store.load().completed_lessons)
    return {
        "lessons": [
            {
                "id": lesson.id,
                "name": lesson.name,
                "description": lesson.description,
                "completed": lesson.id in completed,
            }
            for lesson in LESSONS.values()
        ]
    }


@mcp.tool()
async def start_lesson(game_id: str, lesson_id: str, with_stats: bool = False) -> dict:
    """Start a guided lesson on the game's board.

    Args:
        game_id: UUID of the game.
        lesson_id: Lesson id from list_lessons.
        with_stats: Attach master-game statistics to each step.

    Returns:
        GameState dict plus the lesson's key ideas and first step.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    if lesson_id not in LESSONS:
        return {"error": f"Lesson {lesson_id} not found"}
    lesson = LESSONS[lesson_id]
    if with_stats:
        lesson = await get_lesson_with_stats(_explorer, lesson_id)

    session: PracticeSession = game["session"]
    session.new_game()
    game["lesson"] = LessonSession(lesson, session.game)
    return _respond(game_id, game, lesson=_lesson_info(game["lesson"]))


@mcp.tool()
def lesson_move(game_id: str, move: str) -> dict:
    """Play the next lesson move in SAN.

    Args:
        game_id: UUID of the game.
        move: Move in SAN notation.

    Returns:
        Dict with outcome ('correct', 'wrong', 'illegal', 'complete') and
        the lesson's next step.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    lesson_session: LessonSession | None = game.get("lesson")
    if lesson_session is None:
        return {"error": "No lesson in progress. Call start_lesson first."}

    outcome = lesson_session.try_san(move)
    if outcome == "correct" and lesson_session.is_complete:
        _progress_store.complete_lesson(lesson_session.lesson.id)
    return _respond(game_id, game, outcome=outcome, lesson=_lesson_info(lesson_session))


@mcp.tool()
def end_lesson(game_id: str) -> dict:
    """Leave the lesson and return the board to a fresh practice game.

    Args:
        game_id: UUID of the game.
    """
    game = _get_game(game_id)
    if game is None:
        return _not_found(game_id)
    if game.get("lesson") is None:
        return {"error": "No lesson in progress"}
    game["lesson"] = None
    game["session"].new_game()
    return _respond(game_id, game)


def _lesson_info(lesson_session: LessonSession) -> dict:
    step = lesson_session.current_step
    info = {
        "id": lesson_session.lesson.id,
        "name": lesson_session.lesson.name,
        "key_ideas": list(lesson_session.lesson.key_ideas),
        "step": lesson_session.step_index,
        "total_steps": len(lesson_session.lesson.steps),
        "mistakes": lesson_session.mistakes,
        "complete": lesson_session.is_complete,
    }
    if step is not None:
        info["next_explanation"] = step.explanation
        if step.master_stats is not None:
            info["master_stats"] = asdict(step.master_stats)
    return info


register_replay_tools(mcp, _games, _game_store, _sync_game_json)
register_middlegame_tools(mcp, _games, _sync_game_json)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    mcp.run()
