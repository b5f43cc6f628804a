"""Minified MCP responses and the optional shape checks run on them.

Tool results go back into the tutor's context, so they drop the ASCII
board and the full legal-move list and write the move list as a PGN
string (1.d4 Nf6 2.Bf4 ...). The state synced to data/current_game.json
for the TUI keeps every field.
"""

from __future__ import annotations

import os


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_game_state(state: dict) -> dict:
    """Minify a GameState dict for MCP response.

    Compacts move_list to a PGN string, replaces legal_moves with a count
    and drops the ASCII board.

    Args:
        state: Full GameState dict (from dataclasses.asdict) plus game_id
            and difficulty.

    Returns:
        Minified dict with reduced token footprint.
    """
    result = {}

    for key in (
        "game_id", "fen", "difficulty", "last_move", "last_move_san",
        "selected_square", "legal_targets", "side_to_move", "is_check",
        "is_game_over",
    ):
        if key in state:
            result[key] = state[key]

    move_list = state.get("move_list", [])
    if isinstance(move_list, list):
        result["move_list"] = _moves_to_pgn_string(move_list)
    else:
        result["move_list"] = move_list

    legal_moves = state.get("legal_moves", [])
    result["legal_moves_count"] = len(legal_moves) if isinstance(legal_moves, list) else 0

    # Flatten result: {"type": "checkmate", "winner": "w"} -> "checkmate (w)"
    game_result = state.get("result") or {}
    if isinstance(game_result, dict):
        label = game_result.get("type", "playing")
        if game_result.get("winner"):
            label = f"{label} ({game_result['winner']})"
        result["result"] = label
    else:
        result["result"] = str(game_result)

    # Removed fields: board_display, legal_moves

    return result


def minify_move_quality(quality: dict) -> dict:
    """Minify a MoveQuality dict for MCP response.

    Drops arrow squares and ply; keeps what the LLM needs to comment
    on the move.
    """
    result = {}
    for key in (
        "move_number", "move", "eval_before", "eval_after", "eval_drop",
        "classification",
    ):
        if key in quality:
            result[key] = quality[key]
    if quality.get("best_move"):
        result["best_move"] = quality["best_move"]
    return result


def minify_replay_view(view: dict) -> dict:
    """Minify a replay view dict for MCP response.

    Keeps position, progress and (when present) the quality annotation.
    """
    replay = view.get("replay", {})
    result = {
        "fen": view.get("fen"),
        "index": replay.get("index"),
        "total": replay.get("total"),
        "phase": replay.get("phase"),
        "speed": replay.get("speed"),
        "last_move": view.get("last_move"),
    }
    quality = view.get("quality")
    if quality:
        result["quality"] = minify_move_quality(quality)
    arrows = view.get("arrows") or []
    if arrows:
        result["arrows"] = [
            f"{a['kind']}:{a['from_square']}{a['to_square']}" for a in arrows
        ]
    return result


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[str]) -> str:
    """Convert a list of SAN moves to a PGN move string.

    E.g., ['d4', 'Nf6', 'Bf4', 'g6'] -> '1.d4 Nf6 2.Bf4 g6'
    """
    if not moves:
        return ""

    parts = []
    for i, move in enumerate(moves):
        if i % 2 == 0:
            parts.append(f"{i // 2 + 1}.{move}")
        else:
            parts.append(move)

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

GAME_STATE_SCHEMA = {
    "game_id": str,
    "fen": str,
    "difficulty": str,
    "last_move": (str, type(None)),
    "last_move_san": (str, type(None)),
    "side_to_move": str,
    "is_game_over": bool,
    "result": str,
    "move_list": str,
    "legal_moves_count": int,
}

MOVE_QUALITY_SCHEMA = {
    "move_number": int,
    "move": str,
    "eval_before": (int, float),
    "eval_after": (int, float),
    "eval_drop": (int, float),
    "classification": str,
}

REPLAY_SCHEMA = {
    "fen": str,
    "index": int,
    "total": int,
    "phase": str,
    "speed": (int, float),
}

ERROR_SCHEMA = {
    "error": str,
}


def _type_label(expected) -> str:
    if isinstance(expected, tuple):
        return "(" + ", ".join(t.__name__ for t in expected) + ")"
    return expected.__name__


def validate_response(response: dict, schema: dict) -> list[str]:
    """Check a tool response against a ``{key: type}`` schema.

    A no-op returning ``[]`` unless TRAINER_VALIDATE=1.

    Returns:
        One message per missing key or mistyped value.
    """
    if os.environ.get("TRAINER_VALIDATE") != "1":
        return []
    if not isinstance(response, dict):
        return [f"Response is not a dict: {type(response).__name__}"]

    problems = [f"Missing key: {key}" for key in schema if key not in response]
    for key, expected in schema.items():
        if key in response and not isinstance(response[key], expected):
            problems.append(
                f"Key '{key}': expected {_type_label(expected)}, "
                f"got {type(response[key]).__name__}"
            )
    return problems
