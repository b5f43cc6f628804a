"""Replay and review MCP tools for London Trainer.

Registers 7 tools on the provided FastMCP instance:
  - start_replay
  - replay_step
  - replay_goto
  - replay_toggle_play
  - replay_set_speed
  - replay_state
  - exit_replay

Called from server.py via register_replay_tools().
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from response_schemas import REPLAY_SCHEMA, minify_replay_view, validate_response

logger = logging.getLogger(__name__)


def register_replay_tools(mcp, games: dict, store, sync: Callable[[dict], None]):
    """Register all replay tools on the FastMCP instance.

    Args:
        mcp: FastMCP server instance.
        games: Shared in-memory games dict from server.py.
        store: GameStore holding the recorded games.
        sync: Writes a state dict to data/current_game.json for the TUI.
    """
    from trainer.replay import IDLE, ReplayController, replay_view

    def _controller(game_id: str) -> tuple[ReplayController | None, dict | None]:
        game = games.get(game_id)
        if game is None:
            return None, {"error": f"Game not found: {game_id}"}
        controller: ReplayController = game["replay"]
        return controller, None

    def _view(controller: ReplayController) -> dict:
        response = minify_replay_view(replay_view(controller))
        errors = validate_response(response, REPLAY_SCHEMA)
        if errors:
            logger.warning("Replay response failed validation: %s", errors)
        return response

    def _require_replay(controller: ReplayController) -> dict | None:
        if controller.phase == IDLE:
            return {"error": "No replay in progress. Call start_replay first."}
        return None

    @mcp.tool()
    def start_replay(game_id: str, recorded_game_id: str = "") -> dict:
        """Open a recorded game for review, starting from the initial position.

        Args:
            game_id: UUID of the live game whose board is used for review.
            recorded_game_id: ID from list_recorded_games; defaults to the
                most recent game.

        Returns:
            Replay view at move 0 of the recorded game.
        """
        controller, error = _controller(game_id)
        if error:
            return error
        if recorded_game_id:
            recorded = store.get_game(recorded_game_id)
        else:
            recent = store.list_games()
            recorded = recent[0] if recent else None
        if recorded is None:
            return {"error": f"Recorded game not found: {recorded_game_id or '(none stored)'}"}

        # Keep the TUI in step with auto-advance ticks.
        controller.on_change = lambda _state: sync(replay_view(controller))
        controller.enter_replay(recorded)
        response = _view(controller)
        response["recorded_game_id"] = recorded.id
        response["moves"] = list(recorded.move_history)
        return response

    @mcp.tool()
    def replay_step(game_id: str, delta: int = 1) -> dict:
        """Step forward (positive) or backward (negative) through the replay.

        Args:
            game_id: UUID of the game.
            delta: Number of half-moves to move by. Clamped to the game.
        """
        controller, error = _controller(game_id)
        if error:
            return error
        error = _require_replay(controller)
        if error:
            return error
        controller.step(delta)
        return _view(controller)

    @mcp.tool()
    def replay_goto(game_id: str, index: int) -> dict:
        """Jump to the position after ``index`` half-moves.

        Args:
            game_id: UUID of the game.
            index: 0 for the initial position, up to the number of moves.
        """
        controller, error = _controller(game_id)
        if error:
            return error
        error = _require_replay(controller)
        if error:
            return error
        controller.go_to(index)
        return _view(controller)

    @mcp.tool()
    def replay_toggle_play(game_id: str) -> dict:
        """Start or pause automatic playback.

        Args:
            game_id: UUID of the game.
        """
        controller, error = _controller(game_id)
        if error:
            return error
        error = _require_replay(controller)
        if error:
            return error
        controller.toggle_play()
        return _view(controller)

    @mcp.tool()
    def replay_set_speed(game_id: str, speed: float) -> dict:
        """Set the playback speed multiplier (0.5, 1 or 2 are typical).

        Args:
            game_id: UUID of the game.
            speed: Positive multiplier; takes effect on the next step.
        """
        controller, error = _controller(game_id)
        if error:
            return error
        try:
            controller.set_speed(speed)
        except ValueError as exc:
            return {"error": str(exc)}
        return {"speed": controller.speed, "interval_s": round(controller.interval, 3)}

    @mcp.tool()
    def replay_state(game_id: str) -> dict:
        """Current replay position, annotation and progress.

        Args:
            game_id: UUID of the game.
        """
        controller, error = _controller(game_id)
        if error:
            return error
        error = _require_replay(controller)
        if error:
            return error
        return minify_replay_view(replay_view(controller))

    @mcp.tool()
    def exit_replay(game_id: str) -> dict:
        """Leave the replay; the live board is reset to a fresh game.

        Args:
            game_id: UUID of the game.
        """
        controller, error = _controller(game_id)
        if error:
            return error
        error = _require_replay(controller)
        if error:
            return error
        controller.exit()
        game = games[game_id]
        session = game["session"]
        session.new_game()
        game["lesson"] = None
        sync({"fen": session.game.fen, "move_list": [], "side_to_move": "white"})
        return {"game_id": game_id, "phase": controller.phase, "fen": session.game.fen}
