"""Middlegame chapter MCP tools for London Trainer.

Registers 5 tools on the provided FastMCP instance:
  - list_middlegame_chapters
  - study_master_game
  - study_step
  - get_training_position
  - answer_training_position

Called from server.py via register_middlegame_tools().
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from response_schemas import minify_replay_view

logger = logging.getLogger(__name__)


def register_middlegame_tools(mcp, games: dict, sync: Callable[[dict], None]):
    """Register all middlegame tools on the FastMCP instance.

    Args:
        mcp: FastMCP server instance.
        games: Shared in-memory games dict from server.py.
        sync: Writes a state dict to data/current_game.json for the TUI.
    """
    from trainer.middlegame import (
        CHAPTERS,
        MULTIPLE_CHOICE,
        AnnotatedGameViewer,
        check_choice,
        check_move,
        get_chapter,
        get_position,
        hints_for,
    )

    def _study_view(viewer: AnnotatedGameViewer) -> dict:
        view = viewer.view()
        sync(view)
        response = minify_replay_view(view)
        response["progress"] = view["progress"]
        if view["annotation"]:
            response["annotation"] = view["annotation"]
        if "key_takeaways" in view:
            response["key_takeaways"] = view["key_takeaways"]
        return response

    @mcp.tool()
    def list_middlegame_chapters() -> dict:
        """List middlegame chapters with their master game and positions.

        Returns:
            {"chapters": [{id, title, theme, master_game, positions}, ...]}
        """
        return {
            "chapters": [
                {
                    "id": chapter.id,
                    "title": chapter.title,
                    "description": chapter.description,
                    "theme": chapter.theme,
                    "master_game": chapter.master_game.title,
                    "positions": [p.id for p in chapter.positions],
                }
                for chapter in CHAPTERS.values()
            ]
        }

    @mcp.tool()
    def study_master_game(game_id: str, chapter_id: str) -> dict:
        """Open a chapter's annotated master game at the initial position.

        Args:
            game_id: UUID of the game whose board shows the study.
            chapter_id: ID from list_middlegame_chapters.
        """
        game = games.get(game_id)
        if game is None:
            return {"error": f"Game not found: {game_id}"}
        try:
            chapter = get_chapter(chapter_id)
        except KeyError:
            return {"error": f"Unknown chapter: {chapter_id}. Use one of {list(CHAPTERS)}"}
        viewer = AnnotatedGameViewer(chapter.master_game)
        game["study"] = viewer
        logger.info("Studying %s in game %s", chapter.master_game.id, game_id)
        response = _study_view(viewer)
        response["title"] = chapter.master_game.title
        response["players"] = chapter.master_game.players
        response["annotated_moves"] = viewer.annotated_indices()
        return response

    @mcp.tool()
    def study_step(game_id: str, delta: int = 1, to_next_annotation: bool = False) -> dict:
        """Move through the master game being studied.

        Args:
            game_id: UUID of the game.
            delta: Half-moves to move by (negative steps back). Clamped.
            to_next_annotation: Jump straight to the next annotated move
                instead of stepping by ``delta``.
        """
        game = games.get(game_id)
        if game is None:
            return {"error": f"Game not found: {game_id}"}
        viewer = game.get("study")
        if viewer is None:
            return {"error": "No master game open. Call study_master_game first."}
        if to_next_annotation:
            viewer.next_annotation()
        else:
            viewer.controller.step(delta)
        return _study_view(viewer)

    @mcp.tool()
    def get_training_position(chapter_id: str, position_id: str, hints: int = 0) -> dict:
        """Show a training position's question without revealing the answer.

        Args:
            chapter_id: ID from list_middlegame_chapters.
            position_id: ID of a position in that chapter.
            hints: Number of hints to include, in order.
        """
        try:
            position = get_position(chapter_id, position_id)
        except KeyError:
            return {"error": f"Unknown position: {chapter_id}/{position_id}"}
        response = {
            "id": position.id,
            "fen": position.fen,
            "side_to_move": position.side_to_move,
            "question": position.question,
            "type": position.kind,
            "hints": hints_for(position, hints),
            "hints_available": len(position.hints),
        }
        if position.kind == MULTIPLE_CHOICE:
            response["options"] = [option.label for option in position.options]
        return response

    @mcp.tool()
    def answer_training_position(chapter_id: str, position_id: str, answer: str) -> dict:
        """Grade an answer to a training position.

        Args:
            chapter_id: ID from list_middlegame_chapters.
            position_id: ID of a position in that chapter.
            answer: Option letter (A-D) for multiple choice, or a move in
                SAN/UCI for find-the-move positions.
        """
        try:
            position = get_position(chapter_id, position_id)
        except KeyError:
            return {"error": f"Unknown position: {chapter_id}/{position_id}"}
        try:
            if position.kind == MULTIPLE_CHOICE:
                result = check_choice(position, answer)
            else:
                result = check_move(position, answer)
        except ValueError as exc:
            return {"error": str(exc)}
        if result is None:
            return {"error": f"Illegal move in this position: {answer}"}
        return {
            "correct": result.correct,
            "answer": result.answer,
            "feedback": result.feedback,
            "explanation": result.explanation,
        }
