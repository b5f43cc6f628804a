"""Tests for middlegame chapters: data, the annotated game viewer and
the training position checks."""

from __future__ import annotations

import chess
import pytest

from trainer.middlegame import (
    CHAPTERS,
    FIND_MOVE,
    MULTIPLE_CHOICE,
    AnnotatedGame,
    AnnotatedGameViewer,
    MoveAnnotation,
    as_recorded_game,
    check_board_move,
    check_choice,
    check_move,
    get_chapter,
    get_position,
    hints_for,
    master_game_moves,
)
from trainer.replay import IDLE, REVIEWING


_ALL_POSITIONS = [
    (chapter.id, position) for chapter in CHAPTERS.values() for position in chapter.positions
]


def _short_game(pgn: str = "1. d4 d5 2. Bf4 Nf6 3. e3 e6 1/2-1/2") -> AnnotatedGame:
    return AnnotatedGame(
        id="game_short",
        title="Short",
        players="White Player vs Black Player, 2024",
        result="1/2-1/2",
        pgn=pgn,
        annotations=(
            MoveAnnotation(2, "Bf4", "Key Principle", "Bishop out before e3."),
            MoveAnnotation(2, "Nf6", "Development", "Black develops."),
            MoveAnnotation(3, "Bd3", "Wrong Move", "Never played in this game."),
        ),
        key_takeaways=("Bf4 before e3",),
    )


# ---------------------------------------------------------------------------
# Chapter data
# ---------------------------------------------------------------------------


class TestChapterData:

    @pytest.mark.parametrize("chapter_id", sorted(CHAPTERS))
    def test_master_game_is_legal_to_the_end(self, chapter_id):
        game = get_chapter(chapter_id).master_game
        moves = master_game_moves(game)
        assert len(moves) >= 39
        # Every annotation matches the move actually played.
        viewer = AnnotatedGameViewer(game)
        assert len(viewer.annotated_indices()) == len(game.annotations)

    @pytest.mark.parametrize("chapter_id, position", _ALL_POSITIONS,
                             ids=[p.id for _, p in _ALL_POSITIONS])
    def test_positions_are_answerable(self, chapter_id, position):
        board = chess.Board(position.fen)
        assert position.side_to_move == "w"
        if position.kind == FIND_MOVE:
            for san in position.correct_moves:
                board.parse_san(san)
            assert position.hints
        else:
            assert position.kind == MULTIPLE_CHOICE
            assert sum(option.is_correct for option in position.options) == 1

    def test_lookup(self):
        assert get_position("vs_dutch", "pos_dutch_3").correct_moves == ("Ne5",)
        with pytest.raises(KeyError):
            get_chapter("vs_sicilian")
        with pytest.raises(KeyError):
            get_position("vs_dutch", "pos_qgd_1")


# ---------------------------------------------------------------------------
# Annotated game viewer
# ---------------------------------------------------------------------------


class TestAnnotatedGameViewer:

    def test_recorded_game_wrapper(self):
        recorded = as_recorded_game(get_chapter("vs_kid").master_game)
        assert recorded.white_player == "Kamsky"
        assert recorded.black_player == "Radjabov"
        assert recorded.result.winner == "w"
        assert recorded.move_count == 41
        assert recorded.move_history[-1] == "Qb3"

    def test_annotations_keyed_by_move_number_and_san(self):
        viewer = AnnotatedGameViewer(_short_game())
        assert viewer.controller.phase == REVIEWING
        assert viewer.annotation_at() is None
        # 2.Bf4 and 2...Nf6 share a move number.
        assert viewer.annotation_at(3).concept == "Key Principle"
        assert viewer.annotation_at(4).concept == "Development"
        # The note for 3.Bd3 never matches 3.e3.
        assert viewer.annotation_at(5) is None
        assert viewer.annotated_indices() == [3, 4]

    def test_stepping_and_progress(self):
        viewer = AnnotatedGameViewer(_short_game())
        assert (viewer.move_number, viewer.total_full_moves) == (0, 3)
        viewer.next()
        viewer.next()
        assert viewer.move_number == 1
        assert viewer.view()["fen"] == chess.Board(
            "rnbqkbnr/ppp1pppp/8/3p4/3P4/8/PPP1PPPP/RNBQKBNR w KQkq - 0 2"
        ).fen()
        viewer.prev()
        assert viewer.index == 1
        assert viewer.go_to(-5) == 0

    def test_next_annotation_jumps(self):
        viewer = AnnotatedGameViewer(_short_game())
        assert viewer.next_annotation() == 3
        assert viewer.next_annotation() == 4
        assert viewer.next_annotation() == 4

    def test_view_at_end_has_takeaways(self):
        viewer = AnnotatedGameViewer(_short_game())
        assert "key_takeaways" not in viewer.view()
        viewer.go_to(99)
        view = viewer.view()
        assert viewer.at_end
        assert view["key_takeaways"] == ["Bf4 before e3"]
        assert view["replay"]["total"] == 6
        assert view["annotation"] is None

    def test_illegal_pgn_move_ends_the_game_early(self):
        game = _short_game("1. d4 d5 2. Bf4 Nf6 3. Bxh8 e6 *")
        assert master_game_moves(game) == ("d4", "d5", "Bf4", "Nf6")
        viewer = AnnotatedGameViewer(game)
        assert viewer.total_moves == 4

    def test_exit_returns_controller_to_idle(self):
        viewer = AnnotatedGameViewer(get_chapter("vs_qid").master_game)
        viewer.go_to(23)
        assert viewer.annotation_at().move == "e4"
        viewer.controller.exit()
        assert viewer.controller.phase == IDLE


# ---------------------------------------------------------------------------
# Training positions
# ---------------------------------------------------------------------------


class TestTrainingPositions:

    def test_multiple_choice_by_letter_or_index(self):
        position = get_position("kingside_attack", "pos_kingside_1")
        result = check_choice(position, "B")
        assert result.correct is True
        assert result.answer.startswith("B)")
        assert result.explanation == position.explanation
        assert check_choice(position, 0).correct is False
        assert check_choice(position, "d) anything").correct is False

    @pytest.mark.parametrize("choice", ["E", "", 4, -1])
    def test_bad_choice(self, choice):
        with pytest.raises(ValueError):
            check_choice(get_position("kingside_attack", "pos_kingside_1"), choice)

    def test_find_move(self):
        position = get_position("kingside_attack", "pos_kingside_2")
        assert check_move(position, "Qd2").correct is True
        assert check_move(position, "d1d2").answer == "Qd2"
        wrong = check_move(position, "a3")
        assert wrong.correct is False
        assert wrong.feedback == "Not quite. Best move: Qd2"
        assert check_move(position, "Qxh7") is None
        assert check_move(position, "--") is None

    def test_find_move_from_squares(self):
        position = get_position("vs_dutch", "pos_dutch_5")
        assert check_board_move(position, "f2", "f4").answer == "f4"
        assert check_board_move(position, "f2", "f5") is None

    def test_kind_mismatch(self):
        with pytest.raises(ValueError):
            check_move(get_position("kingside_attack", "pos_kingside_1"), "Ne5")
        with pytest.raises(ValueError):
            check_choice(get_position("kingside_attack", "pos_kingside_2"), "A")

    def test_hints_clamped(self):
        position = get_position("vs_qgd", "pos_qgd_1")
        assert hints_for(position, 0) == []
        assert len(hints_for(position, 1)) == 1
        assert hints_for(position, 10) == list(position.hints)
