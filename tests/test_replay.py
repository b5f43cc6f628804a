"""Pytest tests for the replay/review state machine.

Tests cover index clamping, jump-versus-step equivalence, auto-advance
timing and termination, speed changes, leaving replay, and which moves
get review arrows.
"""

from __future__ import annotations

import asyncio

import chess
import pytest

from trainer.game import GameStateManager
from trainer.models import GameResult, MoveQuality, RecordedGame
from trainer.replay import (
    IDLE,
    PLAYING,
    REVIEWING,
    ReplayController,
    annotation_arrows,
    board_at,
    quality_for_ply,
    replay_view,
    starting_fen_of,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MOVES = ("d4", "d5", "Bf4", "Nf6", "e3", "e6", "Nf3", "Bd6", "Bg3", "O-O")


def _recorded(moves=_MOVES, qualities=()) -> RecordedGame:
    manager = GameStateManager()
    for san in moves:
        manager.attempt_move_san(san)
    return RecordedGame(
        id="game_1_abc",
        timestamp=1_700_000_000_000,
        difficulty="intermediate",
        result=GameResult("draw"),
        pgn=manager.to_pgn(),
        move_history=tuple(moves),
        move_qualities=tuple(qualities),
    )


def _quality(move_number, move, classification, ply=None, **squares) -> MoveQuality:
    return MoveQuality(
        move_number=move_number,
        move=move,
        eval_before=0,
        eval_after=-150,
        eval_drop=150,
        classification=classification,
        best_move="Nf3",
        ply=ply,
        **squares,
    )


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


class TestNavigation:

    def test_enter_replay_starts_at_zero(self):
        controller = ReplayController()
        controller.enter_replay(_recorded())
        assert controller.phase == REVIEWING
        assert controller.current_index == 0
        assert controller.fen_at() == chess.STARTING_FEN

    def test_step_clamps(self):
        controller = ReplayController()
        controller.enter_replay(_recorded())
        assert controller.step(-1) == 0
        assert controller.step(100) == len(_MOVES)
        assert controller.step(+1) == len(_MOVES)

    def test_jump_matches_step(self):
        game = _recorded()
        jumper = ReplayController()
        jumper.enter_replay(game)
        stepper = ReplayController()
        stepper.enter_replay(game)

        for target in (3, 0, 7):
            jumper.go_to(target)
            while stepper.current_index < target:
                stepper.step(+1)
            while stepper.current_index > target:
                stepper.step(-1)
            assert jumper.fen_at() == stepper.fen_at()
            assert jumper.fen_at() == board_at(_MOVES, target).fen()

    def test_steps_ignored_when_idle(self):
        controller = ReplayController()
        assert controller.step(+1) == 0
        assert controller.phase == IDLE

    def test_last_move_at(self):
        controller = ReplayController()
        controller.enter_replay(_recorded())
        assert controller.last_move_at(0) is None
        last = controller.last_move_at(3)
        assert (last.from_square, last.to_square) == ("c1", "f4")

    def test_starting_fen_of_setup_pgn(self):
        fen = "8/4P3/8/8/8/8/k7/4K3 w - - 0 1"
        manager = GameStateManager(fen)
        manager.attempt_move_san("e8=Q")
        assert starting_fen_of(manager.to_pgn()) == fen
        assert starting_fen_of("") == chess.STARTING_FEN


# ---------------------------------------------------------------------------
# Auto-advance
# ---------------------------------------------------------------------------


class TestAutoAdvance:

    def test_manual_ticks_without_loop(self):
        controller = ReplayController()
        controller.enter_replay(_recorded(moves=("d4", "d5")))
        assert controller.toggle_play() == PLAYING
        controller.tick()
        controller.tick()
        assert controller.current_index == 2
        assert controller.phase == REVIEWING

    def test_play_at_end_is_noop(self):
        controller = ReplayController()
        controller.enter_replay(_recorded())
        controller.go_to(len(_MOVES))
        assert controller.toggle_play() == REVIEWING

    def test_tick_ignored_when_reviewing(self):
        controller = ReplayController()
        controller.enter_replay(_recorded())
        controller.tick()
        assert controller.current_index == 0

    @pytest.mark.asyncio
    async def test_plays_to_end_and_stops(self):
        controller = ReplayController(base_interval=0.01)
        controller.enter_replay(_recorded(moves=("d4", "d5", "Bf4")))
        controller.toggle_play()
        await asyncio.wait_for(controller.wait_stopped(), 2)
        assert controller.current_index == 3
        assert controller.phase == REVIEWING

    @pytest.mark.asyncio
    async def test_pause_stops_advancing(self):
        controller = ReplayController(base_interval=0.02)
        controller.enter_replay(_recorded())
        controller.toggle_play()
        await asyncio.sleep(0.05)
        controller.toggle_play()
        paused_at = controller.current_index
        await asyncio.sleep(0.08)
        assert controller.current_index == paused_at
        assert controller.phase == REVIEWING

    def test_speed_changes_interval(self):
        controller = ReplayController(base_interval=1.0)
        controller.set_speed(2.0)
        assert controller.interval == 0.5
        controller.set_speed(0.5)
        assert controller.interval == 2.0
        with pytest.raises(ValueError):
            controller.set_speed(0)


# ---------------------------------------------------------------------------
# Exit
# ---------------------------------------------------------------------------


class TestExit:

    def test_exit_resets_live_game(self):
        live = GameStateManager()
        live.attempt_move_san("d4")
        controller = ReplayController(live)
        controller.enter_replay(_recorded())
        controller.go_to(5)
        controller.exit()
        assert controller.phase == IDLE
        assert controller.current_index == 0
        assert live.fen == chess.STARTING_FEN

    def test_replay_never_touches_live_board(self):
        live = GameStateManager()
        live.attempt_move_san("e4")
        controller = ReplayController(live)
        controller.enter_replay(_recorded())
        controller.go_to(6)
        assert live.history_san() == ["e4"]

    def test_on_change_called(self):
        states = []
        controller = ReplayController(on_change=states.append)
        controller.enter_replay(_recorded())
        controller.step(+1)
        controller.exit()
        assert [s.current_move_index for s in states] == [0, 1, 0]
        assert states[-1].is_replaying is False


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------


class TestAnnotations:

    def test_arrows_only_for_inferior_white_moves(self):
        qualities = [
            _quality(1, "d4", "excellent", ply=0, move_from="d2", move_to="d4"),
            _quality(2, "Bf4", "mistake", ply=2, move_from="c1", move_to="f4",
                     best_move_from="g1", best_move_to="f3"),
        ]
        controller = ReplayController()
        controller.enter_replay(_recorded(qualities=qualities))

        assert controller.arrows_at(1) == []
        # Index 2 shows Black's d5: never annotated.
        assert controller.arrows_at(2) == []
        arrows = controller.arrows_at(3)
        assert [(a.kind, a.from_square, a.to_square) for a in arrows] == [
            ("played", "c1", "f4"),
            ("best", "g1", "f3"),
        ]
        # Black's reply with the same move number is not annotated either.
        assert controller.arrows_at(4) == []

    def test_quality_lookup_falls_back_to_move_number(self):
        legacy = [_quality(2, "Bf4", "blunder")]
        assert quality_for_ply(legacy, 2).move == "Bf4"
        assert quality_for_ply(legacy, 3) is None

    def test_annotation_arrows_for_good_move(self):
        assert annotation_arrows(_quality(1, "d4", "good", move_from="d2", move_to="d4")) == []

    def test_replay_view(self):
        qualities = [_quality(2, "Bf4", "inaccuracy", ply=2, move_from="c1", move_to="f4")]
        controller = ReplayController()
        controller.enter_replay(_recorded(qualities=qualities))
        controller.go_to(3)
        view = replay_view(controller)
        assert view["move_list"] == ["d4", "d5", "Bf4"]
        assert view["last_move"] == "c1f4"
        assert view["quality"]["classification"] == "inaccuracy"
        assert view["arrows"] == [{"from_square": "c1", "to_square": "f4", "kind": "played"}]
        assert view["replay"] == {
            "index": 3, "total": len(_MOVES), "phase": REVIEWING, "speed": 1.0,
        }
