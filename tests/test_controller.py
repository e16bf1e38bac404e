"""
Controller Tests — state machine, gameplay rules and headless determinism.
"""

import sys
import os
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from controller import GameMode, MazeController, format_clock
from controls import FORCE_MAGNITUDE, OrientationSensor
from level import LEVEL_LAYOUT, PICKUP_POSITIONS, SPAWN_POSITION
from scheduler import AsyncioScheduler
from storage import MemoryStore

TOTAL_NODES = len(LEVEL_LAYOUT) + len(PICKUP_POSITIONS) + 2


@pytest.fixture
def ctrl():
    return MazeController(store=MemoryStore())


@pytest.fixture
def playing(ctrl):
    ctrl.start_game()
    return ctrl


def trigger_with(ctrl, entity):
    ball = ctrl.session.level.ball.body
    return {"type": "trigger", "body": ball, "other": entity.body}


def drop_ball(ctrl):
    ctrl.session.level.ball.body.position[1] = -25.0
    ctrl.step(ctrl.FIXED_DT)


class FailingStore(MemoryStore):
    def set(self, value):
        raise OSError("disk full")


class TestStateMachine:

    def test_initial_menu(self, ctrl):
        assert ctrl.mode == GameMode.MENU
        assert ctrl.session is None
        assert ctrl.ui_state()["panels"] == ["menu"]
        assert not ctrl.scheduler.frames_running

    @pytest.mark.parametrize("action", ["pause_game", "resume_game", "game_over", "win_game", "tick_timer"])
    def test_invalid_transitions_from_menu_are_noops(self, ctrl, action):
        getattr(ctrl, action)()
        assert ctrl.mode == GameMode.MENU

    def test_start_arms_loops(self, playing):
        assert playing.mode == GameMode.PLAYING
        assert playing.scheduler.frames_running
        assert playing.scheduler.timer_running
        s = playing.session
        assert (s.score, s.lives, s.time_left) == (0, 3, 60)
        assert playing.ui_state()["panels"] == ["hud", "controls"]

    def test_pause_freezes_everything(self, playing):
        playing.key_down("up")
        playing.scheduler.run_for(0.5, playing.FIXED_DT)
        playing.pause_game()
        before = playing.get_state()
        assert playing.mode == GameMode.PAUSED
        assert not playing.scheduler.frames_running
        assert not playing.scheduler.timer_running

        playing.scheduler.run_for(3.0, playing.FIXED_DT)
        playing.step(playing.FIXED_DT)
        playing.tick_timer()
        assert playing.get_state() == before
        assert playing.ui_state()["panels"] == ["hud", "pause"]

    def test_resume_rearms(self, playing):
        playing.pause_game()
        playing.resume_game()
        assert playing.mode == GameMode.PLAYING
        assert playing.scheduler.frames_running and playing.scheduler.timer_running

    def test_resume_only_from_pause(self, playing):
        playing.resume_game()
        assert playing.mode == GameMode.PLAYING
        playing.game_over()
        playing.resume_game()
        assert playing.mode == GameMode.GAME_OVER

    def test_toggle_pause(self, playing):
        playing.toggle_pause()
        assert playing.mode == GameMode.PAUSED
        playing.toggle_pause()
        assert playing.mode == GameMode.PLAYING

    def test_pause_cannot_reach_terminal_state(self, playing):
        playing.pause_game()
        playing.win_game()
        playing.game_over()
        assert playing.mode == GameMode.PAUSED

    def test_terminal_states_stop_loops(self, playing):
        playing.game_over()
        assert playing.mode == GameMode.GAME_OVER
        assert not playing.scheduler.frames_running
        assert not playing.scheduler.timer_running
        assert playing.ui_state()["panels"] == ["gameover"]

    def test_restart_from_any_state(self, playing):
        playing.pause_game()
        playing.restart()
        assert playing.mode == GameMode.PLAYING
        playing.win_game()
        playing.restart()
        assert playing.mode == GameMode.PLAYING
        assert playing.session.score == 0

    def test_menu_not_reenterable(self, playing):
        playing.show_menu()
        assert playing.mode == GameMode.PLAYING


class TestRules:

    def test_pickup_counted_once(self, playing):
        pickup = playing.session.level.pickups[0]
        ev = trigger_with(playing, pickup)
        for _ in range(3):
            playing.handle_collision(ev)
        assert playing.session.score == 10
        assert pickup.collected
        assert not playing.session.world.has_body(pickup.body)
        assert pickup.node not in playing.scene
        removed = [e for e in playing.pending_events if e["type"] == "remove_node"]
        assert [e["name"] for e in removed] == ["pickup0"]

    def test_platform_contact_is_ignored(self, playing):
        ev = trigger_with(playing, playing.session.level.platforms[0])
        playing.handle_collision(ev)
        assert playing.mode == GameMode.PLAYING
        assert playing.session.score == 0

    def test_finish_wins_with_time_bonus(self, playing):
        s = playing.session
        s.score = 50
        s.time_left = 12
        playing.handle_collision(trigger_with(playing, s.level.finish))
        assert playing.mode == GameMode.WIN
        assert s.score == 50 + 12 * 5
        assert playing.high_score == 110
        assert playing.ui_state()["panels"] == ["win"]
        results = [e for e in playing.pending_events if e["type"] == "show_result"]
        assert results == [{"type": "show_result", "msg": "You Win!", "score": 110}]

    def test_win_applies_bonus_once(self, playing):
        finish = playing.session.level.finish
        playing.handle_collision(trigger_with(playing, finish))
        playing.handle_collision(trigger_with(playing, finish))
        playing.win_game()
        assert playing.session.score == 60 * 5

    def test_no_pickup_after_terminal_state(self, playing):
        playing.game_over()
        playing.handle_collision(trigger_with(playing, playing.session.level.pickups[1]))
        assert playing.session.score == 0

    def test_fall_costs_a_life_and_resets_ball(self, playing):
        ball = playing.session.level.ball.body
        ball.velocity[:] = [3.0, -10.0, 2.0]
        drop_ball(playing)
        assert playing.session.lives == 2
        assert playing.mode == GameMode.PLAYING
        np.testing.assert_array_equal(ball.position, SPAWN_POSITION)
        np.testing.assert_array_equal(ball.velocity, np.zeros(3))
        np.testing.assert_array_equal(ball.angular_velocity, np.zeros(3))

    def test_three_falls_end_the_game(self, playing):
        ball = playing.session.level.ball.body
        drop_ball(playing)
        drop_ball(playing)
        assert playing.session.lives == 1
        assert playing.session.level.ball.body is ball
        drop_ball(playing)
        assert playing.session.lives == 0
        assert playing.mode == GameMode.GAME_OVER

    def test_timer_runs_out(self, playing):
        for _ in range(59):
            playing.tick_timer()
        assert playing.session.time_left == 1
        assert playing.ui_state()["timer"] == "00:01"
        playing.tick_timer()
        assert playing.session.time_left == 0
        assert playing.mode == GameMode.GAME_OVER

    def test_pumped_timer_drives_countdown(self, playing):
        playing.scheduler.run_for(3.5, 0.25)
        assert playing.session.time_left == 57

    def test_restart_rebuilds_level_cleanly(self, playing):
        playing.handle_collision(trigger_with(playing, playing.session.level.pickups[2]))
        playing.restart()
        assert len(playing.scene) == TOTAL_NODES
        assert len(playing.session.world.bodies) == TOTAL_NODES
        assert playing.session.level.remaining_pickups() == playing.session.level.pickups

    def test_restart_releases_held_keys(self, playing):
        playing.key_down("left")
        playing.restart()
        np.testing.assert_array_equal(playing.controls.fused_force(), np.zeros(3))


class TestHighScore:

    def test_high_score_is_monotonic(self):
        store = MemoryStore()
        ctrl = MazeController(store=store)
        ctrl.start_game()
        ctrl.session.time_left = 20
        ctrl.win_game()
        assert store.get() == 100

        ctrl.start_game()
        ctrl.game_over()
        assert ctrl.high_score == 100
        assert store.get() == 100
        assert ctrl.ui_state()["high_score"] == 100

    def test_high_score_loaded_from_store(self):
        assert MazeController(store=MemoryStore(75)).high_score == 75

    def test_store_failure_is_logged(self, capsys):
        ctrl = MazeController(store=FailingStore())
        ctrl.start_game()
        ctrl.win_game()
        assert ctrl.high_score == 300
        assert "[STORE]" in capsys.readouterr().out


class TestTilt:

    def test_denied_permission_keeps_keyboard(self, capsys):
        sensor = OrientationSensor(requires_permission=True)
        sensor.set_permission(OrientationSensor.DENIED)
        ctrl = MazeController(sensor=sensor)
        ctrl.start_game()
        assert ctrl.mode == GameMode.PLAYING
        assert not ctrl.tilt_active
        assert not sensor.subscribed
        assert "[INPUT]" in capsys.readouterr().out

    def test_granted_permission_feeds_controls(self):
        sensor = OrientationSensor(requires_permission=True)
        sensor.set_permission(OrientationSensor.GRANTED)
        ctrl = MazeController(sensor=sensor)
        ctrl.start_game()
        assert ctrl.tilt_active
        sensor.deliver(45.0, 0.0)
        assert ctrl.controls.fused_force()[2] == pytest.approx(FORCE_MAGNITUDE / 2)

    def test_permission_error_is_swallowed(self):
        class BrokenSensor(OrientationSensor):
            def request_permission(self):
                raise PermissionError("no user gesture")

        ctrl = MazeController(sensor=BrokenSensor())
        ctrl.start_game()
        assert ctrl.mode == GameMode.PLAYING
        assert not ctrl.tilt_active

    def test_restart_unsubscribes_previous_session(self):
        sensor = OrientationSensor(requires_permission=False)
        ctrl = MazeController(sensor=sensor)
        ctrl.start_game()
        sensor.deliver(30.0, 30.0)
        ctrl.restart()
        assert (ctrl.controls.beta, ctrl.controls.gamma) == (0.0, 0.0)
        assert sensor.subscribed


class TestHeadless:

    def test_determinism(self):
        res1 = MazeController().simulate(2.0, keys=("up",))
        res2 = MazeController().simulate(2.0, keys=("up",))
        assert res1 == res2

    def test_steering_collects_first_pickup(self):
        res = MazeController().simulate(1.0, keys=("up",))
        assert "pickup0" in res["collected"]
        assert res["score"] >= 10
        assert res["ball"]["pos"][2] < -7.0

    def test_idle_ball_settles_on_spawn_platform(self):
        res = MazeController().simulate(2.0)
        assert res["mode"] == "playing"
        assert res["ball"]["pos"][1] == pytest.approx(1.0, abs=0.05)
        assert res["lives"] == 3

    def test_simulate_requires_pumped_scheduler(self):
        with pytest.raises(ValueError):
            MazeController(scheduler=AsyncioScheduler()).simulate(1.0)


@pytest.mark.parametrize("seconds, text", [(60, "01:00"), (59, "00:59"), (5, "00:05"), (-3, "00:00")])
def test_format_clock(seconds, text):
    assert format_clock(seconds) == text
