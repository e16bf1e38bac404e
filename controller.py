"""
MazeController — Layer 2 (Game Logic)

Owns the game-state machine, the per-frame simulation step and the
gameplay rules (pickups, finish, falls, countdown, score, high score).
Communicates with Layer 3 (server.py / main.py) via:
  - pending_events : render + UI commands (spawn_node, remove_node, update_ui, show_result)
  - ui_state()     : which panels are visible and the HUD values
  - scene          : visual nodes, camera and light to mirror every frame

Layer 3 calls:
  ctrl.start_game() / pause_game() / resume_game()
  ctrl.key_down(key) / key_up(key) / set_tilt(beta, gamma)
The frame tick (step) and one-second tick (tick_timer) are run by the
scheduler, armed only while the mode is PLAYING.
"""

import enum
import numpy as np
from dataclasses import dataclass, field
from typing import Optional

from physics import PhysicsEngine
from controls import InputState
from level import Level, Role, SPAWN_POSITION, build_level
from scene import Scene
from scheduler import PumpedScheduler
from storage import MemoryStore


class GameMode(enum.Enum):
    MENU = "menu"
    PLAYING = "playing"
    PAUSED = "paused"
    GAME_OVER = "gameover"
    WIN = "win"


# Visible UI regions per mode
UI_PANELS = {
    GameMode.MENU:      ("menu",),
    GameMode.PLAYING:   ("hud", "controls"),
    GameMode.PAUSED:    ("hud", "pause"),
    GameMode.GAME_OVER: ("gameover",),
    GameMode.WIN:       ("win",),
}


@dataclass
class GameSession:
    """Mutable state of one play-through (startGame → terminal state)."""
    world: PhysicsEngine
    level: Level
    score: int = 0
    lives: int = 3
    time_left: int = 60
    control_signal: np.ndarray = field(default_factory=lambda: np.zeros(3))


def format_clock(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class MazeController:
    """Layer 2: game-state machine + physics orchestration."""

    # ── Class-level constants ─────────────────────────────────────────────────
    FIXED_DT       = 1.0 / 60.0
    MAX_SUB_STEPS  = 3
    TIMER_PERIOD   = 1.0
    START_LIVES    = 3
    START_TIME     = 60
    PICKUP_SCORE   = 10
    TIME_BONUS     = 5
    FALL_LIMIT     = -20.0
    CAMERA_OFFSET  = np.array([0.0, 8.0, 10.0])
    CAMERA_LERP    = 0.05       # per tick, not per second
    PICKUP_SPIN    = 0.02       # radians per tick

    # ── Constructor ───────────────────────────────────────────────────────────

    def __init__(self, store=None, scheduler=None, sensor=None):
        self.store = store if store is not None else MemoryStore()
        self.scheduler = scheduler if scheduler is not None else PumpedScheduler()
        self.sensor = sensor                    # optional OrientationSensor

        self.controls = InputState()
        self.tilt_active = False

        # Event queue shared with the scene (drained by L3, never reassigned)
        self.pending_events: list[dict] = []
        self.scene = Scene(self.pending_events)

        self.session: Optional[GameSession] = None
        self.mode = GameMode.MENU
        self.high_score = self.store.get()
        self.show_menu()

    # ──────────────────────────────────────────────────────────────────────────
    # State machine
    # ──────────────────────────────────────────────────────────────────────────

    def _set_mode(self, mode: GameMode) -> None:
        if mode != self.mode:
            print(f"[GAME] {self.mode.name} -> {mode.name}")
        self.mode = mode

    def show_menu(self) -> None:
        """Initial state. Ignored once a session exists."""
        if self.session is not None:
            return
        self._set_mode(GameMode.MENU)
        self._refresh_ui()

    def start_game(self) -> None:
        """Valid from any state: tear down, build a fresh session, enter PLAYING."""
        self._stop_loops()
        self._teardown_session()
        self.controls.release_all()
        self.controls.clear_tilt()

        world = PhysicsEngine()
        level = build_level(world, self.scene)
        self.session = GameSession(world=world, level=level,
                                   lives=self.START_LIVES, time_left=self.START_TIME)
        self.scene.camera.target = level.ball.node.position.copy()

        self._set_mode(GameMode.PLAYING)
        self._refresh_ui()
        self._subscribe_tilt()
        self._start_loops()

    def restart(self) -> None:
        """Restart buttons (pause, game over, next level) all start afresh."""
        self.start_game()

    def pause_game(self) -> None:
        if self.mode != GameMode.PLAYING:
            return
        self._stop_loops()
        self._set_mode(GameMode.PAUSED)
        self._refresh_ui()

    def resume_game(self) -> None:
        if self.mode != GameMode.PAUSED:
            return
        self._set_mode(GameMode.PLAYING)
        self._start_loops()
        self._refresh_ui()

    def toggle_pause(self) -> None:
        if self.mode == GameMode.PLAYING:
            self.pause_game()
        elif self.mode == GameMode.PAUSED:
            self.resume_game()

    def game_over(self) -> None:
        if self.mode != GameMode.PLAYING:
            return
        self._stop_loops()
        self._set_mode(GameMode.GAME_OVER)
        self._reconcile_high_score()
        self.pending_events.append({"type": "show_result", "msg": "Game Over",
                                    "score": self.session.score})
        self._refresh_ui()

    def win_game(self) -> None:
        if self.mode != GameMode.PLAYING:
            return
        self._stop_loops()
        self._set_mode(GameMode.WIN)
        s = self.session
        s.score += s.time_left * self.TIME_BONUS
        self._reconcile_high_score()
        self.pending_events.append({"type": "show_result", "msg": "You Win!",
                                    "score": s.score})
        self._refresh_ui()

    # ── Loops / session resources ─────────────────────────────────────────────

    def _start_loops(self) -> None:
        self.scheduler.start_frames(self.step)
        self.scheduler.start_timer(self.tick_timer, self.TIMER_PERIOD)

    def _stop_loops(self) -> None:
        self.scheduler.stop_frames()
        self.scheduler.stop_timer()

    def _teardown_session(self) -> None:
        if self.sensor is not None:
            self.sensor.unsubscribe()
        self.tilt_active = False
        if self.session is None:
            return
        self.session.level.teardown(self.session.world, self.scene)
        self.session = None

    def _subscribe_tilt(self) -> None:
        """Subscribe to the orientation sensor; any failure leaves tilt inert."""
        if self.sensor is None:
            return
        try:
            granted = self.sensor.request_permission()
        except PermissionError as exc:
            print(f"[INPUT] orientation permission failed: {exc}")
            granted = False
        if not granted:
            print("[INPUT] tilt unavailable, keyboard only")
            return
        self.sensor.subscribe(self.set_tilt)
        self.tilt_active = True

    # ──────────────────────────────────────────────────────────────────────────
    # Input
    # ──────────────────────────────────────────────────────────────────────────

    def key_down(self, key: str) -> None:
        self.controls.key_down(key)

    def key_up(self, key: str) -> None:
        self.controls.key_up(key)

    def set_tilt(self, beta, gamma) -> None:
        self.controls.set_tilt(beta, gamma)

    # ──────────────────────────────────────────────────────────────────────────
    # Simulation step (frame callback)
    # ──────────────────────────────────────────────────────────────────────────

    def step(self, dt_frame: float) -> None:
        """Advance physics + rules by one rendered frame."""
        if self.mode != GameMode.PLAYING or self.session is None:
            return
        s = self.session
        ball = s.level.ball

        s.control_signal = self.controls.fused_force()
        s.world.apply_force(ball.body, s.control_signal)
        s.world.step(self.FIXED_DT, dt_frame, self.MAX_SUB_STEPS)

        for ev in s.world.events:
            self.handle_collision(ev)

        ball.sync_visual()
        for pickup in s.level.remaining_pickups():
            pickup.node.spin += self.PICKUP_SPIN
        self._update_camera()

        # A finish reached this frame ends play before any fall is counted
        if self.mode == GameMode.PLAYING:
            self._check_fall()

    def _update_camera(self) -> None:
        cam = self.scene.camera
        cam.follow(self.session.level.ball.node.position, self.CAMERA_OFFSET, self.CAMERA_LERP)
        self.scene.light.attach_to(cam)

    # ──────────────────────────────────────────────────────────────────────────
    # Gameplay rules
    # ──────────────────────────────────────────────────────────────────────────

    def handle_collision(self, event: dict) -> None:
        """Classify the non-ball participant of a physics event by its role."""
        if self.mode != GameMode.PLAYING or self.session is None:
            return
        entity = Level.classify(event["other"])
        if entity is None:
            return
        if entity.role == Role.PICKUP:
            self._collect_pickup(entity)
        elif entity.role == Role.FINISH:
            self.win_game()

    def _collect_pickup(self, pickup) -> None:
        if pickup.collected:
            return
        pickup.collected = True
        s = self.session
        s.score += self.PICKUP_SCORE
        s.world.remove_body(pickup.body)
        self.scene.remove(pickup.node)
        self._refresh_ui()

    def _check_fall(self) -> None:
        s = self.session
        if s.level.ball.body.position[1] >= self.FALL_LIMIT:
            return
        s.lives -= 1
        if s.lives <= 0:
            s.lives = 0
            self.game_over()
        else:
            self.reset_ball()
            self._refresh_ui()

    def reset_ball(self) -> None:
        """Back to spawn with zero linear and angular velocity (same body)."""
        ball = self.session.level.ball
        ball.body.reset_motion(SPAWN_POSITION)
        ball.sync_visual()

    def tick_timer(self) -> None:
        """One-second countdown tick."""
        if self.mode != GameMode.PLAYING or self.session is None:
            return
        s = self.session
        s.time_left -= 1
        if s.time_left <= 0:
            s.time_left = 0
            self.game_over()
        else:
            self._refresh_ui()

    def _reconcile_high_score(self) -> None:
        score = self.session.score
        if score <= self.high_score:
            return
        self.high_score = score
        try:
            self.store.set(score)
        except OSError as exc:
            print(f"[STORE] high score not saved: {exc}")

    # ──────────────────────────────────────────────────────────────────────────
    # UI
    # ──────────────────────────────────────────────────────────────────────────

    def _refresh_ui(self) -> None:
        self.pending_events.append({"type": "update_ui"})

    def ui_state(self) -> dict:
        s = self.session
        score = s.score if s else 0
        return {
            "mode": self.mode.value,
            "panels": list(UI_PANELS[self.mode]),
            "score": score,
            "timer": format_clock(s.time_left if s else self.START_TIME),
            "lives": s.lives if s else self.START_LIVES,
            "final_score": score,
            "high_score": self.high_score,
            "tilt": self.tilt_active,
        }

    # ──────────────────────────────────────────────────────────────────────────
    # Headless API
    # ──────────────────────────────────────────────────────────────────────────

    def get_state(self) -> dict:
        """Snapshot of the session for tests and headless runs."""
        s = self.session
        state = {"mode": self.mode.value, "high_score": self.high_score}
        if s is None:
            return state
        body = s.level.ball.body
        state.update({
            "score": s.score,
            "lives": s.lives,
            "time_left": s.time_left,
            "collected": [p.body.name for p in s.level.pickups if p.collected],
            "ball": {
                "pos": body.position.tolist(),
                "vel": body.velocity.tolist(),
                "angvel": body.angular_velocity.tolist(),
                "quat": body.quaternion.tolist(),
            },
        })
        return state

    def simulate(self, seconds: float, keys=(), tilt=None) -> dict:
        """Start a session and run it headless for ``seconds`` of game time.

        Requires a PumpedScheduler. Identical inputs give bit-identical results.
        """
        if not isinstance(self.scheduler, PumpedScheduler):
            raise ValueError("simulate: requires a PumpedScheduler")
        self.start_game()
        for key in keys:
            self.key_down(key)
        if tilt is not None:
            self.set_tilt(*tilt)
        self.scheduler.run_for(seconds, self.FIXED_DT)
        return self.get_state()
