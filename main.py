"""
Tilt-Maze Desktop Viewer (3-Tier Architecture)
Layer 3: Ursina rendering / keyboard input.
Layer 2: controller.py (MazeController)
Layer 1: physics.py (PhysicsEngine)

Enter / Space: start or restart.  Arrows / WASD: steer.  P / Escape: pause.
"""

import math
import os
import random
import tempfile
from ursina import (
    Ursina, Entity, Text, DirectionalLight, AmbientLight,
    camera, color, window, Vec3, destroy,
    time as ursina_time,
)
from PIL import Image, ImageDraw
from panda3d.core import Quat

from controller import MazeController, GameMode
from scene import panda_quat
from scheduler import PumpedScheduler
from storage import HighScoreStore

# ── Layer 2: controller instance (keyboard only, no tilt sensor) ──────────────
scheduler = PumpedScheduler()
ctrl = MazeController(store=HighScoreStore(), scheduler=scheduler)

_tex_dir = tempfile.mkdtemp(prefix="tiltmaze_tex_")


# ──────────────────────────────────────────
# Dot texture generation (PIL)
# ──────────────────────────────────────────

def _make_dot_texture(base_rgb, dot_rgb=(90, 60, 0), size=256, num_dots=30, seed=0):
    """Scattered dots on UV map -> visible rotation on sphere."""
    img = Image.new("RGB", (size, size), base_rgb)
    draw = ImageDraw.Draw(img)
    rng = random.Random(seed)
    dot_r = size // 28
    for _ in range(num_dots):
        cx = rng.randint(dot_r, size - dot_r - 1)
        cy = rng.randint(dot_r, size - dot_r - 1)
        draw.ellipse(
            [cx - dot_r, cy - dot_r, cx + dot_r, cy + dot_r],
            fill=dot_rgb,
        )
    return img


_ball_texture = None


def _get_ball_texture():
    global _ball_texture
    if _ball_texture is None:
        from ursina import Texture
        path = os.path.join(_tex_dir, "ball.png")
        _make_dot_texture((255, 215, 0), seed=42).save(path)
        _ball_texture = Texture(path)
    return _ball_texture


# ──────────────────────────────────────────
# Window / scene
# ──────────────────────────────────────────

app = Ursina(borderless=False, title="Tilt Maze", size=(1280, 800))
window.color = color.hex("#1b2838")

AmbientLight(color=color.gray)
sun = DirectionalLight(shadows=True)

camera.fov = 60

# L3 owns these; keyed by scene node name
node_entities: dict[str, Entity] = {}

_MODELS = {"box": "cube", "zone": "cube", "sphere": "sphere", "torus": "diamond"}


def _spawn_node(node):
    """Create an Ursina entity mirroring a scene node."""
    _remove_node(node.name)
    if node.kind == "sphere":
        scale = node.size[0] * 2
    elif node.kind == "torus":
        scale = (node.size[0] * 2, node.size[0] * 2, node.size[1] * 2)
    else:
        scale = tuple(node.size)

    ent = Entity(
        model=_MODELS.get(node.kind, "cube"),
        color=color.hex(node.color),
        scale=scale,
        position=Vec3(*node.position),
    )
    if node.kind == "sphere":
        ent.texture = _get_ball_texture()
        ent.color = color.white
    if node.kind == "zone":
        ent.alpha = 0.5
    ent.setQuat(Quat(*panda_quat(node.quaternion)))
    node_entities[node.name] = ent
    return ent


def _remove_node(name):
    ent = node_entities.pop(name, None)
    if ent is not None:
        destroy(ent)


# ── UI ────────────────────────────────────────────────────────────────────────
hud_text = Text(text="", position=(-0.85, 0.47), scale=1.3, color=color.white)
panel_text = Text(text="", origin=(0, 0), scale=2.0, color=color.yellow)
hint_text = Text(text="", origin=(0, 0), position=(0, -0.08), scale=1.0, color=color.light_gray)

_PANEL_MESSAGES = {
    GameMode.MENU:      ("Tilt Maze", "Enter: start   Arrows/WASD: steer   P: pause"),
    GameMode.PAUSED:    ("Paused", "P: resume   R: restart"),
    GameMode.GAME_OVER: ("Game Over", "Enter: try again"),
    GameMode.WIN:       ("You Win!", "Enter: play next level"),
}


def _update_ui():
    ui = ctrl.ui_state()
    if "hud" in ui["panels"]:
        hud_text.text = f"Score: {ui['score']}    {ui['timer']}    Lives: {ui['lives']}"
    else:
        hud_text.text = f"High score: {ui['high_score']}"
    title, hint = _PANEL_MESSAGES.get(ctrl.mode, ("", ""))
    if ctrl.mode in (GameMode.GAME_OVER, GameMode.WIN):
        hint = f"Score: {ui['final_score']}   High: {ui['high_score']}\n{hint}"
    panel_text.text = title
    hint_text.text = hint


def _handle_controller_event(ev: dict):
    t = ev["type"]
    if t == "spawn_node":
        _spawn_node(ev["node"])
    elif t == "remove_node":
        _remove_node(ev["name"])
    elif t in ("update_ui", "show_result"):
        _update_ui()


# ──────────────────────────────────────────
# Input handler
# ──────────────────────────────────────────

_STEER = {
    "left arrow": "left", "right arrow": "right",
    "up arrow": "up", "down arrow": "down",
    "a": "a", "d": "d", "w": "w", "s": "s",
}


def input(key):
    if key in ("enter", "space"):
        if ctrl.mode in (GameMode.MENU, GameMode.GAME_OVER, GameMode.WIN):
            ctrl.start_game()
        return
    if key in ("p", "escape"):
        ctrl.toggle_pause()
        return
    if key == "r" and ctrl.mode == GameMode.PAUSED:
        ctrl.restart()
        return
    if key in _STEER:
        ctrl.key_down(_STEER[key])
    elif key.endswith(" up") and key[:-3] in _STEER:
        ctrl.key_up(_STEER[key[:-3]])


# ──────────────────────────────────────────
# Frame update
# ──────────────────────────────────────────

def update():
    dt = ursina_time.dt

    # ── Loops: frame tick + countdown (armed only while PLAYING) ─────────────
    scheduler.pump(dt)

    # ── Process pending events (L2 → L3 rendering commands) ──────────────────
    for ev in ctrl.pending_events:
        _handle_controller_event(ev)
    ctrl.pending_events.clear()

    s = ctrl.session
    if s is None:
        return

    # ── Ball pose sync (node pose is copied from physics every frame)
    ball = s.level.ball
    ent = node_entities.get(ball.node.name)
    if ent is not None:
        ent.position = Vec3(*ball.node.position)
        ent.setQuat(Quat(*panda_quat(ball.node.quaternion)))

    for pickup in s.level.remaining_pickups():
        pent = node_entities.get(pickup.node.name)
        if pent is not None:
            pent.rotation_y = math.degrees(pickup.node.spin)

    # ── Camera + light follow the scene model ────────────────────────────────
    cam = ctrl.scene.camera
    camera.position = Vec3(*cam.position)
    camera.look_at(Vec3(*cam.target))
    sun.position = Vec3(*ctrl.scene.light.position)
    sun.look_at(Vec3(*ctrl.scene.light.target))


_update_ui()

# ──────────────────────────────────────────
# Run
# ──────────────────────────────────────────

if __name__ == "__main__":
    app.run()
