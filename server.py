"""
Tilt-Maze Web Server — Layer 3 (FastAPI + WebSocket)

Serves the Three.js frontend, hosts the controller's simulation loops and
streams scene state to browser clients over WebSocket. Phones report
device-orientation samples back over the same socket.
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from controller import MazeController
from controls import FORCE_MAGNITUDE, TILT_LIMIT, OrientationSensor
from level import BALL_RADIUS, SPAWN_POSITION
import physics as _phys
from scheduler import AsyncioScheduler
from storage import HighScoreStore

# ── Controller ──────────────────────────────────────────────────────────────

sensor = OrientationSensor(requires_permission=True)
ctrl = MazeController(store=HighScoreStore(), scheduler=AsyncioScheduler(), sensor=sensor)


# ── Lifespan (startup/shutdown) ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(broadcast_loop())
    yield
    task.cancel()
    ctrl.scheduler.stop_frames()
    ctrl.scheduler.stop_timer()


app = FastAPI(lifespan=lifespan)

# ── Client state ────────────────────────────────────────────────────────────

clients: list[WebSocket] = []

# ── Physics params (live editor) ────────────────────────────────────────────

PHYSICS_PARAMS = [
    ("GRAVITY_Y",           "Gravity",         -60.0,  -5.0,   1.0),
    ("DEFAULT_FRICTION",    "Default Frict.",    0.0,   1.0,   0.01),
    ("DEFAULT_RESTITUTION", "Default Rest.",     0.0,   1.0,   0.01),
    ("BOUNCE_THRESHOLD",    "Bounce Thresh.",    0.0,   5.0,   0.1),
]

PARAM_DEFAULTS = {attr: getattr(_phys, attr) for attr, *_ in PHYSICS_PARAMS}

# ── Broadcast loop ──────────────────────────────────────────────────────────

TARGET_FPS = 60
FRAME_DT = 1.0 / TARGET_FPS


async def broadcast_loop():
    """Push one frame message per display frame to every client."""
    while True:
        now = time.perf_counter()

        if clients:
            frame_msg = _build_frame_message()
            dead: list[WebSocket] = []
            for ws in clients:
                try:
                    await ws.send_text(frame_msg)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                if ws in clients:
                    clients.remove(ws)
        else:
            ctrl.pending_events.clear()

        elapsed = time.perf_counter() - now
        sleep_time = FRAME_DT - elapsed
        await asyncio.sleep(sleep_time if sleep_time > 0 else 0)


def _vec(v, nd: int = 4) -> list:
    return [round(float(x), nd) for x in v]


def _drain_events() -> list:
    events = []
    for ev in ctrl.pending_events:
        if ev.get("type") == "spawn_node":
            events.append({"type": "spawn_node", "node": ev["node"].to_dict()})
        else:
            events.append(ev)
    ctrl.pending_events.clear()
    return events


def _build_frame_message() -> str:
    """Serialize current state into a JSON frame message."""
    nodes = []
    s = ctrl.session
    if s is not None:
        ball = s.level.ball.node
        nodes.append({"name": ball.name, "pos": _vec(ball.position),
                      "quat": _vec(ball.quaternion, 6)})
        for p in s.level.remaining_pickups():
            nodes.append({"name": p.node.name, "spin": round(p.node.spin, 4)})

    cam = ctrl.scene.camera
    light = ctrl.scene.light
    frame = {
        "type": "frame",
        "mode": ctrl.mode.value,
        "nodes": nodes,
        "camera": {"pos": _vec(cam.position), "target": _vec(cam.target)},
        "light": {"pos": _vec(light.position), "target": _vec(light.target)},
        "events": _drain_events(),
        "ui": ctrl.ui_state(),
    }
    return json.dumps(frame, separators=(',', ':'))


def _build_init_message() -> str:
    return json.dumps({
        "type": "init",
        "ball_radius": BALL_RADIUS,
        "spawn": list(SPAWN_POSITION),
        "fall_limit": ctrl.FALL_LIMIT,
        "tilt_limit": TILT_LIMIT,
        "force_magnitude": FORCE_MAGNITUDE,
        "fixed_dt": ctrl.FIXED_DT,
        "nodes": [n.to_dict() for n in ctrl.scene.nodes.values()],
        "ui": ctrl.ui_state(),
    })


# ── Physics params helpers ──────────────────────────────────────────────────

def _get_params_data() -> list:
    """Return all physics params with current values."""
    result = []
    for attr, label, mn, mx, step in PHYSICS_PARAMS:
        result.append({
            "attr": attr, "label": label,
            "value": round(getattr(_phys, attr), 6),
            "min": mn, "max": mx, "step": step,
        })
    return result


def _adjust_param(idx: int, direction: int, fine: bool):
    attr, label, mn, mx, step = PHYSICS_PARAMS[idx]
    s = step / 10.0 if fine else step
    new_val = max(mn, min(mx, getattr(_phys, attr) + direction * s))
    setattr(_phys, attr, new_val)
    return new_val


# ── Command dispatch ────────────────────────────────────────────────────────

def _handle_command(msg: dict):
    """Apply one client command. Returns a reply dict or None."""
    cmd = msg.get("cmd", "")
    if cmd == "start":
        if "tilt" in msg:
            sensor.set_permission(str(msg["tilt"]))
        ctrl.start_game()
    elif cmd in ("restart", "next_level"):
        ctrl.restart()
    elif cmd == "pause":
        ctrl.pause_game()
    elif cmd == "resume":
        ctrl.resume_game()
    elif cmd == "key_down":
        key = str(msg.get("key", ""))
        if key in ("p", "escape"):
            ctrl.toggle_pause()
        else:
            ctrl.key_down(key)
    elif cmd == "key_up":
        ctrl.key_up(str(msg.get("key", "")))
    elif cmd == "orientation":
        sensor.deliver(msg.get("beta"), msg.get("gamma"))
    elif cmd == "orientation_permission":
        sensor.set_permission(str(msg.get("state", "")))
        print(f"[WS] orientation permission: {sensor.permission}")
    elif cmd == "get_params":
        return {"type": "params", "data": _get_params_data()}
    elif cmd == "adjust_param":
        idx = int(msg.get("index", 0))
        if 0 <= idx < len(PHYSICS_PARAMS):
            new_val = _adjust_param(idx, int(msg.get("direction", 0)), bool(msg.get("fine", False)))
            return {"type": "param_update", "index": idx, "value": round(new_val, 6)}
    elif cmd == "reset_params":
        for attr, dflt in PARAM_DEFAULTS.items():
            setattr(_phys, attr, dflt)
        return {"type": "params", "data": _get_params_data()}
    return None


# ── WebSocket endpoint ──────────────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    clients.append(ws)
    print(f"[WS] client connected ({len(clients)} total)")

    await ws.send_text(_build_init_message())

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue
            try:
                reply = _handle_command(msg)
            except (TypeError, ValueError) as exc:
                print(f"[WS] bad command {msg.get('cmd')!r}: {exc}")
                continue
            if reply is not None:
                await ws.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        pass
    finally:
        if ws in clients:
            clients.remove(ws)
        ctrl.controls.release_all()
        print(f"[WS] client disconnected ({len(clients)} left)")


# ── Static files + root route ───────────────────────────────────────────────

STATIC_DIR = Path(__file__).resolve().parent / "static"

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.get("/")
async def root():
    return FileResponse(STATIC_DIR / "index.html")


# ── Run with uvicorn ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
