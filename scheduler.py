"""
Loop scheduling — a frame-driven tick and a fixed-period timer, each
independently cancellable.

AsyncioScheduler  : real-time tasks on the running asyncio loop (server.py)
PumpedScheduler   : driven by an external clock via pump(dt)
                    (Ursina viewer, headless simulation, tests)

Both expose the same surface:
    start_frames(callback)          callback(dt) once per frame
    stop_frames()
    start_timer(callback, period)   callback() every `period` seconds
    stop_timer()
    frames_running / timer_running
"""

import asyncio
import time

TARGET_FPS = 60
FRAME_DT = 1.0 / TARGET_FPS


class PumpedScheduler:
    """Scheduler advanced by the caller's own frame clock."""

    def __init__(self):
        self._frame_cb = None
        self._timer_cb = None
        self._timer_period = 1.0
        self._timer_acc = 0.0

    @property
    def frames_running(self) -> bool:
        return self._frame_cb is not None

    @property
    def timer_running(self) -> bool:
        return self._timer_cb is not None

    def start_frames(self, callback) -> None:
        self._frame_cb = callback

    def stop_frames(self) -> None:
        self._frame_cb = None

    def start_timer(self, callback, period: float = 1.0) -> None:
        self._timer_cb = callback
        self._timer_period = period
        self._timer_acc = 0.0

    def stop_timer(self) -> None:
        self._timer_cb = None
        self._timer_acc = 0.0

    def pump(self, dt: float) -> None:
        """Run one frame of ``dt`` seconds, then any timer periods that elapsed."""
        if self._frame_cb is not None:
            self._frame_cb(dt)
        if self._timer_cb is None:
            return
        self._timer_acc += dt
        # Callbacks may stop the timer mid-loop (e.g. game over)
        while self._timer_cb is not None and self._timer_acc >= self._timer_period:
            self._timer_acc -= self._timer_period
            self._timer_cb()

    def run_for(self, seconds: float, frame_dt: float = FRAME_DT) -> int:
        """Pump fixed frames covering ``seconds``. Returns frames pumped."""
        frames = int(round(seconds / frame_dt))
        for _ in range(frames):
            self.pump(frame_dt)
        return frames


class AsyncioScheduler:
    """Scheduler backed by asyncio tasks on the running event loop."""

    def __init__(self, fps: int = TARGET_FPS):
        self.frame_dt = 1.0 / fps
        self._frame_task = None
        self._timer_task = None

    @property
    def frames_running(self) -> bool:
        return self._frame_task is not None and not self._frame_task.done()

    @property
    def timer_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @staticmethod
    def _report_failure(task) -> None:
        # Loops only end by cancellation or a raising callback
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            print(f"[GAME] loop stopped by {type(exc).__name__}: {exc}")

    # ── Frame loop ────────────────────────────────────────────────────────────

    def start_frames(self, callback) -> None:
        self.stop_frames()
        self._frame_task = asyncio.get_running_loop().create_task(self._frame_loop(callback))
        self._frame_task.add_done_callback(self._report_failure)

    def stop_frames(self) -> None:
        task, self._frame_task = self._frame_task, None
        if task is not None:
            task.cancel()

    async def _frame_loop(self, callback) -> None:
        last_time = time.perf_counter()
        while True:
            await asyncio.sleep(self.frame_dt)
            now = time.perf_counter()
            dt = now - last_time
            last_time = now
            callback(dt)

    # ── Fixed-period timer ───────────────────────────────────────────────────

    def start_timer(self, callback, period: float = 1.0) -> None:
        self.stop_timer()
        self._timer_task = asyncio.get_running_loop().create_task(self._timer_loop(callback, period))
        self._timer_task.add_done_callback(self._report_failure)

    def stop_timer(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is not None:
            task.cancel()

    @staticmethod
    async def _timer_loop(callback, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            callback()
