"""
Input fusion — tilt sensor + held keys → one planar control force.

Tilt (device orientation) gives a proportional force on each axis:
    fx = gamma / 90 * FORCE_MAGNITUDE        (left / right tilt)
    fz = beta  / 90 * FORCE_MAGNITUDE        (forward / back tilt)
A held steering key OVERRIDES its axis with the full magnitude; it is
never added to the tilt contribution.
"""

import numpy as np

TILT_LIMIT = 90.0
FORCE_MAGNITUDE = 60.0

# Evaluated in this order; a later held key overwrites its axis, so with
# opposing keys held together "right" beats "left" and "down" beats "up".
STEER_KEYS = (
    ("left",  0, -1.0),
    ("a",     0, -1.0),
    ("right", 0, +1.0),
    ("d",     0, +1.0),
    ("up",    1, -1.0),
    ("w",     1, -1.0),
    ("down",  1, +1.0),
    ("s",     1, +1.0),
)


def clamp_tilt(value) -> float:
    if value is None:
        return 0.0
    return max(-TILT_LIMIT, min(TILT_LIMIT, float(value)))


class InputState:
    """Latest tilt sample plus a sparse pressed-key mapping."""

    def __init__(self, magnitude: float = FORCE_MAGNITUDE):
        self.magnitude = magnitude
        self.beta = 0.0     # front/back tilt → z axis
        self.gamma = 0.0    # left/right tilt → x axis
        self.pressed: dict[str, bool] = {}

    def set_tilt(self, beta, gamma) -> None:
        # Whole-value replacement: sensor callbacks never leave a half-written pair
        self.beta, self.gamma = clamp_tilt(beta), clamp_tilt(gamma)

    def clear_tilt(self) -> None:
        self.beta = self.gamma = 0.0

    def key_down(self, key: str) -> None:
        self.pressed[key] = True

    def key_up(self, key: str) -> None:
        self.pressed.pop(key, None)

    def release_all(self) -> None:
        self.pressed.clear()

    def fused_force(self) -> np.ndarray:
        """Return the control force [fx, 0, fz] for this tick."""
        axes = [self.gamma / TILT_LIMIT * self.magnitude,
                self.beta / TILT_LIMIT * self.magnitude]
        for key, axis, sign in STEER_KEYS:
            if self.pressed.get(key):
                axes[axis] = sign * self.magnitude
        return np.array([axes[0], 0.0, axes[1]])


class OrientationSensor:
    """Permission-gated tilt feed.

    The platform (browser page, device bridge) reports the permission
    outcome with ``set_permission`` and pushes samples with ``deliver``.
    Samples only reach a listener while one is subscribed.
    """

    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"

    def __init__(self, requires_permission: bool = True):
        self.requires_permission = requires_permission
        self.permission = None
        self._listener = None

    def set_permission(self, state: str) -> None:
        self.permission = state

    def request_permission(self) -> bool:
        if self.permission == self.UNSUPPORTED:
            return False
        if not self.requires_permission:
            return True
        return self.permission == self.GRANTED

    def subscribe(self, listener) -> None:
        self._listener = listener

    def unsubscribe(self) -> None:
        self._listener = None

    @property
    def subscribed(self) -> bool:
        return self._listener is not None

    def deliver(self, beta, gamma) -> None:
        if self._listener is not None:
            self._listener(beta, gamma)
