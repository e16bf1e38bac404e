"""
Tilt-Maze Rigid-Body Physics
Layer 1: numpy world with static platforms, a rolling ball and trigger volumes.

Usage (Layer 2):
    world = PhysicsEngine()
    world.add_body(body)
    world.apply_force(ball, force)
    world.step(FIXED_DT, dt_frame, MAX_SUB_STEPS)
    for ev in world.events: ...
"""

import enum
import numpy as np
from dataclasses import dataclass, field
from typing import Optional

# ──────────────────────────────────────────────
# Constants (game units)
# ──────────────────────────────────────────────
LINEAR_DAMPING: float = 0.01        # fraction of velocity lost per second
ANGULAR_DAMPING: float = 0.01

# ── Runtime-editable behavior constants ───────────────────────────────────────
# These are read by name every call, so front ends can mutate them live via:
#   import physics as _phys;  _phys.BOUNCE_THRESHOLD = 2.0
GRAVITY_Y: float = -30.0            # world gravity (units/s^2)
DEFAULT_FRICTION: float = 0.3       # contact pair without a registered material
DEFAULT_RESTITUTION: float = 0.0
BOUNCE_THRESHOLD: float = 1.0       # impact speed below which restitution is ignored
CONTACT_SLOP: float = 0.001         # penetration left uncorrected (prevents jitter)
CORRECTION_RATE: float = 0.8        # fraction of penetration removed per step

# Numerical thresholds
EPS: float = 1e-9


# ──────────────────────────────────────────────
# Quaternion helpers  (w, x, y, z)
# ──────────────────────────────────────────────

def quat_identity() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0])


def quat_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array([
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    ])


def quat_conjugate(q: np.ndarray) -> np.ndarray:
    return np.array([q[0], -q[1], -q[2], -q[3]])


def quat_rotate(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector v by unit quaternion q."""
    qv = np.array([0.0, v[0], v[1], v[2]])
    return quat_multiply(quat_multiply(q, qv), quat_conjugate(q))[1:]


def quat_from_euler(x: float, y: float, z: float) -> np.ndarray:
    """Quaternion from intrinsic XYZ Euler angles (radians)."""
    c1, s1 = np.cos(x / 2), np.sin(x / 2)
    c2, s2 = np.cos(y / 2), np.sin(y / 2)
    c3, s3 = np.cos(z / 2), np.sin(z / 2)
    return np.array([
        c1 * c2 * c3 - s1 * s2 * s3,
        s1 * c2 * c3 + c1 * s2 * s3,
        c1 * s2 * c3 - s1 * c2 * s3,
        c1 * c2 * s3 + s1 * s2 * c3,
    ])


def quat_integrate(q: np.ndarray, w: np.ndarray, dt: float) -> np.ndarray:
    """Advance orientation q by world-frame angular velocity w over dt."""
    dq = 0.5 * dt * quat_multiply(np.array([0.0, w[0], w[1], w[2]]), q)
    out = q + dq
    n = np.linalg.norm(out)
    return out / n if n > EPS else quat_identity()


# ──────────────────────────────────────────────
# Shapes / bodies
# ──────────────────────────────────────────────

class ShapeKind(enum.Enum):
    SPHERE = 0
    BOX = 1


@dataclass
class Sphere:
    radius: float
    kind: ShapeKind = ShapeKind.SPHERE


@dataclass
class Box:
    half_extents: np.ndarray
    kind: ShapeKind = ShapeKind.BOX

    def __post_init__(self):
        self.half_extents = np.array(self.half_extents, dtype=float)


@dataclass
class ContactMaterial:
    friction: float = DEFAULT_FRICTION
    restitution: float = DEFAULT_RESTITUTION


@dataclass(eq=False)
class Body:
    """Rigid body. mass == 0 marks a static (immovable) body."""
    name: str
    shape: object
    mass: float = 0.0
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    quaternion: np.ndarray = field(default_factory=quat_identity)
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    material: str = ""
    is_trigger: bool = False
    linear_damping: float = LINEAR_DAMPING
    angular_damping: float = ANGULAR_DAMPING
    tag: Optional[object] = None

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float)
        self.quaternion = np.array(self.quaternion, dtype=float)
        self.velocity = np.array(self.velocity, dtype=float)
        self.angular_velocity = np.array(self.angular_velocity, dtype=float)
        self.force = np.zeros(3)

    @property
    def is_dynamic(self) -> bool:
        return self.mass > 0.0 and not self.is_trigger

    @property
    def inertia(self) -> float:
        """Scalar moment of inertia (solid sphere)."""
        return (2.0 / 5.0) * self.mass * self.shape.radius ** 2

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))

    def reset_motion(self, position) -> None:
        """Teleport to position and zero linear and angular velocity."""
        self.position = np.array(position, dtype=float)
        self.velocity[:] = 0.0
        self.angular_velocity[:] = 0.0
        self.force[:] = 0.0


# ──────────────────────────────────────────────
# Narrow phase
# ──────────────────────────────────────────────

def sphere_box_contact(center: np.ndarray, radius: float, box: Body):
    """Return (normal, depth) of a sphere touching an oriented box, else None.

    The normal points from the box toward the sphere centre, in world frame.
    """
    he = box.shape.half_extents
    q_inv = quat_conjugate(box.quaternion)
    local = quat_rotate(q_inv, center - box.position)
    clamped = np.clip(local, -he, he)
    diff = local - clamped
    dist = float(np.linalg.norm(diff))
    if dist > radius:
        return None
    if dist > EPS:
        n_local = diff / dist
        depth = radius - dist
    else:
        # Centre inside the box: push out through the nearest face
        pen = he - np.abs(local)
        axis = int(np.argmin(pen))
        n_local = np.zeros(3)
        n_local[axis] = 1.0 if local[axis] >= 0.0 else -1.0
        depth = float(pen[axis]) + radius
    return quat_rotate(box.quaternion, n_local), depth


def sphere_sphere_contact(c1: np.ndarray, r1: float, c2: np.ndarray, r2: float):
    """Return (normal, depth) with normal pointing from sphere 2 to sphere 1."""
    d = c1 - c2
    dist = float(np.linalg.norm(d))
    if dist > r1 + r2:
        return None
    normal = d / dist if dist > EPS else np.array([0.0, 1.0, 0.0])
    return normal, r1 + r2 - dist


def _contact(a: Body, b: Body):
    """Contact of sphere body a against body b (sphere or box)."""
    if b.shape.kind == ShapeKind.BOX:
        return sphere_box_contact(a.position, a.shape.radius, b)
    return sphere_sphere_contact(a.position, a.shape.radius, b.position, b.shape.radius)


def _overlaps(a: Body, b: Body) -> bool:
    """Overlap test for trigger pairs (at least one side a sphere)."""
    if a.shape.kind == ShapeKind.SPHERE:
        return _contact(a, b) is not None
    if b.shape.kind == ShapeKind.SPHERE:
        return _contact(b, a) is not None
    return False


class PhysicsEngine:
    """Fixed-step rigid-body world using numpy."""

    def __init__(self, gravity=None):
        # None: follow the module-level GRAVITY_Y (live-editable)
        self._gravity = None if gravity is None else np.array(gravity, dtype=float)
        self.bodies: list[Body] = []
        self.contact_materials: dict[frozenset, ContactMaterial] = {}
        self.events: list[dict] = []
        self.accumulator = 0.0
        self.time = 0.0

    @property
    def gravity(self) -> np.ndarray:
        if self._gravity is not None:
            return self._gravity
        return np.array([0.0, GRAVITY_Y, 0.0])

    # ──────────────────────────────────────────
    # World membership
    # ──────────────────────────────────────────
    def add_body(self, body: Body) -> None:
        if body in self.bodies:
            raise ValueError(f"add_body: '{body.name}' is already in the world")
        if body.is_dynamic and body.shape.kind != ShapeKind.SPHERE:
            raise ValueError(f"add_body: dynamic body '{body.name}' must be a sphere")
        self.bodies.append(body)

    def remove_body(self, body: Body) -> None:
        if body not in self.bodies:
            raise ValueError(f"remove_body: '{body.name}' is not in the world")
        self.bodies.remove(body)

    def has_body(self, body: Body) -> bool:
        return body in self.bodies

    def add_contact_material(self, mat_a: str, mat_b: str,
                             friction: float, restitution: float) -> None:
        self.contact_materials[frozenset((mat_a, mat_b))] = ContactMaterial(friction, restitution)

    def contact_material(self, a: Body, b: Body) -> ContactMaterial:
        cm = self.contact_materials.get(frozenset((a.material, b.material)))
        return cm if cm is not None else ContactMaterial(DEFAULT_FRICTION, DEFAULT_RESTITUTION)

    @staticmethod
    def apply_force(body: Body, force) -> None:
        """Accumulate a force at the body centre; held until the end of step()."""
        body.force = body.force + np.asarray(force, dtype=float)

    # ──────────────────────────────────────────
    # Integration
    # ──────────────────────────────────────────
    def _integrate(self, body: Body, dt: float) -> None:
        accel = self.gravity + body.force / body.mass
        body.velocity = body.velocity + accel * dt
        body.velocity *= (1.0 - body.linear_damping) ** dt
        body.angular_velocity *= (1.0 - body.angular_damping) ** dt
        body.position = body.position + body.velocity * dt
        body.quaternion = quat_integrate(body.quaternion, body.angular_velocity, dt)

    def _resolve_contact(self, ball: Body, other: Body,
                         normal: np.ndarray, depth: float) -> None:
        """Resolve a dynamic sphere against a static body.

        Normal impulse:    J_n = -(1 + e) * v_n * m
        Friction impulse:  J_t = min(|v_t| / (1/m + R^2/I), mu * J_n)
        Angular change:    dw  = r_c x (-J_t * t) / I,  r_c = -R * n
        """
        cm = self.contact_material(ball, other)
        m = ball.mass
        R = ball.shape.radius
        inertia = ball.inertia

        if depth > CONTACT_SLOP:
            ball.position = ball.position + normal * (depth - CONTACT_SLOP) * CORRECTION_RATE

        r_c = -R * normal
        v_c = ball.velocity + np.cross(ball.angular_velocity, r_c)
        v_n = float(np.dot(v_c, normal))
        if v_n >= 0.0:
            return

        e = cm.restitution if -v_n > BOUNCE_THRESHOLD else 0.0
        J_n = -(1.0 + e) * v_n * m
        ball.velocity = ball.velocity + (J_n / m) * normal

        v_c = ball.velocity + np.cross(ball.angular_velocity, r_c)
        v_t = v_c - np.dot(v_c, normal) * normal
        v_t_mag = float(np.linalg.norm(v_t))
        if v_t_mag < EPS:
            return
        t = v_t / v_t_mag
        J_t = min(v_t_mag / (1.0 / m + R * R / inertia), cm.friction * J_n)
        ball.velocity = ball.velocity - (J_t / m) * t
        ball.angular_velocity = ball.angular_velocity + np.cross(r_c, -J_t * t) / inertia

    def _internal_step(self, dt: float) -> None:
        dynamic = [b for b in self.bodies if b.is_dynamic]
        for body in dynamic:
            self._integrate(body, dt)

        for body in dynamic:
            for other in self.bodies:
                if other is body or other.is_dynamic:
                    continue
                if other.is_trigger:
                    if _overlaps(body, other):
                        self.events.append({"type": "trigger", "body": body, "other": other})
                    continue
                hit = _contact(body, other)
                if hit is None:
                    continue
                normal, depth = hit
                self._resolve_contact(body, other, normal, depth)
                self.events.append({"type": "contact", "body": body, "other": other})

        self.time += dt

    def step(self, fixed_dt: float, time_since_last: Optional[float] = None,
             max_sub_steps: int = 10) -> int:
        """Advance the world with a fixed timestep.

        Without ``time_since_last`` exactly one step of ``fixed_dt`` runs.
        Otherwise real time is accumulated and at most ``max_sub_steps``
        internal steps run; any catch-up beyond that is discarded.

        Returns:
            Number of internal steps executed.
        """
        self.events.clear()
        steps = 0
        if time_since_last is None:
            self._internal_step(fixed_dt)
            steps = 1
        else:
            self.accumulator += time_since_last
            while self.accumulator >= fixed_dt and steps < max_sub_steps:
                self._internal_step(fixed_dt)
                self.accumulator -= fixed_dt
                steps += 1
            self.accumulator = self.accumulator % fixed_dt

        for body in self.bodies:
            body.force[:] = 0.0
        return steps
