"""
Level Assembly — static layout table → platform, ball, pickup and finish entities.

Every entity pairs one physics body with one visual node and carries an
explicit Role, so gameplay code classifies collisions with a single
switch on ``entity.role``.
"""

import enum
import math
import numpy as np
from dataclasses import dataclass, field
from typing import Optional

from physics import Body, Box, PhysicsEngine, Sphere, quat_from_euler
from scene import Node, Scene

# ── Layout (configuration) ─────────────────────────────────────────────────────
# (size, position, slanted)
LEVEL_LAYOUT = (
    ((10, 1, 10), (0,  0,   0), False),
    ((10, 1, 4),  (0,  0,  -7), False),
    ((4,  1, 10), (7,  0, -12), False),
    ((15, 1, 4),  (15, -2, -12), True),
    ((4,  1, 10), (23, -4, -12), False),
    ((10, 1, 4),  (23, -4,  -5), False),
)

PICKUP_POSITIONS = (
    (0,  1.5,  -7),
    (7,  1.5,  -9),
    (7,  1.5, -15),
    (15, 0.5, -12),
    (23, -2.5, -15),
    (23, -2.5,  -9),
)

SPAWN_POSITION = (0.0, 2.0, 0.0)
FINISH_POSITION = (23.0, -3.0, -5.0)

SLANT_ANGLE = -math.pi / 16          # rotation about X for slanted platforms

BALL_RADIUS = 0.5
BALL_MASS = 1.5
PICKUP_RADIUS = 0.7
FINISH_HALF_EXTENT = 2.0

PLATFORM_MATERIAL = "platform"
BALL_MATERIAL = "ball"
BALL_PLATFORM_FRICTION = 0.1
BALL_PLATFORM_RESTITUTION = 0.3


class Role(enum.Enum):
    PLATFORM = "platform"
    BALL = "ball"
    PICKUP = "pickup"
    FINISH = "finish"


@dataclass(eq=False)
class Entity:
    role: Role
    body: Body
    node: Node
    collected: bool = False         # pickups only; false → true, never back

    def __post_init__(self):
        self.body.tag = self

    def sync_visual(self) -> None:
        """Copy physics pose onto the visual node (physics → visuals only)."""
        self.node.position = self.body.position.copy()
        self.node.quaternion = self.body.quaternion.copy()


@dataclass
class Level:
    ball: Entity
    platforms: list = field(default_factory=list)
    pickups: list = field(default_factory=list)
    finish: Optional[Entity] = None

    def entities(self) -> list:
        out = [self.ball] + self.platforms + self.pickups
        if self.finish is not None:
            out.append(self.finish)
        return out

    @staticmethod
    def classify(body: Body) -> Optional[Entity]:
        tag = body.tag
        return tag if isinstance(tag, Entity) else None

    def remaining_pickups(self) -> list:
        return [p for p in self.pickups if not p.collected]

    def teardown(self, world: PhysicsEngine, scene: Scene) -> None:
        """Detach every body and node this level still owns."""
        for ent in self.entities():
            if ent.role == Role.PICKUP and ent.collected:
                continue
            world.remove_body(ent.body)
            scene.remove(ent.node)


# ──────────────────────────────────────────────────────────────────────────────
# Builders
# ──────────────────────────────────────────────────────────────────────────────

def _attach(world: PhysicsEngine, scene: Scene, ent: Entity) -> Entity:
    world.add_body(ent.body)
    scene.add(ent.node)
    return ent


def create_platform(index: int, size, position, slanted: bool = False) -> Entity:
    q = quat_from_euler(SLANT_ANGLE, 0.0, 0.0) if slanted else quat_from_euler(0.0, 0.0, 0.0)
    half = np.array(size, dtype=float) / 2.0
    body = Body(f"platform{index}", Box(half), mass=0.0,
                position=position, quaternion=q, material=PLATFORM_MATERIAL)
    node = Node(f"platform{index}", "box", tuple(size), "#4466aa",
                position=position, quaternion=q.copy())
    return Entity(Role.PLATFORM, body, node)


def create_ball(position=SPAWN_POSITION) -> Entity:
    body = Body("ball", Sphere(BALL_RADIUS), mass=BALL_MASS,
                position=position, material=BALL_MATERIAL)
    node = Node("ball", "sphere", (BALL_RADIUS,), "#ffd700", position=position)
    return Entity(Role.BALL, body, node)


def create_pickup(index: int, position) -> Entity:
    body = Body(f"pickup{index}", Sphere(PICKUP_RADIUS), mass=0.0,
                position=position, is_trigger=True)
    node = Node(f"pickup{index}", "torus", (0.4, 0.15), "#ffc107", position=position)
    return Entity(Role.PICKUP, body, node)


def create_finish(position=FINISH_POSITION) -> Entity:
    he = FINISH_HALF_EXTENT
    body = Body("finish", Box((he, he, he)), mass=0.0,
                position=position, is_trigger=True)
    node = Node("finish", "zone", (2 * he, 0.2, 2 * he), "#00ff00", position=position)
    return Entity(Role.FINISH, body, node)


def build_level(world: PhysicsEngine, scene: Scene) -> Level:
    """Instantiate the fixed level into a world and scene."""
    world.add_contact_material(BALL_MATERIAL, PLATFORM_MATERIAL,
                               friction=BALL_PLATFORM_FRICTION,
                               restitution=BALL_PLATFORM_RESTITUTION)

    platforms = [_attach(world, scene, create_platform(i, size, pos, slanted))
                 for i, (size, pos, slanted) in enumerate(LEVEL_LAYOUT)]
    ball = _attach(world, scene, create_ball())
    pickups = [_attach(world, scene, create_pickup(i, pos))
               for i, pos in enumerate(PICKUP_POSITIONS)]
    finish = _attach(world, scene, create_finish())
    return Level(ball=ball, platforms=platforms, pickups=pickups, finish=finish)
