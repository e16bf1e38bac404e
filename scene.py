"""
Scene model — renderer-neutral visual nodes, trailing camera and key light.

Layer 3 front ends (Ursina viewer, Three.js page) mirror this scene:
they consume the spawn_node / remove_node commands pushed onto the
controller's event queue and read node poses every frame.
"""

import numpy as np
from dataclasses import dataclass, field

from physics import quat_identity

LIGHT_OFFSET = np.array([-5.0, 5.0, -5.0])


def panda_quat(q) -> tuple:
    """Scene quaternion (w, x, y, z) as a Panda3D (r, i, j, k) tuple.

    The Ursina viewer hands scene (x, y, z) to Panda3D as (x, z, y). That
    axis swap is a reflection, so the rotation axis maps to (-x, -z, -y).
    """
    w, x, y, z = (float(v) for v in q)
    return (w, -x, -z, -y)


@dataclass(eq=False)
class Node:
    """One visual node. Pose is written by Layer 2, never read back into physics."""
    name: str
    kind: str                                   # "box" | "sphere" | "torus" | "zone"
    size: tuple
    color: str
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    quaternion: np.ndarray = field(default_factory=quat_identity)
    spin: float = 0.0                           # cosmetic yaw (radians)

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float)
        self.quaternion = np.array(self.quaternion, dtype=float)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "size": [float(s) for s in self.size],
            "color": self.color,
            "pos": [round(float(v), 5) for v in self.position],
            "quat": [round(float(v), 6) for v in self.quaternion],
            "spin": round(self.spin, 4),
        }


class Camera:
    """Perspective camera that trails a target."""

    def __init__(self, position=(0.0, 10.0, 15.0), fov: float = 60.0):
        self.position = np.array(position, dtype=float)
        self.target = np.zeros(3)
        self.fov = fov

    def follow(self, target, offset, factor: float) -> None:
        """Lerp toward target + offset by ``factor`` (per call) and aim at target."""
        target = np.asarray(target, dtype=float)
        desired = target + np.asarray(offset, dtype=float)
        self.position = self.position + (desired - self.position) * factor
        self.target = target.copy()


class DirectionalLight:
    def __init__(self, position=(10.0, 20.0, 5.0)):
        self.position = np.array(position, dtype=float)
        self.target = np.zeros(3)

    def attach_to(self, camera: Camera) -> None:
        self.position = camera.position + LIGHT_OFFSET
        self.target = camera.target.copy()


class Scene:
    """Set of visual nodes; membership changes become render commands."""

    def __init__(self, events: list = None):
        self.nodes: dict[str, Node] = {}
        self.events = events if events is not None else []
        self.camera = Camera()
        self.light = DirectionalLight()

    def add(self, node: Node) -> None:
        if node.name in self.nodes:
            raise ValueError(f"scene.add: node '{node.name}' already present")
        self.nodes[node.name] = node
        self.events.append({"type": "spawn_node", "node": node})

    def remove(self, node: Node) -> None:
        if self.nodes.get(node.name) is not node:
            raise ValueError(f"scene.remove: node '{node.name}' not in scene")
        del self.nodes[node.name]
        self.events.append({"type": "remove_node", "name": node.name})

    def __contains__(self, node: Node) -> bool:
        return self.nodes.get(node.name) is node

    def __len__(self) -> int:
        return len(self.nodes)
