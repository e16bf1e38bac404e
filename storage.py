"""
High-score persistence — a single integer that outlives every session.
"""

import json
import os
from pathlib import Path


class HighScoreStore:
    """JSON-file backed store: {"high_score": <int>}."""

    def __init__(self, path="highscore.json"):
        self.path = Path(path)

    def get(self) -> int:
        if not self.path.exists():
            return 0
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return max(0, int(data.get("high_score", 0)))
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            print(f"[STORE] unreadable high score file {self.path}: {exc}")
            return 0

    def set(self, value: int) -> None:
        """Write a sibling file and swap it in, so a failed write keeps the old score."""
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"high_score": int(value)}, f)
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                tmp.unlink()


class MemoryStore:
    """In-process store for headless runs."""

    def __init__(self, value: int = 0):
        self.value = value

    def get(self) -> int:
        return self.value

    def set(self, value: int) -> None:
        self.value = int(value)
