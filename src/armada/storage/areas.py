"""Persistence for operator-drawn areas, stored as opaque JSON objects."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .files import read_json, write_json_atomic


class AreaStore:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def load(self) -> list[dict[str, Any]]:
        document = read_json(self._path, [])
        if not isinstance(document, list):
            return []
        return [area for area in document if isinstance(area, dict)]

    def save(self, areas: list[dict[str, Any]]) -> None:
        write_json_atomic(self._path, list(areas))


__all__ = ["AreaStore"]
