"""Snapshot file of running agent processes plus the OS liveness probe."""

from __future__ import annotations

import logging
from pathlib import Path

import psutil
from pydantic import ValidationError

from .files import read_json, write_json_atomic
from .models import RunningProcessInfo

logger = logging.getLogger(__name__)


def is_process_running(pid: int) -> bool:
    """Return whether ``pid`` names a live, non-zombie process."""

    if pid <= 0:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


class RunningProcessStore:
    """Whole-file snapshot of :class:`RunningProcessInfo` records."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[RunningProcessInfo]:
        document = read_json(self._path, [])
        if not isinstance(document, list):
            logger.warning("Running process snapshot is not a list", extra={"path": str(self._path)})
            return []

        records: list[RunningProcessInfo] = []
        for entry in document:
            try:
                records.append(RunningProcessInfo.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid running process record",
                    extra={"path": str(self._path), "error": str(exc)},
                )
        return records

    def save(self, processes: list[RunningProcessInfo]) -> None:
        write_json_atomic(self._path, [record.to_wire() for record in processes])

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


__all__ = ["RunningProcessStore", "is_process_running"]
