"""Utility helpers shared by the backend adapters."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Mapping

from ..errors import BackendNotFoundError

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for agent subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env.setdefault("LANG", "en_US.UTF-8")
    env.setdefault("LC_ALL", "en_US.UTF-8")
    if additional:
        env.update(additional)
    return env


def resolve_executable(explicit: str | Path | None, binary_name: str) -> Path:
    """Locate a CLI executable, preferring an explicit configured path."""

    if explicit is not None:
        candidate = Path(explicit).expanduser()
        if candidate.exists() and candidate.is_file():
            return candidate
        found = shutil.which(str(explicit))
        if found is not None:
            return Path(found)
        raise BackendNotFoundError(f"{binary_name} executable not found at {candidate}")

    binary = shutil.which(binary_name)
    if binary is None:
        raise BackendNotFoundError(f"{binary_name} CLI executable not found on PATH")
    return Path(binary)


def sanitize_unicode(text: str) -> str:
    """Replace unpaired UTF-16 surrogates with U+FFFD so the text encodes as JSON."""

    if not any(0xD800 <= ord(char) <= 0xDFFF for char in text):
        return text

    chars: list[str] = []
    index = 0
    while index < len(text):
        code = ord(text[index])
        if 0xD800 <= code <= 0xDBFF:
            following = ord(text[index + 1]) if index + 1 < len(text) else 0
            if 0xDC00 <= following <= 0xDFFF:
                combined = 0x10000 + ((code - 0xD800) << 10) + (following - 0xDC00)
                chars.append(chr(combined))
                index += 2
                continue
            chars.append("\ufffd")
        elif 0xDC00 <= code <= 0xDFFF:
            chars.append("\ufffd")
        else:
            chars.append(text[index])
        index += 1
    return "".join(chars)


__all__ = ["resolve_executable", "sanitize_environment", "sanitize_unicode"]
