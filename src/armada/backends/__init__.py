"""Backend adapters for the supported agent CLIs."""

from __future__ import annotations

from ..config import ArmadaSettings
from ..models import BackendKind
from .base import BackendAdapter, ParseResult, ToolCorrelator
from .claude import ClaudeBackend
from .codex import CodexBackend
from .utils import resolve_executable, sanitize_environment, sanitize_unicode


def create_backend(kind: BackendKind | str, settings: ArmadaSettings | None = None) -> BackendAdapter:
    """Return a fresh adapter instance for ``kind``.

    Adapters keep per-process tool correlation state, so every process gets
    its own instance.
    """

    kind = BackendKind(kind)
    if kind is BackendKind.INTERACTIVE:
        return ClaudeBackend(settings.claude_path if settings else None)
    return CodexBackend(settings.codex_path if settings else None)


__all__ = [
    "BackendAdapter",
    "ClaudeBackend",
    "CodexBackend",
    "ParseResult",
    "ToolCorrelator",
    "create_backend",
    "resolve_executable",
    "sanitize_environment",
    "sanitize_unicode",
]
