"""Parsers for the markdown emitted by the ``/context`` and ``/usage`` commands."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_MODEL_RE = re.compile(r"\*\*Model:\*\*\s*(\S+)")
_TOKENS_RE = re.compile(
    r"\*\*Tokens:\*\*\s*([\d.,]+[kKmM]?)\s*/\s*([\d.,]+[kKmM]?)\s*\((\d+(?:\.\d+)?)%\)"
)
_ROW_RE = re.compile(r"^\|\s*([^|]+?)\s*\|\s*([\d.,]+[kKmM]?)\s*\|\s*(\d+(?:\.\d+)?)%\s*\|")
_USAGE_RE = re.compile(r"^(.*?)[:\s]*(\d+(?:\.\d+)?)%\s*used", re.IGNORECASE)


class _StatsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContextCategory(_StatsModel):
    name: str
    tokens: int
    percent: float


class ContextStats(_StatsModel):
    model: str | None = None
    total_tokens: int
    context_window: int
    used_percent: float
    categories: list[ContextCategory] = []


class UsageEntry(_StatsModel):
    label: str
    percent: float


class UsageStats(_StatsModel):
    entries: list[UsageEntry] = []
    raw: str


def parse_token_count(value: str) -> int:
    """Convert counts such as ``19.6k`` or ``1.2M`` into integers."""

    cleaned = value.strip().replace(",", "")
    multiplier = 1
    if cleaned[-1:] in {"k", "K"}:
        multiplier = 1_000
        cleaned = cleaned[:-1]
    elif cleaned[-1:] in {"m", "M"}:
        multiplier = 1_000_000
        cleaned = cleaned[:-1]
    return int(round(float(cleaned) * multiplier))


def _strip_wrapper(raw: str) -> str:
    return raw.replace("<local-command-stdout>", "").replace("</local-command-stdout>", "").strip()


def parse_context_output(raw: str) -> ContextStats | None:
    text = _strip_wrapper(raw)
    tokens = _TOKENS_RE.search(text)
    if tokens is None:
        return None

    model = _MODEL_RE.search(text)
    categories: list[ContextCategory] = []
    for line in text.splitlines():
        row = _ROW_RE.match(line.strip())
        if row is None:
            continue
        name = row.group(1)
        if name.lower() in {"category", "---"}:
            continue
        categories.append(
            ContextCategory(
                name=name,
                tokens=parse_token_count(row.group(2)),
                percent=float(row.group(3)),
            )
        )

    return ContextStats(
        model=model.group(1) if model else None,
        total_tokens=parse_token_count(tokens.group(1)),
        context_window=parse_token_count(tokens.group(2)),
        used_percent=float(tokens.group(3)),
        categories=categories,
    )


def parse_usage_output(raw: str) -> UsageStats:
    text = _strip_wrapper(raw)
    entries: list[UsageEntry] = []
    label = None
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("##"):
            continue
        match = _USAGE_RE.match(stripped)
        if match is None:
            label = stripped
            continue
        entries.append(
            UsageEntry(label=(match.group(1).strip() or label or "usage"), percent=float(match.group(2)))
        )
    return UsageStats(entries=entries, raw=text)


__all__ = [
    "ContextCategory",
    "ContextStats",
    "UsageEntry",
    "UsageStats",
    "parse_context_output",
    "parse_token_count",
    "parse_usage_output",
]
