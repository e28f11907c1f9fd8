"""Ticker, company-name and sector resolution."""

from __future__ import annotations

import re
from typing import Callable, Iterable, TypeVar

import yaml

from legend_ranker.config import Paths
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("resolver")

T = TypeVar("T")

_CORPORATE_SUFFIXES = (
    "incorporated", "inc", "limited", "ltd", "corporation", "corp",
    "company", "co", "plc",
)
_SUFFIX_RE = re.compile(r"(?:\s+(?:%s))+$" % "|".join(_CORPORATE_SUFFIXES))
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


def normalize_company_name(name: str | None) -> str:
    """Canonical form used to detect the same company under different tickers.

    Lower-cases, removes punctuation, collapses whitespace and strips
    trailing corporate suffixes: "Acme Inc." and "Acme, Incorporated" both
    become "acme".
    """
    if not name:
        return ""
    text = _PUNCT_RE.sub("", name.lower())
    text = _SPACE_RE.sub(" ", text).strip()
    stripped = _SUFFIX_RE.sub("", text).strip()
    # A name made only of a suffix word ("Company") keeps its text
    return stripped or text


def sector_slug(sector: str | None) -> str:
    """Store key for a sector: alphanumerics only, lower-cased."""
    return re.sub(r"[^a-zA-Z0-9]", "", sector or "").lower() or "unknown"


def dedupe_by_name(items: Iterable[T], name_of: Callable[[T], str]) -> list[T]:
    """Drop items whose normalized name was already seen; first occurrence wins."""
    seen: set[str] = set()
    unique: list[T] = []
    for item in items:
        key = normalize_company_name(name_of(item))
        if key in seen:
            logger.debug("Dropping duplicate company name: %s", name_of(item))
            continue
        seen.add(key)
        unique.append(item)
    return unique


def _load_aliases() -> dict:
    if not Paths.ALIASES.exists():
        return {}
    with open(Paths.ALIASES) as f:
        return yaml.safe_load(f) or {}


class TickerResolver:
    """Resolve user input like 'apple' or 'aapl' to a provider symbol."""

    def __init__(self, aliases: dict | None = None):
        self._aliases = {
            str(k).lower(): str(v) for k, v in (aliases if aliases is not None else _load_aliases()).items()
        }

    def resolve(self, user_input: str) -> str:
        lower = user_input.strip().lower()
        if lower in self._aliases:
            resolved = self._aliases[lower]
            logger.info("Resolved alias '%s' -> '%s'", user_input, resolved)
            return resolved
        return user_input.strip().upper()

    def resolve_many(self, inputs: list[str]) -> list[str]:
        return [self.resolve(i) for i in inputs]
