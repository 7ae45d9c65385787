"""
Fuzzy matching of a requested service against the organization's catalog.

Checks run in a fixed order and the first hit wins:
1. exact name (case-insensitive, trimmed)
2. substring containment in either direction
3. word overlap for request words longer than two characters
4. synonym groups (haircut/cut/hair/trim/style, ...)

Fails closed: empty requests or catalogs without active entries never match.
"""

import logging
import re
from typing import Iterable, Optional

from receptionist.schemas.organization import ServiceEntry

logger = logging.getLogger(__name__)

MIN_WORD_LENGTH = 3

SYNONYM_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"haircut", "cut", "hair", "trim", "style"}),
    frozenset({"consultation", "consult", "meeting", "session"}),
    frozenset({"cleaning", "clean", "wash", "sanitize"}),
    frozenset({"repair", "fix", "maintenance"}),
    frozenset({"checkup", "check", "exam", "examination"}),
)

_WORD = re.compile(r"[a-z0-9]+")


def _clean(text: str) -> str:
    return " ".join(text.lower().split())


def _words(text: str) -> list[str]:
    return [w for w in _WORD.findall(text) if len(w) >= MIN_WORD_LENGTH]


def _groups(text: str) -> set[int]:
    """Indexes of the synonym groups mentioned in ``text``."""
    tokens = set(_WORD.findall(text))
    tokens |= {t[:-1] for t in tokens if t.endswith("s")}
    tokens |= {t[:-3] for t in tokens if t.endswith("ing")}
    return {i for i, group in enumerate(SYNONYM_GROUPS) if tokens & group}


def _words_overlap(requested: str, name: str) -> bool:
    name_words = _words(name)
    return any(
        req in word or word in req
        for req in _words(requested)
        for word in name_words
    )


def match_service(requested: Optional[str], catalog: Iterable[ServiceEntry]) -> Optional[ServiceEntry]:
    """Return the catalog entry the caller most plausibly meant, or None."""
    if not requested or not requested.strip():
        return None
    active = [entry for entry in catalog if entry.active]
    if not active:
        logger.warning("Service validation failed: no active services configured")
        return None

    wanted = _clean(requested)
    names = [(entry, _clean(entry.name)) for entry in active]

    for entry, name in names:
        if name == wanted:
            return entry
    for entry, name in names:
        if wanted in name or name in wanted:
            return entry
    for entry, name in names:
        if _words_overlap(wanted, name):
            return entry

    wanted_groups = _groups(wanted)
    if wanted_groups:
        for entry, name in names:
            if wanted_groups & _groups(name):
                return entry

    logger.debug("No catalog match for %r", requested)
    return None


def validate(requested: Optional[str], catalog: Iterable[ServiceEntry]) -> bool:
    return match_service(requested, catalog) is not None
