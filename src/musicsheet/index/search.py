"""Multi-term relevance search over catalog entries.

Every query term must occur somewhere in ``title composer instrument`` for an
entry to be a candidate at all. Candidates are then scored per term and per
field:

===========  ==========  ===========  ============
field        substring   whole word   field prefix
===========  ==========  ===========  ============
title        10          +5           +3
composer     7           +3           +2
instrument   3           +2           n/a
===========  ==========  ===========  ============

Ranking is by descending score; ties keep catalog order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from musicsheet.models import SORT_FIELDS, CatalogEntry
from musicsheet.utils.text import split_terms

MIN_QUERY_CHARS = 2
DEFAULT_LIMIT = 10

# (attribute, substring weight, whole-word bonus, prefix bonus)
FIELD_WEIGHTS = (
    ("title", 10, 5, 3),
    ("composer", 7, 3, 2),
    ("instrument", 3, 2, 0),
)


@dataclass(slots=True)
class SearchResult:
    entry: CatalogEntry
    score: int


def score_entry(terms: Sequence[str], entry: CatalogEntry) -> Optional[int]:
    """Score *entry* against lower-cased *terms*, or None if a term is missing."""
    fields = [getattr(entry, name).lower() for name, *_ in FIELD_WEIGHTS]
    haystack = " ".join(fields)
    if not all(term in haystack for term in terms):
        return None

    score = 0
    for term in terms:
        for text, (_, base, word_bonus, prefix_bonus) in zip(fields, FIELD_WEIGHTS):
            if term not in text:
                continue
            score += base
            if term in text.split():
                score += word_bonus
            if prefix_bonus and text.startswith(term):
                score += prefix_bonus
    return score


def search(
    query: str, entries: Iterable[CatalogEntry], limit: int = DEFAULT_LIMIT
) -> List[SearchResult]:
    """Rank *entries* against *query* and return at most *limit* results."""
    if len(query.strip()) < MIN_QUERY_CHARS or limit <= 0:
        return []
    terms = split_terms(query)
    if not terms:
        return []

    results: List[SearchResult] = []
    for entry in entries:
        score = score_entry(terms, entry)
        if score is not None:
            results.append(SearchResult(entry=entry, score=score))

    # sorted() is stable, so equal scores keep their input order
    results = sorted(results, key=lambda result: result.score, reverse=True)
    return results[:limit]


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_entries(
    entries: Iterable[CatalogEntry], sort_by: str = "title", direction: str = "asc"
) -> List[CatalogEntry]:
    """Order entries by one catalog field; text fields ignore case."""
    if sort_by not in SORT_FIELDS:
        raise ValueError(f"Cannot sort by '{sort_by}'")
    if sort_by == "title":
        key = lambda entry: entry.title.lower()  # noqa: E731
    elif sort_by == "composer":
        key = lambda entry: entry.composer.lower()  # noqa: E731
    elif sort_by == "dateAdded":
        key = lambda entry: _parse_timestamp(entry.date_added)  # noqa: E731
    else:
        key = lambda entry: _parse_timestamp(entry.last_accessed)  # noqa: E731
    return sorted(entries, key=key, reverse=direction == "desc")


def filter_entries(
    entries: Iterable[CatalogEntry],
    *,
    instrument: Optional[str] = None,
    composer: Optional[str] = None,
) -> List[CatalogEntry]:
    """Keep entries whose instrument matches exactly and composer contains *composer*."""
    kept = []
    for entry in entries:
        if instrument and entry.instrument.lower() != instrument.lower():
            continue
        if composer and composer.lower() not in entry.composer.lower():
            continue
        kept.append(entry)
    return kept


def unique_values(entries: Iterable[CatalogEntry], field: str) -> List[str]:
    """Sorted distinct non-empty values of ``instrument`` or ``composer``."""
    if field not in ("instrument", "composer"):
        raise ValueError(f"Unsupported field '{field}'")
    return sorted({getattr(entry, field) for entry in entries if getattr(entry, field)})
