"""Pick the record a citation key refers to from a connector's candidates."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from citekey_resolver.connectors.base import Candidate, ResolvedRecord
from citekey_resolver.errors import AmbiguityError

logger = logging.getLogger(__name__)


def _collapse_duplicates(candidates: Sequence[Candidate]) -> list[Candidate]:
    """Drop repeated candidates that carry the same record ID."""
    seen: set[str] = set()
    out = []
    for c in candidates:
        if c.record_id:
            if c.record_id in seen:
                continue
            seen.add(c.record_id)
        out.append(c)
    return out


def disambiguate(key: str, candidates: Sequence[Candidate]) -> ResolvedRecord | None:
    """Choose the candidate for a citation key.

    A single candidate is accepted as is. Among several, the one whose
    pinned citation key equals ``key`` exactly wins; there is no fuzzy
    fallback.

    Args:
        key: The citation key that was searched for
        candidates: What the connector returned

    Returns:
        ResolvedRecord, or None if there are no candidates

    Raises:
        AmbiguityError: If several candidates match and not exactly one of
            them is pinned to ``key``
    """
    candidates = _collapse_duplicates(candidates)
    if not candidates:
        return None
    if len(candidates) == 1:
        return ResolvedRecord.from_candidate(key, candidates[0])

    pinned = [c for c in candidates if c.pinned_citekey == key]
    if len(pinned) == 1:
        logger.debug("%s: picked %s out of %d matches by pinned key", key, pinned[0].record_id, len(candidates))
        return ResolvedRecord.from_candidate(key, pinned[0])
    raise AmbiguityError(key, len(candidates), len(pinned))
