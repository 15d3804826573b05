"""Merging freshly collected indicators into the stored active set."""

import logging
from dataclasses import replace

from threatsync.feeds.models import MAX_SCORE, Indicator, IndicatorSet

logger = logging.getLogger(__name__)


def merge_indicator(existing: Indicator, fresh: Indicator) -> Indicator:
    """
    Combine two sightings of the same value.

    Sources are unioned, the score is the capped mean of both scores and the
    validity window follows the fresh sighting. ``first_seen`` and ``type``
    keep the existing values.
    """
    return replace(
        existing,
        sources=list(dict.fromkeys([*existing.sources, *fresh.sources])),
        score=min(MAX_SCORE, (existing.score + fresh.score) / 2),
        last_seen=fresh.last_seen,
        expires_at=fresh.expires_at,
    )


def merge_indicators(existing: IndicatorSet, fresh: IndicatorSet) -> IndicatorSet:
    """
    Merge a fresh indicator set into an existing one.

    Neither input is modified. Keys present only in ``existing`` pass through
    unchanged; keys present only in ``fresh`` are inserted as they are.

    Note that averaging on every merge dampens scores towards the scale of
    the most recent pass rather than accumulating them across cycles.
    """
    merged: IndicatorSet = dict(existing)
    added = 0
    updated = 0

    for key, indicator in fresh.items():
        current = merged.get(key)
        if current is None:
            merged[key] = indicator
            added += 1
        else:
            merged[key] = merge_indicator(current, indicator)
            updated += 1

    logger.info(
        f"Merged {len(fresh)} fresh into {len(existing)} existing indicators: "
        f"{added} new, {updated} updated, {len(merged)} total"
    )
    return merged
