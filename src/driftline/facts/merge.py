"""Merge extracted facts into a branch's fact map.

The merge mutates the fact map in place. It is safe to replay: merging the
same extraction twice leaves the same set of active values, because new
values are only appended when no entry with the same text exists and only
active entries can be superseded.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .models import ExtractedFact, FactMap, FactStatus, FactValue

logger = logging.getLogger(__name__)


@dataclass
class MergeStats:
    """Counters describing what a merge changed."""

    keys_created: int = 0
    values_added: int = 0
    values_superseded: int = 0
    values_removed: int = 0
    duplicates_skipped: int = 0
    supersedes_ignored: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.keys_created
            or self.values_added
            or self.values_superseded
            or self.values_removed
        )

    def __add__(self, other: "MergeStats") -> "MergeStats":
        return MergeStats(
            keys_created=self.keys_created + other.keys_created,
            values_added=self.values_added + other.values_added,
            values_superseded=self.values_superseded + other.values_superseded,
            values_removed=self.values_removed + other.values_removed,
            duplicates_skipped=self.duplicates_skipped + other.duplicates_skipped,
            supersedes_ignored=self.supersedes_ignored + other.supersedes_ignored,
        )


def merge_facts(
    existing: FactMap,
    extracted: Iterable[ExtractedFact] | None,
    message_id: str,
) -> MergeStats:
    """Merge classifier-extracted facts into ``existing``.

    Args:
        existing: The branch fact map, mutated in place.
        extracted: Facts proposed by the classifier. None or empty is a no-op.
        message_id: The message the facts were extracted from.

    Returns:
        MergeStats with counts of what changed.
    """
    stats = MergeStats()
    if not extracted:
        return stats

    for fact in extracted:
        entries = existing.get(fact.key)
        if fact.is_update and entries:
            _update_key(entries, fact, message_id, stats)
        else:
            _replace_key(existing, fact, message_id, stats)

    return stats


def _update_key(
    entries: list[FactValue],
    fact: ExtractedFact,
    message_id: str,
    stats: MergeStats,
) -> None:
    for candidate in fact.values:
        for old_value in candidate.supersedes:
            target = next(
                (e for e in entries if e.value == old_value and e.is_active),
                None,
            )
            if target is None:
                logger.warning(
                    "Ignoring supersede of %r on key %r: no active value matches",
                    old_value,
                    fact.key,
                )
                stats.supersedes_ignored += 1
                continue
            target.status = FactStatus.SUPERSEDED
            target.superseded_by = message_id
            stats.values_superseded += 1

        if any(e.value == candidate.value for e in entries):
            logger.debug("Skipping duplicate value %r for key %r", candidate.value, fact.key)
            stats.duplicates_skipped += 1
            continue

        entries.append(
            FactValue(
                value=candidate.value,
                message_id=message_id,
                confidence=candidate.confidence,
            )
        )
        stats.values_added += 1


def _replace_key(
    existing: FactMap,
    fact: ExtractedFact,
    message_id: str,
    stats: MergeStats,
) -> None:
    # The active set becomes exactly the supplied values; earlier values are
    # kept as history with status 'removed'.
    entries = existing.get(fact.key)
    if entries is None:
        entries = existing[fact.key] = []
        stats.keys_created += 1

    new_texts = {v.value for v in fact.values}
    for entry in entries:
        if entry.is_active and entry.value not in new_texts:
            entry.status = FactStatus.REMOVED
            entry.superseded_by = message_id
            stats.values_removed += 1

    for candidate in fact.values:
        if any(e.value == candidate.value and e.is_active for e in entries):
            stats.duplicates_skipped += 1
            continue
        entries.append(
            FactValue(
                value=candidate.value,
                message_id=message_id,
                confidence=candidate.confidence,
            )
        )
        stats.values_added += 1
