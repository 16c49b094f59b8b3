"""Deduplication of usage records within one fetched batch."""

from __future__ import annotations

from collections.abc import Iterable

from .schemas import DedupeResult, UsageRecord


def dedupe_usage_records(records: Iterable[UsageRecord]) -> DedupeResult:
    """Keep one record per id; the last one seen wins, first-seen order is kept."""
    latest_by_id: dict[str, UsageRecord] = {}
    duplicate_records_skipped = 0

    for record in records:
        if record.record_id in latest_by_id:
            duplicate_records_skipped += 1
        latest_by_id[record.record_id] = record

    return DedupeResult(records=list(latest_by_id.values()), duplicate_records_skipped=duplicate_records_skipped)
