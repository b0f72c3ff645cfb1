"""Merge-chain resolution for raw incident records.

A superseded record carries ``merge_status = "merged_into"`` and a pointer to
the record that absorbed it. Pointers can chain when a root is itself merged
later. ``resolve_merge_root`` follows them to the first record that is not
superseded, re-reading every hop from the store.

Resolution fails closed: too many hops, a cycle, a corrupt pointer or any
store error yields ``None`` and the caller skips the pair.
"""
from __future__ import annotations

import logging
from typing import Optional

from seawatch.modules.record_store import RecordStore, RecordStoreError
from seawatch.schemas.incident import MergedInto, RawIncidentRecord

logger = logging.getLogger(__name__)


async def resolve_merge_root(
    store: RecordStore, record_id: str, *, max_depth: int = 5
) -> Optional[RawIncidentRecord]:
    """Walk ``merged_into`` pointers to the root record. Max *max_depth* hops, cycle detection."""
    seen: set[str] = set()
    current = record_id

    for _ in range(max_depth + 1):
        if current in seen:
            logger.warning("Circular merge chain detected at %s (started from %s)", current, record_id)
            return None
        seen.add(current)

        try:
            record = await store.fetch_record(current)
        except (RecordStoreError, KeyError, ValueError) as exc:
            logger.error("Failed to fetch %s while resolving merge chain of %s: %s", current, record_id, exc)
            return None

        state = record.merge_state
        if not isinstance(state, MergedInto):
            return record
        if not state.root_id:
            logger.warning("Record %s is marked merged_into but has no target", current)
            return None
        current = state.root_id

    logger.warning("Merge chain exceeds %d hops from %s", max_depth, record_id)
    return None
