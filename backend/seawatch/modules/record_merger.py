"""Complementary-data merge: the field patches that consolidate two duplicates.

The primary keeps its own values; the secondary only fills gaps, extends
free text with attributed blocks, and hands over its provenance. The
secondary itself is demoted with a ``merged_into`` pointer and is never
modified again except for audit metadata.

Incident linkage is preserved across the merge: if either record is already
linked to a consolidated incident, the primary ends up linked to it. Two
records linked to *different* incidents still merge (primary's link wins)
but the patch is flagged for manual review.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from seawatch.models.base import MergeStatusEnum
from seawatch.schemas.incident import RawIncidentRecord

logger = logging.getLogger(__name__)

# Filled from the secondary only when empty on the primary
_FILL_EMPTY_FIELDS = (
    "vessel_name", "vessel_type", "vessel_flag", "vessel_imo", "vessel_status", "location",
)


@dataclass
class MergePatch:
    primary_fields: dict[str, Any]
    secondary_fields: dict[str, Any]
    linked_incident: Optional[str] = None
    needs_review: bool = False
    review_reason: Optional[str] = None
    related_ids: list[str] = field(default_factory=list)


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def merge_description(primary: RawIncidentRecord, secondary: RawIncidentRecord) -> Optional[str]:
    """New description for the primary, or None when it should stay as is."""
    p, s = primary.description, secondary.description
    if p and s:
        if s in p or p in s:
            # One text repeats the other; keep the longer
            return s if len(s) > len(p) else None
        return f"{p}\n\nAdditional information from {secondary.source}:\n{s}"
    if s and not p:
        return s
    return None


def merge_update(primary: RawIncidentRecord, secondary: RawIncidentRecord) -> Optional[str]:
    s = (secondary.update or "").strip()
    if not s:
        return None
    block = f"Update from {secondary.source}:\n{secondary.update}"
    if primary.update and primary.update.strip():
        return f"{primary.update}\n\n{block}"
    return block


def merge_related_ids(primary: RawIncidentRecord, secondary: RawIncidentRecord) -> list[str]:
    """Primary's absorbed ids + the secondary + everything the secondary had absorbed."""
    merged: list[str] = []
    for rid in (*primary.related_raw_data, secondary.id, *secondary.related_raw_data):
        if rid and rid != primary.id and rid not in merged:
            merged.append(rid)
    return merged


def merge_complementary_data(
    primary: RawIncidentRecord,
    secondary: RawIncidentRecord,
    *,
    now: Optional[datetime] = None,
) -> MergePatch:
    now = now or datetime.now(timezone.utc)
    stamp = _iso(now)
    fields: dict[str, Any] = {}

    description = merge_description(primary, secondary)
    if description is not None:
        fields["description"] = description

    update = merge_update(primary, secondary)
    if update is not None:
        fields["update"] = update

    for name in _FILL_EMPTY_FIELDS:
        if not getattr(primary, name) and getattr(secondary, name):
            fields[name] = getattr(secondary, name)

    related = merge_related_ids(primary, secondary)
    fields["related_raw_data"] = related

    # Incident linkage
    linked = primary.linked_incident_id or secondary.linked_incident_id
    needs_review = False
    review_reason = None
    if (
        primary.linked_incident_id
        and secondary.linked_incident_id
        and primary.linked_incident_id != secondary.linked_incident_id
    ):
        needs_review = True
        review_reason = (
            f"{primary.id} linked to incident {primary.linked_incident_id}, "
            f"{secondary.id} linked to incident {secondary.linked_incident_id}"
        )
        logger.warning(
            "Records linked to DIFFERENT incidents, potential duplicate incidents, manual review needed: %s",
            review_reason,
        )
    if linked:
        fields["linked_incident"] = [linked]
        fields["has_incident"] = True

    fields["merge_status"] = MergeStatusEnum.MERGED.value
    fields["merge_score"] = json.dumps({
        "primary_source": primary.source,
        "secondary_source": secondary.source,
        "merge_timestamp": stamp,
    })
    fields["processing_notes"] = _append_note(
        primary.processing_notes,
        f"Merged with complementary data from {secondary.source} ({secondary.id}) at {stamp}",
    )
    fields["last_processed"] = stamp

    secondary_fields: dict[str, Any] = {
        "merge_status": MergeStatusEnum.MERGED_INTO.value,
        "merged_into": [primary.id],
        "processing_status": "Merged",
        "processing_notes": _append_note(
            secondary.processing_notes,
            f"Merged into {primary.id} ({primary.source}) at {stamp}",
        ),
        "last_processed": stamp,
    }

    return MergePatch(
        primary_fields=fields,
        secondary_fields=secondary_fields,
        linked_incident=linked,
        needs_review=needs_review,
        review_reason=review_reason,
        related_ids=related,
    )
