"""Primary record selection: which of two duplicates becomes authoritative.

Combined score = completeness_weight * completeness + priority_weight * source_priority
(0.7 / 0.3 by default). Completeness is a hand-weighted checklist of
populated fields in which long free text and the IMO number count most.
Ties go to the first record.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from seawatch.modules.dedup_config import DedupConfig, load_dedup_config
from seawatch.schemas.incident import RawIncidentRecord

logger = logging.getLogger(__name__)

# Checklist entries scored on simple presence
_PRESENCE_FIELDS = (
    "title", "date", "region", "location",
    "vessel_name", "vessel_type", "vessel_flag", "vessel_imo", "vessel_status",
    "incident_type_name", "incident_type_level", "reference", "update",
)


@dataclass(frozen=True)
class PrimarySelection:
    primary: RawIncidentRecord
    secondary: RawIncidentRecord
    primary_score: float
    secondary_score: float
    primary_completeness: int
    secondary_completeness: int


def calculate_completeness_score(
    record: RawIncidentRecord, config: Optional[DedupConfig] = None
) -> int:
    config = config or load_dedup_config()
    weights = config.completeness_weights
    min_chars = config.selector.long_text_min_chars
    score = 0

    for field_name in _PRESENCE_FIELDS:
        if getattr(record, field_name):
            score += weights.get(field_name, 0)
    if record.has_coordinates:
        score += weights.get("coordinates", 0)
    # Long free text only
    if record.description and len(record.description) > min_chars:
        score += weights.get("description", 0)
    if record.raw_json and len(record.raw_json) > min_chars:
        score += weights.get("raw_json", 0)

    return score


def get_source_priority(source: Optional[str], config: Optional[DedupConfig] = None) -> int:
    """Reliability rank of a source; unknown sources get the lowest priority."""
    config = config or load_dedup_config()
    if not source:
        return config.default_source_priority
    return config.source_priorities.get(source.strip().upper(), config.default_source_priority)


def determine_primary_record(
    record1: RawIncidentRecord,
    record2: RawIncidentRecord,
    config: Optional[DedupConfig] = None,
) -> PrimarySelection:
    config = config or load_dedup_config()
    sel = config.selector

    completeness1 = calculate_completeness_score(record1, config)
    completeness2 = calculate_completeness_score(record2, config)
    priority1 = get_source_priority(record1.source, config)
    priority2 = get_source_priority(record2.source, config)

    score1 = completeness1 * sel.completeness_weight + priority1 * sel.source_priority_weight
    score2 = completeness2 * sel.completeness_weight + priority2 * sel.source_priority_weight

    logger.info(
        "Primary selection: %s (completeness=%d priority=%d score=%.2f) vs "
        "%s (completeness=%d priority=%d score=%.2f)",
        record1.label(), completeness1, priority1, score1,
        record2.label(), completeness2, priority2, score2,
    )

    if score1 >= score2:
        return PrimarySelection(record1, record2, score1, score2, completeness1, completeness2)
    return PrimarySelection(record2, record1, score2, score1, completeness2, completeness1)
