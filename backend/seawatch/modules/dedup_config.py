"""Deduplication tuning tables: weights, limits, priorities, synonym groups.

The tables live in config/dedup.yaml so they can be tuned (and unit-tested)
independently of the orchestrator. Every table has a built-in default that
matches the shipped YAML, so a missing file degrades to the documented
behaviour instead of failing the run.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from seawatch.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarityWeights:
    time_weight: float = 0.3
    spatial_weight: float = 0.3
    vessel_weight: float = 0.3
    incident_type_weight: float = 0.1
    max_hours_apart: float = 48.0
    max_distance_km: float = 50.0
    type_group_score: float = 0.8


@dataclass(frozen=True)
class MatchThresholds:
    potential_match: float = 0.6
    high_confidence: float = 0.8


@dataclass(frozen=True)
class SelectorWeights:
    completeness_weight: float = 0.7
    source_priority_weight: float = 0.3
    long_text_min_chars: int = 100


_DEFAULT_COMPLETENESS_WEIGHTS: dict[str, int] = {
    "title": 1,
    "description": 3,
    "coordinates": 2,
    "date": 1,
    "region": 1,
    "location": 1,
    "vessel_name": 1,
    "vessel_type": 1,
    "vessel_flag": 1,
    "vessel_imo": 2,
    "vessel_status": 1,
    "incident_type_name": 1,
    "incident_type_level": 1,
    "reference": 1,
    "update": 2,
    "raw_json": 1,
}

_DEFAULT_SOURCE_PRIORITIES: dict[str, int] = {
    "RECAAP": 5,
    "UKMTO": 4,
    "MDAT": 3,
    "ICC": 3,
    "CWD": 2,
}

_DEFAULT_INCIDENT_TYPE_GROUPS: tuple[tuple[str, ...], ...] = (
    ("Robbery", "Robbery/Theft", "Theft", "Armed Robbery"),
    ("Boarding", "Attempted Boarding", "Boarded"),
    ("Suspicious Approach", "Approach", "Suspicious Activity", "Suspicious Vessel"),
    ("Piracy", "Hijack", "Hijacking", "Kidnapping"),
    ("Attack", "Armed Attack", "Missile Attack", "Drone Attack", "UAV Attack", "USV Attack"),
    ("Threat", "Missile Threat", "Piracy Threat", "Warning"),
)


@dataclass(frozen=True)
class DedupConfig:
    similarity: SimilarityWeights = field(default_factory=SimilarityWeights)
    thresholds: MatchThresholds = field(default_factory=MatchThresholds)
    selector: SelectorWeights = field(default_factory=SelectorWeights)
    completeness_weights: dict[str, int] = field(
        default_factory=lambda: dict(_DEFAULT_COMPLETENESS_WEIGHTS)
    )
    source_priorities: dict[str, int] = field(
        default_factory=lambda: dict(_DEFAULT_SOURCE_PRIORITIES)
    )
    default_source_priority: int = 1
    max_chain_depth: int = 5
    incident_type_groups: tuple[tuple[str, ...], ...] = _DEFAULT_INCIDENT_TYPE_GROUPS


_EXPECTED_SECTIONS = [
    "similarity", "thresholds", "selector", "completeness_weights",
    "source_priorities", "merge_chain", "incident_type_groups",
]

_DEDUP_CONFIG: DedupConfig | None = None


def build_dedup_config(raw: dict[str, Any]) -> DedupConfig:
    """Build a DedupConfig from a parsed YAML mapping, keeping defaults for gaps."""
    sim = raw.get("similarity") or {}
    thr = raw.get("thresholds") or {}
    sel = raw.get("selector") or {}

    weights = SimilarityWeights(**{k: float(v) for k, v in sim.items()
                                   if k in SimilarityWeights.__dataclass_fields__})
    total = (weights.time_weight + weights.spatial_weight
             + weights.vessel_weight + weights.incident_type_weight)
    if abs(total - 1.0) > 1e-6:
        logger.warning("dedup.yaml similarity weights sum to %.3f, expected 1.0", total)

    completeness = dict(_DEFAULT_COMPLETENESS_WEIGHTS)
    completeness.update({k: int(v) for k, v in (raw.get("completeness_weights") or {}).items()})

    priorities = raw.get("source_priorities")
    if priorities is None:
        priorities = dict(_DEFAULT_SOURCE_PRIORITIES)
    priorities = {str(k).upper(): int(v) for k, v in priorities.items()}

    groups_raw = raw.get("incident_type_groups")
    groups = (
        tuple(tuple(str(t) for t in g) for g in groups_raw)
        if groups_raw
        else _DEFAULT_INCIDENT_TYPE_GROUPS
    )

    return DedupConfig(
        similarity=weights,
        thresholds=MatchThresholds(**{k: float(v) for k, v in thr.items()
                                      if k in MatchThresholds.__dataclass_fields__}),
        selector=SelectorWeights(
            completeness_weight=float(sel.get("completeness_weight", 0.7)),
            source_priority_weight=float(sel.get("source_priority_weight", 0.3)),
            long_text_min_chars=int(sel.get("long_text_min_chars", 100)),
        ),
        completeness_weights=completeness,
        source_priorities=priorities,
        default_source_priority=int(raw.get("default_source_priority", 1)),
        max_chain_depth=int((raw.get("merge_chain") or {}).get("max_depth", 5)),
        incident_type_groups=groups,
    )


def load_dedup_config() -> DedupConfig:
    global _DEDUP_CONFIG
    if _DEDUP_CONFIG is None:
        config_path = Path(settings.DEDUP_CONFIG)
        if not config_path.exists():
            logger.warning("dedup.yaml not found at %s, using built-in defaults", config_path)
            raw: dict[str, Any] = {}
        else:
            with open(config_path) as f:
                raw = yaml.safe_load(f) or {}
            missing = [s for s in _EXPECTED_SECTIONS if s not in raw]
            if missing:
                logger.warning("dedup.yaml missing sections: %s", ", ".join(missing))
        _DEDUP_CONFIG = build_dedup_config(raw)
    return _DEDUP_CONFIG


def reload_dedup_config() -> DedupConfig:
    """Force-reload dedup config from disk (e.g. after YAML edits)."""
    global _DEDUP_CONFIG
    _DEDUP_CONFIG = None
    return load_dedup_config()
