"""Pairwise similarity scoring for raw incident records.

Composite score in [0, 1] built from four components:
  - time proximity      max(0, 1 - hours_apart / 48)
  - spatial proximity   max(0, 1 - haversine_km / 50)
  - vessel similarity   1 on exact IMO match, else fuzzy name similarity
  - incident type       synonym-group / word-overlap similarity

Missing date or coordinates, a gap of 48h or more, or a distance of 50km
or more are hard rejects: the pair scores exactly 0 and nothing else is
computed. Every component is symmetric in its two arguments.

Incident-type comparison may consult a remote reference vocabulary, so
scoring is a coroutine.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, asdict
from typing import Optional

from rapidfuzz.distance import Levenshtein
from unidecode import unidecode

from seawatch.modules.dedup_config import DedupConfig, load_dedup_config
from seawatch.modules.reference_data import IncidentTypeVocabulary, normalize_incident_type
from seawatch.schemas.incident import RawIncidentRecord
from seawatch.utils.geo import haversine_km, hours_between

logger = logging.getLogger(__name__)

# Hull-designation noise stripped before comparing vessel names
_VESSEL_PREFIX_RE = re.compile(
    r"\bM\s*/?\s*[VT]\b|\bMOTOR\s+(?:VESSEL|TANKER)\b|\bVESSEL\b|\bTANKER\b",
    re.IGNORECASE,
)
_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_MULTI_SPACE_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")


@dataclass(frozen=True)
class SimilarityScore:
    total: float
    time: float = 0.0
    spatial: float = 0.0
    vessel: float = 0.0
    vessel_name: float = 0.0
    vessel_imo: float = 0.0
    incident_type: float = 0.0
    distance_km: Optional[float] = None
    hours_apart: Optional[float] = None
    # Set when a hard reject short-circuited the computation
    reason: Optional[str] = None

    @classmethod
    def rejected(cls, reason: str, **measured: float) -> "SimilarityScore":
        return cls(total=0.0, reason=reason, **measured)

    def as_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Time / space
# ---------------------------------------------------------------------------

def time_proximity_score(hours_apart: float, max_hours: float = 48.0) -> float:
    return max(0.0, 1.0 - hours_apart / max_hours)


def spatial_proximity_score(distance_km: float, max_distance_km: float = 50.0) -> float:
    return max(0.0, 1.0 - distance_km / max_distance_km)


# ---------------------------------------------------------------------------
# Vessel
# ---------------------------------------------------------------------------

def normalize_vessel_name(name: str) -> str:
    """Transliterate, uppercase, drop hull prefixes (M/V, MT, ...) and punctuation."""
    text = unidecode(name).upper()
    text = _VESSEL_PREFIX_RE.sub(" ", text)
    text = _PUNCT_RE.sub(" ", text)
    return _MULTI_SPACE_RE.sub(" ", text).strip()


def vessel_name_similarity(name1: Optional[str], name2: Optional[str]) -> float:
    """Normalised Levenshtein similarity of two vessel names (0 when either is missing)."""
    if not name1 or not name2:
        return 0.0
    n1, n2 = normalize_vessel_name(name1), normalize_vessel_name(name2)
    if n1 == n2:
        return 1.0
    return Levenshtein.normalized_similarity(n1, n2)


def normalize_imo(imo: Optional[str]) -> Optional[str]:
    if not imo:
        return None
    digits = _NON_DIGIT_RE.sub("", imo)
    return digits or None


def imo_similarity(imo1: Optional[str], imo2: Optional[str]) -> float:
    """1.0 when both IMO numbers are present and equal, else 0.0."""
    a, b = normalize_imo(imo1), normalize_imo(imo2)
    return 1.0 if a and b and a == b else 0.0


# ---------------------------------------------------------------------------
# Incident type
# ---------------------------------------------------------------------------

def word_overlap_similarity(type1: str, type2: str) -> float:
    words1 = set(normalize_incident_type(type1).split())
    words2 = set(normalize_incident_type(type2).split())
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / max(len(words1), len(words2))


async def incident_type_similarity(
    type1: Optional[str],
    type2: Optional[str],
    vocabulary: Optional[IncidentTypeVocabulary] = None,
) -> float:
    if not type1 or not type2:
        return 0.0
    if normalize_incident_type(type1) == normalize_incident_type(type2):
        return 1.0

    if vocabulary is not None:
        try:
            score = await vocabulary.similarity(type1, type2)
        except Exception as exc:
            logger.warning(
                "Incident type lookup failed for %r / %r, using word overlap: %s",
                type1, type2, exc,
            )
        else:
            if score is not None:
                return score

    return word_overlap_similarity(type1, type2)


# ---------------------------------------------------------------------------
# Composite
# ---------------------------------------------------------------------------

async def calculate_similarity_score(
    record1: RawIncidentRecord,
    record2: RawIncidentRecord,
    *,
    vocabulary: Optional[IncidentTypeVocabulary] = None,
    config: Optional[DedupConfig] = None,
) -> SimilarityScore:
    """Score the likelihood that two raw records describe the same incident."""
    weights = (config or load_dedup_config()).similarity

    if record1.date is None or record2.date is None:
        return SimilarityScore.rejected("Missing date field")
    if not record1.has_coordinates or not record2.has_coordinates:
        return SimilarityScore.rejected("Missing coordinates")

    hours_apart = hours_between(record1.date, record2.date)
    time_score = time_proximity_score(hours_apart, weights.max_hours_apart)
    if time_score == 0:
        return SimilarityScore.rejected("Time difference too large", hours_apart=hours_apart)

    distance_km = haversine_km(
        record1.latitude, record1.longitude, record2.latitude, record2.longitude
    )
    spatial_score = spatial_proximity_score(distance_km, weights.max_distance_km)
    if spatial_score == 0:
        return SimilarityScore.rejected(
            "Spatial distance too large", hours_apart=hours_apart, distance_km=distance_km
        )

    name_score = vessel_name_similarity(record1.vessel_name, record2.vessel_name)
    imo_score = imo_similarity(record1.vessel_imo, record2.vessel_imo)
    vessel_score = 1.0 if imo_score == 1.0 else name_score

    type_score = await incident_type_similarity(
        record1.incident_type_name, record2.incident_type_name, vocabulary
    )

    total = (
        time_score * weights.time_weight
        + spatial_score * weights.spatial_weight
        + vessel_score * weights.vessel_weight
        + type_score * weights.incident_type_weight
    )

    logger.debug(
        "Similarity %s / %s: time=%.3f spatial=%.3f vessel=%.3f (name=%.3f imo=%.0f) type=%.3f total=%.3f",
        record1.id, record2.id, time_score, spatial_score, vessel_score,
        name_score, imo_score, type_score, total,
    )

    return SimilarityScore(
        total=total,
        time=time_score,
        spatial=spatial_score,
        vessel=vessel_score,
        vessel_name=name_score,
        vessel_imo=imo_score,
        incident_type=type_score,
        distance_km=distance_km,
        hours_apart=hours_apart,
    )
