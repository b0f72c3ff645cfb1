"""Pydantic schema for raw incident records read from the record store.

A raw record is one source's report of a possible incident. The store hands
records back as ``{"id": ..., "fields": {...}}``; ``RawIncidentRecord.from_store``
parses that envelope, coerces the loosely-typed store values (string
coordinates, numeric IMOs, date-only strings) and keeps the original field
dict for anything the typed model does not name.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from seawatch.models.base import MergeStatusEnum
from seawatch.utils.geo import is_valid_coordinate


# ── Merge state (tagged variant) ─────────────────────────────────────────────


@dataclass(frozen=True)
class Unmerged:
    """Untouched record, the only state eligible for comparison."""


@dataclass(frozen=True)
class Root:
    """Authoritative record that has absorbed at least one other."""
    absorbed: tuple[str, ...] = ()


@dataclass(frozen=True)
class MergedInto:
    """Superseded record. An empty ``root_id`` marks a corrupt pointer."""
    root_id: str


MergeState = Union[Unmerged, Root, MergedInto]


_TEXT_FIELDS = (
    "source", "title", "description", "update", "reference", "region",
    "location", "aggressor", "raw_json", "incident_type_name",
    "incident_type_level", "processing_status", "processing_notes",
    "vessel_name", "vessel_type", "vessel_flag", "vessel_imo", "vessel_status",
    "merge_status", "merge_score",
)

_LINK_FIELDS = ("merged_into", "related_raw_data", "linked_incident")


class RawIncidentRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    source: Optional[str] = None

    title: Optional[str] = None
    description: Optional[str] = None
    update: Optional[str] = None
    reference: Optional[str] = None
    region: Optional[str] = None
    location: Optional[str] = None
    aggressor: Optional[str] = None
    raw_json: Optional[str] = None

    date: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    vessel_name: Optional[str] = None
    vessel_type: Optional[str] = None
    vessel_flag: Optional[str] = None
    vessel_imo: Optional[str] = None
    vessel_status: Optional[str] = None

    incident_type_name: Optional[str] = None
    incident_type_level: Optional[str] = None

    merge_status: Optional[str] = None
    merged_into: list[str] = Field(default_factory=list)
    related_raw_data: list[str] = Field(default_factory=list)
    linked_incident: list[str] = Field(default_factory=list)
    has_incident: bool = False
    merge_score: Optional[str] = None
    processing_status: Optional[str] = None
    processing_notes: Optional[str] = None
    last_processed: Optional[str] = None

    # Untyped copy of the store fields, as received
    fields: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_store(cls, record: dict[str, Any]) -> "RawIncidentRecord":
        """Parse a store envelope ``{"id": ..., "fields": {...}}``."""
        fields = dict(record.get("fields") or {})
        return cls.model_validate({**fields, "id": record["id"], "fields": fields})

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, list):
            # Single-select lookups arrive as one-element lists
            v = v[0] if v else None
            if v is None:
                return None
        if not isinstance(v, str):
            v = str(v)
        return v if v.strip() else None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_coordinate(cls, v: Any) -> Optional[float]:
        if v is None or v == "":
            return None
        try:
            return float(v)
        except (TypeError, ValueError):
            return None

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, v: Any) -> Optional[datetime]:
        if v is None or v == "":
            return None
        if isinstance(v, datetime):
            parsed = v
        else:
            try:
                parsed = datetime.fromisoformat(str(v).strip().replace("Z", "+00:00"))
            except ValueError:
                return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @field_validator(*_LINK_FIELDS, mode="before")
    @classmethod
    def _coerce_links(cls, v: Any) -> list[str]:
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item]

    @field_validator("has_incident", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return bool(v)

    # ── Derived views ────────────────────────────────────────────────────────

    @property
    def has_coordinates(self) -> bool:
        return is_valid_coordinate(self.latitude, self.longitude)

    @property
    def linked_incident_id(self) -> Optional[str]:
        return self.linked_incident[0] if self.linked_incident else None

    @property
    def merge_state(self) -> MergeState:
        status = (self.merge_status or "").strip().lower()
        if status == MergeStatusEnum.MERGED_INTO.value:
            return MergedInto(root_id=self.merged_into[0] if self.merged_into else "")
        if status == MergeStatusEnum.MERGED.value:
            return Root(absorbed=tuple(self.related_raw_data))
        return Unmerged()

    @property
    def is_comparable(self) -> bool:
        """Eligible as a comparison candidate in this run."""
        return isinstance(self.merge_state, Unmerged)

    def label(self) -> str:
        return f"{self.source or 'UNKNOWN'} - {self.id}"
