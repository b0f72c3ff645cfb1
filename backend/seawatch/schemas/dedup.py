"""Pydantic schemas for cross-source dedup runs.

Run options and results are exchanged with camelCase names on the wire
(``dryRun``, ``mergesPerformed``, ...). Python code uses snake_case; both
spellings are accepted on input.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PairAction = Literal[
    "merged", "dry_run", "write_failed", "below_threshold",
    "already_linked", "chain_unresolved", "same_root",
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DedupRunOptions(_CamelModel):
    dry_run: bool = False
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_records: int = Field(default=100, ge=1)
    lookback_days: int = Field(default=30, ge=1)


class PairResult(_CamelModel):
    """Outcome for one accepted candidate pair."""
    record1_id: str
    record1_source: Optional[str] = None
    record2_id: str
    record2_source: Optional[str] = None
    score: float
    confidence: Literal["high", "medium"]
    similarity: dict[str, Any] = Field(default_factory=dict)
    action: PairAction
    primary_id: Optional[str] = None
    primary_source: Optional[str] = None
    secondary_id: Optional[str] = None
    secondary_source: Optional[str] = None
    linked_incident: Optional[str] = None
    needs_review: bool = False
    review_reason: Optional[str] = None
    # Dry run: the patch that would have been written to the primary
    primary_patch: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class DedupRunResult(_CamelModel):
    records_analyzed: int = 0
    source_count: int = 0
    pairs_compared: int = 0
    potential_matches_found: int = 0
    high_confidence_matches: int = 0
    medium_confidence_matches: int = 0
    merges_performed: int = 0
    merge_errors: int = 0
    review_flags: int = 0
    dry_run: bool = False
    per_pair_results: list[PairResult] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        """Counters only, camelCase, without the per-pair list."""
        return self.model_dump(by_alias=True, exclude={"per_pair_results"})


class CrossSourceDedupResponse(BaseModel):
    success: bool
    summary: dict[str, Any]
    # Per-pair list on dry run, "Merged N records" otherwise
    results: list[PairResult] | str


# ── Ledger read models ───────────────────────────────────────────────────────


class DedupRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    dry_run: bool
    status: str
    summary_json: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class MergeOperationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    merge_op_id: int
    run_id: int
    primary_record_id: Optional[str] = None
    secondary_record_id: Optional[str] = None
    primary_source: Optional[str] = None
    secondary_source: Optional[str] = None
    score: float
    status: str
    needs_review: bool
    review_reason: Optional[str] = None
    linked_incident_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
