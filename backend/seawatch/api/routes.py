from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from seawatch.config import settings
from seawatch.database import get_db
from seawatch.modules.cross_source_dedup import run_cross_source_dedup
from seawatch.modules.dedup_config import load_dedup_config
from seawatch.modules.downstream_trigger import DownstreamTrigger, HttpDownstreamTrigger
from seawatch.modules.record_store import AirtableRecordStore, RecordStore
from seawatch.modules.reference_data import AirtableIncidentTypeVocabulary, IncidentTypeVocabulary
from seawatch.schemas.dedup import (
    CrossSourceDedupResponse,
    DedupRunOptions,
    DedupRunRead,
    MergeOperationRead,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Runs must not overlap: merges are only safe when applied by one run at a time
_run_lock = asyncio.Lock()


# ---------------------------------------------------------------------------
# Dependencies (overridden in tests)
# ---------------------------------------------------------------------------

async def get_record_store() -> AsyncIterator[RecordStore]:
    async with AirtableRecordStore.from_settings() as store:
        yield store


async def get_incident_type_vocabulary() -> AsyncIterator[IncidentTypeVocabulary]:
    config = load_dedup_config()
    async with AirtableRecordStore.from_settings(
        table=settings.AIRTABLE_INCIDENT_TYPE_TABLE
    ) as reference_store:
        yield AirtableIncidentTypeVocabulary(
            reference_store, config.incident_type_groups, config.similarity.type_group_score
        )


def get_downstream_trigger(
    store: RecordStore = Depends(get_record_store),
) -> Optional[DownstreamTrigger]:
    if not settings.PUBLIC_URL:
        logger.warning("PUBLIC_URL not set, downstream trigger disabled")
        return None
    return HttpDownstreamTrigger.from_settings(store)


# ---------------------------------------------------------------------------
# Dedup runs
# ---------------------------------------------------------------------------

@router.post("/dedup/cross-source", tags=["dedup"], response_model=CrossSourceDedupResponse)
async def cross_source_dedup(
    dry_run: bool = Query(False, alias="dryRun"),
    confidence_threshold: float = Query(
        settings.DEDUP_CONFIDENCE_THRESHOLD, alias="confidenceThreshold", ge=0.0, le=1.0
    ),
    max_records: int = Query(settings.DEDUP_MAX_RECORDS, alias="maxRecords", ge=1, le=1000),
    lookback_days: int = Query(settings.DEDUP_LOOKBACK_DAYS, alias="lookbackDays", ge=1, le=365),
    store: RecordStore = Depends(get_record_store),
    vocabulary: IncidentTypeVocabulary = Depends(get_incident_type_vocabulary),
    trigger: Optional[DownstreamTrigger] = Depends(get_downstream_trigger),
    db: Session = Depends(get_db),
):
    """Run cross-source deduplication over recent unmerged raw records.

    Dry run returns the per-pair decisions without writing anything.
    """
    if _run_lock.locked():
        raise HTTPException(status_code=409, detail="A dedup run is already in progress")

    options = DedupRunOptions(
        dry_run=dry_run,
        confidence_threshold=confidence_threshold,
        max_records=max_records,
        lookback_days=lookback_days,
    )
    async with _run_lock:
        result = await run_cross_source_dedup(
            store, options=options, trigger=trigger, vocabulary=vocabulary, db=db,
        )

    return {
        "success": True,
        "summary": result.summary(),
        "results": (
            result.per_pair_results if dry_run
            else f"Merged {result.merges_performed} records"
        ),
    }


@router.get("/dedup/runs", tags=["dedup"], response_model=list[DedupRunRead])
def list_dedup_runs(
    limit: int = Query(20, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Recent dedup runs, newest first."""
    from seawatch.models.dedup_run import DedupRun

    return (
        db.query(DedupRun)
        .order_by(DedupRun.started_at.desc(), DedupRun.run_id.desc())
        .limit(limit)
        .all()
    )


@router.get("/dedup/merge-operations", tags=["dedup"], response_model=list[MergeOperationRead])
def list_merge_operations(
    needs_review: Optional[bool] = Query(None, description="Only operations flagged for manual review"),
    run_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    from seawatch.models.merge_operation import MergeOperation

    q = db.query(MergeOperation).order_by(MergeOperation.merge_op_id.desc())
    if needs_review is not None:
        q = q.filter(MergeOperation.needs_review == needs_review)
    if run_id is not None:
        q = q.filter(MergeOperation.run_id == run_id)
    return q.offset(skip).limit(limit).all()
