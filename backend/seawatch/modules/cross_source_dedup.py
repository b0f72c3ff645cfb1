"""Cross-source deduplication run.

One run:
  1. fetch recent unmerged raw records from the store
  2. partition them by reporting source
  3. score every cross-source pair concurrently (never same-source pairs)
  4. walk accepted pairs best-first and merge each into its primary,
     re-reading both sides from the store before writing
  5. signal the downstream consolidation job (skipped on dry run)

Scoring is side-effect free and fans out; merging is strictly sequential so
two merges never race on the same record. A record takes part in at most one
merge per run. Runs themselves must not overlap (there is no store-side
lock); the API and CLI are the only entry points and run one at a time.

When a DB session is passed the run and each merge decision are written to
the local ledger (``DedupRun`` / ``MergeOperation``).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from itertools import combinations
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from seawatch.config import settings
from seawatch.models.base import DedupRunStatusEnum, PairActionEnum
from seawatch.modules.dedup_config import DedupConfig, load_dedup_config
from seawatch.modules.downstream_trigger import DownstreamTrigger, DownstreamTriggerError
from seawatch.modules.merge_chain import resolve_merge_root
from seawatch.modules.primary_selector import determine_primary_record
from seawatch.modules.record_merger import merge_complementary_data
from seawatch.modules.record_store import RecordStore, RecordStoreError
from seawatch.modules.reference_data import IncidentTypeVocabulary, StaticIncidentTypeVocabulary
from seawatch.modules.similarity import SimilarityScore, calculate_similarity_score
from seawatch.schemas.dedup import DedupRunOptions, DedupRunResult, PairResult
from seawatch.schemas.incident import RawIncidentRecord

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "UNKNOWN"


class DedupFetchError(RuntimeError):
    """The initial record fetch failed; nothing was compared or merged."""


@dataclass(frozen=True)
class CandidateMatch:
    record1: RawIncidentRecord
    record2: RawIncidentRecord
    score: SimilarityScore
    high_confidence: bool = False

    @property
    def confidence(self) -> str:
        return "high" if self.high_confidence else "medium"


# ---------------------------------------------------------------------------
# Candidate generation
# ---------------------------------------------------------------------------

def partition_by_source(records: list[RawIncidentRecord]) -> dict[str, list[RawIncidentRecord]]:
    groups: dict[str, list[RawIncidentRecord]] = {}
    for record in records:
        groups.setdefault(record.source or UNKNOWN_SOURCE, []).append(record)
    return groups


def iter_cross_source_pairs(
    groups: dict[str, list[RawIncidentRecord]],
) -> Iterator[tuple[RawIncidentRecord, RawIncidentRecord]]:
    """Every pair drawn from two different sources, each unordered pair once.

    Records that are already merged (root or superseded) are not candidates.
    """
    for source1, source2 in combinations(list(groups), 2):
        for r1 in groups[source1]:
            if not r1.is_comparable:
                continue
            for r2 in groups[source2]:
                if r2.is_comparable:
                    yield r1, r2


async def find_candidate_matches(
    pairs: list[tuple[RawIncidentRecord, RawIncidentRecord]],
    *,
    vocabulary: IncidentTypeVocabulary,
    config: DedupConfig,
    concurrency: int = 8,
) -> list[CandidateMatch]:
    """Score *pairs* concurrently; return accepted matches ranked best-first."""
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _score(r1: RawIncidentRecord, r2: RawIncidentRecord) -> SimilarityScore:
        async with semaphore:
            return await calculate_similarity_score(r1, r2, vocabulary=vocabulary, config=config)

    scores = await asyncio.gather(*(_score(r1, r2) for r1, r2 in pairs))

    thresholds = config.thresholds
    matches = [
        CandidateMatch(r1, r2, score, high_confidence=score.total >= thresholds.high_confidence)
        for (r1, r2), score in zip(pairs, scores)
        if score.total >= thresholds.potential_match
    ]
    # sorted() is stable: equal scores keep generation order
    return sorted(matches, key=lambda m: m.score.total, reverse=True)


# ---------------------------------------------------------------------------
# Ledger helpers
# ---------------------------------------------------------------------------

def _start_ledger_run(db: Optional[Session], options: DedupRunOptions):
    if db is None:
        return None
    try:
        from seawatch.models.dedup_run import DedupRun
        run = DedupRun(
            dry_run=options.dry_run,
            options_json=options.model_dump(),
            status=DedupRunStatusEnum.RUNNING.value,
        )
        db.add(run)
        db.flush()
        return run
    except SQLAlchemyError as exc:
        logger.warning("Could not create DedupRun ledger entry: %s", exc)
        db.rollback()
        return None


def _record_pair(db: Optional[Session], run, pair: PairResult, patched: Optional[dict]) -> None:
    if db is None or run is None:
        return
    from seawatch.models.merge_operation import MergeOperation
    db.add(MergeOperation(
        run_id=run.run_id,
        primary_record_id=pair.primary_id,
        secondary_record_id=pair.secondary_id,
        primary_source=pair.primary_source,
        secondary_source=pair.secondary_source,
        score=pair.score,
        status=pair.action,
        needs_review=pair.needs_review,
        review_reason=pair.review_reason,
        linked_incident_id=pair.linked_incident,
        patched_fields_json=patched,
        error=pair.error,
    ))


def _finish_ledger_run(
    db: Optional[Session], run, status: DedupRunStatusEnum,
    result: Optional[DedupRunResult] = None, error: Optional[str] = None,
) -> None:
    if db is None or run is None:
        return
    try:
        run.status = status.value
        run.completed_at = datetime.now(timezone.utc)
        run.summary_json = result.summary() if result is not None else None
        run.error = error
        db.commit()
    except SQLAlchemyError as exc:
        logger.warning("Could not finalise DedupRun %s: %s", run.run_id, exc)
        db.rollback()


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

async def _apply_match(
    store: RecordStore,
    match: CandidateMatch,
    *,
    options: DedupRunOptions,
    config: DedupConfig,
    now: datetime,
) -> tuple[PairResult, Optional[dict]]:
    """Resolve, select and (unless dry run) write one accepted match."""
    r1, r2, score = match.record1, match.record2, match.score
    pair = PairResult(
        record1_id=r1.id,
        record1_source=r1.source,
        record2_id=r2.id,
        record2_source=r2.source,
        score=score.total,
        confidence=match.confidence,
        similarity=score.as_dict(),
        action=PairActionEnum.BELOW_THRESHOLD.value,
    )

    if score.total < options.confidence_threshold:
        return pair, None

    if r1.linked_incident_id and r1.linked_incident_id == r2.linked_incident_id:
        logger.info(
            "Skipping %s / %s: both already linked to incident %s",
            r1.label(), r2.label(), r1.linked_incident_id,
        )
        pair.action = PairActionEnum.ALREADY_LINKED.value
        pair.linked_incident = r1.linked_incident_id
        return pair, None

    # Live re-read (and chain walk for superseded records) before any write
    root1 = await resolve_merge_root(store, r1.id, max_depth=config.max_chain_depth)
    root2 = await resolve_merge_root(store, r2.id, max_depth=config.max_chain_depth)
    if root1 is None or root2 is None:
        logger.warning("Could not resolve merge root for %s / %s, skipping", r1.label(), r2.label())
        pair.action = PairActionEnum.CHAIN_UNRESOLVED.value
        return pair, None
    if root1.id == root2.id:
        logger.info("%s and %s already share root %s", r1.id, r2.id, root1.id)
        pair.action = PairActionEnum.SAME_ROOT.value
        return pair, None

    selection = determine_primary_record(root1, root2, config)
    primary, secondary = selection.primary, selection.secondary
    patch = merge_complementary_data(primary, secondary, now=now)

    pair.primary_id = primary.id
    pair.primary_source = primary.source
    pair.secondary_id = secondary.id
    pair.secondary_source = secondary.source
    pair.linked_incident = patch.linked_incident
    pair.needs_review = patch.needs_review
    pair.review_reason = patch.review_reason

    if options.dry_run:
        pair.action = PairActionEnum.DRY_RUN.value
        pair.primary_patch = patch.primary_fields
        return pair, patch.primary_fields

    # The secondary is only superseded once its root has absorbed it, so a
    # failed primary write leaves both records unmerged for the next run.
    error: Optional[str] = None
    try:
        await store.update_record(primary.id, patch.primary_fields)
    except RecordStoreError as exc:
        error = f"{primary.id}: {exc}"
    else:
        try:
            await store.update_record(secondary.id, patch.secondary_fields)
        except RecordStoreError as exc:
            error = f"{secondary.id}: {exc}"

    if error:
        logger.error("Error merging %s into %s: %s", secondary.label(), primary.label(), error)
        pair.action = PairActionEnum.WRITE_FAILED.value
        pair.error = error
    else:
        logger.info(
            "Merged %s into %s (score=%.3f)", secondary.label(), primary.label(), score.total
        )
        pair.action = PairActionEnum.MERGED.value
    return pair, patch.primary_fields


async def run_cross_source_dedup(
    store: RecordStore,
    *,
    options: Optional[DedupRunOptions] = None,
    trigger: Optional[DownstreamTrigger] = None,
    vocabulary: Optional[IncidentTypeVocabulary] = None,
    config: Optional[DedupConfig] = None,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
) -> DedupRunResult:
    """Run one cross-source deduplication pass against *store*.

    Raises:
        DedupFetchError: the initial fetch failed (no partial result).
        DownstreamTriggerError: merges were applied but the downstream job
            could not be signalled; ``exc.result`` holds the run result.
    """
    options = options or DedupRunOptions()
    config = config or load_dedup_config()
    now = now or datetime.now(timezone.utc)
    if vocabulary is None:
        vocabulary = StaticIncidentTypeVocabulary(
            config.incident_type_groups, config.similarity.type_group_score
        )

    logger.info(
        "Starting cross-source deduplication (dry_run=%s threshold=%.2f max_records=%d lookback=%dd)",
        options.dry_run, options.confidence_threshold, options.max_records, options.lookback_days,
    )
    run = _start_ledger_run(db, options)

    # Step 1: fetch
    since = now - timedelta(days=options.lookback_days)
    try:
        records = await store.fetch_unmerged_since(since, options.max_records)
    except (RecordStoreError, ValueError, KeyError) as exc:
        logger.error("Failed to fetch raw records: %s", exc)
        _finish_ledger_run(db, run, DedupRunStatusEnum.FAILED, error=str(exc))
        raise DedupFetchError(f"Failed to fetch raw records: {exc}") from exc
    logger.info("Fetched %d raw records since %s", len(records), since.date().isoformat())

    # Step 2-4: partition, pair, score
    groups = partition_by_source(records)
    logger.info(
        "Found %d sources: %s",
        len(groups), ", ".join(f"{s}={len(g)}" for s, g in groups.items()),
    )
    pairs = list(iter_cross_source_pairs(groups))
    matches = await find_candidate_matches(
        pairs,
        vocabulary=vocabulary,
        config=config,
        concurrency=settings.DEDUP_SCORE_CONCURRENCY,
    )

    result = DedupRunResult(
        records_analyzed=len(records),
        source_count=len(groups),
        pairs_compared=len(pairs),
        potential_matches_found=len(matches),
        high_confidence_matches=sum(1 for m in matches if m.confidence == "high"),
        medium_confidence_matches=sum(1 for m in matches if m.confidence == "medium"),
        dry_run=options.dry_run,
    )
    logger.info(
        "Compared %d pairs: %d potential matches (%d high, %d medium)",
        result.pairs_compared, result.potential_matches_found,
        result.high_confidence_matches, result.medium_confidence_matches,
    )

    # Step 6: sequential merge loop
    processed: set[str] = set()
    for match in matches:
        if match.record1.id in processed or match.record2.id in processed:
            continue

        pair, patched = await _apply_match(store, match, options=options, config=config, now=now)
        result.per_pair_results.append(pair)

        if pair.action == PairActionEnum.MERGED.value:
            result.merges_performed += 1
        elif pair.action == PairActionEnum.WRITE_FAILED.value:
            result.merge_errors += 1
        if pair.needs_review:
            result.review_flags += 1
        if pair.action in (
            PairActionEnum.MERGED.value, PairActionEnum.WRITE_FAILED.value, PairActionEnum.DRY_RUN.value,
        ):
            _record_pair(db, run, pair, patched)

        processed.add(match.record1.id)
        processed.add(match.record2.id)

    logger.info("Cross-source deduplication complete: %s", result.summary())

    # Step 7: downstream signal
    if options.dry_run:
        _finish_ledger_run(db, run, DedupRunStatusEnum.COMPLETED, result)
        return result
    if trigger is None:
        logger.warning("No downstream trigger configured, skipping re-scan signal")
        _finish_ledger_run(db, run, DedupRunStatusEnum.COMPLETED, result)
        return result

    try:
        await trigger.trigger()
    except DownstreamTriggerError as exc:
        logger.error("Error refreshing view or triggering downstream processing: %s", exc)
        _finish_ledger_run(db, run, DedupRunStatusEnum.TRIGGER_FAILED, result, error=str(exc))
        raise DownstreamTriggerError(str(exc), result=result) from exc

    _finish_ledger_run(db, run, DedupRunStatusEnum.COMPLETED, result)
    return result
