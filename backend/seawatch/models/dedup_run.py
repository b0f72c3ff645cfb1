"""DedupRun entity: tracks each cross-source deduplication run.

Keeps the run options, the summary counters and the terminal status so
operators can tell "merges applied but signal failed" apart from "run
failed before any merges" after the fact.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, DateTime, JSON, Text, Boolean, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from seawatch.models.base import Base, DedupRunStatusEnum


class DedupRun(Base):
    __tablename__ = "dedup_runs"

    run_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # {"dry_run": false, "confidence_threshold": 0.7, "max_records": 100, "lookback_days": 30}
    options_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # Run summary counters (recordsAnalyzed, mergesPerformed, ...)
    summary_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DedupRunStatusEnum.RUNNING.value, index=True
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    merge_operations: Mapped[list["MergeOperation"]] = relationship(
        "MergeOperation", back_populates="run",
    )
