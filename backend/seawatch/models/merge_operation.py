"""MergeOperation: audit trail of merge decisions taken by a dedup run."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, DateTime, Float, ForeignKey, JSON, Text, Boolean, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from seawatch.models.base import Base


class MergeOperation(Base):
    __tablename__ = "merge_operations"

    merge_op_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("dedup_runs.run_id"), nullable=False, index=True
    )
    primary_record_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    secondary_record_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    primary_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    secondary_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    # PairActionEnum value: merged / write_failed / dry_run
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    # Both records were linked to different consolidated incidents
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    review_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    linked_incident_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    patched_fields_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    run: Mapped["DedupRun"] = relationship("DedupRun", back_populates="merge_operations")
