"""Shared declarative base and enums for all models."""
from __future__ import annotations

import enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class MergeStatusEnum(str, enum.Enum):
    """Values of the store's ``merge_status`` field (unset means untouched)."""
    MERGED = "merged"
    MERGED_INTO = "merged_into"


class DedupRunStatusEnum(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    # Merges were committed but the downstream re-scan signal failed
    TRIGGER_FAILED = "trigger_failed"


class PairActionEnum(str, enum.Enum):
    """Outcome of one ranked candidate pair in the merge loop."""
    MERGED = "merged"
    DRY_RUN = "dry_run"
    WRITE_FAILED = "write_failed"
    BELOW_THRESHOLD = "below_threshold"
    ALREADY_LINKED = "already_linked"
    CHAIN_UNRESOLVED = "chain_unresolved"
    SAME_ROOT = "same_root"
