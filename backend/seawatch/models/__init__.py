"""Import all models to register them with SQLAlchemy metadata."""
from seawatch.models.base import Base
from seawatch.models.dedup_run import DedupRun
from seawatch.models.merge_operation import MergeOperation
