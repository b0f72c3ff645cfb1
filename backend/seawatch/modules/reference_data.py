"""Incident-type reference vocabulary used by the similarity scorer.

Source reports label incidents in free text ("Robbery", "Armed Robbery",
"Boarded", ...). The vocabulary answers "are these two labels synonyms?"
with a similarity in [0, 1], or ``None`` when it has no opinion, in which
case the scorer falls back to word overlap.

Two implementations:
  - StaticIncidentTypeVocabulary: synonym groups from config/dedup.yaml.
  - AirtableIncidentTypeVocabulary: additionally loads the ``incident_type``
    reference table once and treats labels whose reference rows share a
    ``group`` value as synonyms.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable

from seawatch.modules.record_store import RecordStore, RecordStoreError

logger = logging.getLogger(__name__)


def normalize_incident_type(label: str) -> str:
    return " ".join(label.upper().split())


class IncidentTypeVocabulary(ABC):
    """Abstract synonym lookup for incident-type labels."""

    @abstractmethod
    async def similarity(self, type1: str, type2: str) -> float | None:
        ...


class StaticIncidentTypeVocabulary(IncidentTypeVocabulary):
    def __init__(self, groups: Iterable[Iterable[str]], group_score: float = 0.8) -> None:
        self.group_score = group_score
        self._group_of: dict[str, set[int]] = {}
        for idx, group in enumerate(groups):
            for label in group:
                self._group_of.setdefault(normalize_incident_type(label), set()).add(idx)

    async def similarity(self, type1: str, type2: str) -> float | None:
        return self._group_similarity(type1, type2)

    def _group_similarity(self, type1: str, type2: str) -> float | None:
        g1 = self._group_of.get(normalize_incident_type(type1), set())
        g2 = self._group_of.get(normalize_incident_type(type2), set())
        if g1 & g2:
            return self.group_score
        return None


class AirtableIncidentTypeVocabulary(StaticIncidentTypeVocabulary):
    """Static groups plus groups declared on the ``incident_type`` reference table.

    The table is read once per instance (one instance per dedup run) so a
    run sees a consistent vocabulary.
    """

    def __init__(
        self,
        store: RecordStore,
        groups: Iterable[Iterable[str]],
        group_score: float = 0.8,
    ) -> None:
        super().__init__(groups, group_score)
        self._store = store
        self._reference_groups: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    async def similarity(self, type1: str, type2: str) -> float | None:
        static = self._group_similarity(type1, type2)
        if static is not None:
            return static
        reference = await self._load_reference_groups()
        r1 = reference.get(normalize_incident_type(type1))
        r2 = reference.get(normalize_incident_type(type2))
        if r1 and r1 == r2:
            return self.group_score
        return None

    async def _load_reference_groups(self) -> dict[str, str]:
        async with self._lock:
            if self._reference_groups is None:
                groups: dict[str, str] = {}
                offset: str | None = None
                while True:
                    try:
                        page, offset = await self._store.list_records(offset=offset)
                    except RecordStoreError:
                        # Fail once per run, then serve static groups only
                        self._reference_groups = {}
                        raise
                    for record in page:
                        fields = record.get("fields") or {}
                        name, group = fields.get("name"), fields.get("group")
                        if name and group:
                            groups[normalize_incident_type(str(name))] = str(group).strip().upper()
                    if not offset:
                        break
                logger.info("Loaded %d grouped incident types from reference table", len(groups))
                self._reference_groups = groups
        return self._reference_groups
