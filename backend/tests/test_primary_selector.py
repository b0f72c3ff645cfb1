"""Tests for primary record selection (completeness + source priority)."""
from __future__ import annotations

import pytest

from seawatch.modules.dedup_config import DedupConfig
from seawatch.modules.primary_selector import (
    calculate_completeness_score,
    determine_primary_record,
    get_source_priority,
)

CONFIG = DedupConfig()
LONG_DESCRIPTION = (
    "Five robbers armed with knives boarded the anchored bulk carrier from a small boat. "
    "The duty AB raised the alarm and the crew mustered. The robbers escaped empty handed. "
    "Singapore VTIS informed and a Police Coast Guard craft was dispatched to the location. "
    "All crew safe."
)


class TestSourcePriority:
    def test_known_sources(self):
        assert get_source_priority("RECAAP", CONFIG) == 5
        assert get_source_priority("UKMTO", CONFIG) == 4
        assert get_source_priority("MDAT", CONFIG) == 3
        assert get_source_priority("ICC", CONFIG) == 3
        assert get_source_priority("CWD", CONFIG) == 2

    def test_case_insensitive(self):
        assert get_source_priority("recaap", CONFIG) == 5

    def test_unknown_and_missing(self):
        assert get_source_priority("NEWSWIRE", CONFIG) == 1
        assert get_source_priority(None, CONFIG) == 1


class TestCompletenessScore:
    def test_empty_record(self, make_record):
        assert calculate_completeness_score(make_record("r", "UKMTO"), CONFIG) == 0

    def test_weighted_fields(self, make_record):
        record = make_record(
            "r", "UKMTO",
            title="Robbery", date="2024-10-17T18:00:00Z", latitude=1.13, longitude=103.5,
            vessel_imo="9223485", update="Crew safe",
        )
        # title 1 + date 1 + coordinates 2 + imo 2 + update 2
        assert calculate_completeness_score(record, CONFIG) == 8

    def test_short_description_earns_nothing(self, make_record):
        assert calculate_completeness_score(make_record("r", description="Boarded."), CONFIG) == 0
        assert calculate_completeness_score(make_record("r", description=LONG_DESCRIPTION), CONFIG) == 3

    def test_null_island_not_counted(self, make_record):
        assert calculate_completeness_score(make_record("r", latitude=0, longitude=0), CONFIG) == 0


class TestDeterminePrimary:
    def test_higher_priority_wins_on_equal_completeness(self, make_record):
        fields = dict(date="2024-10-17T18:00:00Z", latitude=1.13, longitude=103.5,
                      vessel_imo="9223485", incident_type_name="Robbery")
        ukmto = make_record("recA", "UKMTO", **fields)
        recaap = make_record("recB", "RECAAP", **fields)
        selection = determine_primary_record(ukmto, recaap, CONFIG)
        assert selection.primary.id == "recB"
        assert selection.secondary.id == "recA"

    def test_rich_description_beats_imo_from_lower_priority_source(self, make_record):
        """Worked example: A = UKMTO with a long description and no IMO,
        B = CWD with an IMO and a short description.

        A: title 1 + description 3 + date 1 + coordinates 2 + region 1 = 8
           -> 8 * 0.7 + 4 * 0.3 = 6.8
        B: title 1 + date 1 + coordinates 2 + vessel_name 1 + imo 2 = 7
           -> 7 * 0.7 + 2 * 0.3 = 5.5
        """
        assert len(LONG_DESCRIPTION) > 100
        a = make_record(
            "recA", "UKMTO", title="Robbery", description=LONG_DESCRIPTION,
            date="2024-10-17T18:00:00Z", latitude=1.13, longitude=103.5, region="Singapore Strait",
        )
        b = make_record(
            "recB", "CWD", title="Robbery", description="Robbers boarded.",
            date="2024-10-17T18:40:00Z", latitude=1.14, longitude=103.49,
            vessel_name="OCEAN STAR", vessel_imo="9223485",
        )
        selection = determine_primary_record(a, b, CONFIG)
        assert selection.primary.id == "recA"
        assert selection.primary_completeness == 8
        assert selection.secondary_completeness == 7
        assert selection.primary_score == pytest.approx(6.8)
        assert selection.secondary_score == pytest.approx(5.5)
        # Order of arguments does not change the outcome
        assert determine_primary_record(b, a, CONFIG).primary.id == "recA"

    def test_vessel_detail_from_top_source_beats_description(self, make_record):
        """A = CWD with long description (completeness 8, score 6.2),
        B = RECAAP with vessel particulars (completeness 8, score 7.1)."""
        a = make_record(
            "recA", "CWD", title="Robbery", description=LONG_DESCRIPTION,
            date="2024-10-17T18:00:00Z", latitude=1.13, longitude=103.5, region="Singapore Strait",
        )
        b = make_record(
            "recB", "RECAAP", title="Robbery", date="2024-10-17T18:40:00Z",
            latitude=1.14, longitude=103.49, vessel_name="OCEAN STAR", vessel_type="Bulk Carrier",
            vessel_imo="9223485",
        )
        selection = determine_primary_record(a, b, CONFIG)
        assert selection.primary.id == "recB"
        assert selection.primary_score == pytest.approx(7.1)
        assert selection.secondary_score == pytest.approx(6.2)

    def test_tie_goes_to_first_record(self, make_record):
        a = make_record("recA", "ICC", title="Boarding")
        b = make_record("recB", "MDAT", title="Boarding")
        assert determine_primary_record(a, b, CONFIG).primary.id == "recA"
        assert determine_primary_record(b, a, CONFIG).primary.id == "recB"
