"""Tests for dedup.yaml loading and defaults."""
from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from seawatch.modules import dedup_config
from seawatch.modules.dedup_config import (
    DedupConfig,
    build_dedup_config,
    load_dedup_config,
    reload_dedup_config,
)

SHIPPED_YAML = Path(__file__).resolve().parents[2] / "config" / "dedup.yaml"


@pytest.fixture(autouse=True)
def _clear_cache():
    dedup_config._DEDUP_CONFIG = None
    yield
    dedup_config._DEDUP_CONFIG = None


class TestShippedConfig:
    def test_matches_builtin_defaults(self):
        raw = yaml.safe_load(SHIPPED_YAML.read_text())
        assert build_dedup_config(raw) == DedupConfig()

    def test_has_every_section(self):
        raw = yaml.safe_load(SHIPPED_YAML.read_text())
        for section in dedup_config._EXPECTED_SECTIONS:
            assert section in raw


class TestBuildDedupConfig:
    def test_empty_mapping_gives_defaults(self):
        config = build_dedup_config({})
        assert config.similarity.max_hours_apart == 48
        assert config.similarity.max_distance_km == 50
        assert config.thresholds.potential_match == 0.6
        assert config.thresholds.high_confidence == 0.8
        assert config.selector.completeness_weight == 0.7
        assert config.source_priorities["RECAAP"] == 5
        assert config.max_chain_depth == 5

    def test_overrides_merged_over_defaults(self):
        config = build_dedup_config({
            "similarity": {"max_distance_km": 25},
            "completeness_weights": {"vessel_imo": 4},
            "source_priorities": {"recaap": 9},
            "merge_chain": {"max_depth": 3},
        })
        assert config.similarity.max_distance_km == 25
        assert config.similarity.time_weight == 0.3
        assert config.completeness_weights["vessel_imo"] == 4
        assert config.completeness_weights["description"] == 3
        assert config.source_priorities == {"RECAAP": 9}
        assert config.max_chain_depth == 3

    def test_unknown_keys_ignored(self):
        config = build_dedup_config({"similarity": {"bogus": 1}, "thresholds": {"other": 2}})
        assert config.similarity == DedupConfig().similarity

    def test_weights_not_summing_to_one_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            build_dedup_config({"similarity": {"time_weight": 0.5}})
        assert "sum to 1.200" in caplog.text


class TestLoadDedupConfig:
    def test_missing_file_falls_back(self, tmp_path, caplog):
        with patch.object(dedup_config.settings, "DEDUP_CONFIG", str(tmp_path / "nope.yaml")):
            with caplog.at_level(logging.WARNING):
                config = load_dedup_config()
        assert config == DedupConfig()
        assert "not found" in caplog.text

    def test_cached_until_reload(self, tmp_path):
        path = tmp_path / "dedup.yaml"
        path.write_text("merge_chain:\n  max_depth: 7\n")
        with patch.object(dedup_config.settings, "DEDUP_CONFIG", str(path)):
            assert load_dedup_config().max_chain_depth == 7
            path.write_text("merge_chain:\n  max_depth: 2\n")
            assert load_dedup_config().max_chain_depth == 7
            assert reload_dedup_config().max_chain_depth == 2

    def test_missing_sections_warn(self, tmp_path, caplog):
        path = tmp_path / "dedup.yaml"
        path.write_text("similarity:\n  max_hours_apart: 24\n")
        with patch.object(dedup_config.settings, "DEDUP_CONFIG", str(path)):
            with caplog.at_level(logging.WARNING):
                config = load_dedup_config()
        assert config.similarity.max_hours_apart == 24
        assert "missing sections" in caplog.text
