"""Tests for merge-chain root resolution."""
from __future__ import annotations

import asyncio

from seawatch.modules.merge_chain import resolve_merge_root


def _chain(make_row, hops: int) -> list[dict]:
    """r0 -> r1 -> ... -> r{hops}, where r{hops} is the root."""
    rows = [
        make_row(f"r{i}", merge_status="merged_into", merged_into=[f"r{i + 1}"])
        for i in range(hops)
    ]
    rows.append(make_row(f"r{hops}", merge_status="merged", related_raw_data=[f"r{i}" for i in range(hops)]))
    return rows


class TestResolveMergeRoot:
    def test_unmerged_record_is_its_own_root(self, fake_store, make_row):
        store = fake_store([make_row("r0")])
        root = asyncio.run(resolve_merge_root(store, "r0"))
        assert root.id == "r0"
        assert store.get_calls == ["r0"]

    def test_three_hops_resolve(self, fake_store, make_row):
        store = fake_store(_chain(make_row, 3))
        root = asyncio.run(resolve_merge_root(store, "r0"))
        assert root is not None
        assert root.id == "r3"

    def test_five_hops_is_the_limit(self, fake_store, make_row):
        store = fake_store(_chain(make_row, 5))
        assert asyncio.run(resolve_merge_root(store, "r0")).id == "r5"

    def test_six_hops_fail(self, fake_store, make_row):
        store = fake_store(_chain(make_row, 6))
        assert asyncio.run(resolve_merge_root(store, "r0")) is None

    def test_custom_depth(self, fake_store, make_row):
        store = fake_store(_chain(make_row, 6))
        assert asyncio.run(resolve_merge_root(store, "r0", max_depth=6)).id == "r6"

    def test_cycle_detected(self, fake_store, make_row):
        store = fake_store([
            make_row("a", merge_status="merged_into", merged_into=["b"]),
            make_row("b", merge_status="merged_into", merged_into=["a"]),
        ])
        assert asyncio.run(resolve_merge_root(store, "a")) is None
        assert store.get_calls == ["a", "b"]

    def test_self_pointer_is_a_cycle(self, fake_store, make_row):
        store = fake_store([make_row("a", merge_status="merged_into", merged_into=["a"])])
        assert asyncio.run(resolve_merge_root(store, "a")) is None

    def test_missing_pointer_target_fails_closed(self, fake_store, make_row):
        store = fake_store([make_row("a", merge_status="merged_into")])
        assert asyncio.run(resolve_merge_root(store, "a")) is None

    def test_fetch_failure_fails_closed(self, fake_store, make_row):
        store = fake_store(_chain(make_row, 2))
        store.fail_get.add("r1")
        assert asyncio.run(resolve_merge_root(store, "r0")) is None
