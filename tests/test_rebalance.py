"""Tests for the group rebalancing policy (ordering/rebalance.py)."""

from __future__ import annotations

from taskboard.config import OrderingSettings
from taskboard.ordering.model import Task
from taskboard.ordering.rebalance import RebalancePolicy


def _group(*orders, project_id: str = "p1") -> list[Task]:
    return [
        Task(id=f"t{i}", project_id=project_id, title=f"T{i}", status_id="s1", order=o,
             created_at=f"2026-01-01T00:00:{i:02d}+00:00")
        for i, o in enumerate(orders)
    ]


class TestNeedsRebalancing:
    def test_healthy_group(self) -> None:
        assert not RebalancePolicy().needs_rebalancing(_group(1000.0, 2000.0, 3000.0))

    def test_empty_and_single(self) -> None:
        policy = RebalancePolicy()
        assert not policy.needs_rebalancing([])
        assert not policy.needs_rebalancing(_group(1000.0))

    def test_squeezed_keys(self) -> None:
        assert RebalancePolicy().needs_rebalancing(_group(1000.0, 1000.0001, 1000.0002))

    def test_duplicate_keys(self) -> None:
        assert RebalancePolicy().needs_rebalancing(_group(1000.0, 1000.0, 2000.0))

    def test_uninitialized_key(self) -> None:
        assert RebalancePolicy().needs_rebalancing(_group(1000.0, None))

    def test_irregular_spacing(self) -> None:
        # gaps 1000 and 5: ratio 200 > 100
        assert RebalancePolicy().needs_rebalancing(_group(1000.0, 2000.0, 2005.0))

    def test_regular_enough_spacing(self) -> None:
        # gaps 1000 and 500: ratio 2
        assert not RebalancePolicy().needs_rebalancing(_group(1000.0, 2000.0, 2500.0))

    def test_key_ceiling(self) -> None:
        policy = RebalancePolicy(OrderingSettings(max_key=10_000.0))
        assert policy.needs_rebalancing(_group(1000.0, 20_000.0))
        assert policy.needs_rebalancing(_group(20_000.0))


class TestRebalance:
    def test_squeezed_group_renumbered(self) -> None:
        tasks = _group(1000.0, 1000.0001, 1000.0002)
        changed = RebalancePolicy().rebalance(tasks)
        assert [t.order for t in tasks] == [1000.0, 2000.0, 3000.0]
        assert {t.id for t in changed} == {"t1", "t2"}

    def test_preserves_relative_order(self) -> None:
        tasks = _group(5.0, 3.0, 4.0, 1.0)
        RebalancePolicy().rebalance(tasks)
        by_order = [t.id for t in sorted(tasks, key=lambda t: t.order)]
        assert by_order == ["t3", "t1", "t2", "t0"]

    def test_gaps_are_even(self) -> None:
        tasks = _group(1.0, 1.5, 1.75, 1.875)
        policy = RebalancePolicy()
        policy.rebalance(tasks)
        keys = sorted(t.order for t in tasks)
        gaps = {b - a for a, b in zip(keys, keys[1:])}
        assert gaps == {1000.0}
        assert not policy.needs_rebalancing(tasks)

    def test_ties_broken_by_creation(self) -> None:
        tasks = _group(1000.0, 1000.0)
        RebalancePolicy().rebalance(tasks)
        assert tasks[0].order < tasks[1].order

    def test_uninitialized_sort_last(self) -> None:
        tasks = _group(None, 2000.0)
        RebalancePolicy().rebalance(tasks)
        assert tasks[1].order == 1000.0
        assert tasks[0].order == 2000.0

    def test_custom_settings(self) -> None:
        tasks = _group(3.0, 1.0)
        RebalancePolicy(OrderingSettings(base_key=10.0, gap=10.0, min_gap=1.0)).rebalance(tasks)
        assert tasks[1].order == 10.0
        assert tasks[0].order == 20.0


class TestInitializeMissingKeys:
    def test_appends_after_max_in_creation_order(self) -> None:
        tasks = _group(None, 1500.0, None)
        initialized = RebalancePolicy().initialize_missing_keys(tasks)
        assert [t.id for t in initialized] == ["t0", "t2"]
        assert tasks[0].order == 2500.0
        assert tasks[2].order == 3500.0

    def test_all_missing_starts_at_base(self) -> None:
        tasks = _group(None, None)
        RebalancePolicy().initialize_missing_keys(tasks)
        assert [t.order for t in tasks] == [1000.0, 2000.0]

    def test_noop_when_complete(self) -> None:
        assert RebalancePolicy().initialize_missing_keys(_group(1000.0)) == []
