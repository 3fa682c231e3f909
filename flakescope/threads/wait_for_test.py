"""Tests for wait-for graph analysis."""

from __future__ import annotations

import pytest

from flakescope.threads.dump import parse_thread_dump
from flakescope.threads.wait_for import (
    WaitForGraph,
    analyze_thread_dump,
    build_wait_for_graph,
    detect_deadlocks,
    find_cycles,
    has_cycle,
    merge_lock_usage,
)


def _thread(tid, held=(), waiting=(), state="BLOCKED"):
    return {
        "id": tid,
        "name": f"worker-{tid}",
        "state": state,
        "locks_held": list(held),
        "locks_waiting": list(waiting),
    }


def _ring(n):
    """n threads, each holding its own lock and waiting on the next one's."""
    return parse_thread_dump({
        "threads": [
            _thread(i, held=[f"L{i}"], waiting=[f"L{(i + 1) % n}"])
            for i in range(n)
        ],
    })


class TestBuildGraph:
    """Tests for wait-for graph construction."""

    def test_edge_from_waiter_to_holder(self):
        """A waits on a lock held by B gives A -> B."""
        dump = parse_thread_dump({
            "threads": [_thread(1, waiting=["x"]), _thread(2, held=["x"])],
        })
        graph = build_wait_for_graph(dump)
        assert graph.has_edge("1", "2")
        assert not graph.has_edge("2", "1")
        assert graph.edge_locks("1", "2") == ("x",)

    def test_lock_table_merged(self):
        """Lock table owners hold and waiting threads wait."""
        dump = parse_thread_dump({
            "threads": [_thread(1), _thread(2)],
            "locks": [{"identity": "m", "owner_thread": 2, "waiting_threads": [1]}],
        })
        graph = build_wait_for_graph(dump)
        assert graph.has_edge("1", "2")

    def test_threads_without_locks_excluded(self):
        """Threads with no lock involvement are not graph nodes."""
        dump = parse_thread_dump({
            "threads": [
                _thread(1, waiting=["x"]),
                _thread(2, state="RUNNABLE"),
                _thread(3, held=["x"]),
            ],
        })
        graph = build_wait_for_graph(dump)
        assert graph.nodes == ("1", "3")
        assert "2" not in graph

    def test_reentrant_wait_dropped(self):
        """Waiting on a lock the thread already holds adds no self edge."""
        dump = parse_thread_dump({"threads": [_thread(1, held=["x"], waiting=["x"])]})
        graph = build_wait_for_graph(dump)
        assert graph.edge_count == 0

    def test_unknown_lock_table_thread_warns(self):
        """Lock table references to absent threads are dropped with a warning."""
        dump = parse_thread_dump({
            "threads": [_thread(1)],
            "locks": [{"identity": "m", "owner_thread": 9, "waiting_threads": [1]}],
        })
        warnings: list[str] = []
        usage = merge_lock_usage(dump, warnings)
        assert usage[0].holders == ()
        assert usage[0].waiters == ("1",)
        assert "owner thread 9" in warnings[0]

    def test_graph_is_read_only(self):
        """The graph exposes tuples, not mutable containers."""
        graph = WaitForGraph(["a", "b"], {("a", "b"): ("x",)})
        assert graph.successors("a") == ("b",)
        assert isinstance(graph.nodes, tuple)
        assert graph.edges() == [("a", "b", ("x",))]


class TestDeadlocks:
    """Tests for deadlock cycle detection."""

    def test_zero_locks_no_deadlock(self):
        """A dump without any lock never reports a deadlock."""
        dump = parse_thread_dump({
            "threads": [{"id": i, "state": "RUNNABLE"} for i in range(5)],
        })
        analysis = analyze_thread_dump(dump)
        assert analysis.deadlocks == []
        assert analysis.hubs == []
        assert len(analysis.graph) == 0

    def test_two_thread_deadlock(self):
        """A mutual wait is reported exactly once with both threads."""
        analysis = analyze_thread_dump(_ring(2))
        assert len(analysis.deadlocks) == 1
        cycle = analysis.deadlocks[0]
        assert cycle.threads == ("0", "1", "0")
        assert set(cycle.members) == {"0", "1"}
        assert cycle.locks == ("L1", "L0")

    def test_three_thread_cycle_length(self):
        """A three-thread circular wait has length three."""
        analysis = analyze_thread_dump(_ring(3))
        assert len(analysis.deadlocks) == 1
        assert analysis.deadlocks[0].length == 3
        assert analysis.deadlocks[0].threads == ("0", "1", "2", "0")

    def test_distinct_cycles_reported_separately(self):
        """A 2-cycle and a 3-cycle sharing a thread are both reported."""
        graph = WaitForGraph(
            ["a", "b", "c", "d"],
            {
                ("a", "b"): ("l1",),
                ("b", "a"): ("l2",),
                ("b", "c"): ("l3",),
                ("c", "d"): ("l4",),
                ("d", "b"): ("l5",),
            },
        )
        cycles, truncated = find_cycles(graph)
        assert not truncated
        assert cycles == [("a", "b", "a"), ("b", "c", "d", "b")]

    def test_rotation_starts_at_earliest_thread(self):
        """Cycles start at the earliest thread in dump order."""
        graph = WaitForGraph(
            ["x", "y", "z"],
            {("z", "x"): ("l",), ("x", "y"): ("l",), ("y", "z"): ("l",)},
        )
        assert [c.threads for c in detect_deadlocks(graph)] == [("x", "y", "z", "x")]

    def test_chain_has_no_cycle(self):
        """A 100-thread chain has no cycle and its first lock tops the hubs."""
        threads = [_thread(0, held=["L0"], state="RUNNABLE")]
        for i in range(1, 100):
            threads.append(_thread(i, held=[f"L{i}"], waiting=[f"L{i - 1}"]))
        analysis = analyze_thread_dump(parse_thread_dump({"threads": threads}))
        assert analysis.deadlocks == []
        assert not has_cycle(analysis.graph)
        assert analysis.hubs[0].lock == "L0"
        assert len(analysis.hubs) == 99

    def test_long_ring_is_iterative(self):
        """A ring longer than the recursion limit is still found."""
        analysis = analyze_thread_dump(_ring(1500))
        assert len(analysis.deadlocks) == 1
        assert analysis.deadlocks[0].length == 1500

    def test_max_cycles_truncates(self):
        """The cycle cap stops the search and flags truncation."""
        # Complete graph on 5 nodes has many simple cycles
        nodes = [str(i) for i in range(5)]
        edges = {(a, b): ("l",) for a in nodes for b in nodes if a != b}
        cycles, truncated = find_cycles(WaitForGraph(nodes, edges), max_cycles=3)
        assert truncated
        assert len(cycles) == 3

    def test_truncation_warns(self):
        """A truncated analysis carries a warning."""
        threads = [
            _thread(i, held=[f"L{i}"], waiting=[f"L{j}" for j in range(4) if j != i])
            for i in range(4)
        ]
        analysis = analyze_thread_dump(parse_thread_dump({"threads": threads}), max_cycles=2)
        assert analysis.truncated
        assert any("truncated" in w for w in analysis.warnings)

    def test_non_positive_cap_rejected(self):
        """A cap below one is a caller error, not a truncated search."""
        graph = WaitForGraph(["a", "b"], {("a", "b"): ("l1",), ("b", "a"): ("l2",)})
        with pytest.raises(ValueError, match="max_cycles must be at least 1"):
            find_cycles(graph, max_cycles=0)

    def test_complete_graph_cycle_count(self):
        """Every simple cycle of a complete 4-node graph is found exactly once."""
        nodes = ["a", "b", "c", "d"]
        edges = {(a, b): ("l",) for a in nodes for b in nodes if a != b}
        cycles, truncated = find_cycles(WaitForGraph(nodes, edges))
        assert not truncated
        # 6 two-cycles, 8 three-cycles, 6 four-cycles
        assert len(cycles) == 20
        assert len(set(cycles)) == 20

    def test_dead_end_region_searched_once(self):
        """Paths that cannot close a new cycle are not re-explored.

        From ``s`` the only way back is through ``x``, so the 12-node
        clique behind ``x`` holds no cycle through ``s``; walking every
        path through it would take billions of steps.
        """
        clique = [f"k{i}" for i in range(12)]
        edges = {("s", "x"): ("l",), ("x", "s"): ("l",), ("x", clique[0]): ("l",)}
        edges.update({(a, b): ("l",) for a in clique for b in clique if a != b})
        edges.update({(k, "x"): ("l",) for k in clique})
        graph = WaitForGraph(["s", "x"] + clique, edges)
        cycles, truncated = find_cycles(graph, max_cycles=5)
        assert truncated
        assert cycles[0] == ("s", "x", "s")
        assert all(c[0] == "x" for c in cycles[1:])


class TestHubsAndStates:
    """Tests for contention ranking and the state summary."""

    def test_hubs_ranked_by_waiters(self):
        """Locks with more waiters rank first, ties by first appearance."""
        dump = parse_thread_dump({
            "threads": [
                _thread(1, held=["a"]),
                _thread(2, held=["b"], waiting=["a"]),
                _thread(3, waiting=["b"]),
                _thread(4, waiting=["b"]),
                _thread(5, waiting=["c"]),
            ],
        })
        analysis = analyze_thread_dump(dump)
        assert [(h.lock, h.waiting_count) for h in analysis.hubs] == [
            ("b", 2), ("a", 1), ("c", 1),
        ]
        assert analysis.hubs[0].holders == ("2",)

    def test_state_summary(self):
        """States are counted, most common first, ties by name."""
        dump = parse_thread_dump({
            "threads": [
                {"id": 1, "state": "WAITING"},
                {"id": 2, "state": "BLOCKED"},
                {"id": 3, "state": "BLOCKED"},
                {"id": 4, "state": "RUNNABLE"},
            ],
        })
        analysis = analyze_thread_dump(dump)
        assert list(analysis.state_summary.items()) == [
            ("BLOCKED", 2), ("RUNNABLE", 1), ("WAITING", 1),
        ]
        assert analysis.blocked_threads == ["2", "3"]

    def test_to_dict(self):
        """The analysis serializes to plain data."""
        data = analyze_thread_dump(_ring(2)).to_dict()
        assert data["deadlocks"] == [{"threads": ["0", "1", "0"], "locks": ["L1", "L0"]}]
        assert data["thread_count"] == 2
        assert data["graph"]["nodes"] == ["0", "1"]
