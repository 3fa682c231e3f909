"""Wait-for graph construction, deadlock search and contention ranking.

An edge ``A -> B`` means thread A waits on a lock held by thread B.  A
cycle in this graph is a deadlock: every thread on it waits, directly or
transitively, on itself.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from flakescope.threads.dump import ThreadDump, ThreadState

DEFAULT_MAX_CYCLES = 1000


class WaitForGraph:
    """Directed wait-for graph over thread ids.

    Built once from a snapshot and read-only afterwards.  Nodes keep dump
    order and each node's successors are ordered by their dump position,
    so every traversal is deterministic.
    """

    def __init__(
        self,
        nodes: list[str],
        edges: dict[tuple[str, str], tuple[str, ...]],
    ) -> None:
        self._nodes = tuple(nodes)
        self._index = MappingProxyType({n: i for i, n in enumerate(self._nodes)})
        self._edges = MappingProxyType(dict(edges))
        successors: dict[str, list[str]] = {n: [] for n in self._nodes}
        for source, target in self._edges:
            successors[source].append(target)
        self._successors = MappingProxyType({
            n: tuple(sorted(targets, key=self._index.__getitem__))
            for n, targets in successors.items()
        })

    @property
    def nodes(self) -> tuple[str, ...]:
        return self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._index

    def index(self, thread_id: str) -> int:
        """Dump position of a node among graph nodes."""
        return self._index[thread_id]

    def successors(self, thread_id: str) -> tuple[str, ...]:
        return self._successors.get(thread_id, ())

    def has_edge(self, source: str, target: str) -> bool:
        return (source, target) in self._edges

    def edge_locks(self, source: str, target: str) -> tuple[str, ...]:
        """Lock identities that make *source* wait on *target*."""
        return self._edges.get((source, target), ())

    def edges(self) -> list[tuple[str, str, tuple[str, ...]]]:
        """All edges in source order, then target order."""
        return [
            (source, target, self._edges[(source, target)])
            for source in self._nodes
            for target in self._successors[source]
        ]

    @property
    def edge_count(self) -> int:
        return len(self._edges)


@dataclass(frozen=True)
class LockUsage:
    """Merged holders and waiters of one lock."""

    identity: str
    holders: tuple[str, ...]
    waiters: tuple[str, ...]
    first_seen: int  # order of first appearance in the dump


@dataclass(frozen=True)
class DeadlockCycle:
    """A simple cycle of the wait-for graph.

    ``threads`` starts at the cycle's earliest thread in dump order and
    closes on it again, e.g. ``("1", "2", "1")``.
    """

    threads: tuple[str, ...]
    locks: tuple[str, ...]  # lock waited on along each edge

    @property
    def length(self) -> int:
        """Number of distinct threads on the cycle."""
        return len(self.threads) - 1

    @property
    def members(self) -> tuple[str, ...]:
        return self.threads[:-1]

    def describe(self) -> str:
        steps = [
            f"{self.threads[i]} waits for {self.locks[i]} held by {self.threads[i + 1]}"
            for i in range(self.length)
        ]
        return "; ".join(steps)


@dataclass(frozen=True)
class ContentionHub:
    """A lock with at least one waiting thread."""

    lock: str
    waiting_count: int
    holders: tuple[str, ...]
    waiters: tuple[str, ...]


@dataclass
class ThreadDumpAnalysis:
    """Everything derived from one thread dump."""

    dump: ThreadDump
    graph: WaitForGraph
    deadlocks: list[DeadlockCycle] = field(default_factory=list)
    hubs: list[ContentionHub] = field(default_factory=list)
    state_summary: dict[str, int] = field(default_factory=dict)
    blocked_threads: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    truncated: bool = False  # cycle search stopped at max_cycles

    @property
    def has_deadlock(self) -> bool:
        return bool(self.deadlocks)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "thread_count": len(self.dump.threads),
            "graph": {
                "nodes": list(self.graph.nodes),
                "edges": [
                    {"from": a, "to": b, "locks": list(locks)}
                    for a, b, locks in self.graph.edges()
                ],
            },
            "deadlocks": [
                {"threads": list(c.threads), "locks": list(c.locks)}
                for c in self.deadlocks
            ],
            "truncated": self.truncated,
            "contention_hubs": [
                {
                    "lock": h.lock,
                    "waiting_count": h.waiting_count,
                    "holders": list(h.holders),
                    "waiters": list(h.waiters),
                }
                for h in self.hubs
            ],
            "state_summary": dict(self.state_summary),
            "blocked_threads": list(self.blocked_threads),
            "warnings": list(self.warnings),
        }


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


def merge_lock_usage(dump: ThreadDump, warnings: list[str] | None = None) -> list[LockUsage]:
    """Merge per-thread lock lists with the explicit lock table.

    A lock table owner counts as holding the lock and its waiting threads
    as waiting on it.  Lock table references to threads absent from the
    dump are dropped with a warning.

    Returns:
        One LockUsage per lock, in order of first appearance.
    """
    if warnings is None:
        warnings = []
    known = {t.id for t in dump.threads}
    order: dict[str, int] = {}
    holders: dict[str, list[str]] = {}
    waiters: dict[str, list[str]] = {}

    def note(lock: str) -> None:
        if lock not in order:
            order[lock] = len(order)
            holders[lock] = []
            waiters[lock] = []

    def add(table: dict[str, list[str]], lock: str, thread_id: str) -> None:
        note(lock)
        if thread_id not in table[lock]:
            table[lock].append(thread_id)

    for thread in dump.threads:
        for lock in thread.locks_held:
            add(holders, lock, thread.id)
        for lock in thread.locks_waiting:
            add(waiters, lock, thread.id)

    for lock_record in dump.locks:
        note(lock_record.identity)
        owner = lock_record.owner_thread_id
        if owner is not None:
            if owner in known:
                add(holders, lock_record.identity, owner)
            else:
                warnings.append(
                    f"lock {lock_record.identity}: owner thread {owner} not in dump"
                )
        for waiter in lock_record.waiting_thread_ids:
            if waiter in known:
                add(waiters, lock_record.identity, waiter)
            else:
                warnings.append(
                    f"lock {lock_record.identity}: waiting thread {waiter} not in dump"
                )

    return [
        LockUsage(
            identity=lock,
            holders=tuple(holders[lock]),
            waiters=tuple(waiters[lock]),
            first_seen=position,
        )
        for lock, position in order.items()
    ]


def build_wait_for_graph(
    dump: ThreadDump,
    usage: list[LockUsage] | None = None,
) -> WaitForGraph:
    """Build the wait-for graph of a snapshot.

    Threads that neither hold nor wait on any lock are not graph nodes.
    Re-entrant waits (a thread waiting on a lock it holds) add no edge.
    """
    if usage is None:
        usage = merge_lock_usage(dump)

    involved: set[str] = set()
    edges: dict[tuple[str, str], list[str]] = {}
    for lock in usage:
        involved.update(lock.holders)
        involved.update(lock.waiters)
        for waiter in lock.waiters:
            for holder in lock.holders:
                if waiter == holder:
                    continue
                locks = edges.setdefault((waiter, holder), [])
                if lock.identity not in locks:
                    locks.append(lock.identity)

    nodes = [t.id for t in dump.threads if t.id in involved]
    return WaitForGraph(nodes, {k: tuple(v) for k, v in edges.items()})


# ---------------------------------------------------------------------------
# Cycle search
# ---------------------------------------------------------------------------


def has_cycle(graph: WaitForGraph) -> bool:
    """Detect whether the graph has any cycle, using colored DFS.

    The search is iterative, so its depth is bounded by the node count
    rather than the interpreter's recursion limit.
    """
    WHITE, GRAY, BLACK = 0, 1, 2
    color: dict[str, int] = {n: WHITE for n in graph.nodes}

    for root in graph.nodes:
        if color[root] != WHITE:
            continue
        color[root] = GRAY
        stack: list[tuple[str, int]] = [(root, 0)]
        while stack:
            node, next_child = stack[-1]
            children = graph.successors(node)
            if next_child >= len(children):
                stack.pop()
                color[node] = BLACK
                continue
            stack[-1] = (node, next_child + 1)
            child = children[next_child]
            if color[child] == GRAY:
                return True
            if color[child] == WHITE:
                color[child] = GRAY
                stack.append((child, 0))
    return False


def _reaching(
    graph: WaitForGraph,
    predecessors: dict[str, list[str]],
    target: str,
) -> set[str]:
    """Nodes at or after *target* in dump order that can reach *target*."""
    floor = graph.index(target)
    reached = {target}
    queue = deque([target])
    while queue:
        node = queue.popleft()
        for pred in predecessors.get(node, []):
            if pred not in reached and graph.index(pred) >= floor:
                reached.add(pred)
                queue.append(pred)
    return reached


def find_cycles(
    graph: WaitForGraph,
    max_cycles: int = DEFAULT_MAX_CYCLES,
) -> tuple[list[tuple[str, ...]], bool]:
    """Enumerate every simple cycle of the graph.

    Each cycle is reported once, starting at its earliest node in dump
    order: cycles through start node ``s`` only visit nodes after ``s``.
    Nodes that cannot lead back to ``s`` are pruned before the search,
    and nodes are blocked while no path from them can close a new cycle
    (Johnson's algorithm), so the work per reported cycle stays linear
    in the graph size.

    Args:
        graph: The wait-for graph.
        max_cycles: Stop after this many cycles.

    Returns:
        ``(cycles, truncated)`` where each cycle closes on its start node
        and ``truncated`` is True if the cap was reached.

    Raises:
        ValueError: If *max_cycles* is less than 1.
    """
    if max_cycles < 1:
        raise ValueError(f"max_cycles must be at least 1, got {max_cycles}")

    cycles: list[tuple[str, ...]] = []
    if not has_cycle(graph):
        return cycles, False

    predecessors: dict[str, list[str]] = {}
    for source, target, _ in graph.edges():
        predecessors.setdefault(target, []).append(source)

    for start in graph.nodes:
        candidates = _reaching(graph, predecessors, start)
        if len(candidates) < 2:
            continue

        blocked = {start}
        # Nodes to unblock once the key node is unblocked
        blocked_by: dict[str, set[str]] = {}
        path = [start]
        # Whether a cycle was closed below each path entry
        closed = [False]
        stack = [(start, iter(graph.successors(start)))]
        while stack:
            node, children = stack[-1]
            for child in children:
                if child == start:
                    cycles.append(tuple(path) + (start,))
                    if len(cycles) >= max_cycles:
                        return cycles, True
                    closed[-1] = True
                elif child in candidates and child not in blocked:
                    path.append(child)
                    closed.append(False)
                    blocked.add(child)
                    stack.append((child, iter(graph.successors(child))))
                    break
            else:
                stack.pop()
                path.pop()
                if closed.pop():
                    if closed:
                        closed[-1] = True
                    pending = [node]
                    while pending:
                        current = pending.pop()
                        if current in blocked:
                            blocked.discard(current)
                            pending.extend(blocked_by.pop(current, ()))
                else:
                    for child in graph.successors(node):
                        if child in candidates:
                            blocked_by.setdefault(child, set()).add(node)
    return cycles, False


def _to_deadlock(graph: WaitForGraph, cycle: tuple[str, ...]) -> DeadlockCycle:
    locks = tuple(
        graph.edge_locks(cycle[i], cycle[i + 1])[0] for i in range(len(cycle) - 1)
    )
    return DeadlockCycle(threads=cycle, locks=locks)


def detect_deadlocks(
    graph: WaitForGraph,
    max_cycles: int = DEFAULT_MAX_CYCLES,
) -> list[DeadlockCycle]:
    """Report every deadlock cycle of the graph (up to *max_cycles*)."""
    cycles, _ = find_cycles(graph, max_cycles)
    return [_to_deadlock(graph, c) for c in cycles]


# ---------------------------------------------------------------------------
# Contention and state summaries
# ---------------------------------------------------------------------------


def rank_contention_hubs(usage: list[LockUsage]) -> list[ContentionHub]:
    """Rank locks by waiting-thread count, ties by first appearance."""
    contended = [u for u in usage if u.waiters]
    contended.sort(key=lambda u: (-len(u.waiters), u.first_seen))
    return [
        ContentionHub(
            lock=u.identity,
            waiting_count=len(u.waiters),
            holders=u.holders,
            waiters=u.waiters,
        )
        for u in contended
    ]


def summarize_states(dump: ThreadDump) -> dict[str, int]:
    """Count threads per state, most common first, ties by state name."""
    counts = Counter(t.state.value for t in dump.threads)
    return dict(sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])))


def analyze_thread_dump(
    dump: ThreadDump,
    max_cycles: int = DEFAULT_MAX_CYCLES,
) -> ThreadDumpAnalysis:
    """Run the full wait-for analysis of one snapshot.

    A dump without any lock information yields an empty graph and no
    deadlocks; it is never an error.
    """
    warnings = list(dump.warnings)
    usage = merge_lock_usage(dump, warnings)
    graph = build_wait_for_graph(dump, usage)
    cycles, truncated = find_cycles(graph, max_cycles)
    if truncated:
        warnings.append(
            f"cycle search stopped after {max_cycles} cycles; results truncated"
        )

    return ThreadDumpAnalysis(
        dump=dump,
        graph=graph,
        deadlocks=[_to_deadlock(graph, c) for c in cycles],
        hubs=rank_contention_hubs(usage),
        state_summary=summarize_states(dump),
        blocked_threads=[t.id for t in dump.threads if t.state == ThreadState.BLOCKED],
        warnings=warnings,
        truncated=truncated,
    )
