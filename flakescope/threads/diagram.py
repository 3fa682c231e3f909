"""Mermaid rendering of a wait-for analysis."""

from __future__ import annotations

from flakescope.threads.wait_for import ThreadDumpAnalysis

# Node styling per thread state, plus deadlock highlighting
STATE_CLASSES = {
    "RUNNABLE": "fill:green,stroke:#333,stroke-width:1px,color:white",
    "BLOCKED": "fill:red,stroke:#333,stroke-width:1px,color:white",
    "WAITING": "fill:orange,stroke:#333,stroke-width:1px,color:white",
    "TIMED_WAITING": "fill:yellow,stroke:#333,stroke-width:1px,color:black",
    "TERMINATED": "fill:gray,stroke:#333,stroke-width:1px,color:white",
    "NEW": "fill:blue,stroke:#333,stroke-width:1px,color:white",
    "UNKNOWN": "fill:#ccc,stroke:#333,stroke-width:1px,color:black",
}
DEADLOCK_CLASS = "fill:#ff6666,stroke:#990000,stroke-width:2px,color:white,font-weight:bold"
DEADLOCK_LOCK_CLASS = "fill:#990000,stroke:#ff0000,stroke-width:2px,color:white,font-weight:bold"


def _label(text: str) -> str:
    return text.replace('"', "#quot;")


def render_mermaid(analysis: ThreadDumpAnalysis) -> str:
    """Render the wait-for graph as a Mermaid flowchart.

    Lock nodes point to their owners and waiting threads point to the
    locks they wait on.  Threads and locks on a deadlock cycle get the
    ``deadlock`` classes.  Node ids are positional so arbitrary thread ids
    and lock identities are safe to embed.

    Returns:
        The diagram source, without Markdown fences.
    """
    lines = ["graph TD"]
    graph = analysis.graph

    if not analysis.dump.threads:
        lines.append('  NoThreads["No threads found in thread dump"]')
        return "\n".join(lines) + "\n"
    if len(graph) == 0:
        lines.append('  NoLocks["No lock contention in thread dump"]')
        return "\n".join(lines) + "\n"

    deadlocked_threads = {t for c in analysis.deadlocks for t in c.members}
    deadlocked_locks = {lock for c in analysis.deadlocks for lock in c.locks}

    thread_ids = {t: f"T{i}" for i, t in enumerate(graph.nodes)}
    # Every lock on an edge has a waiter, so the hubs cover the graph
    lock_names = [h.lock for h in analysis.hubs]
    lock_ids = {lock: f"L{i}" for i, lock in enumerate(lock_names)}

    lines.append('  subgraph threads["Threads"]')
    for thread_id in graph.nodes:
        record = analysis.dump.thread(thread_id)
        state = record.state.value if record is not None else "UNKNOWN"
        name = f": {record.name}" if record is not None and record.name else ""
        css = "deadlock" if thread_id in deadlocked_threads else state.lower()
        lines.append(
            f'    {thread_ids[thread_id]}["Thread {_label(thread_id)}'
            f'{_label(name)} ({state})"]:::{css}'
        )
    lines.append("  end")

    lines.append('  subgraph locks["Locks"]')
    for lock in lock_names:
        css = ":::deadlock_lock" if lock in deadlocked_locks else ""
        lines.append(f'    {lock_ids[lock]}["Lock: {_label(lock)}"]{css}')
    lines.append("  end")

    for hub in analysis.hubs:
        for holder in hub.holders:
            if holder in thread_ids:
                lines.append(f"  {lock_ids[hub.lock]} -->|held by| {thread_ids[holder]}")
    for hub in analysis.hubs:
        for waiter in hub.waiters:
            if waiter in thread_ids:
                lines.append(f"  {thread_ids[waiter]} -.->|waiting for| {lock_ids[hub.lock]}")

    if analysis.deadlocks:
        lines.append('  DeadlockWarning["DEADLOCK DETECTED: circular wait between threads"]')
        lines.append("  style DeadlockWarning fill:#ff0000,stroke:#333,stroke-width:2px,color:#fff")

    lines.append("")
    for state, style in STATE_CLASSES.items():
        lines.append(f"  classDef {state.lower()} {style}")
    lines.append(f"  classDef deadlock {DEADLOCK_CLASS}")
    lines.append(f"  classDef deadlock_lock {DEADLOCK_LOCK_CLASS}")
    return "\n".join(lines) + "\n"
