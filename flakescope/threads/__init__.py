"""Thread dump analysis: wait-for graphs, deadlock cycles and lock contention."""

from flakescope.threads.diagram import render_mermaid
from flakescope.threads.dump import (
    LockRecord,
    ThreadDump,
    ThreadRecord,
    ThreadState,
    load_thread_dump,
    parse_thread_dump,
)
from flakescope.threads.wait_for import (
    ContentionHub,
    DeadlockCycle,
    ThreadDumpAnalysis,
    WaitForGraph,
    analyze_thread_dump,
    build_wait_for_graph,
    detect_deadlocks,
)

__all__ = [
    "ContentionHub",
    "DeadlockCycle",
    "LockRecord",
    "ThreadDump",
    "ThreadDumpAnalysis",
    "ThreadRecord",
    "ThreadState",
    "WaitForGraph",
    "analyze_thread_dump",
    "build_wait_for_graph",
    "detect_deadlocks",
    "load_thread_dump",
    "parse_thread_dump",
    "render_mermaid",
]
