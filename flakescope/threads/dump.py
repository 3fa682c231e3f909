"""Thread dump snapshot loading.

A thread dump is a JSON document::

    {"timestamp": "...",
     "threads": [{"id": 1, "name": "main", "state": "BLOCKED",
                  "stack_trace": [...], "locks_held": [...],
                  "locks_waiting": [...]}],
     "locks": [{"identity": "0x1", "owner_thread": 1,
                "waiting_threads": [2]}]}

Only ``threads`` and each thread's ``id`` are required.  Malformed thread
entries are kept with a placeholder id and UNKNOWN state so the rest of
the dump can still be analyzed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from flakescope.errors import EmptyInputError, MalformedInputError, MissingInputError


class ThreadState(str, Enum):
    """JVM thread state, with UNKNOWN for anything unrecognized."""

    RUNNABLE = "RUNNABLE"
    BLOCKED = "BLOCKED"
    WAITING = "WAITING"
    TIMED_WAITING = "TIMED_WAITING"
    NEW = "NEW"
    TERMINATED = "TERMINATED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ThreadRecord:
    """One thread of the snapshot."""

    id: str
    name: str = ""
    state: ThreadState = ThreadState.UNKNOWN
    locks_held: tuple[str, ...] = ()
    locks_waiting: tuple[str, ...] = ()
    stack_trace: tuple[str, ...] = ()

    @property
    def has_locks(self) -> bool:
        return bool(self.locks_held or self.locks_waiting)


@dataclass(frozen=True)
class LockRecord:
    """One entry of the explicit lock table."""

    identity: str
    owner_thread_id: str | None = None
    waiting_thread_ids: tuple[str, ...] = ()


@dataclass
class ThreadDump:
    """A parsed thread dump snapshot."""

    threads: list[ThreadRecord] = field(default_factory=list)
    locks: list[LockRecord] = field(default_factory=list)
    timestamp: str = ""
    warnings: list[str] = field(default_factory=list)

    def thread(self, thread_id: str) -> ThreadRecord | None:
        for record in self.threads:
            if record.id == thread_id:
                return record
        return None


def _normalize_id(value: Any) -> str | None:
    """Thread ids are compared as strings; bools and containers are invalid."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, str)):
        text = str(value).strip()
        return text or None
    return None


def _parse_state(value: Any) -> ThreadState | None:
    if not isinstance(value, str):
        return None
    key = value.strip().upper().replace(" ", "_").replace("-", "_")
    try:
        return ThreadState(key)
    except ValueError:
        return None


def _string_list(value: Any) -> tuple[str, ...] | None:
    """Ordered, de-duplicated strings, or None if *value* is not a list."""
    if value is None:
        return ()
    if not isinstance(value, list):
        return None
    seen: dict[str, None] = {}
    for item in value:
        if item is None or isinstance(item, (dict, list)):
            continue
        seen.setdefault(str(item), None)
    return tuple(seen)


def _parse_thread(
    entry: Any,
    index: int,
    unknown_counter: list[int],
    warnings: list[str],
) -> ThreadRecord:
    def placeholder_id() -> str:
        unknown_counter[0] += 1
        return f"unknown-{unknown_counter[0]}"

    if not isinstance(entry, dict):
        thread_id = placeholder_id()
        warnings.append(
            f"threads[{index}]: not an object, recorded as {thread_id}"
        )
        return ThreadRecord(id=thread_id)

    thread_id = _normalize_id(entry.get("id"))
    if thread_id is None:
        thread_id = placeholder_id()
        warnings.append(f"threads[{index}]: missing or invalid id, recorded as {thread_id}")

    state = ThreadState.UNKNOWN
    if "state" in entry:
        parsed = _parse_state(entry["state"])
        if parsed is None:
            warnings.append(
                f"thread {thread_id}: unknown state {entry['state']!r}, using UNKNOWN"
            )
        else:
            state = parsed

    lists: dict[str, tuple[str, ...]] = {}
    for key in ("locks_held", "locks_waiting", "stack_trace"):
        values = _string_list(entry.get(key))
        if values is None:
            warnings.append(f"thread {thread_id}: {key} is not a list, ignored")
            values = ()
        lists[key] = values

    name = entry.get("name")
    return ThreadRecord(
        id=thread_id,
        name=str(name) if name is not None else "",
        state=state,
        locks_held=lists["locks_held"],
        locks_waiting=lists["locks_waiting"],
        stack_trace=lists["stack_trace"],
    )


def _parse_lock(entry: Any, index: int, warnings: list[str]) -> LockRecord | None:
    if not isinstance(entry, dict):
        warnings.append(f"locks[{index}]: not an object, ignored")
        return None
    identity = entry.get("identity")
    if identity is None or isinstance(identity, (dict, list)) or not str(identity).strip():
        warnings.append(f"locks[{index}]: missing identity, ignored")
        return None

    waiting = _string_list(entry.get("waiting_threads"))
    if waiting is None:
        warnings.append(f"lock {identity}: waiting_threads is not a list, ignored")
        waiting = ()
    return LockRecord(
        identity=str(identity),
        owner_thread_id=_normalize_id(entry.get("owner_thread")),
        waiting_thread_ids=waiting,
    )


def parse_thread_dump(data: str | dict[str, Any], source: str | Path | None = None) -> ThreadDump:
    """Parse a thread dump document.

    Args:
        data: JSON text or an already decoded document.
        source: Path used in error messages.

    Returns:
        The parsed ThreadDump; recoverable anomalies are in ``warnings``.

    Raises:
        MalformedInputError: If the JSON is invalid or ``threads`` is not
            an array.
    """
    label = str(source) if source is not None else "<thread dump>"
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedInputError(
                source, f"Invalid thread dump JSON in {label}: {e}"
            ) from e

    if not isinstance(data, dict) or not isinstance(data.get("threads"), list):
        raise MalformedInputError(
            source, f"Thread dump {label} has no 'threads' array",
        )

    dump = ThreadDump()
    timestamp = data.get("timestamp")
    dump.timestamp = str(timestamp) if timestamp is not None else ""

    unknown_counter = [0]
    seen_ids: set[str] = set()
    for index, entry in enumerate(data["threads"]):
        record = _parse_thread(entry, index, unknown_counter, dump.warnings)
        if record.id in seen_ids:
            dump.warnings.append(f"threads[{index}]: duplicate id {record.id}, ignored")
            continue
        seen_ids.add(record.id)
        dump.threads.append(record)

    locks = data.get("locks")
    if locks is None:
        return dump
    if not isinstance(locks, list):
        dump.warnings.append("'locks' is not an array, ignored")
        return dump
    for index, entry in enumerate(locks):
        lock = _parse_lock(entry, index, dump.warnings)
        if lock is not None:
            dump.locks.append(lock)
    return dump


def load_thread_dump(path: str | Path) -> ThreadDump:
    """Read and parse a thread dump file.

    Raises:
        MissingInputError: If the file does not exist.
        EmptyInputError: If the file is empty.
        MalformedInputError: If the document lacks a ``threads`` array.
    """
    dump_path = Path(path)
    if not dump_path.is_file():
        raise MissingInputError(dump_path, "expected a thread dump JSON file")
    text = dump_path.read_text(encoding="utf-8", errors="replace")
    if not text.strip():
        raise EmptyInputError(dump_path, f"Thread dump is empty: {dump_path}")
    return parse_thread_dump(text, dump_path)
