"""Run log parser.

Turns the raw console output of one test run into per-test outcome
records.  Three log dialects are accepted without configuration:

* bracketed Maven output (``[INFO]``, ``[ERROR]``, ``[WARNING]`` prefixes),
* timestamp-prefixed output (``[HH:MM:SS]`` optionally followed by a level),
* unstructured summaries (``Failures:`` / ``Errors:`` sections and a
  ``BUILD FAILURE`` marker).

Each line is normalized by stripping the dialect prefix, then matched
against a small set of independent anchors: per-class summary lines,
per-test failure blocks, result sections and the build marker.  Lines that
match nothing are ignored, so malformed logs never raise.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum


class Outcome(str, Enum):
    """Outcome of a single test in a single run."""

    PASS = "PASS"
    FAIL = "FAIL"
    ERROR = "ERROR"
    SKIP = "SKIP"


FAILING_OUTCOMES = frozenset({Outcome.FAIL, Outcome.ERROR})

# Separator between the exception line and the top stack frame
SIGNATURE_SEPARATOR = " | "

_LEVELS = r"INFO|ERROR|WARNING|WARN|DEBUG|FATAL|TRACE"

_TIMESTAMP_PREFIX = re.compile(r"^\[\d{1,2}:\d{2}:\d{2}(?:[.,]\d+)?\]\s*")
_BRACKET_LEVEL = re.compile(rf"^\[(?:{_LEVELS})\] ?")
_ANY_LEVEL = re.compile(rf"^(?:\[(?:{_LEVELS})\]|(?:{_LEVELS})(?=[\s:]):?) ?")

_RUNNING = re.compile(r"^Running\s+([\w.$]+)\s*$")
_SUMMARY = re.compile(
    r"Tests run:\s*(\d+),\s*Failures:\s*(\d+),\s*Errors:\s*(\d+),"
    r"\s*Skipped:\s*(\d+)"
    r"(?:,\s*(?:Flakes:\s*\d+,\s*)?Time elapsed:\s*([\d.,]+)\s*s(?:ec)?)?"
    r"(?:.*?\bin\s+([\w.$]+))?"
)
_FAILURE_HEADER = re.compile(
    r"^(?P<name>\S+?)(?:\((?P<cls>[\w.$]+)\))?\s+(?:--?\s+)?"
    r"(?:Time elapsed:\s*(?P<secs>[\d.,]+)\s*s(?:ec)?\s+)?"
    r"<<<\s*(?P<kind>FAILURE|ERROR)!"
)
_GRADLE_RESULT = re.compile(
    r"^([\w.$]+)\s+>\s+(.+?)\s+(PASSED|FAILED|SKIPPED)\s*$"
)
_RESULTS = re.compile(r"^Results\s*:?\s*$")
_SECTION = re.compile(r"^(Failures|Errors|Failed tests|Tests in error)\s*:\s*$")
_OLD_ENTRY = re.compile(r"^([\w$]+)\(([\w.$]+)\)(?::\s*(.*))?$")
_ENTRY = re.compile(r"^([\w$]+(?:\.[\w$\[\]]+)+?)(?::(\d+))?(?:\s+(.*))?$")
_BUILD = re.compile(r"\bBUILD (SUCCESS|SUCCESSFUL|FAILURE|FAILED)\b")

_SECTION_OUTCOMES = {
    "Failures": Outcome.FAIL,
    "Failed tests": Outcome.FAIL,
    "Errors": Outcome.ERROR,
    "Tests in error": Outcome.ERROR,
}


@dataclass(frozen=True)
class RunRecord:
    """Outcome of one test in one run.

    ``inferred`` is True when the record was derived from a per-class
    summary instead of being named explicitly in the log.
    """

    run_id: str
    test_name: str
    outcome: Outcome
    duration_ms: int = 0
    error_signature: str = ""
    inferred: bool = False


@dataclass(frozen=True)
class ClassSummary:
    """A per-class ``Tests run:`` summary line."""

    class_name: str
    tests_run: int
    failures: int
    errors: int
    skipped: int
    duration_ms: int = 0

    @property
    def all_skipped(self) -> bool:
        """True if the class ran no test to completion."""
        return self.tests_run > 0 and self.skipped >= self.tests_run


@dataclass
class IngestResult:
    """Structured view of one run log.

    ``has_data`` is the explicit "no data" signal: a log that parses
    without yielding any record is still a successful parse.
    """

    run_id: str
    records: list[RunRecord] = field(default_factory=list)
    class_summaries: list[ClassSummary] = field(default_factory=list)
    totals: ClassSummary | None = None
    build_status: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return len(self.records) > 0

    @property
    def failing_records(self) -> list[RunRecord]:
        return [r for r in self.records if r.outcome in FAILING_OUTCOMES]

    def class_summary_for(self, class_name: str) -> ClassSummary | None:
        """Find the summary of *class_name*, allowing simple-name matches."""
        for summary in self.class_summaries:
            if same_test_name(summary.class_name, class_name):
                return summary
        return None


@dataclass
class _PendingFailure:
    """A failure block whose signature lines are still being read."""

    name: str
    outcome: Outcome
    duration_ms: int
    exception: str = ""
    frame: str = ""

    @property
    def signature(self) -> str:
        if self.exception and self.frame:
            return self.exception + SIGNATURE_SEPARATOR + self.frame
        return self.exception or self.frame


def same_test_name(a: str, b: str) -> bool:
    """True if two dotted names refer to the same test or class.

    Maven prints fully qualified names in failure blocks but simple class
    names in the results section, so a suffix match on a dot boundary is
    accepted.
    """
    if a == b:
        return True
    return a.endswith("." + b) or b.endswith("." + a)


def class_of_test(test_name: str) -> str:
    """Return the class part of a ``Class.method`` test name."""
    if "." not in test_name:
        return ""
    return test_name.rsplit(".", 1)[0]


def _normalize(line: str) -> str:
    """Strip the timestamp or level prefix of any supported dialect."""
    text = line.rstrip()
    m = _TIMESTAMP_PREFIX.match(text)
    if m:
        return _ANY_LEVEL.sub("", text[m.end():], count=1)
    return _BRACKET_LEVEL.sub("", text, count=1)


def _seconds_to_ms(value: str | None) -> int:
    if not value:
        return 0
    try:
        return int(round(float(value.replace(",", ".")) * 1000))
    except ValueError:
        return 0


def _strip_parens(method: str) -> str:
    return method[:-2] if method.endswith("()") else method


def _is_anchor(content: str) -> bool:
    return bool(
        _RUNNING.match(content)
        or _SUMMARY.search(content)
        or _FAILURE_HEADER.match(content)
        or _GRADLE_RESULT.match(content)
        or _RESULTS.match(content)
        or _SECTION.match(content)
        or _BUILD.search(content)
    )


class _RecordTable:
    """Ordered per-test records of one run, merged by test name."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._records: dict[str, RunRecord] = {}

    def find(self, name: str) -> str | None:
        if name in self._records:
            return name
        for key in self._records:
            if same_test_name(key, name):
                return key
        return None

    def add(
        self,
        name: str,
        outcome: Outcome,
        duration_ms: int = 0,
        signature: str = "",
    ) -> None:
        """Add a record, or enrich the existing one for the same test.

        The first evidence for a test keeps its outcome; later evidence
        only fills in a missing signature or duration.
        """
        key = self.find(name)
        if key is None:
            self._records[name] = RunRecord(
                run_id=self.run_id,
                test_name=name,
                outcome=outcome,
                duration_ms=duration_ms,
                error_signature=signature,
            )
            return

        existing = self._records[key]
        updates: dict[str, object] = {}
        if not existing.error_signature and signature:
            updates["error_signature"] = signature
        if not existing.duration_ms and duration_ms:
            updates["duration_ms"] = duration_ms
        if updates:
            self._records[key] = replace(existing, **updates)

    def values(self) -> list[RunRecord]:
        return list(self._records.values())


def _qualify(name: str, class_names: list[str]) -> str:
    """Expand a simple ``Class.method`` name with a known qualified class."""
    cls = class_of_test(name)
    if not cls:
        return name
    method = name[len(cls) + 1:]
    for qualified in class_names:
        if qualified != cls and qualified.endswith("." + cls):
            return f"{qualified}.{method}"
    return name


def parse_run_log(text: str | list[str], run_id: str) -> IngestResult:
    """Parse one run's console log into per-test records.

    Per-test failure evidence always wins over aggregate counts: when a
    class summary disagrees with the failure blocks found for that class,
    the blocks are used and the disagreement is noted in ``warnings``.

    Args:
        text: Raw log text, or a list of lines.
        run_id: Identifier stamped on every record of this run.

    Returns:
        An :class:`IngestResult`; check ``has_data`` for the empty case.
    """
    lines = text.splitlines() if isinstance(text, str) else list(text)

    result = IngestResult(run_id=run_id)
    table = _RecordTable(run_id)
    section_entries: list[tuple[str, Outcome, str]] = []

    running_class: str | None = None
    in_results = False
    section: Outcome | None = None
    pending: _PendingFailure | None = None

    def _flush_pending() -> None:
        nonlocal pending
        if pending is not None:
            table.add(
                pending.name, pending.outcome, pending.duration_ms,
                pending.signature,
            )
            pending = None

    for raw in lines:
        content = _normalize(raw).strip()

        # Signature lines of an open failure block
        if pending is not None:
            if not content:
                _flush_pending()
                continue
            if not _is_anchor(content):
                if content.startswith("at "):
                    if not pending.frame:
                        pending.frame = content[3:].strip()
                elif not pending.exception and not content.startswith("..."):
                    pending.exception = content
                continue
            _flush_pending()

        # Entries of a Failures:/Errors: section
        if section is not None:
            if not content or _is_anchor(content):
                section = None
            else:
                entry = _parse_section_entry(content)
                if entry is not None:
                    name, message = entry
                    section_entries.append((name, section, message))
                    continue
                if content.startswith("Run ") or content.startswith("at "):
                    continue
                section = None
            if not content:
                continue

        if not content:
            continue

        m = _BUILD.search(content)
        if m:
            result.build_status = (
                "SUCCESS" if m.group(1).startswith("SUCCESS") else "FAILURE"
            )
            continue

        m = _RUNNING.match(content)
        if m:
            running_class = m.group(1)
            continue

        if _RESULTS.match(content):
            in_results = True
            running_class = None
            continue

        m = _SECTION.match(content)
        if m:
            section = _SECTION_OUTCOMES[m.group(1)]
            continue

        m = _SUMMARY.search(content)
        if m:
            class_name = m.group(6)
            if class_name is None and running_class and not in_results:
                class_name = running_class
            summary = ClassSummary(
                class_name=class_name or "",
                tests_run=int(m.group(1)),
                failures=int(m.group(2)),
                errors=int(m.group(3)),
                skipped=int(m.group(4)),
                duration_ms=_seconds_to_ms(m.group(5)),
            )
            if class_name:
                result.class_summaries.append(summary)
            else:
                result.totals = summary
            running_class = None
            continue

        m = _FAILURE_HEADER.match(content)
        if m:
            name = _strip_parens(m.group("name"))
            if m.group("cls"):
                name = f"{m.group('cls')}.{name}"
            outcome = Outcome.ERROR if m.group("kind") == "ERROR" else Outcome.FAIL
            pending = _PendingFailure(
                name=name,
                outcome=outcome,
                duration_ms=_seconds_to_ms(m.group("secs")),
            )
            continue

        m = _GRADLE_RESULT.match(content)
        if m:
            name = f"{m.group(1)}.{_strip_parens(m.group(2))}"
            status = m.group(3)
            if status == "FAILED":
                pending = _PendingFailure(
                    name=name, outcome=Outcome.FAIL, duration_ms=0,
                )
            elif status == "SKIPPED":
                table.add(name, Outcome.SKIP)
            else:
                table.add(name, Outcome.PASS)
            continue

    _flush_pending()

    class_names = [s.class_name for s in result.class_summaries]
    for name, outcome, message in section_entries:
        table.add(_qualify(name, class_names), outcome, 0, message)

    result.records = table.values()
    _reconcile(result)
    return result


def _parse_section_entry(content: str) -> tuple[str, str] | None:
    """Parse one ``Failures:`` / ``Errors:`` section entry.

    Returns:
        ``(test_name, message)`` or None if the line is not an entry.
    """
    m = _OLD_ENTRY.match(content)
    if m:
        return f"{m.group(2)}.{m.group(1)}", (m.group(3) or "").strip()

    m = _ENTRY.match(content)
    if m:
        message = (m.group(3) or "").strip()
        if message.startswith("»"):
            message = message[1:].strip()
        return _strip_parens(m.group(1)), message
    return None


def _reconcile(result: IngestResult) -> None:
    """Compare aggregate counts with per-test evidence and note mismatches."""
    failing = result.failing_records

    for summary in result.class_summaries:
        expected = summary.failures + summary.errors
        found = sum(
            1 for r in failing
            if same_test_name(class_of_test(r.test_name), summary.class_name)
        )
        if expected != found:
            result.warnings.append(
                f"{summary.class_name}: summary reports {expected} failing "
                f"test(s) but {found} were found in failure blocks; "
                f"using per-test evidence"
            )

    if result.totals is not None:
        expected = result.totals.failures + result.totals.errors
        if expected != len(failing):
            result.warnings.append(
                f"run totals report {expected} failing test(s) but "
                f"{len(failing)} were found; using per-test evidence"
            )

    if result.build_status == "FAILURE" and not failing:
        result.warnings.append(
            "build failed but no per-test failures could be parsed"
        )
    elif result.build_status == "SUCCESS" and failing:
        result.warnings.append(
            f"build succeeded but {len(failing)} per-test failure(s) "
            f"were found"
        )
