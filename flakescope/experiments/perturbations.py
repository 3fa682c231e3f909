"""Default experiment factors and their perturbation settings.

Every ``(category, level)`` pair maps to a pure function that describes
what an external executor must apply to reproduce that level.  Nothing
here touches the machine; applying the settings is the executor's job.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from functools import partial
from typing import Any

from flakescope.experiments.pairwise import Configuration

Settings = dict[str, Any]

# Default category table; "none" is the implicit baseline of each
DEFAULT_CATEGORIES: dict[str, list[str]] = {
    "cpu": ["low", "medium", "high"],
    "disk": ["slow", "full"],
    "io": ["throttled", "interrupted"],
    "memory": ["low", "medium", "high"],
    "network": ["latency", "loss", "disconnected"],
    "repo": ["missing", "corrupted", "intermittent"],
    "temp": ["space", "permissions"],
    "thread": ["race", "deadlock", "isolation"],
}


def cpu_load(intensity_percent: int) -> Settings:
    return {"action": "cpu_load", "intensity_percent": intensity_percent}


def memory_pressure(percentage: int) -> Settings:
    return {"action": "memory_pressure", "percentage": percentage}


def slow_disk(read_kbps: int, write_kbps: int) -> Settings:
    return {"action": "slow_disk", "read_kbps": read_kbps, "write_kbps": write_kbps}


def disk_space(free_space_mb: int) -> Settings:
    return {"action": "disk_space", "free_space_mb": free_space_mb}


def network_latency(
    target: str,
    latency_ms: int,
    jitter_ms: int = 20,
    packet_loss_percent: int = 0,
) -> Settings:
    return {
        "action": "network_latency",
        "target": target,
        "latency_ms": latency_ms,
        "jitter_ms": jitter_ms,
        "packet_loss_percent": packet_loss_percent,
    }


def io_throttling(read_kbps: int, write_kbps: int) -> Settings:
    return {"action": "io_throttling", "read_kbps": read_kbps, "write_kbps": write_kbps}


def thread_scenario(scenario: str) -> Settings:
    return {"action": "thread_scenario", "scenario": scenario}


def repository_issue(issue: str) -> Settings:
    return {"action": "repository_issue", "issue": issue}


def temp_dir_issue(issue: str) -> Settings:
    return {"action": "temp_dir_issue", "issue": issue}


PERTURBATIONS: dict[tuple[str, str], Callable[[], Settings]] = {
    ("cpu", "low"): partial(cpu_load, 30),
    ("cpu", "medium"): partial(cpu_load, 60),
    ("cpu", "high"): partial(cpu_load, 90),
    ("memory", "low"): partial(memory_pressure, 50),
    ("memory", "medium"): partial(memory_pressure, 75),
    ("memory", "high"): partial(memory_pressure, 90),
    ("disk", "slow"): partial(slow_disk, 1024, 1024),
    ("disk", "full"): partial(disk_space, 50),
    ("network", "latency"): partial(network_latency, "example.com", 300),
    ("network", "loss"): partial(network_latency, "example.com", 50, 10, 20),
    ("network", "disconnected"): partial(network_latency, "example.com", 2000, 50, 80),
    ("thread", "race"): partial(thread_scenario, "race_condition"),
    ("thread", "deadlock"): partial(thread_scenario, "deadlock"),
    ("thread", "isolation"): partial(thread_scenario, "test_isolation"),
    ("io", "throttled"): partial(io_throttling, 512, 512),
    ("io", "interrupted"): partial(io_throttling, 128, 128),
    ("repo", "missing"): partial(repository_issue, "missing"),
    ("repo", "corrupted"): partial(repository_issue, "corrupted"),
    ("repo", "intermittent"): partial(repository_issue, "intermittent"),
    ("temp", "space"): partial(temp_dir_issue, "space"),
    ("temp", "permissions"): partial(temp_dir_issue, "permissions"),
}


def settings_for(category: str, level: str) -> Settings | None:
    """Settings for one perturbation, or None if no handler exists."""
    handler = PERTURBATIONS.get((category, level))
    if handler is None:
        return None
    return handler()


def build_plan(configurations: Sequence[Configuration]) -> dict[str, Any]:
    """Describe every configuration as executor settings.

    Perturbations without a handler are listed under ``warnings`` and
    left out of the configuration's settings.

    Returns:
        A JSON-compatible dict with ``configurations`` and ``warnings``.
    """
    entries: list[dict[str, Any]] = []
    warnings: list[str] = []
    for config in configurations:
        applied: list[dict[str, Any]] = []
        for category, level in config.active_levels:
            settings = settings_for(category, level.name)
            if settings is None:
                warnings.append(
                    f"configuration {config.id}: no perturbation handler for "
                    f"{category}={level.name}"
                )
                continue
            applied.append({
                "category": category,
                "level": level.name,
                "settings": settings,
            })
        entries.append({
            "id": config.id,
            "levels": {name: lvl.name for name, lvl in config.levels},
            "perturbations": applied,
        })
    return {"configurations": entries, "warnings": warnings}
