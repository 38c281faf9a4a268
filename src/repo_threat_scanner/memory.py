"""Process memory sampling and checkpoint monitoring.

Usage is the resident set size of this process as reported by psutil.
"""

import time
from dataclasses import dataclass, field
from typing import Callable

import psutil

from .models import MemoryInfo

DEFAULT_MEMORY_LIMIT = 100 * 1024 * 1024

MemorySampler = Callable[[], MemoryInfo]


def get_memory_usage() -> MemoryInfo:
    """Sample current process memory."""
    used = psutil.Process().memory_info().rss
    total = psutil.virtual_memory().total
    percentage = round(used / total * 100, 2) if total else 0.0
    return MemoryInfo(used=used, total=total, percentage=percentage)


def check_memory_limit(current: MemoryInfo, max_usage: int) -> MemoryInfo:
    """Return a copy of ``current`` with ``is_over_limit`` set against ``max_usage``."""
    return current.model_copy(update={"is_over_limit": current.used > max_usage})


@dataclass(frozen=True)
class MemoryCheckpoint:
    name: str
    memory: MemoryInfo
    timestamp: float


@dataclass
class MemoryReport:
    start: MemoryInfo
    current: MemoryInfo
    peak: MemoryInfo
    checkpoints: list[MemoryCheckpoint] = field(default_factory=list)
    is_over_limit: bool = False
    limit_breached: bool = False


class MemoryMonitor:
    """Records named memory checkpoints and tracks start, current and peak usage.

    ``is_over_limit()`` answers from the most recent sample, so callers can
    check the ceiling as often as they like without sampling again. Call
    ``refresh()`` or ``checkpoint()`` to take a new sample.

    The sampler is injectable; tests pass a function that replays a fixed
    usage sequence.
    """

    def __init__(self, max_memory: int = DEFAULT_MEMORY_LIMIT, sampler: MemorySampler = get_memory_usage):
        self.max_memory = max_memory
        self._sampler = sampler
        self._checkpoints: list[MemoryCheckpoint] = []
        self._start = self._sample()
        self._current = self._start
        self._peak = self._start
        self._checkpoints.append(MemoryCheckpoint("start", self._start, time.time()))

    def _sample(self) -> MemoryInfo:
        return check_memory_limit(self._sampler(), self.max_memory)

    def _record(self, memory: MemoryInfo) -> None:
        self._current = memory
        if memory.used > self._peak.used:
            self._peak = memory

    def checkpoint(self, name: str) -> MemoryInfo:
        """Sample memory and store it under ``name``."""
        memory = self._sample()
        self._record(memory)
        self._checkpoints.append(MemoryCheckpoint(name, memory, time.time()))
        return memory

    def refresh(self) -> MemoryInfo:
        """Sample memory without storing a named checkpoint."""
        memory = self._sample()
        self._record(memory)
        return memory

    def is_over_limit(self) -> bool:
        return self._current.used > self.max_memory

    @property
    def peak(self) -> MemoryInfo:
        return self._peak

    def get_report(self) -> MemoryReport:
        return MemoryReport(
            start=self._start,
            current=self._current,
            peak=self._peak,
            checkpoints=list(self._checkpoints),
            is_over_limit=self.is_over_limit(),
            limit_breached=self._peak.used > self.max_memory,
        )
