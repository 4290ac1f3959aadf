"""Command history with persistence and searching."""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from os import PathLike

DEFAULT_MAX_SIZE = 1000

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class HistoryEntry:
    """One remembered command line."""

    index: int
    command: str
    timestamp: int


def _parse_timestamp(text: str) -> int | None:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else None


class History:
    """An ordered, size-limited list of executed commands.

    Every entry gets an increasing index starting at 1; *clock* supplies
    timestamps in seconds.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_size = max_size
        self._clock = clock
        self._entries: list[HistoryEntry] = []
        self._next_index = 1

    def _now(self) -> int:
        return int(self._clock())

    def _append(self, command: str, timestamp: int) -> HistoryEntry:
        entry = HistoryEntry(self._next_index, command, timestamp)
        self._next_index += 1
        self._entries.append(entry)
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)

    @property
    def entries(self) -> list[HistoryEntry]:
        """All entries, oldest first."""
        return list(self._entries)

    def add(self, command: str) -> None:
        """Remember *command*, skipping empty lines and immediate repeats."""
        if not command:
            return
        if self._entries and self._entries[-1].command == command:
            return
        self._append(command, self._now())
        if len(self._entries) > self.max_size:
            del self._entries[0]

    def get(self, index: int) -> HistoryEntry | None:
        """The entry with the given history index, if it is still kept."""
        return next((e for e in self._entries if e.index == index), None)

    def recent(self, count: int) -> list[HistoryEntry]:
        """The last *count* entries, oldest first."""
        count = min(max(count, 0), len(self._entries))
        if count == 0:
            return []
        return self._entries[-count:]

    def clear(self) -> None:
        """Forget everything and restart numbering at 1."""
        self._entries.clear()
        self._next_index = 1

    def load(self, path: str | PathLike[str]) -> None:
        """Replace the history with the contents of *path*.

        Lines are either ``<timestamp> <command>`` or a bare command, which
        is stamped with the current time.
        """
        with open(path, encoding="utf-8") as handle:
            lines = handle.read().split("\n")
        self.clear()
        for line in lines:
            if not line:
                continue
            head, sep, rest = line.partition(" ")
            timestamp = _parse_timestamp(head) if sep else None
            if timestamp is None:
                self._append(line, self._now())
            else:
                self._append(rest, timestamp)

    def save(self, path: str | PathLike[str]) -> None:
        """Write the history to *path* as ``<timestamp> <command>`` lines."""
        with open(path, "w", encoding="utf-8", newline="") as handle:
            for entry in self._entries:
                timestamp = entry.timestamp if entry.timestamp > 0 else self._now()
                handle.write(f"{timestamp} {entry.command}\n")

    def search(self, pattern: str) -> list[HistoryEntry]:
        """Entries matching the regular expression *pattern*.

        An invalid expression is treated as a plain substring.
        """
        try:
            regex = re.compile(pattern)
        except re.error:
            return [e for e in self._entries if pattern in e.command]
        return [e for e in self._entries if regex.search(e.command)]