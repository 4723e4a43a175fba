"""
Persistent stores for accepted emails and confirmed domains.

This module provides the file-backed state the harvester keeps between runs:

- ``OutputLog``: append-only JSON-lines log of accepted ``EmailRecord``s.
  It is the canonical set of accepted emails.
- ``DedupeIndex``: in-memory set of emails already in the output log,
  rebuilt at startup by replaying it. It has no file of its own.
- ``DomainCache``: set of domains known to have nameservers, persisted
  one per line. Append-only, never pruned.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Set, Union

# Initialize logger
log = logging.getLogger(__name__)

PathLike = Union[str, Path]


class CacheError(Exception):
    """Exception raised for persistent store errors."""
    pass


class CacheWriteError(CacheError):
    """Raised when a record cannot be durably appended."""
    pass


def _append_line(path: Path, line: str) -> None:
    """Append one line and make it durable before returning."""
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        raise CacheWriteError(f"Failed to append to {path}: {e}") from e


def _read_lines(path: Path) -> Iterator[str]:
    """Yield non-empty lines of ``path``; a missing file yields nothing."""
    if not path.exists():
        return
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for raw in f:
            line = raw.rstrip("\r\n")
            if line:
                yield line


@dataclass(frozen=True)
class EmailRecord:
    """One accepted email address as stored in the output log."""

    email: str

    def to_json(self) -> str:
        return json.dumps({"Email": self.email}, separators=(",", ":"))

    @classmethod
    def from_json(cls, line: str) -> "EmailRecord":
        """
        Parse one output log line.

        Raises:
            ValueError: If the line is not a JSON object with an "Email" string
        """
        data = json.loads(line)
        if not isinstance(data, dict) or not isinstance(data.get("Email"), str):
            raise ValueError(f"not an email record: {line!r}")
        return cls(data["Email"])


class OutputLog:
    """Append-only log of accepted emails, one JSON object per line."""

    def __init__(self, path: PathLike):
        self.path = Path(path)

    def append(self, record: EmailRecord) -> None:
        """
        Durably append a record.

        Raises:
            CacheWriteError: If the write fails
        """
        _append_line(self.path, record.to_json())

    def read_all(self) -> Iterator[EmailRecord]:
        """Yield every parseable record; malformed lines are logged and skipped."""
        for lineno, line in enumerate(_read_lines(self.path), 1):
            try:
                yield EmailRecord.from_json(line)
            except ValueError as e:
                log.warning("[output] Skipping malformed line %d in %s: %s",
                            lineno, self.path, e)


class DedupeIndex:
    """In-memory set of emails already present in the output log."""

    def __init__(self, emails: Iterable[str] = ()):
        self._emails: Set[str] = set(emails)
        self.lock = threading.RLock()

    @classmethod
    def from_output_log(cls, output: OutputLog) -> "DedupeIndex":
        index = cls(record.email for record in output.read_all())
        log.info("[dedupe] Seeded %d emails from %s", len(index), output.path)
        return index

    def seen(self, email: str) -> bool:
        with self.lock:
            return email in self._emails

    def record(self, email: str) -> None:
        with self.lock:
            self._emails.add(email)

    def __contains__(self, email: object) -> bool:
        with self.lock:
            return email in self._emails

    def __len__(self) -> int:
        with self.lock:
            return len(self._emails)


class DomainCache:
    """
    Durable set of domains confirmed to have at least one nameserver.

    Lookups are served from memory. ``add`` updates memory first and then
    appends the domain to the domains log, so a confirmed domain is usable
    for the rest of the run even if the disk write fails.
    """

    def __init__(self, path: PathLike):
        """
        Load the domains log into memory.

        Args:
            path: Domains log location; created on first ``add`` if missing
        """
        self.path = Path(path)
        self._domains: Set[str] = set(_read_lines(self.path))
        self.lock = threading.RLock()
        log.info("[domains] Loaded %d domains from %s", len(self._domains), self.path)

    def __contains__(self, domain: object) -> bool:
        with self.lock:
            return domain in self._domains

    def __len__(self) -> int:
        with self.lock:
            return len(self._domains)

    def add(self, domain: str) -> bool:
        """
        Add a confirmed domain.

        Returns:
            True if the domain was new, False if it was already cached

        Raises:
            CacheWriteError: If the domain could not be appended to disk
        """
        with self.lock:
            if domain in self._domains:
                return False
            self._domains.add(domain)
            _append_line(self.path, domain)
            log.debug("[domains] Cached %s", domain)
            return True

    def domains(self) -> Set[str]:
        with self.lock:
            return set(self._domains)
