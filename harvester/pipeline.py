"""
Resumable extraction pipeline.

Seeds the dedupe index and domain cache from disk, opens the input at the
checkpointed byte offset and then, one line at a time: extracts candidates,
drops duplicates, validates syntax and domain, appends accepted emails to
the output log and persists the new offset. The checkpoint is only written
after the line's emails are on disk, so it never claims more progress than
the output log records.
"""

import enum
import logging
import time
from collections import Counter
from pathlib import Path
from typing import BinaryIO, Optional, Union

from harvester.cache import CacheWriteError, DedupeIndex, DomainCache, EmailRecord, OutputLog
from harvester.checkpoint import Checkpoint, CheckpointError
from harvester.config import Config, DEFAULT_EMAIL_PATTERN
from harvester.email_extractor import EmailExtractor
from harvester.validator import DomainValidator, NsLookup, SyntaxValidator, dns_lookup_ns

# Initialize logger
log = logging.getLogger(__name__)

PathLike = Union[str, Path]


class PipelineError(Exception):
    """Exception raised for unrecoverable pipeline failures."""
    pass


class PipelineState(enum.Enum):
    INIT = "init"
    SEEDING = "seeding"
    SCANNING = "scanning"
    DRAINING = "draining"
    DONE = "done"
    FATAL = "fatal"


class Pipeline:
    """Single-pass, crash-resumable email harvesting over one input file."""

    def __init__(self,
                 input_file: PathLike,
                 output_file: PathLike,
                 domains_file: PathLike,
                 persistent_file: PathLike,
                 pattern: str = DEFAULT_EMAIL_PATTERN,
                 lookup: NsLookup = dns_lookup_ns,
                 dns_timeout: float = 5.0,
                 strict_checkpoint: bool = True):
        """
        Args:
            input_file: Newline-delimited text to scan; only ever read
            output_file: JSON-lines log of accepted emails
            domains_file: Log of domains confirmed by DNS
            persistent_file: Checkpoint file holding the consumed byte count
            pattern: Extraction regex
            lookup: Nameserver lookup used on domain cache misses
            dns_timeout: Upper bound for one lookup in seconds
            strict_checkpoint: Stop without advancing the checkpoint when an
                accepted email cannot be written
        """
        self.input_file = Path(input_file)
        self.output_file = Path(output_file)
        self.domains_file = Path(domains_file)
        self.checkpoint = Checkpoint(persistent_file)
        self.extractor = EmailExtractor(pattern)
        self.syntax = SyntaxValidator()
        self.lookup = lookup
        self.dns_timeout = dns_timeout
        self.strict_checkpoint = strict_checkpoint

        self.state = PipelineState.INIT
        self.stats: Counter = Counter()

        # populated while seeding
        self.output: Optional[OutputLog] = None
        self.dedupe: Optional[DedupeIndex] = None
        self.domains: Optional[DomainCache] = None
        self.domain_validator: Optional[DomainValidator] = None

    @classmethod
    def from_config(cls, cfg: Config, lookup: NsLookup = dns_lookup_ns) -> "Pipeline":
        return cls(
            input_file=cfg.input_file,
            output_file=cfg.output_file,
            domains_file=cfg.domains_file,
            persistent_file=cfg.persistent_file,
            pattern=cfg.email_pattern,
            lookup=lookup,
            dns_timeout=cfg.dns_timeout,
            strict_checkpoint=cfg.strict_checkpoint,
        )

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _fail(self, message: str) -> PipelineError:
        self.state = PipelineState.FATAL
        log.error(message)
        return PipelineError(message)

    def _seed(self) -> None:
        self.state = PipelineState.SEEDING
        self.output = OutputLog(self.output_file)
        try:
            self.dedupe = DedupeIndex.from_output_log(self.output)
            self.domains = DomainCache(self.domains_file)
        except OSError as e:
            raise self._fail(f"Cannot load state files: {e}") from e
        self.domain_validator = DomainValidator(self.domains, self.lookup, self.dns_timeout)
        self.checkpoint.load()

    def _open_input(self) -> BinaryIO:
        try:
            handle = open(self.input_file, "rb")
        except OSError as e:
            raise self._fail(f"Cannot open input {self.input_file}: {e}") from e

        try:
            size = self.input_file.stat().st_size
            offset = self.checkpoint.clamp(size)
            handle.seek(offset)
        except OSError as e:
            handle.close()
            raise self._fail(f"Cannot seek input {self.input_file}: {e}") from e
        log.info("Scanning %s from byte %d of %d", self.input_file, offset, size)
        return handle

    def run(self, max_lines: Optional[int] = None) -> Counter:
        """
        Run the pipeline until end of input (or ``max_lines`` lines).

        Args:
            max_lines: Stop cleanly after this many lines; None for no limit

        Returns:
            Counter of run statistics

        Raises:
            PipelineError: On an unrecoverable I/O failure
        """
        start_time = time.time()
        self.stats = Counter()
        self._seed()

        handle = self._open_input()
        self.state = PipelineState.SCANNING
        try:
            while max_lines is None or self.stats["lines"] < max_lines:
                try:
                    raw = handle.readline()
                except OSError as e:
                    raise self._fail(f"Cannot read input {self.input_file}: {e}") from e
                if not raw:
                    break
                if not raw.endswith(b"\n"):
                    # producer is still writing this line; pick it up next run
                    log.info("Leaving unterminated line (%d bytes) at byte %d for the next run",
                             len(raw), self.checkpoint.offset)
                    self.stats["partial_lines"] += 1
                    break
                self._process_line(raw)
            self.state = PipelineState.DRAINING
        finally:
            handle.close()

        self.stats["dns_lookups"] = self.domain_validator.lookups
        self.stats["domain_cache_hits"] = self.domain_validator.cache_hits
        self.state = PipelineState.DONE
        self._log_summary(time.time() - start_time)
        return self.stats

    # ------------------------------------------------------------------
    # Per-line work
    # ------------------------------------------------------------------

    def _process_line(self, raw: bytes) -> None:
        """Handle one input line and commit its checkpoint."""
        self.stats["lines"] += 1
        line = raw.rstrip(b"\r\n")

        for candidate in self.extractor.find(line):
            self.stats["candidates"] += 1
            if self.dedupe.seen(candidate):
                self.stats["duplicates"] += 1
                continue
            if not self.is_acceptable(candidate):
                self.stats["rejected"] += 1
                continue
            try:
                self.output.append(EmailRecord(candidate))
            except CacheWriteError as e:
                if self.strict_checkpoint:
                    raise self._fail(
                        f"Could not record {candidate}; checkpoint held at byte "
                        f"{self.checkpoint.offset}: {e}") from e
                log.error("Skipping %s, output write failed: %s", candidate, e)
                self.stats["write_errors"] += 1
                continue
            self.dedupe.record(candidate)
            self.stats["accepted"] += 1
            log.info("Email: %s", candidate)

        # count the bytes actually consumed, newline included
        self.checkpoint.advance(len(raw))
        try:
            self.checkpoint.persist()
        except CheckpointError as e:
            raise self._fail(str(e)) from e

    def is_acceptable(self, candidate: str) -> bool:
        """Syntax first, so malformed candidates never cost a DNS lookup."""
        if not self.syntax.is_valid(candidate):
            log.debug("Rejecting %r: bad syntax", candidate)
            return False
        return self.domain_validator.is_valid(candidate)

    def _log_summary(self, elapsed: float) -> None:
        stats = self.stats
        log.info(
            "\n+--------------------------------------------------+\n"
            "| RUN SUMMARY                                      |\n"
            "+--------------------------------------------------+\n"
            f"| Lines           : {stats['lines']:>6}\n"
            f"| Candidates      : {stats['candidates']:>6}\n"
            f"| Duplicates      : {stats['duplicates']:>6}\n"
            f"| Rejected        : {stats['rejected']:>6}\n"
            f"| Accepted        : {stats['accepted']:>6}\n"
            f"| Write errors    : {stats['write_errors']:>6}\n"
            f"| Partial lines   : {stats['partial_lines']:>6}\n"
            f"| DNS lookups     : {stats['dns_lookups']:>6}\n"
            f"| Cache hits      : {stats['domain_cache_hits']:>6}\n"
            f"| Checkpoint      : {self.checkpoint.offset:>6}\n"
            f"| Runtime         : {elapsed:6.1f} s\n"
            "+--------------------------------------------------+"
        )
