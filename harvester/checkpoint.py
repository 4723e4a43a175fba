"""
Byte-offset checkpoint for resumable input scanning.

The checkpoint file holds a single decimal integer: the number of input
bytes already processed, always on a line boundary. It is rewritten as a
whole after every line so a restart resumes exactly where the last
completed line ended.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

# Initialize logger
log = logging.getLogger(__name__)


class CheckpointError(Exception):
    """Exception raised when the checkpoint cannot be persisted."""
    pass


class Checkpoint:
    """Tracks and persists how many input bytes have been consumed."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.offset = 0

    def load(self) -> int:
        """
        Read the persisted offset.

        Returns:
            The stored offset, or 0 if the file is missing, empty,
            negative or not a number
        """
        try:
            text = self.path.read_text(encoding="ascii").strip()
        except FileNotFoundError:
            log.info("No checkpoint at %s, starting from the beginning", self.path)
            self.offset = 0
            return 0
        except (OSError, UnicodeDecodeError) as e:
            log.warning("Unreadable checkpoint %s (%s), starting from 0", self.path, e)
            self.offset = 0
            return 0

        try:
            value = int(text)
        except ValueError:
            log.warning("Unparseable checkpoint %r in %s, starting from 0", text, self.path)
            value = 0
        if value < 0:
            log.warning("Negative checkpoint %d in %s, starting from 0", value, self.path)
            value = 0

        self.offset = value
        log.info("Resuming at byte %d", value)
        return value

    def clamp(self, size: int) -> int:
        """
        Reset the offset to 0 if it points past the end of an input of ``size`` bytes.
        """
        if self.offset > size:
            log.warning("Checkpoint %d is past end of input (%d bytes); input was "
                        "replaced or truncated, starting from 0", self.offset, size)
            self.offset = 0
        return self.offset

    def advance(self, consumed: int) -> int:
        if consumed < 0:
            raise ValueError(f"cannot advance checkpoint by {consumed}")
        self.offset += consumed
        return self.offset

    def persist(self, offset: Optional[int] = None) -> None:
        """
        Overwrite the checkpoint file with ``offset`` (default: current offset).

        The new value is written to a sibling temp file and renamed over the
        old one, so readers see either the previous or the new number.

        Raises:
            CheckpointError: If the file cannot be written
        """
        if offset is not None:
            self.offset = offset

        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(str(self.offset))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise CheckpointError(f"Failed to persist checkpoint {self.path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.remove(tmp_name)
