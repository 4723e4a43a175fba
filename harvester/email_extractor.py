"""
Email candidate extraction.

The extractor is a coarse, recall-oriented scan: it returns every
substring that looks like an address and leaves real validation to
``harvester.validator``. Duplicates inside one buffer are kept; the
caller deduplicates.
"""

import logging
import re
from typing import List, Pattern, Union

from harvester.config import DEFAULT_EMAIL_PATTERN

# Initialize logger
log = logging.getLogger(__name__)

# name.surname[at]host[dot]tld
_OBF_EMAIL = re.compile(
    r"(?P<user>[A-Za-z0-9]+\.[A-Za-z0-9]+)\[at\](?P<host>[A-Za-z0-9]+)\[dot\](?P<tld>[A-Za-z0-9]+)"
)


class ExtractorError(Exception):
    """Exception raised when the extraction pattern is unusable."""
    pass


class EmailExtractor:
    """Applies a configurable pattern to raw text and returns the matches."""

    def __init__(self, pattern: str = DEFAULT_EMAIL_PATTERN):
        """
        Compile the extraction pattern.

        Args:
            pattern: Regular expression describing an email-shaped token

        Raises:
            ExtractorError: If the pattern does not compile
        """
        try:
            self.pattern: Pattern[str] = re.compile(pattern)
        except re.error as e:
            raise ExtractorError(f"Invalid extraction pattern {pattern!r}: {e}") from e
        log.debug("Extractor pattern: %s", self.pattern.pattern)

    @staticmethod
    def _as_text(haystack: Union[bytes, str]) -> str:
        if isinstance(haystack, bytes):
            return haystack.decode("utf-8", errors="replace")
        return haystack

    def find(self, haystack: Union[bytes, str]) -> List[str]:
        """
        Return every email-shaped match in ``haystack`` in order of appearance.

        Args:
            haystack: One input line or one block of scraped text

        Returns:
            List of candidates, duplicates preserved
        """
        if not haystack:
            return []
        return [m.group(0) for m in self.pattern.finditer(self._as_text(haystack))]

    def find_obfuscated(self, haystack: Union[bytes, str]) -> List[str]:
        """
        Return ``user[at]host[dot]tld`` style addresses rewritten with ``@`` and ``.``.
        """
        if not haystack:
            return []
        return [
            f"{m.group('user')}@{m.group('host')}.{m.group('tld')}"
            for m in _OBF_EMAIL.finditer(self._as_text(haystack))
        ]
