"""
Shared fixtures for the harvester tests.
"""

import os
import tempfile
import unittest
from typing import Iterable, List


class FakeLookup:
    """Nameserver lookup stand-in that records every call."""

    def __init__(self, resolvable: Iterable[str] = ()):
        self.resolvable = set(resolvable)
        self.calls: List[str] = []

    def __call__(self, domain: str, timeout: float) -> List[str]:
        self.calls.append(domain)
        if domain in self.resolvable:
            return [f"ns1.{domain}.", f"ns2.{domain}."]
        return []


class TempDirTestCase(unittest.TestCase):
    """Runs each test with fresh state file paths in a temporary directory."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name
        self.input_file = os.path.join(self.dir, "input.json")
        self.output_file = os.path.join(self.dir, "output.json")
        self.domains_file = os.path.join(self.dir, "domains.txt")
        self.persistent_file = os.path.join(self.dir, "persistent.txt")

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, path: str, text: str) -> None:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(text)

    def append(self, path: str, text: str) -> None:
        with open(path, "a", encoding="utf-8", newline="") as f:
            f.write(text)

    def read(self, path: str) -> str:
        if not os.path.exists(path):
            return ""
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()
