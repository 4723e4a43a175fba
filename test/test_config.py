"""
Tests for the configuration module.
"""

import os
import tempfile
import unittest
from unittest.mock import patch

from harvester.config import (Config, ConfigurationError, DEFAULT_EMAIL_PATTERN,
                              DEFAULT_INPUT_FILE, DEFAULT_PERSISTENT_FILE)


class TestConfig(unittest.TestCase):
    """Tests for the configuration module."""

    @patch.dict(os.environ, {}, clear=True)
    def test_config_defaults(self):
        """Test default configuration values."""
        cfg = Config()
        self.assertEqual(cfg.input_file, DEFAULT_INPUT_FILE)
        self.assertEqual(cfg.output_file, "output.json")
        self.assertEqual(cfg.domains_file, "domains.txt")
        self.assertEqual(cfg.persistent_file, DEFAULT_PERSISTENT_FILE)
        self.assertEqual(cfg.email_pattern, DEFAULT_EMAIL_PATTERN)
        self.assertEqual(cfg.dns_timeout, 5.0)
        self.assertTrue(cfg.strict_checkpoint)
        self.assertEqual(cfg.crawl_workers, 25)
        self.assertIsInstance(cfg.request_timeout, tuple)
        self.assertEqual(cfg.validate(), [])

    @patch.dict(os.environ, {"DNS_TIMEOUT": "999", "CRAWL_WORKERS": "0", "MAX_PAGES": "abc"}, clear=True)
    def test_range_clamping(self):
        """Test that out-of-range and invalid values fall back safely."""
        cfg = Config()
        self.assertEqual(cfg.dns_timeout, 60.0)
        self.assertEqual(cfg.crawl_workers, 1)
        self.assertEqual(cfg.max_pages, 200)

    @patch.dict(os.environ, {"STRICT_CHECKPOINT": "no", "HARVESTER_INPUT": "feed.log"}, clear=True)
    def test_environment_overrides(self):
        """Test environment variable overrides."""
        cfg = Config()
        self.assertFalse(cfg.strict_checkpoint)
        self.assertEqual(cfg.input_file, "feed.log")

    @patch.dict(os.environ, {}, clear=True)
    def test_env_file(self):
        """Test loading settings from an explicit .env file."""
        with tempfile.TemporaryDirectory() as tmp:
            env_file = os.path.join(tmp, "harvester.env")
            with open(env_file, "w", encoding="utf-8") as f:
                f.write("HARVESTER_OUTPUT=found.json\nDNS_TIMEOUT=2\n")
            cfg = Config(env_file)
        self.assertEqual(cfg.output_file, "found.json")
        self.assertEqual(cfg.dns_timeout, 2.0)

    @patch.dict(os.environ, {}, clear=True)
    def test_config_validation(self):
        """Test configuration validation."""
        cfg = Config()

        cfg.email_pattern = "[broken"
        self.assertTrue(any("pattern" in e for e in cfg.validate()))

        cfg.email_pattern = DEFAULT_EMAIL_PATTERN
        cfg.output_file = cfg.input_file
        self.assertIn("input, output, domains and persistent files must be distinct", cfg.validate())
        with self.assertRaises(ConfigurationError):
            cfg.validate_or_raise()

        cfg.output_file = ""
        self.assertIn("output_file is empty", cfg.validate())

    @patch.dict(os.environ, {}, clear=True)
    def test_update_from_dict_ignores_none_and_unknown(self):
        """Test that only known, given values are applied."""
        cfg = Config()
        cfg.update_from_dict({"input_file": None, "output_file": "x.json", "verbose": True})
        self.assertEqual(cfg.input_file, DEFAULT_INPUT_FILE)
        self.assertEqual(cfg.output_file, "x.json")
        self.assertFalse(hasattr(cfg, "verbose"))


if __name__ == "__main__":
    unittest.main()
