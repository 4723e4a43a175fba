"""
Configuration module with validation for the email harvester.

This module provides the configuration system: file locations for the
input and the three state files, the extraction pattern, DNS and crawler
settings. Values come from built-in defaults, environment variables (a
.env file is honoured) and finally command-line overrides.
"""

import os
import logging
import re
from typing import Dict, List, Any, Optional

from dotenv import load_dotenv

# Initialize logger
log = logging.getLogger(__name__)

# Default file locations
DEFAULT_INPUT_FILE = "input.json"
DEFAULT_OUTPUT_FILE = "output.json"
DEFAULT_DOMAINS_FILE = "domains.txt"
DEFAULT_PERSISTENT_FILE = "persistent.txt"
DEFAULT_CRAWL_RESULTS_FILE = "emails.json"

# Coarse, recall-oriented email shape
DEFAULT_EMAIL_PATTERN = r"[A-Za-z0-9.-]+@[A-Za-z0-9.-]+\.[A-Za-z0-9]{2,4}"


class ConfigurationError(Exception):
    """Exception raised for configuration errors."""
    pass


class Config:
    """Harvester configuration with environment overrides and validation."""

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize configuration with default values and environment overrides.

        Args:
            env_file: Optional path to .env file to load
        """
        # an explicit env file wins over the process environment
        load_dotenv(env_file, override=env_file is not None)

        # State files
        self.input_file = os.getenv("HARVESTER_INPUT", DEFAULT_INPUT_FILE)
        self.output_file = os.getenv("HARVESTER_OUTPUT", DEFAULT_OUTPUT_FILE)
        self.domains_file = os.getenv("HARVESTER_DOMAINS", DEFAULT_DOMAINS_FILE)
        self.persistent_file = os.getenv("HARVESTER_PERSISTENT", DEFAULT_PERSISTENT_FILE)

        # Extraction
        self.email_pattern = os.getenv("HARVESTER_REGEX", DEFAULT_EMAIL_PATTERN)

        # DNS lookups never block longer than this (seconds)
        self.dns_timeout = self._parse_float("DNS_TIMEOUT", 5.0, 0.5, 60.0)

        # Hold the checkpoint back when an accepted email cannot be written
        self.strict_checkpoint = self._parse_bool("STRICT_CHECKPOINT", True)

        # Crawler
        self.crawl_workers = self._parse_int("CRAWL_WORKERS", 25, 1, 64)
        self.max_pages = self._parse_int("MAX_PAGES", 200, 1, 10_000)
        self.crawl_results_file = os.getenv("CRAWL_RESULTS", DEFAULT_CRAWL_RESULTS_FILE)

        # HTTP settings
        self.max_url_length = self._parse_int("MAX_URL_LENGTH", 2000, 100, 10000)
        self.request_timeout = (
            self._parse_int("CONNECTION_TIMEOUT", 10, 1, 120),
            self._parse_int("READ_TIMEOUT", 20, 1, 120)
        )
        self.user_agent = os.getenv(
            "USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
        )

    def _parse_int(self, env_var: str, default: int, min_val: int, max_val: int) -> int:
        """
        Parse an integer environment variable with range validation.

        Args:
            env_var: Environment variable name
            default: Default value if not set
            min_val: Minimum allowed value
            max_val: Maximum allowed value

        Returns:
            Parsed integer value
        """
        try:
            value = int(os.getenv(env_var, str(default)))
            if value < min_val:
                log.warning("%s value %d below minimum %d, using minimum", env_var, value, min_val)
                return min_val
            if value > max_val:
                log.warning("%s value %d above maximum %d, using maximum", env_var, value, max_val)
                return max_val
            return value
        except ValueError:
            log.warning("Invalid %s value, using default %d", env_var, default)
            return default

    def _parse_float(self, env_var: str, default: float, min_val: float, max_val: float) -> float:
        """
        Parse a float environment variable with range validation.

        Args:
            env_var: Environment variable name
            default: Default value if not set
            min_val: Minimum allowed value
            max_val: Maximum allowed value

        Returns:
            Parsed float value
        """
        try:
            value = float(os.getenv(env_var, str(default)))
            if value < min_val:
                log.warning("%s value %f below minimum %f, using minimum", env_var, value, min_val)
                return min_val
            if value > max_val:
                log.warning("%s value %f above maximum %f, using maximum", env_var, value, max_val)
                return max_val
            return value
        except ValueError:
            log.warning("Invalid %s value, using default %f", env_var, default)
            return default

    def _parse_bool(self, env_var: str, default: bool) -> bool:
        value = os.getenv(env_var, "")
        if not value:
            return default
        return value.lower() in {"1", "true", "yes", "y", "on"}

    def as_dict(self) -> Dict[str, Any]:
        """Return configuration as a dictionary."""
        return {k: v for k, v in self.__dict__.items() if not k.startswith('_')}

    def validate(self) -> List[str]:
        """
        Validate configuration and return a list of error messages.

        Returns:
            List of error messages, empty if valid
        """
        errors = []

        paths = {
            "input_file": self.input_file,
            "output_file": self.output_file,
            "domains_file": self.domains_file,
            "persistent_file": self.persistent_file,
        }
        for name, path in paths.items():
            if not path:
                errors.append(f"{name} is empty")

        resolved = [os.path.abspath(p) for p in paths.values() if p]
        if len(set(resolved)) != len(resolved):
            errors.append("input, output, domains and persistent files must be distinct")

        try:
            re.compile(self.email_pattern)
        except re.error as e:
            errors.append(f"email pattern does not compile: {e}")

        if self.dns_timeout <= 0:
            errors.append("DNS_TIMEOUT must be positive")

        return errors

    def validate_or_raise(self) -> None:
        """
        Validate configuration and raise an exception if invalid.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        errors = self.validate()
        if errors:
            error_msg = "Configuration errors: " + ", ".join(errors)
            log.error(error_msg)
            raise ConfigurationError(error_msg)

    def reload(self, env_file: Optional[str] = None) -> None:
        """Re-read all settings, optionally from a specific .env file."""
        self.__init__(env_file)

    def update_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """
        Update configuration from a dictionary.

        Unknown keys and None values are ignored, so an argparse namespace
        can be passed through as-is.
        """
        for key, value in config_dict.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)


# Create a global configuration instance
config = Config()
