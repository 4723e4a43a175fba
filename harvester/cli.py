"""
Command-line interface for the email harvester.

With no arguments the file pipeline runs with the configured defaults.
Any flag overrides the matching setting. The ``crawl`` sub-command runs
the same-site crawler instead.
"""
import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from harvester.cache import DomainCache
from harvester.config import config, ConfigurationError
from harvester.crawler import Crawler, CrawlerError
from harvester.email_extractor import EmailExtractor, ExtractorError
from harvester.pipeline import Pipeline, PipelineError
from harvester.validator import DomainValidator, SyntaxValidator


# Initialize logger
log = logging.getLogger(__name__)


class CLIError(Exception):
    """Exception raised for CLI errors."""
    pass


class CLI:
    """Command-line front end for the pipeline and the crawler."""

    def __init__(self):
        """Initialize the CLI."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create command-line argument parser.

        Returns:
            Configured argument parser
        """
        parser = argparse.ArgumentParser(
            prog="harvester",
            description="Extract, validate and store email addresses from a growing text file",
        )

        # None means "keep the configured value"
        parser.add_argument("--input", dest="input_file", help="Input file, one record per line")
        parser.add_argument("--output", dest="output_file", help="Output file of accepted emails")
        parser.add_argument("--domains", dest="domains_file", help="Validated domains list")
        parser.add_argument("--persistent", dest="persistent_file",
                            help="Checkpoint file holding the amount of bytes read")
        parser.add_argument("--regex", dest="email_pattern", help="Regex for emails")
        parser.add_argument("--dns-timeout", dest="dns_timeout", type=float,
                            help="Seconds before a nameserver lookup is given up")
        parser.add_argument("--max-lines", type=int,
                            help="Stop after this many input lines")
        parser.add_argument("--lenient-checkpoint", action="store_true",
                            help="Advance the checkpoint even when an email could not be written")
        parser.add_argument("--env-file", help="Path to custom .env configuration file")
        parser.add_argument("-v", "--verbose", action="store_true",
                            help="Enable verbose logging")

        subparsers = parser.add_subparsers(dest="command")
        crawl = subparsers.add_parser("crawl", help="Crawl a website and collect emails per host")
        crawl.add_argument("url", help="Start URL")
        crawl.add_argument("--allowed-domain", dest="allowed_domains", action="append",
                           default=[], help="Additional host the crawl may follow (repeatable)")
        crawl.add_argument("--max-pages", type=int, help="Maximum pages to fetch")
        crawl.add_argument("--workers", type=int, help="Number of fetch threads")
        crawl.add_argument("--results", dest="crawl_results_file",
                           help="JSON file for the host -> emails map")
        crawl.add_argument("--no-validate", action="store_true",
                           help="Collect matches without DNS validation")

        return parser

    def setup_logging(self, verbose: bool) -> str:
        """
        Set up logging configuration.

        Args:
            verbose: Whether to enable verbose logging

        Returns:
            Path to log file
        """
        logfile = f"harvester_{time.strftime('%Y%m%d_%H%M%S')}.log"
        level = logging.DEBUG if verbose else logging.INFO

        logging.basicConfig(
            level=level,
            format="%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s",
            handlers=[
                logging.FileHandler(logfile, encoding="utf-8"),
                logging.StreamHandler(sys.stdout)
            ]
        )

        # Set lower level for external libraries
        logging.getLogger("requests").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)

        return logfile

    def apply_arguments(self, args: argparse.Namespace) -> None:
        """Load the env file, then overlay any flags given on the command line."""
        if args.env_file:
            config.reload(args.env_file)
        config.update_from_dict(vars(args))
        if args.lenient_checkpoint:
            config.strict_checkpoint = False

    def harvest_file(self, args: argparse.Namespace) -> bool:
        """
        Run the resumable file pipeline.

        Returns:
            True if the run reached the end of the input
        """
        log.info("Input file: %s", config.input_file)
        log.info("Output file: %s", config.output_file)
        log.info("Domains file: %s", config.domains_file)
        log.info("Checkpoint file: %s", config.persistent_file)

        try:
            pipeline = Pipeline.from_config(config)
        except ExtractorError as e:
            log.error("Invalid extraction pattern: %s", e)
            return False

        try:
            pipeline.run(max_lines=args.max_lines)
        except PipelineError as e:
            log.error("Fatal: %s", e)
            return False
        return True

    def crawl_site(self, args: argparse.Namespace) -> bool:
        """
        Crawl a site and write the emails found per host.

        Returns:
            True if the crawl ran and its results were saved
        """
        try:
            extractor = EmailExtractor(config.email_pattern)
        except ExtractorError as e:
            log.error("Invalid extraction pattern: %s", e)
            return False

        domain_validator = None
        if not args.no_validate:
            domain_validator = DomainValidator(DomainCache(config.domains_file),
                                               timeout=config.dns_timeout)

        try:
            crawler = Crawler(
                args.url,
                extractor,
                SyntaxValidator(),
                domain_validator=domain_validator,
                allowed_domains=args.allowed_domains,
                max_pages=args.max_pages,
                num_workers=args.workers,
            )
        except CrawlerError as e:
            log.error("Cannot crawl: %s", e)
            return False

        crawler.crawl()
        try:
            crawler.write_results(config.crawl_results_file)
        except OSError as e:
            log.error("Failed to save crawl results: %s", e)
            return False
        return True

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run the CLI with the given arguments.

        Args:
            args: Command-line arguments (defaults to sys.argv[1:])

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        parsed_args = self.parser.parse_args(args)
        logfile = self.setup_logging(parsed_args.verbose)

        try:
            self.apply_arguments(parsed_args)
            config.validate_or_raise()
        except ConfigurationError as e:
            log.error("Configuration error: %s", e)
            return 1

        try:
            if parsed_args.command == "crawl":
                success = self.crawl_site(parsed_args)
            else:
                success = self.harvest_file(parsed_args)
        except Exception as e:
            log.error("Unhandled exception: %s", e, exc_info=True)
            return 1

        log.info("Verbose log -> %s", Path(logfile).resolve())
        return 0 if success else 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the email harvester.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    cli = CLI()

    try:
        return cli.run(argv)

    except KeyboardInterrupt:
        log.warning("Execution interrupted by user")
        return 130
