"""
Tests for the resumable pipeline.
"""

import json
import os
import unittest
from unittest.mock import patch

from harvester.cache import CacheWriteError, OutputLog
from harvester.config import Config
from harvester.pipeline import Pipeline, PipelineError, PipelineState

from helpers import FakeLookup, TempDirTestCase

SCENARIO_LINE = "contact us at john@example.com or spam@bad-nx-domain.invalid"

LINES = [
    "first john@example.com\n",
    "nothing to see here\n",
    "second jane@example.org and john@example.com\n",
    "third bob@nx.invalid and ann@example.com\n",
]


class PipelineTestCase(TempDirTestCase):

    def make_pipeline(self, lookup=None, **kwargs) -> Pipeline:
        self.lookup = lookup or FakeLookup({"example.com", "example.org"})
        return Pipeline(
            self.input_file,
            self.output_file,
            self.domains_file,
            self.persistent_file,
            lookup=self.lookup,
            **kwargs,
        )

    def output_emails(self):
        return [r.email for r in OutputLog(self.output_file).read_all()]


class TestPipelineScenarios(PipelineTestCase):
    """End-to-end behaviour on small inputs."""

    def test_scenario_mixed_line(self):
        """Test one resolvable and one unresolvable candidate on a line."""
        self.write(self.input_file, SCENARIO_LINE + "\n")
        pipeline = self.make_pipeline(FakeLookup({"example.com"}))

        stats = pipeline.run()

        self.assertEqual(self.read(self.output_file), '{"Email":"john@example.com"}\n')
        self.assertEqual(json.loads(self.read(self.output_file)), {"Email": "john@example.com"})
        self.assertEqual(self.read(self.domains_file), "example.com\n")
        self.assertEqual(int(self.read(self.persistent_file)), len(SCENARIO_LINE) + 1)
        self.assertEqual(stats["accepted"], 1)
        self.assertEqual(stats["rejected"], 1)
        self.assertEqual(pipeline.state, PipelineState.DONE)

    def test_duplicate_in_same_line(self):
        """Test that an email repeated on one line is written once."""
        self.write(self.input_file, "john@example.com, again john@example.com\n")
        pipeline = self.make_pipeline()

        stats = pipeline.run()

        self.assertEqual(self.output_emails(), ["john@example.com"])
        self.assertEqual(stats["duplicates"], 1)
        self.assertEqual(self.lookup.calls, ["example.com"])

    def test_cached_domain_needs_no_lookup(self):
        """Test that a domain confirmed by an earlier run is not looked up."""
        self.write(self.domains_file, "example.com\n")
        self.write(self.input_file, "write to john@example.com\n")
        pipeline = self.make_pipeline(FakeLookup())

        pipeline.run()

        self.assertEqual(self.lookup.calls, [])
        self.assertEqual(self.output_emails(), ["john@example.com"])

    def test_dedupe_across_lines_and_runs(self):
        """Test that an email appears at most once in the output log."""
        self.write(self.input_file, "".join(LINES))
        self.make_pipeline().run()

        self.append(self.input_file, "late copy of jane@example.org\n")
        self.make_pipeline().run()

        emails = self.output_emails()
        self.assertEqual(emails, ["john@example.com", "jane@example.org", "ann@example.com"])
        self.assertEqual(len(emails), len(set(emails)))

    def test_bad_syntax_costs_no_lookup(self):
        """Test that syntactically invalid candidates never reach DNS."""
        self.write(self.input_file, "broken -a@-bad.com\n")
        pipeline = self.make_pipeline()
        pipeline.run()
        self.assertEqual(self.lookup.calls, [])
        self.assertEqual(self.output_emails(), [])

    def test_rejected_domain_retried_later(self):
        """Test that a failed domain is looked up again on its next occurrence."""
        self.write(self.input_file, "x@flaky.com\ny@flaky.com\n")
        pipeline = self.make_pipeline(FakeLookup())
        pipeline.run()
        self.assertEqual(self.lookup.calls, ["flaky.com", "flaky.com"])
        self.assertEqual(self.read(self.domains_file), "")

    def test_unterminated_last_line_waits(self):
        """Test that a line still being written is left for the next run."""
        self.write(self.input_file, "first a@example.com\nmail john@example.co")
        stats = self.make_pipeline(FakeLookup({"example.com"})).run()

        self.assertEqual(stats["partial_lines"], 1)
        self.assertEqual(int(self.read(self.persistent_file)), len("first a@example.com\n"))
        self.assertEqual(self.output_emails(), ["a@example.com"])

        self.append(self.input_file, "m today\n")
        self.make_pipeline(FakeLookup({"example.com"})).run()

        self.assertEqual(self.output_emails(), ["a@example.com", "john@example.com"])
        self.assertEqual(int(self.read(self.persistent_file)), os.path.getsize(self.input_file))

    def test_crlf_line_endings(self):
        """Test that CRLF lines are consumed byte for byte."""
        self.write(self.input_file, "a john@example.com\r\nb ann@example.com\r\n")
        self.make_pipeline().run()
        self.assertEqual(int(self.read(self.persistent_file)), os.path.getsize(self.input_file))

    def test_from_config(self):
        """Test construction from a Config instance."""
        cfg = Config()
        cfg.update_from_dict({
            "input_file": self.input_file,
            "output_file": self.output_file,
            "domains_file": self.domains_file,
            "persistent_file": self.persistent_file,
            "dns_timeout": 1.5,
            "strict_checkpoint": False,
        })
        pipeline = Pipeline.from_config(cfg, lookup=FakeLookup())
        self.assertEqual(pipeline.dns_timeout, 1.5)
        self.assertFalse(pipeline.strict_checkpoint)
        self.assertEqual(str(pipeline.checkpoint.path), self.persistent_file)


class TestPipelineResume(PipelineTestCase):
    """Checkpoint and resume properties."""

    def test_rerun_is_idempotent(self):
        """Test that a second run over unchanged input changes nothing."""
        self.write(self.input_file, "".join(LINES))
        self.make_pipeline().run()
        output, checkpoint = self.read(self.output_file), self.read(self.persistent_file)

        stats = self.make_pipeline().run()

        self.assertEqual(self.read(self.output_file), output)
        self.assertEqual(self.read(self.persistent_file), checkpoint)
        self.assertEqual(stats["lines"], 0)
        self.assertEqual(self.lookup.calls, [])

    def test_resume_matches_single_run(self):
        """Test that stopping after any prefix and resuming gives the same output."""
        self.write(self.input_file, "".join(LINES))
        self.make_pipeline().run()
        expected = self.read(self.output_file)

        for prefix in range(len(LINES) + 1):
            with self.subTest(prefix=prefix):
                for path in (self.output_file, self.domains_file, self.persistent_file):
                    if os.path.exists(path):
                        os.remove(path)

                self.make_pipeline().run(max_lines=prefix)
                self.assertEqual(int(self.read(self.persistent_file) or 0),
                                 len("".join(LINES[:prefix]).encode()))

                self.make_pipeline().run()
                self.assertEqual(self.read(self.output_file), expected)

    def test_growing_input(self):
        """Test that only appended lines are scanned on the next run."""
        self.write(self.input_file, LINES[0])
        self.make_pipeline().run()

        self.append(self.input_file, LINES[2])
        stats = self.make_pipeline().run()

        self.assertEqual(stats["lines"], 1)
        self.assertEqual(self.output_emails(), ["john@example.com", "jane@example.org"])

    def test_truncated_input_restarts(self):
        """Test that a checkpoint beyond the input size starts over."""
        self.write(self.input_file, "".join(LINES))
        self.make_pipeline().run()
        self.write(self.input_file, "new ann@example.com\n")

        stats = self.make_pipeline().run()

        self.assertEqual(stats["lines"], 1)
        self.assertEqual(int(self.read(self.persistent_file)), len("new ann@example.com\n"))


class TestPipelineFailures(PipelineTestCase):
    """Fatal errors and write-failure policy."""

    def test_missing_input_is_fatal(self):
        """Test that an unopenable input aborts the run."""
        pipeline = self.make_pipeline()
        with self.assertRaises(PipelineError):
            pipeline.run()
        self.assertEqual(pipeline.state, PipelineState.FATAL)
        self.assertFalse(os.path.exists(self.persistent_file))

    def test_strict_write_failure_holds_checkpoint(self):
        """Test that a failed output write stops the run before the checkpoint moves."""
        self.write(self.input_file, "".join(LINES))
        pipeline = self.make_pipeline()
        pipeline.run(max_lines=1)
        held = self.read(self.persistent_file)

        pipeline = self.make_pipeline()
        with patch.object(OutputLog, "append", side_effect=CacheWriteError("disk full")):
            with self.assertRaises(PipelineError):
                pipeline.run()

        self.assertEqual(pipeline.state, PipelineState.FATAL)
        # line 2 has no emails and is committed, line 3 is not
        self.assertEqual(int(self.read(self.persistent_file)),
                         len("".join(LINES[:2]).encode()))
        self.assertNotEqual(self.read(self.persistent_file), "")
        self.assertEqual(int(held), len(LINES[0]))

        self.make_pipeline().run()
        self.assertEqual(self.output_emails(),
                         ["john@example.com", "jane@example.org", "ann@example.com"])

    def test_lenient_write_failure_advances(self):
        """Test the original policy: skip the email, keep going."""
        self.write(self.input_file, "".join(LINES))
        pipeline = self.make_pipeline(strict_checkpoint=False)
        with patch.object(OutputLog, "append", side_effect=CacheWriteError("disk full")):
            stats = pipeline.run()

        self.assertEqual(pipeline.state, PipelineState.DONE)
        self.assertEqual(stats["write_errors"], 4)
        self.assertEqual(int(self.read(self.persistent_file)), os.path.getsize(self.input_file))

    def test_checkpoint_failure_is_fatal(self):
        """Test that an unwritable checkpoint aborts the run."""
        self.write(self.input_file, "".join(LINES))
        pipeline = self.make_pipeline()
        with patch("os.replace", side_effect=OSError("read-only")):
            with self.assertRaises(PipelineError):
                pipeline.run()
        self.assertEqual(pipeline.state, PipelineState.FATAL)
        self.assertEqual(self.output_emails(), ["john@example.com"])


if __name__ == "__main__":
    unittest.main()
