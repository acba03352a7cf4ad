# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Unit test for the helper_commands library."""
import time
import unittest

from charms.opensearch_certs.v0.helper_commands import run_cmd, run_pipeline
from charms.opensearch_certs.v0.opensearch_certs_exceptions import (
    CertsCmdError,
    CertsCmdTimeoutError,
    CertsPipelineError,
)
from parameterized import parameterized


class TestRunPipeline(unittest.TestCase):
    def test_output_streamed_to_last_command(self):
        """The output of the last command is returned."""
        self.assertEqual(run_pipeline([["echo", "hello"], ["cat"]]), b"hello\n")

    def test_transformed_output(self):
        """Each command consumes the output of the previous one."""
        output = run_pipeline([["echo", "hello"], ["tr", "a-z", "A-Z"], ["rev"]])
        self.assertEqual(output, b"OLLEH\n")

    def test_single_command(self):
        """A single command pipeline returns the output of the command."""
        self.assertEqual(run_pipeline([["printf", "abc"]]), b"abc")

    def test_large_output_does_not_deadlock(self):
        """Output way larger than a pipe buffer streams through."""
        output = run_pipeline(
            [["head", "-c", "5000000", "/dev/zero"], ["cat"], ["wc", "-c"]], timeout=60
        )
        self.assertEqual(output.strip(), b"5000000")

    def test_consumer_not_reading_input(self):
        """A last command ignoring its input doesn't block on the producer."""
        output = run_pipeline([["yes"], ["head", "-n", "2"]], timeout=10)
        self.assertEqual(output, b"y\ny\n")

    @parameterized.expand(
        [
            ("grep", [["printf", "x"], ["grep", "y"]], "grep"),
            ("exit-code", [["echo", "hello"], ["sh", "-c", "cat >/dev/null; exit 3"]], "sh"),
            ("broken-pipe", [["yes"], ["sh", "-c", "head -n 1 >/dev/null; exit 4"]], "sh"),
        ]
    )
    def test_last_command_fails(self, _, commands, failing):
        """A failing last command fails the pipeline even if upstream succeeded."""
        with self.assertRaises(CertsPipelineError) as ctx:
            run_pipeline(commands)

        self.assertEqual(ctx.exception.cmd, failing)
        self.assertNotEqual(ctx.exception.return_code, 0)

    def test_failing_upstream_is_reported(self):
        """When the last command fails, the first failing upstream command is named."""
        with self.assertRaises(CertsPipelineError) as ctx:
            run_pipeline(
                [
                    ["sh", "-c", "echo broken >&2; exit 2"],
                    ["cat"],
                    ["grep", "never-matching"],
                ]
            )

        self.assertEqual(ctx.exception.cmd, "sh")
        self.assertEqual(ctx.exception.return_code, 2)
        self.assertIn("broken", ctx.exception.err)

    def test_upstream_failure_with_successful_last_command(self):
        """Only the last command decides the outcome."""
        self.assertEqual(run_pipeline([["false"], ["echo", "done"]]), b"done\n")

    @parameterized.expand(
        [
            ("first", [["not-a-real-binary-x"], ["cat"]], "not-a-real-binary-x"),
            ("last", [["echo", "hello"], ["not-a-real-binary-y"]], "not-a-real-binary-y"),
        ]
    )
    def test_command_fails_to_start(self, _, commands, failing):
        """A command that can't be started fails the pipeline."""
        with self.assertRaises(CertsPipelineError) as ctx:
            run_pipeline(commands)

        self.assertEqual(ctx.exception.cmd, failing)

    def test_timeout(self):
        """A pipeline that doesn't complete in time is a timeout error."""
        with self.assertRaises(CertsCmdTimeoutError):
            run_pipeline([["sleep", "10"], ["cat"]], timeout=1)

    def test_timeout_shared_by_the_pipeline(self):
        """Waiting for the last command and then the upstream ones fits in one timeout."""
        start = time.monotonic()
        with self.assertRaises(CertsCmdTimeoutError):
            run_pipeline(
                [["sh", "-c", "exec >&-; sleep 4"], ["sh", "-c", "cat; sleep 2"]], timeout=3
            )

        self.assertLess(time.monotonic() - start, 3.9)

    def test_empty_pipeline(self):
        """A pipeline needs commands."""
        with self.assertRaises(ValueError):
            run_pipeline([])


class TestRunCmd(unittest.TestCase):
    def test_output_captured(self):
        """Stdout and stderr are captured as text."""
        result = run_cmd(["sh", "-c", "echo out; echo err >&2"])

        self.assertEqual(result.cmd, "sh")
        self.assertEqual(result.out, "out\n")
        self.assertEqual(result.err, "err\n")

    def test_failure_carries_diagnostics(self):
        """The captured output is attached to the error."""
        with self.assertRaises(CertsCmdError) as ctx:
            run_cmd(["sh", "-c", "echo diagnostic >&2; exit 4"])

        self.assertEqual(ctx.exception.return_code, 4)
        self.assertIn("diagnostic", ctx.exception.err)
        self.assertIn("diagnostic", str(ctx.exception))

    def test_arguments_not_in_error(self):
        """Only the binary name is reported, arguments may hold passwords."""
        with self.assertRaises(CertsCmdError) as ctx:
            run_cmd(["sh", "-c", "exit 1", "pass:secret"])

        self.assertNotIn("secret", str(ctx.exception))

    def test_missing_binary(self):
        """A binary that can't be started is a command error."""
        with self.assertRaises(CertsCmdError) as ctx:
            run_cmd(["not-a-real-binary-z"])

        self.assertEqual(ctx.exception.cmd, "not-a-real-binary-z")

    def test_timeout(self):
        """A command that doesn't complete in time is a timeout error."""
        with self.assertRaises(CertsCmdTimeoutError):
            run_cmd(["sleep", "10"], timeout=1)
