import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path

from atci.cancellation import CancellationToken
from atci.errors import CancelError, SpawnFailed, ToolError
from atci.pipeline.runner import ToolRunner, check


class ToolRunnerTests(unittest.TestCase):
    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)
        self.token = CancellationToken(Path(self.tempdir.name) / ".commands" / "CANCEL")
        self.runner = ToolRunner(poll_interval=0.05)

    def test_captures_output_and_status(self):
        result = self.runner.run(
            sys.executable,
            ["-c", "import sys; print('out'); sys.stderr.write('err'); sys.exit(3)"],
        )
        self.assertEqual(result.exit_status, 3)
        self.assertEqual(result.stdout.strip(), b"out")
        self.assertEqual(result.stderr, b"err")

        with self.assertRaises(ToolError) as ctx:
            check(result, "Example tool")
        self.assertEqual(ctx.exception.exit_status, 3)
        self.assertIn("err", str(ctx.exception))

    def test_check_passes_success_through(self):
        result = self.runner.run(sys.executable, ["-c", "pass"], self.token)
        self.assertIs(check(result, "noop"), result)

    def test_missing_program(self):
        with self.assertRaises(SpawnFailed):
            self.runner.run(str(Path(self.tempdir.name) / "no-such-tool"), [])

    def test_sentinel_file_kills_child(self):
        def touch_sentinel():
            self.token.sentinel_path.parent.mkdir(parents=True, exist_ok=True)
            self.token.sentinel_path.touch()

        timer = threading.Timer(0.2, touch_sentinel)
        timer.start()
        self.addCleanup(timer.cancel)

        started = time.time()
        with self.assertRaises(CancelError):
            self.runner.run(sys.executable, ["-c", "import time; time.sleep(30)"], self.token)
        self.assertLess(time.time() - started, 5.0)

    def test_in_process_trip_kills_child(self):
        timer = threading.Timer(0.2, self.token.trip)
        timer.start()
        self.addCleanup(timer.cancel)

        started = time.time()
        with self.assertRaises(CancelError):
            self.runner.run(sys.executable, ["-c", "import time; time.sleep(30)"], self.token)
        self.assertLess(time.time() - started, 5.0)


class CancellationTokenTests(unittest.TestCase):
    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)
        self.sentinel = Path(self.tempdir.name) / ".commands" / "CANCEL"
        self.token = CancellationToken(self.sentinel)

    def test_trip_and_consume(self):
        self.assertFalse(self.token.is_cancelled())
        self.assertEqual(self.token.trip(), "Created CANCEL file")
        self.assertTrue(self.sentinel.exists())
        self.assertTrue(self.token.is_cancelled())
        self.assertTrue(self.token.trip().startswith("CANCEL file already exists, created at: "))

        self.token.consume()
        self.assertFalse(self.sentinel.exists())
        self.assertFalse(self.token.is_cancelled())
        self.assertIsNone(self.token.created_at())

    def test_sentinel_from_another_process_counts(self):
        self.sentinel.parent.mkdir(parents=True)
        self.sentinel.touch()
        self.assertTrue(self.token.is_cancelled())
        self.assertIsNotNone(self.token.created_at())


if __name__ == "__main__":
    unittest.main()
