import os
import tempfile
import time
import unittest
from pathlib import Path

from atci.adapters import FileQueueAdapter
from atci.pipeline.util import AtciPaths
from atci.watcher import DirectoryWatcher


def touch(path: Path, age_seconds: float = 60.0) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"video")
    stamp = time.time() - age_seconds
    os.utime(path, (stamp, stamp))
    return path


class DirectoryWatcherTests(unittest.TestCase):
    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)
        root = Path(self.tempdir.name)
        self.watch_root = root / "videos"
        self.watch_root.mkdir()
        self.queue = FileQueueAdapter(AtciPaths(root / "atci"))
        self.watcher = DirectoryWatcher(self.queue, [self.watch_root, root / "missing"])

    def test_enqueues_settled_videos_without_transcripts(self):
        movie = touch(self.watch_root / "movie.mkv")
        nested = touch(self.watch_root / "season1" / "ep1.MP4")
        touch(self.watch_root / "notes.pdf")
        done = touch(self.watch_root / "done.mp4")
        (self.watch_root / "done.txt").write_text(">>>.atcimetaend", encoding="utf-8")

        added = self.watcher.scan_once()

        self.assertEqual(sorted(added), sorted([str(movie), str(nested)]))
        self.assertNotIn(str(done), self.queue.get())

    def test_quiet_period(self):
        fresh = touch(self.watch_root / "copying.mp4", age_seconds=0)
        self.assertEqual(self.watcher.scan_once(), [])
        self.assertEqual(self.watcher.scan_once(now=time.time() + 10), [str(fresh)])

    def test_blocklisted_paths_skipped(self):
        skipped = touch(self.watch_root / "skip.mp4")
        self.queue.block(str(skipped))
        self.assertEqual(self.watcher.scan_once(), [])

    def test_each_video_queued_once(self):
        touch(self.watch_root / "movie.mkv")
        self.watcher.scan_once()
        self.assertEqual(self.watcher.scan_once(), [])
        self.assertEqual(len(self.queue.get()), 1)

    def test_currently_processing_not_queued(self):
        busy = touch(self.watch_root / "busy.mkv")
        self.queue.mark_processing(str(busy))
        self.assertEqual(self.watcher.scan_once(), [])

    def test_background_thread(self):
        movie = touch(self.watch_root / "movie.mkv")
        watcher = DirectoryWatcher(self.queue, [self.watch_root], interval_sec=0.05)
        watcher.start()
        self.addCleanup(watcher.stop, 2.0)

        deadline = time.time() + 5
        while time.time() < deadline and not self.queue.get():
            time.sleep(0.05)
        watcher.stop(2.0)
        self.assertEqual(self.queue.get(), [str(movie)])


if __name__ == "__main__":
    unittest.main()
