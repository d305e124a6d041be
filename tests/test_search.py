import tempfile
import unittest
from pathlib import Path

from atci.search import (
    TranscriptSearch, looks_like_timestamp, matches_filter, normalize_for_match, search_file,
)


class TranscriptSearchTests(unittest.TestCase):
    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)
        root = Path(self.tempdir.name)
        self.first_root = root / "a"
        self.second_root = root / "b"

        self.lecture = self.add(
            self.first_root / "lecture.mp4",
            "source: base.en\n>>>.atcimetaend\n\n"
            "00:00:01.000 --> 00:00:02.000\nyou can\u2019t read it\n\n"
            "00:00:03.000 --> 00:00:04.000\nCAN'T STOP NOW\n",
        )
        self.interview = self.add(
            self.second_root / "interview.mkv",
            ">>>.atcimetaend\nI can`t say\n",
        )
        self.add(self.second_root / "silent.mkv", ">>>.atcimetaend")
        (self.second_root / "orphan.mkv").write_bytes(b"video")

        self.search = TranscriptSearch([self.second_root, self.first_root], max_workers=2)

    def add(self, video: Path, transcript: str) -> Path:
        video.parent.mkdir(parents=True, exist_ok=True)
        video.write_bytes(b"video")
        video.with_suffix(".txt").write_text(transcript, encoding="utf-8")
        return video

    def test_apostrophe_forms_match(self):
        results = self.search.search("can't")
        self.assertEqual([r.file_path for r in results], sorted([str(self.lecture), str(self.interview)]))

        lecture = next(r for r in results if r.file_path == str(self.lecture))
        self.assertEqual([m.line_text for m in lecture.matches],
                         ["you can\u2019t read it", "CAN'T STOP NOW"])

    def test_line_numbers_and_timestamps(self):
        results = self.search.search("read it")
        self.assertEqual(len(results), 1)
        match = results[0].matches[0]
        self.assertEqual(match.line_number, 5)
        self.assertEqual(match.timestamp, "00:00:01.000 --> 00:00:02.000")
        self.assertEqual(match.video_info.full_path, str(self.lecture))
        self.assertEqual(match.video_info.source, "base.en")

    def test_match_without_timestamp_line(self):
        results = self.search.search("say")
        self.assertEqual(len(results), 1)
        self.assertIsNone(results[0].matches[0].timestamp)

    def test_filters(self):
        results = self.search.search("can't", filters=["INTERVIEW"])
        self.assertEqual([r.file_path for r in results], [str(self.interview)])
        self.assertEqual(self.search.search("can't", filters=["nowhere"]), [])

    def test_no_matches(self):
        self.assertEqual(self.search.search("absent phrase"), [])

    def test_search_is_deterministic(self):
        first = [r.file_path for r in self.search.search("can")]
        second = [r.file_path for r in self.search.search("can")]
        self.assertEqual(first, second)
        self.assertEqual(first, sorted(first))

    def test_search_file_without_transcript(self):
        self.assertIsNone(search_file(self.second_root / "orphan.mkv", self.second_root, "x"))


class NormalizationTests(unittest.TestCase):
    def test_normalize_for_match(self):
        self.assertEqual(normalize_for_match("It\u2019s \u2018Fine\u00b4"), "it's 'fine'")

    def test_looks_like_timestamp(self):
        self.assertTrue(looks_like_timestamp("00:00:01.000 --> 00:00:02.000"))
        self.assertFalse(looks_like_timestamp("no digits: here"))
        self.assertFalse(looks_like_timestamp("1234"))

    def test_matches_filter(self):
        self.assertTrue(matches_filter("/v/Movie.mkv", None))
        self.assertTrue(matches_filter("/v/Movie.mkv", ["", "movie"]))
        self.assertFalse(matches_filter("/v/Movie.mkv", ["show"]))


if __name__ == "__main__":
    unittest.main()
