import unittest

from atci.pipeline.subtitles import parse_srt, srt_to_transcript
from atci.pipeline.util import (
    format_duration, format_timecode_ms, parse_timecode_ms,
    srt_to_transcript_timestamp, transcript_to_srt_timestamp,
)


class SrtParsingTests(unittest.TestCase):
    def test_single_cue(self):
        cues = parse_srt("1\n00:00:01,000 --> 00:00:02,500\nHello world\n")
        self.assertEqual(cues, [("00:00:01.000", "00:00:02.500", "Hello world")])

    def test_multiline_text_tags_and_crlf(self):
        srt = (
            "\ufeff1\r\n00:00:01,000 --> 00:00:02,000\r\n<i>First</i> line\r\n"
            "<font color=\"red\">second</font>\r\n\r\n"
            "2\r\n00:00:03,000 --> 00:00:04,000\r\nNext\r\n"
        )
        cues = parse_srt(srt)
        self.assertEqual(cues, [
            ("00:00:01.000", "00:00:02.000", "First line second"),
            ("00:00:03.000", "00:00:04.000", "Next"),
        ])

    def test_blocks_without_timing_or_text_dropped(self):
        srt = (
            "1\nnot a timing line\ntext\n\n"
            "2\n00:00:05,000 --> 00:00:06,000\n\n"
            "3\n00:00:07,000 --> 00:00:08,000\nkept\n"
        )
        self.assertEqual(parse_srt(srt), [("00:00:07.000", "00:00:08.000", "kept")])

    def test_transcript_body_layout(self):
        body = srt_to_transcript(
            "1\n00:00:01,000 --> 00:00:02,500\nHello world\n\n"
            "2\n00:00:03,000 --> 00:00:04,000\nAgain\n"
        )
        self.assertEqual(
            body,
            "\n00:00:01.000 --> 00:00:02.500\nHello world\n\n00:00:03.000 --> 00:00:04.000\nAgain",
        )

    def test_no_cues_gives_empty_body(self):
        self.assertEqual(srt_to_transcript(""), "")
        self.assertEqual(srt_to_transcript("garbage\n\nmore garbage"), "")


class TimestampTests(unittest.TestCase):
    def test_srt_and_transcript_forms_convert_both_ways(self):
        for srt in ("00:00:00,000", "01:02:03,456", "99:59:59,999"):
            transcript = srt_to_transcript_timestamp(srt)
            self.assertEqual(transcript, srt.replace(",", "."))
            self.assertEqual(transcript_to_srt_timestamp(transcript), srt)

    def test_timecode_milliseconds(self):
        self.assertEqual(parse_timecode_ms("01:02:03.456"), 3723456)
        self.assertEqual(parse_timecode_ms("00:00:01,500"), 1500)
        self.assertEqual(format_timecode_ms(3723456), "01:02:03.456")
        with self.assertRaises(ValueError):
            parse_timecode_ms("1:2:3")

    def test_durations(self):
        self.assertEqual(format_duration(65.4), "00:01:05")
        self.assertEqual(format_duration(3599.6), "01:00:00")

    def test_durations_round_halves_up(self):
        self.assertEqual(format_duration(10.5), "00:00:11")
        self.assertEqual(format_duration(12.5), "00:00:13")
        self.assertEqual(format_duration(0.49), "00:00:00")


if __name__ == "__main__":
    unittest.main()
