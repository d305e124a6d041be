import unittest
from unittest import mock

import ffmpeg

from atci.errors import ProbeError
from atci.pipeline.audio_codec import (
    AAC_ARGS, STEREO_DOWNMIX, audio_codec_args, channel_filter, select_audio_codec_args,
)
from atci.pipeline.probe import MediaProbe, parse_frame_rate


def probe_returning(data):
    return mock.patch("atci.pipeline.probe.ffmpeg.probe", return_value=data)


class MediaProbeTests(unittest.TestCase):
    def setUp(self):
        self.probe = MediaProbe("/opt/ffprobe")

    def test_duration(self):
        with probe_returning({"format": {"duration": "3725.4"}, "streams": []}) as probe:
            self.assertEqual(self.probe.duration("/v/movie.mkv"), "01:02:05")
        probe.assert_called_once_with("/v/movie.mkv", cmd="/opt/ffprobe")

    def test_unparsable_duration(self):
        with probe_returning({"format": {"duration": "N/A"}}):
            with self.assertRaises(ProbeError):
                self.probe.duration_seconds("/v/movie.mkv")

    def test_non_finite_duration(self):
        for raw in ("nan", "inf", "-1.0"):
            with probe_returning({"format": {"duration": raw}}):
                with self.assertRaises(ProbeError, msg=raw):
                    self.probe.duration("/v/movie.mkv")

    def test_probe_failure_maps_to_probe_error(self):
        error = ffmpeg.Error("ffprobe", b"", b"Invalid data found when processing input")
        with mock.patch("atci.pipeline.probe.ffmpeg.probe", side_effect=error):
            with self.assertRaises(ProbeError) as ctx:
                self.probe.duration("/v/broken.mkv")
        self.assertIn("Invalid data", str(ctx.exception))

    def test_missing_binary_maps_to_probe_error(self):
        with mock.patch("atci.pipeline.probe.ffmpeg.probe", side_effect=FileNotFoundError("ffprobe")):
            with self.assertRaises(ProbeError):
                self.probe.has_audio("/v/movie.mkv")

    def test_subtitle_streams_keep_container_order(self):
        streams = [
            {"index": 2, "codec_type": "subtitle", "codec_name": "subrip", "tags": {"language": "eng"}},
            {"index": 5, "codec_type": "subtitle", "codec_name": "ass"},
        ]
        with probe_returning({"streams": streams}) as probe:
            info = self.probe.subtitle_stream_info("/v/movie.mkv")
            indices = self.probe.subtitle_streams("/v/movie.mkv")
        self.assertEqual(indices, [2, 5])
        self.assertEqual(info[0].language, "eng")
        self.assertIsNone(info[1].language)
        self.assertEqual(probe.call_args.kwargs["select_streams"], "s")

    def test_has_audio(self):
        with probe_returning({"streams": [{"index": 1, "codec_type": "audio"}]}):
            self.assertTrue(self.probe.has_audio("/v/movie.mkv"))
        with probe_returning({"streams": []}):
            self.assertFalse(self.probe.has_audio("/v/movie.mkv"))

    def test_channel_layout_defaults_to_stereo(self):
        with probe_returning({"streams": [{"channel_layout": "5.1(Side)"}]}):
            self.assertEqual(self.probe.channel_layout("/v/movie.mkv"), "5.1(side)")
        with probe_returning({"streams": []}):
            self.assertEqual(self.probe.channel_layout("/v/movie.mkv"), "stereo")
        with mock.patch("atci.pipeline.probe.ffmpeg.probe", side_effect=ffmpeg.Error("ffprobe", b"", b"")):
            self.assertEqual(self.probe.channel_layout("/v/movie.mkv"), "stereo")

    def test_frame_rate(self):
        with probe_returning({"streams": [{"r_frame_rate": "30000/1001"}]}):
            self.assertAlmostEqual(self.probe.frame_rate("/v/movie.mkv"), 29.97, places=2)
        with probe_returning({"streams": [{"r_frame_rate": "0/0"}]}):
            self.assertEqual(self.probe.frame_rate("/v/movie.mkv"), 30.0)

    def test_parse_frame_rate(self):
        self.assertEqual(parse_frame_rate("25/1"), 25.0)
        self.assertEqual(parse_frame_rate("23.976"), 23.976)
        with self.assertRaises(ValueError):
            parse_frame_rate("")


class AudioCodecTests(unittest.TestCase):
    def test_reencode_containers(self):
        self.assertEqual(select_audio_codec_args("mkv", False, "stereo"), AAC_ARGS)
        self.assertEqual(
            select_audio_codec_args("MOV", True, "5.1"),
            ["-filter:a", channel_filter("5.1")] + AAC_ARGS,
        )

    def test_copy_containers(self):
        self.assertEqual(select_audio_codec_args("mp4", True, "5.1"), ["-c:a", "copy"])
        self.assertEqual(
            select_audio_codec_args("ts", False, "stereo"),
            ["-c:a", "copy", "-bsf:a", "aac_adtstoasc"],
        )

    def test_unknown_layout_downmixes(self):
        self.assertEqual(channel_filter("hexagonal"), STEREO_DOWNMIX)
        self.assertTrue(channel_filter("7.1").startswith("channelmap="))

    def test_audio_codec_args_uses_probe(self):
        probe = mock.Mock(spec=MediaProbe)
        probe.channel_layout.return_value = "5.1(side)"
        args = audio_codec_args("/v/movie.webm", probe)
        self.assertEqual(args[:2], ["-filter:a", channel_filter("5.1(side)")])
        probe.channel_layout.return_value = "mono"
        self.assertEqual(audio_codec_args("/v/movie.webm", probe), AAC_ARGS)


if __name__ == "__main__":
    unittest.main()
