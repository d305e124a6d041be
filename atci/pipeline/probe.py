import logging
import math
from typing import Any, Dict, List

import ffmpeg

from ..errors import ProbeError
from ..models import SubtitleStream
from .util import PathLike, format_duration

logger = logging.getLogger("atci")

DEFAULT_CHANNEL_LAYOUT = "stereo"
DEFAULT_FRAME_RATE = 30.0


class MediaProbe:
    """Read-only container queries answered by ffprobe"""

    def __init__(self, ffprobe_path: str):
        self.ffprobe_path = ffprobe_path

    def _probe(self, video_path: PathLike, **kwargs) -> Dict[str, Any]:
        try:
            return ffmpeg.probe(str(video_path), cmd=self.ffprobe_path, **kwargs)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf-8", errors="replace").strip() if e.stderr else ""
            raise ProbeError(f"ffprobe failed for {video_path}: {stderr}") from e
        except OSError as e:
            raise ProbeError(f"Failed to execute ffprobe: {e}") from e
        except ValueError as e:
            # Non-JSON output
            raise ProbeError(f"Unparsable ffprobe output for {video_path}: {e}") from e

    def _streams(self, video_path: PathLike, selector: str) -> List[Dict[str, Any]]:
        return self._probe(video_path, select_streams=selector).get('streams', [])

    def duration_seconds(self, video_path: PathLike) -> float:
        """Container duration in seconds"""
        data = self._probe(video_path)
        raw = data.get('format', {}).get('duration')
        try:
            seconds = float(raw)
        except (TypeError, ValueError):
            raise ProbeError(f"Failed to parse duration for {video_path}: {raw!r}")
        if not math.isfinite(seconds) or seconds < 0:
            raise ProbeError(f"Invalid duration for {video_path}: {raw!r}")
        return seconds

    def duration(self, video_path: PathLike) -> str:
        """Container duration rounded to whole seconds, as HH:MM:SS"""
        return format_duration(self.duration_seconds(video_path))

    def subtitle_stream_info(self, video_path: PathLike) -> List[SubtitleStream]:
        """Subtitle streams in container order"""
        streams = []
        for stream in self._streams(video_path, 's'):
            if stream.get('codec_type') != 'subtitle':
                continue
            try:
                index = int(stream['index'])
            except (KeyError, TypeError, ValueError):
                continue
            language = (stream.get('tags') or {}).get('language')
            if language in ("", "N/A"):
                language = None
            streams.append(SubtitleStream(index=index, codec_name=stream.get('codec_name'), language=language))
        return streams

    def subtitle_streams(self, video_path: PathLike) -> List[int]:
        """Absolute indices of subtitle streams, container order preserved"""
        return [stream.index for stream in self.subtitle_stream_info(video_path)]

    def has_audio(self, video_path: PathLike) -> bool:
        """True iff at least one audio stream is present"""
        return any(s.get('codec_type') == 'audio' for s in self._streams(video_path, 'a'))

    def channel_layout(self, video_path: PathLike) -> str:
        """First audio stream's channel layout, lower-cased; stereo when unknown"""
        try:
            streams = self._streams(video_path, 'a:0')
        except ProbeError as e:
            logger.warning(f"Channel layout probe failed, assuming {DEFAULT_CHANNEL_LAYOUT}: {e}")
            return DEFAULT_CHANNEL_LAYOUT

        if not streams:
            return DEFAULT_CHANNEL_LAYOUT
        layout = (streams[0].get('channel_layout') or "").strip().lower()
        return layout or DEFAULT_CHANNEL_LAYOUT

    def frame_rate(self, video_path: PathLike) -> float:
        """First video stream's r_frame_rate; 30.0 when unknown"""
        try:
            streams = self._streams(video_path, 'v:0')
        except ProbeError as e:
            logger.warning(f"Frame rate probe failed, assuming {DEFAULT_FRAME_RATE}: {e}")
            return DEFAULT_FRAME_RATE

        if not streams:
            return DEFAULT_FRAME_RATE
        try:
            return parse_frame_rate(streams[0].get('r_frame_rate', ''))
        except ValueError:
            return DEFAULT_FRAME_RATE


def parse_frame_rate(value: str) -> float:
    """Parse '30000/1001' or '29.97' into frames per second"""
    value = (value or "").strip()
    if '/' in value:
        numerator, denominator = value.split('/', 1)
        den = float(denominator)
        if den == 0:
            raise ValueError(f"Invalid frame rate: {value}")
        return float(numerator) / den
    return float(value)
