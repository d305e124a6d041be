import logging
import re
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

import ffmpeg

from ..cancellation import CancellationToken
from .runner import ToolRunner, check
from .util import PathLike, srt_to_transcript_timestamp

logger = logging.getLogger("atci")

SRT_TIMING_PATTERN = re.compile(
    r'(\d{2}:\d{2}:\d{2}[,.]\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2}[,.]\d{3})'
)
TAG_PATTERN = re.compile(r'<[^>]*>')
BLOCK_SEPARATOR = re.compile(r'\n[ \t]*\n')


def parse_srt(content: str) -> List[Tuple[str, str, str]]:
    """
    Parse SRT text into (start, end, text) cues.

    Timestamps come back in transcript form (period before the
    milliseconds). Multi-line cue text is joined with single spaces and
    markup tags are stripped. Blocks without a timing line or without text
    are dropped.
    """
    content = content.replace('\r', '').lstrip('\ufeff')
    cues = []

    for block in BLOCK_SEPARATOR.split(content):
        lines = [line.strip() for line in block.strip().split('\n')]
        timing_at = None
        for i, line in enumerate(lines[:2]):
            if '-->' in line:
                timing_at = i
                break
        if timing_at is None:
            continue

        match = SRT_TIMING_PATTERN.search(lines[timing_at])
        if not match:
            continue

        text_lines = [TAG_PATTERN.sub('', line).strip() for line in lines[timing_at + 1:]]
        text = ' '.join(line for line in text_lines if line)
        if not text:
            continue

        start = srt_to_transcript_timestamp(match.group(1))
        end = srt_to_transcript_timestamp(match.group(2))
        cues.append((start, end, text))

    return cues


def srt_to_transcript(content: str) -> str:
    """
    Render SRT text as a transcript body.

    Cues are separated by a blank line and preceded by a single blank line
    that sits between the metadata sentinel and the first cue. The last cue
    has no trailing newline. Without any cue the body is empty.
    """
    cues = parse_srt(content)
    if not cues:
        return ""
    return "\n" + "\n\n".join(f"{start} --> {end}\n{text}" for start, end, text in cues)


def extract_subtitles(runner: ToolRunner, ffmpeg_path: str, video_path: PathLike,
                      stream_index: int,
                      cancel_token: Optional[CancellationToken] = None) -> str:
    """
    Remux one subtitle stream to SRT and return it as a transcript body.

    Raises:
        ToolError: if the transcoder fails
        CancelError: if the token trips while the transcoder runs
    """
    with tempfile.TemporaryDirectory(prefix="atci-subs-") as tmp_dir:
        srt_path = Path(tmp_dir) / "subtitles.srt"
        stream = (
            ffmpeg
            .input(str(video_path))[str(stream_index)]
            .output(str(srt_path), **{'c:s': 'srt'})
            .overwrite_output()
        )
        result = runner.run_ffmpeg(stream, ffmpeg_path, cancel_token)
        check(result, f"Subtitle extraction of stream {stream_index}")

        with open(srt_path, 'r', encoding='utf-8', errors='replace') as f:
            return srt_to_transcript(f.read())
