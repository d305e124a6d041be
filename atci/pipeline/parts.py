"""
Multi-part video reassembly.

Files named <base>.part<N>.<ext> are transcribed one part at a time and
stitched into the master pair <base>.<ext> / <base>.txt in the same
directory. Part N is only processed once parts 1..N-1 are recorded;
until then the master transcript carries a placeholder note.
"""

import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Tuple

import ffmpeg

from ..cancellation import CancellationToken
from ..catalog import VideoPartsStore
from ..errors import ProbeError
from ..models import Outcome, ProduceResult, VideoPart
from .metadata import read_transcript, set_meta, write_transcript
from .probe import MediaProbe
from .runner import ToolRunner, check
from .transcribe import TranscriptProducer
from .util import (
    VIDEO_EXTENSIONS, PathLike, format_timecode_ms, parse_timecode_ms,
    remove_quietly, transcript_path_for,
)

logger = logging.getLogger("atci")

PART_PATTERN = re.compile(r'^(.+)\.part(\d+)\.([^.]+)$')

SHIFT_PATTERN = re.compile(r'(\d{2}:\d{2}:\d{2}\.\d{3}) --> (\d{2}:\d{2}:\d{2}\.\d{3})')

PLACEHOLDER_PATTERN = re.compile(
    r'^>>> Part \d+ of video, missing part\(s\): [^\n]* <<<\n'
    r'Processing paused until missing parts are available\.\n?',
    re.MULTILINE,
)


def parse_video_part(video_path: PathLike) -> Optional[VideoPart]:
    """Detect <base>.part<N>.<ext>; None for anything else"""
    path = Path(video_path)
    match = PART_PATTERN.match(path.name)
    if not match:
        return None
    base_name, number, extension = match.groups()
    part_number = int(number)
    if part_number < 1 or extension.lower() not in VIDEO_EXTENSIONS:
        return None
    return VideoPart(
        base_name=base_name,
        part_number=part_number,
        video_path=str(path),
        extension=extension,
    )


def master_paths(part: VideoPart) -> Tuple[Path, Path]:
    """Master video and master transcript for a part"""
    parent = Path(part.video_path).parent
    master_video = parent / f"{part.base_name}.{part.extension}"
    return master_video, transcript_path_for(master_video)


def sibling_part_path(part: VideoPart, part_number: int) -> Path:
    parent = Path(part.video_path).parent
    return parent / f"{part.base_name}.part{part_number}.{part.extension}"


def shift_timestamps(text: str, offset_ms: int) -> str:
    """Shift every `start --> end` pair in `text` by `offset_ms`"""
    if offset_ms == 0:
        return text

    def _shift(match):
        start = parse_timecode_ms(match.group(1)) + offset_ms
        end = parse_timecode_ms(match.group(2)) + offset_ms
        return f"{format_timecode_ms(start)} --> {format_timecode_ms(end)}"

    return SHIFT_PATTERN.sub(_shift, text)


def placeholder_note(part_number: int, missing: List[int]) -> str:
    missing_str = ", ".join(str(n) for n in missing)
    return (
        f">>> Part {part_number} of video, missing part(s): {missing_str} <<<\n"
        f"Processing paused until missing parts are available.\n"
    )


def failure_note(part: VideoPart, error: str) -> str:
    return (
        f">>> Part {part.part_number} FAILED: {part.base_name} <<<\n"
        f"Error processing part {part.part_number}: {error}\n"
    )


def strip_placeholders(body: str) -> str:
    return PLACEHOLDER_PATTERN.sub('', body)


def _join_bodies(existing: str, addition: str) -> str:
    if not existing.strip():
        return addition
    return existing.rstrip() + "\n\n" + addition.lstrip()


def _concat_entry(path: Path) -> str:
    escaped = str(path).replace("'", "'\\''")
    return f"file '{escaped}'"


class PartReassembler:
    """Runs the producer for one part and folds the result into the master pair"""

    def __init__(self, producer: TranscriptProducer, parts_store: VideoPartsStore,
                 queue, probe: Optional[MediaProbe] = None,
                 runner: Optional[ToolRunner] = None):
        self.producer = producer
        self.parts_store = parts_store
        self.queue = queue
        self.probe = probe or producer.probe
        self.runner = runner or producer.runner
        self.ffmpeg_path = producer.config.ffmpeg_path

    def process(self, part: VideoPart,
                cancel_token: Optional[CancellationToken] = None,
                model: Optional[str] = None,
                subtitle_stream_index: Optional[int] = None) -> ProduceResult:
        """
        Process one part.

        Returns:
            ProduceResult; BLOCKED when earlier parts are still missing
        """
        master_video, master_transcript = master_paths(part)

        missing = self.parts_store.missing_parts(part.base_name, part.part_number - 1)
        if missing:
            logger.info(
                f"Part {part.part_number} of {part.base_name} waiting on part(s) "
                f"{', '.join(str(n) for n in missing)}"
            )
            self._write_placeholder(master_transcript, part.part_number, missing)
            return ProduceResult(Outcome.BLOCKED)

        result = self.producer.produce(
            part.video_path, cancel_token, model, subtitle_stream_index
        )
        if result.cancelled:
            return result

        if result.error:
            logger.warning(f"Part {part.part_number} of {part.base_name} failed: {result.error}")
            self._append_to_master(master_transcript, failure_note(part, result.error))
            self._queue_next_part(part)
            return result

        part_transcript = transcript_path_for(part.video_path)
        part_meta, part_body = read_transcript(part_transcript)
        source = result.source or part_meta.get("source")

        offset_ms = self._offset_ms(part, master_video)
        shifted = shift_timestamps(part_body, offset_ms)
        self._append_to_master(master_transcript, shifted)

        self.parts_store.record(part, len(shifted.splitlines()))
        remove_quietly(part_transcript)

        self._update_master_video(part, master_video)

        if master_video.exists():
            try:
                set_meta(master_video, "length", self.probe.duration(master_video))
            except ProbeError as e:
                logger.warning(f"Could not read length of {master_video}: {e}")
        if source:
            set_meta(master_video, "source", source)

        self._queue_next_part(part)
        logger.info(f"READY: part {part.part_number} of {part.base_name} merged into {master_transcript}")
        return ProduceResult(Outcome.COMPLETED, source=source)

    def _offset_ms(self, part: VideoPart, master_video: Path) -> int:
        """Summed duration of the parts already folded into the master"""
        if part.part_number == 1:
            return 0
        try:
            if master_video.exists():
                return int(round(self.probe.duration_seconds(master_video) * 1000))

            total = 0
            for n in self.parts_store.processed_parts(part.base_name):
                if n >= part.part_number:
                    continue
                earlier = sibling_part_path(part, n)
                if earlier.exists():
                    total += int(round(self.probe.duration_seconds(earlier) * 1000))
            return total
        except ProbeError as e:
            logger.warning(f"Could not compute offset for part {part.part_number} of {part.base_name}: {e}")
            return 0

    def _write_placeholder(self, master_transcript: Path, part_number: int, missing: List[int]) -> None:
        meta, body = read_transcript(master_transcript)
        body = _join_bodies(strip_placeholders(body), placeholder_note(part_number, missing))
        write_transcript(master_transcript, meta, body)

    def _append_to_master(self, master_transcript: Path, addition: str) -> None:
        meta, body = read_transcript(master_transcript)
        body = _join_bodies(strip_placeholders(body), addition)
        write_transcript(master_transcript, meta, body)

    def _update_master_video(self, part: VideoPart, master_video: Path) -> None:
        part_video = Path(part.video_path)
        if not part_video.exists():
            logger.warning(f"Part video vanished before merge: {part_video}")
            return

        if not master_video.exists():
            os.replace(part_video, master_video)
            logger.info(f"Created master video {master_video} from part {part.part_number}")
            return

        parent = master_video.parent
        concat_list = parent / f"{part.base_name}_append.txt"
        temp_master = parent / f"{part.base_name}_temp.{part.extension}"
        with open(concat_list, "w", encoding="utf-8", newline="\n") as f:
            f.write(_concat_entry(master_video) + "\n" + _concat_entry(part_video) + "\n")

        try:
            stream = (
                ffmpeg
                .input(str(concat_list), f='concat', safe=0)
                .output(str(temp_master), c='copy')
                .overwrite_output()
            )
            check(self.runner.run_ffmpeg(stream, self.ffmpeg_path), "Master video append")
            os.replace(temp_master, master_video)
        except BaseException:
            remove_quietly(temp_master)
            raise
        finally:
            remove_quietly(concat_list)

        remove_quietly(part_video)
        logger.info(f"Appended part {part.part_number} to master video {master_video}")

    def _queue_next_part(self, part: VideoPart) -> None:
        next_part = sibling_part_path(part, part.part_number + 1)
        if next_part.exists():
            logger.info(f"Found next part: {next_part}")
            self.queue.append(str(next_part))
