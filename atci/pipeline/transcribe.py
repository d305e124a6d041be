import logging
from pathlib import Path
from typing import Optional

import ffmpeg

from ..cancellation import CancellationToken
from ..config import AtciConfig
from ..errors import AtciError, CancelError, ProbeError
from ..models import Outcome, ProduceResult, SubtitleStream
from .metadata import set_meta, write_transcript
from .probe import MediaProbe
from .runner import ToolRunner, check
from .subtitles import extract_subtitles
from .util import PathLike, remove_quietly, transcript_path_for

logger = logging.getLogger("atci")

SUBTITLES_SOURCE = "subtitles"


def audio_path_for(video_path: PathLike) -> Path:
    """Temporary mono audio track written next to the video"""
    return Path(video_path).with_suffix(".mp3")


def vtt_path_for(audio_path: PathLike) -> Path:
    """The speech-to-text tool writes <audio>.vtt"""
    return Path(f"{audio_path}.vtt")


class TranscriptProducer:
    """
    Writes the transcript for one video from the best available source.

    Embedded subtitles win; otherwise the first audio track is transcribed
    by whisper-cli; otherwise the transcript is left empty. Failures other
    than cancellation still leave an (empty) transcript behind and are
    reported through ProduceResult.error.
    """

    def __init__(self, config: AtciConfig, atci_dir: PathLike,
                 runner: Optional[ToolRunner] = None, probe: Optional[MediaProbe] = None):
        self.config = config
        self.atci_dir = Path(atci_dir)
        self.runner = runner or ToolRunner()
        self.probe = probe or MediaProbe(config.ffprobe_path)

    def produce(self, video_path: PathLike,
                cancel_token: Optional[CancellationToken] = None,
                model: Optional[str] = None,
                subtitle_stream_index: Optional[int] = None) -> ProduceResult:
        """
        Produce the transcript for `video_path`.

        Args:
            video_path: Video to transcribe
            cancel_token: Checked between stages and while tools run
            model: Speech-to-text model overriding the configured one
            subtitle_stream_index: Subtitle stream to extract instead of the first one

        Returns:
            ProduceResult with outcome COMPLETED or CANCELLED
        """
        video_path = Path(video_path)
        transcript_path = transcript_path_for(video_path)

        if transcript_path.exists():
            logger.info(f"Transcript already exists, skipping: {transcript_path}")
            return ProduceResult(Outcome.COMPLETED)

        if self.config.allow_subtitles:
            try:
                if self._try_subtitles(video_path, transcript_path, cancel_token, subtitle_stream_index):
                    return ProduceResult(Outcome.COMPLETED, source=SUBTITLES_SOURCE)
            except CancelError:
                self._cleanup(video_path)
                return ProduceResult(Outcome.CANCELLED)

        if cancel_token is not None and cancel_token.is_cancelled():
            logger.info(f"CANCELLED: before audio fallback for {video_path}")
            self._cleanup(video_path)
            return ProduceResult(Outcome.CANCELLED)

        if not self.config.allow_whisper:
            logger.info(f"Speech-to-text disabled, writing empty transcript: {transcript_path}")
            write_transcript(transcript_path, {}, "")
            return ProduceResult(Outcome.COMPLETED)

        try:
            return self._transcribe_audio(video_path, transcript_path, cancel_token, model)
        except CancelError:
            self._cleanup(video_path)
            return ProduceResult(Outcome.CANCELLED)
        except (AtciError, OSError) as e:
            logger.warning(f"Transcription failed for {video_path}, writing empty transcript: {e}")
            self._cleanup_temporaries(video_path)
            write_transcript(transcript_path, {}, "")
            return ProduceResult(Outcome.COMPLETED, error=str(e))

    def _try_subtitles(self, video_path: Path, transcript_path: Path,
                       cancel_token: Optional[CancellationToken],
                       stream_index: Optional[int] = None) -> bool:
        try:
            streams = self.probe.subtitle_stream_info(video_path)
        except ProbeError as e:
            logger.warning(f"Subtitle probe failed for {video_path}: {e}")
            if stream_index is None:
                return False
            streams = []

        if stream_index is not None:
            first = next(
                (stream for stream in streams if stream.index == stream_index),
                SubtitleStream(index=stream_index),
            )
        elif streams:
            first = streams[0]
        else:
            return False
        logger.info(
            f"SUBTITLES: extracting stream {first.index} "
            f"({first.codec_name or 'unknown codec'}, language {first.language or 'unknown'}) "
            f"from {video_path}"
        )
        try:
            body = extract_subtitles(
                self.runner, self.config.ffmpeg_path, video_path, first.index, cancel_token
            )
        except CancelError:
            raise
        except (AtciError, OSError) as e:
            logger.warning(f"Subtitle extraction failed for {video_path}, falling back: {e}")
            return False

        write_transcript(transcript_path, {}, body)
        set_meta(video_path, "source", SUBTITLES_SOURCE)
        logger.info(f"SUBTITLES: wrote {transcript_path}")
        return True

    def _transcribe_audio(self, video_path: Path, transcript_path: Path,
                          cancel_token: Optional[CancellationToken],
                          model: Optional[str] = None) -> ProduceResult:
        model_name = model or self.config.model_name
        if not self.probe.has_audio(video_path):
            logger.info(f"No audio stream in {video_path}, writing empty transcript")
            write_transcript(transcript_path, {}, "")
            return ProduceResult(Outcome.COMPLETED)

        audio_path = audio_path_for(video_path)
        logger.info(f"AUDIO: extracting {video_path} -> {audio_path}")
        stream = (
            ffmpeg
            .input(str(video_path))['a:0']
            .output(str(audio_path), **{'q:a': 0, 'ac': 1, 'ar': 16000})
            .overwrite_output()
        )
        result = self.runner.run_ffmpeg(stream, self.config.ffmpeg_path, cancel_token)
        check(result, "Audio extraction")

        model_path = self.config.model_path(self.atci_dir, model_name)
        logger.info(f"WHISPER: transcribing {audio_path} with model {model_name}")
        result = self.runner.run(
            self.config.whispercli_path,
            ["-m", str(model_path), "-np", "--max-context", "0", "-ovtt", "-f", str(audio_path)],
            cancel_token,
        )
        check(result, "Speech-to-text")

        vtt_path = vtt_path_for(audio_path)
        if not vtt_path.exists():
            remove_quietly(audio_path)
            write_transcript(transcript_path, {}, "")
            error_msg = f"Speech-to-text produced no output for {video_path}"
            logger.warning(error_msg)
            return ProduceResult(Outcome.COMPLETED, error=error_msg)

        with open(vtt_path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
        # Drop the WEBVTT header line
        _header, _sep, body = content.partition("\n")

        with open(vtt_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(body)
        vtt_path.replace(transcript_path)
        remove_quietly(audio_path)

        set_meta(video_path, "source", model_name)
        logger.info(f"WHISPER: wrote {transcript_path}")
        return ProduceResult(Outcome.COMPLETED, source=model_name)

    def _cleanup_temporaries(self, video_path: Path) -> None:
        audio_path = audio_path_for(video_path)
        for path in (audio_path, vtt_path_for(audio_path)):
            if remove_quietly(path):
                logger.debug(f"Removed temporary file {path}")

    def _cleanup(self, video_path: Path) -> None:
        """Remove temporaries and the in-progress transcript after a cancel"""
        self._cleanup_temporaries(video_path)
        remove_quietly(transcript_path_for(video_path))
        logger.info(f"CANCELLED: cleaned up temporaries for {video_path}")
