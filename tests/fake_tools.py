"""
Stand-in executables for ffmpeg, ffprobe and whisper-cli.

Test videos are small JSON documents describing their format and streams.
The fake ffprobe prints them back (honouring -select_streams), the fake
ffmpeg derives its outputs from them, and the fake whisper-cli turns the
"speech" field carried through the extracted audio into a .vtt file.
"""

import json
import os
import stat
import sys
from pathlib import Path
from typing import Dict, List, Optional

from atci.config import AtciConfig

FFPROBE_SCRIPT = r'''
import json
import sys

TYPES = {"s": "subtitle", "a": "audio", "v": "video"}


def main(argv):
    path = argv[-1]
    selector = None
    if "-select_streams" in argv:
        selector = argv[argv.index("-select_streams") + 1]
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError):
        sys.stderr.write(path + ": Invalid data found when processing input\n")
        return 1
    streams = data.get("streams", [])
    if selector:
        kind, _, nth = selector.partition(":")
        streams = [s for s in streams if s.get("codec_type") == TYPES[kind]]
        if nth:
            streams = streams[int(nth):int(nth) + 1]
    json.dump({"format": data.get("format", {}), "streams": streams}, sys.stdout)
    return 0


sys.exit(main(sys.argv[1:]))
'''

FFMPEG_SCRIPT = r'''
import json
import sys


def load(path):
    with open(path) as f:
        return json.load(f)


def concat(list_path, output):
    with open(list_path) as f:
        files = [line.strip()[len("file '"):-1] for line in f if line.strip()]
    parts = [load(p) for p in files]
    merged = dict(parts[0])
    merged["format"] = {
        "duration": str(sum(float(p["format"]["duration"]) for p in parts))
    }
    with open(output, "w") as f:
        json.dump(merged, f)
    return 0


def main(argv):
    inputs = [argv[i + 1] for i, arg in enumerate(argv) if arg == "-i"]
    output = [arg for arg in argv if not arg.startswith("-")][-1]
    if "concat" in argv:
        return concat(inputs[0], output)

    data = load(inputs[0])
    if data.get("ffmpeg_fail"):
        sys.stderr.write("simulated transcoder failure\n")
        return 1

    if output.endswith(".srt"):
        index = int(argv[argv.index("-map") + 1].split(":")[1])
        for stream in data.get("streams", []):
            if stream.get("index") == index:
                with open(output, "w") as f:
                    f.write(stream.get("srt", ""))
                return 0
        sys.stderr.write("Stream map matches no streams\n")
        return 1

    if output.endswith(".mp3"):
        with open(output, "w") as f:
            json.dump({
                "speech": data.get("speech", ""),
                "whisper_sleep": data.get("whisper_sleep", 0),
                "no_vtt": data.get("no_vtt", False),
            }, f)
        return 0

    sys.stderr.write("unsupported output " + output + "\n")
    return 1


sys.exit(main(sys.argv[1:]))
'''

WHISPER_SCRIPT = r'''
import json
import sys
import time


def main(argv):
    audio = argv[argv.index("-f") + 1]
    with open(audio) as f:
        data = json.load(f)
    if data.get("whisper_sleep"):
        time.sleep(data["whisper_sleep"])
    if data.get("no_vtt"):
        return 0
    with open(audio + ".vtt", "w") as f:
        f.write("WEBVTT\n\n" + data.get("speech", ""))
    return 0


sys.exit(main(sys.argv[1:]))
'''


def _write_executable(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body.lstrip()}", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def install_fake_tools(directory: Path) -> Dict[str, str]:
    """Write the three fake binaries into `directory`"""
    directory.mkdir(parents=True, exist_ok=True)
    return {
        "ffprobe_path": str(_write_executable(directory / "ffprobe", FFPROBE_SCRIPT)),
        "ffmpeg_path": str(_write_executable(directory / "ffmpeg", FFMPEG_SCRIPT)),
        "whispercli_path": str(_write_executable(directory / "whisper-cli", WHISPER_SCRIPT)),
    }


def make_config(tools: Dict[str, str], watch_directories: Optional[List[str]] = None,
                **overrides) -> AtciConfig:
    values = dict(tools)
    values.update(model_name="base.en", watch_directories=watch_directories or [])
    values.update(overrides)
    return AtciConfig(**values)


def make_video(path: Path, duration: float = 10.0, audio: bool = True,
               subtitles: Optional[List[str]] = None, speech: str = "",
               age_seconds: Optional[float] = None, **extra) -> Path:
    """
    Write a fake video document.

    Args:
        subtitles: SRT text for each embedded subtitle stream
        speech: VTT cues the fake speech-to-text tool will "hear"
        age_seconds: Backdate the mtime by this many seconds
        extra: Behaviour switches (ffmpeg_fail, whisper_sleep, no_vtt)
    """
    streams = [{"index": 0, "codec_type": "video", "codec_name": "h264", "r_frame_rate": "30000/1001"}]
    if audio:
        streams.append({
            "index": len(streams), "codec_type": "audio",
            "codec_name": "aac", "channel_layout": "stereo",
        })
    for srt in subtitles or []:
        streams.append({
            "index": len(streams), "codec_type": "subtitle", "codec_name": "subrip",
            "tags": {"language": "eng"}, "srt": srt,
        })

    document = {"format": {"duration": str(duration)}, "streams": streams, "speech": speech}
    document.update(extra)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document), encoding="utf-8")
    if age_seconds is not None:
        stamp = path.stat().st_mtime - age_seconds
        os.utime(path, (stamp, stamp))
    return path
