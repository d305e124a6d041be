"""
Metadata block at the top of each transcript.

A transcript reads as zero or more `key: value` lines, the sentinel line
`>>>.atcimetaend`, then the body. Only `length` and `source` are
recognized; any other line found above the sentinel is kept as body text.
A missing sentinel is tolerated on read and written on the next update.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..errors import ValidationError
from .util import PathLike, transcript_path_for

logger = logging.getLogger("atci")

META_SENTINEL = ">>>.atcimetaend"

# Written in this order
META_KEYS = ("length", "source")


def parse_transcript(content: str) -> Tuple[Dict[str, str], str]:
    """
    Split transcript text into its metadata block and body.

    Returns:
        Tuple of (metadata dict, body text). The body is returned exactly as
        it follows the sentinel line.
    """
    lines = content.split("\n")
    try:
        sentinel_at = lines.index(META_SENTINEL)
    except ValueError:
        return {}, content

    meta: Dict[str, str] = {}
    stray = []
    for line in lines[:sentinel_at]:
        if not line.strip():
            continue
        key, sep, value = line.partition(":")
        key = key.strip()
        if sep and key in META_KEYS and key not in meta:
            meta[key] = value.strip()
        else:
            stray.append(line)

    body = "\n".join(lines[sentinel_at + 1:])
    if stray:
        body = "\n".join(stray) + ("\n" + body if body else "")
    return meta, body


def render_transcript(meta: Dict[str, str], body: str) -> str:
    """Inverse of parse_transcript for recognized keys"""
    header = [f"{key}: {meta[key]}" for key in META_KEYS if meta.get(key) is not None]
    header.append(META_SENTINEL)
    text = "\n".join(header)
    if body:
        text += "\n" + body
    return text


def read_transcript(transcript_path: PathLike) -> Tuple[Dict[str, str], str]:
    """Parse a transcript file; a missing file reads as empty"""
    try:
        with open(transcript_path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
    except FileNotFoundError:
        return {}, ""
    return parse_transcript(content)


def write_transcript(transcript_path: PathLike, meta: Dict[str, str], body: str) -> None:
    with open(transcript_path, "w", encoding="utf-8", newline="\n") as f:
        f.write(render_transcript(meta, body))


def get_metadata(video_path: PathLike) -> Dict[str, str]:
    """Metadata block of the transcript belonging to `video_path`"""
    meta, _body = read_transcript(transcript_path_for(video_path))
    return meta


def get_meta(video_path: PathLike, key: str) -> Optional[str]:
    return get_metadata(video_path).get(key)


def set_meta(video_path: PathLike, key: str, value: str) -> Path:
    """
    Replace or insert one metadata line, keeping the body unchanged.

    Raises:
        ValidationError: if `key` is not a recognized metadata key
    """
    if key not in META_KEYS:
        raise ValidationError(f"Unknown metadata key: {key}")

    transcript_path = transcript_path_for(video_path)
    meta, body = read_transcript(transcript_path)
    meta[key] = str(value).strip()
    write_transcript(transcript_path, meta, body)
    logger.debug(f"Set {key}={value} on {transcript_path}")
    return transcript_path


def body_line_count(transcript_path: PathLike) -> int:
    """Number of body lines; a transcript that ends at the sentinel has zero"""
    _meta, body = read_transcript(transcript_path)
    return len(body.splitlines())
