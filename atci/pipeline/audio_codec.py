"""
Audio codec arguments for clip generation.

Some containers always need their audio re-encoded to AAC; surround
layouts additionally get a channel map or a stereo downmix. Cached clip
filenames are keyed on the resulting arguments, so the table below must
not change shape.
"""

import logging
from typing import Dict, List, Tuple

from .probe import MediaProbe
from .util import PathLike, video_extension

logger = logging.getLogger("atci")

REENCODE_CONTAINERS = ("mkv", "webm", "avi", "mov")

SIMPLE_LAYOUTS = ("mono", "stereo")

LAYOUT_FILTERS: Dict[str, str] = {
    "5.1": "channelmap=FL-FL|FR-FR|FC-FC|LFE-LFE|BL-BL|BR-BR:5.1",
    "5.1(side)": "channelmap=FL-FL|FR-FR|FC-FC|LFE-LFE|SL-BL|SR-BR:5.1",
    "7.1": "channelmap=FL-FL|FR-FR|FC-FC|LFE-LFE|BL-BL|BR-BR|SL-SL|SR-SR:7.1",
    "7.1(wide)": "channelmap=FL-FL|FR-FR|FC-FC|LFE-LFE|BL-BL|BR-BR|SL-SL|SR-SR:7.1",
    "7.1(wide-side)": "channelmap=FL-FL|FR-FR|FC-FC|LFE-LFE|BL-BL|BR-BR|SL-SL|SR-SR:7.1",
}

STEREO_DOWNMIX = "pan=stereo|FL=0.5*FL+0.707*FC+0.5*BL+0.5*SL|FR=0.5*FR+0.707*FC+0.5*BR+0.5*SR"

AAC_ARGS = ["-c:a", "aac", "-b:a", "256k"]


def channel_filter(layout: str) -> str:
    """Filter for a non mono/stereo layout; unknown layouts downmix to stereo"""
    return LAYOUT_FILTERS.get(layout, STEREO_DOWNMIX)


def needs_channel_remap(probe: MediaProbe, video_path: PathLike) -> Tuple[bool, str]:
    """
    Check whether the first audio stream needs a channel map.

    Returns:
        Tuple of (needs remap, lower-cased layout). Probe failures read as
        (False, "stereo").
    """
    layout = probe.channel_layout(video_path)
    return layout not in SIMPLE_LAYOUTS, layout


def select_audio_codec_args(extension: str, needs_remap: bool, layout: str) -> List[str]:
    extension = extension.lower()
    if extension in REENCODE_CONTAINERS:
        if needs_remap:
            return ["-filter:a", channel_filter(layout)] + AAC_ARGS
        return list(AAC_ARGS)
    if extension == "ts":
        # MPEG-TS carries ADTS framed AAC
        return ["-c:a", "copy", "-bsf:a", "aac_adtstoasc"]
    return ["-c:a", "copy"]


def audio_codec_args(video_path: PathLike, probe: MediaProbe) -> List[str]:
    """Audio codec arguments for a clip cut from `video_path`"""
    needs_remap, layout = needs_channel_remap(probe, video_path)
    args = select_audio_codec_args(video_extension(video_path), needs_remap, layout)
    logger.debug(f"Audio codec args for {video_path} (layout {layout}): {' '.join(args)}")
    return args
