"""
The lyrics module parses timed lyrics (`.lrc`) files that sit next to audio files.

An LRC file mixes ID tags such as `[ar:Artist]` or `[offset:+200]` with timed lines such as
`[01:02.34]Some words`. A single line may carry several time tags when it repeats. We only keep the
timed lines.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from lorchestre.common import LorchestreError

logger = logging.getLogger(__name__)

LYRICS_EXTENSION = ".lrc"

TIMED_LINE_PREFIX_REGEX = re.compile(r"\[\d")
TIME_TAG_REGEX = re.compile(r"\[(\d+):(\d{1,2})(?:[.:](\d{1,3}))?\]")


class LyricsParseError(LorchestreError):
    pass


@dataclass(frozen=True)
class LyricLine:
    # Milliseconds from the start of the track.
    start_time: int
    text: str

    def dump(self) -> dict[str, Any]:
        return {"start_time": self.start_time, "text": self.text}


def lyrics_path_for(audio_path: Path) -> Path:
    return audio_path.with_suffix(LYRICS_EXTENSION)


def strip_lyrics_metadata(text: str) -> str:
    """Drop every line that is not a timed line, i.e. that does not start with `[` and a digit."""
    return "\n".join(
        line for line in text.splitlines() if TIMED_LINE_PREFIX_REGEX.match(line)
    )


def parse_lyrics(text: str) -> list[LyricLine]:
    """
    Parse pre-filtered timed lines into lyric lines sorted by start time. Raises LyricsParseError on
    a line whose time tags are malformed.
    """
    lines: list[LyricLine] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        pos = 0
        starts: list[int] = []
        while m := TIME_TAG_REGEX.match(line, pos):
            minutes, seconds, fraction = m[1], m[2], m[3]
            if int(seconds) >= 60:
                raise LyricsParseError(f"Invalid seconds in time tag on line {lineno}: {m[0]}")
            starts.append(
                int(minutes) * 60_000 + int(seconds) * 1_000 + _fraction_to_ms(fraction)
            )
            pos = m.end()
        if not starts:
            raise LyricsParseError(f"Malformed time tag on line {lineno}: {line!r}")
        content = line[pos:].strip()
        lines.extend(LyricLine(start_time=s, text=content) for s in starts)
    # sorted() is stable, so repeated timestamps keep file order.
    return sorted(lines, key=lambda x: x.start_time)


def read_lyrics(audio_path: Path) -> list[LyricLine]:
    """
    Read the lyrics file next to an audio file. A missing file means no lyrics. An unreadable or
    malformed file is logged and also means no lyrics: lyrics never block a track from the catalog.
    """
    path = lyrics_path_for(audio_path)
    if not path.is_file():
        return []
    try:
        text = path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to read lyrics file {path}: {e}")
        return []
    try:
        return parse_lyrics(strip_lyrics_metadata(text))
    except LyricsParseError as e:
        logger.warning(f"Failed to parse lyrics file {path}: {e}")
        return []


def _fraction_to_ms(fraction: str | None) -> int:
    if not fraction:
        return 0
    # `.5` is half a second, `.05` is 50ms, `.005` is 5ms.
    return int(fraction.ljust(3, "0"))
