"""
The audiotags module abstracts over tag reading for the audio formats we serve, exposing a single
standard interface for all audio files.

It also knows where each container keeps its embedded cover art, and which MIME type a browser should
be handed when streaming the file.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import mutagen
import mutagen.aiff
import mutagen.flac
import mutagen.id3
import mutagen.mp3
import mutagen.mp4
import mutagen.oggopus
import mutagen.oggvorbis
import mutagen.wave

from lorchestre.common import LorchestreExpectedError, uniq

logger = logging.getLogger(__name__)

TAG_SPLITTER_REGEX = re.compile(r" \\\\ | / |; ?| vs\. ")
FEAT_REGEX = re.compile(r" ?(?:feat\.|ft\.|featuring) ", re.IGNORECASE)
YEAR_REGEX = re.compile(r"\d{4}$")
DATE_REGEX = re.compile(r"(\d{4})-\d{2}-\d{2}")

# The ID3 and FLAC picture type of a front cover.
FRONT_COVER_PICTURE_TYPE = 3


class UnsupportedFiletypeError(LorchestreExpectedError):
    pass


class UnsupportedTagValueTypeError(LorchestreExpectedError):
    pass


@dataclass(frozen=True)
class EmbeddedCover:
    data: bytes
    mime: str


@dataclass
class AudioTags:
    title: str | None
    artists: list[str]
    album: str | None
    albumartist: str | None
    tracknumber: int | None
    year: int | None

    duration_sec: int
    bitrate: int
    mime: str
    cover: EmbeddedCover | None

    path: Path

    @classmethod
    def from_file(cls, p: Path) -> AudioTags:
        """Read the tags of an audio file on disk."""
        try:
            m = mutagen.File(p)  # type: ignore
        except mutagen.MutagenError as e:  # type: ignore
            raise UnsupportedFiletypeError(f"Failed to open file: {e}") from e
        if m is None:
            raise UnsupportedFiletypeError(f"{p} is not a supported audio file")

        duration_sec = round(getattr(m.info, "length", 0) or 0)
        bitrate = int(getattr(m.info, "bitrate", 0) or 0)

        if isinstance(m, (mutagen.mp3.MP3, mutagen.wave.WAVE, mutagen.aiff.AIFF)):
            if isinstance(m, mutagen.mp3.MP3):
                mime = "audio/mpeg"
            elif isinstance(m, mutagen.wave.WAVE):
                mime = "audio/wav"
            else:
                mime = "audio/aiff"
            return AudioTags(
                title=_get_tag(m.tags, ["TIT2"]),
                artists=split_artists(_get_tag(m.tags, ["TPE1"])),
                album=_get_tag(m.tags, ["TALB"]),
                albumartist=_get_tag(m.tags, ["TPE2"]),
                # ID3 returns trackno tags as no/total.
                tracknumber=_parse_tracknumber(_get_tag(m.tags, ["TRCK"], first=True)),
                year=_parse_year(_get_tag(m.tags, ["TDRC", "TYER"], first=True)),
                duration_sec=duration_sec,
                bitrate=bitrate,
                mime=mime,
                cover=_get_id3_cover(m.tags),
                path=p,
            )
        if isinstance(m, mutagen.mp4.MP4):
            tracknumber = None
            if m.tags and m.tags.get("trkn"):
                tracknumber = m.tags["trkn"][0][0] or None
            return AudioTags(
                title=_get_tag(m.tags, ["\xa9nam"]),
                artists=split_artists(_get_tag(m.tags, ["\xa9ART"])),
                album=_get_tag(m.tags, ["\xa9alb"]),
                albumartist=_get_tag(m.tags, ["aART"]),
                tracknumber=tracknumber,
                year=_parse_year(_get_tag(m.tags, ["\xa9day"], first=True)),
                duration_sec=duration_sec,
                bitrate=bitrate,
                mime="audio/mp4",
                cover=_get_mp4_cover(m.tags),
                path=p,
            )
        if isinstance(m, (mutagen.flac.FLAC, mutagen.oggvorbis.OggVorbis, mutagen.oggopus.OggOpus)):
            if isinstance(m, mutagen.flac.FLAC):
                mime = "audio/flac"
                cover = _pick_picture(m.pictures)
            else:
                mime = "audio/opus" if isinstance(m, mutagen.oggopus.OggOpus) else "audio/ogg"
                cover = _get_vorbis_cover(m.tags)
            return AudioTags(
                title=_get_tag(m.tags, ["title"]),
                artists=split_artists(_get_tag(m.tags, ["artist"])),
                album=_get_tag(m.tags, ["album"]),
                albumartist=_get_tag(m.tags, ["albumartist", "album artist"]),
                tracknumber=_parse_tracknumber(_get_tag(m.tags, ["tracknumber"], first=True)),
                year=_parse_year(_get_tag(m.tags, ["date", "year"], first=True)),
                duration_sec=duration_sec,
                bitrate=bitrate,
                mime=mime,
                cover=cover,
                path=p,
            )
        raise UnsupportedFiletypeError(f"{p} is not a supported audio file")


def split_artists(value: str | None) -> list[str]:
    """
    Split a raw artist tag into the ordered list of credited artists. Featured artists are kept,
    after the main artists.
    """
    if not value:
        return []
    main, *guests = FEAT_REGEX.split(value, maxsplit=1)
    artists = _split_tag(main)
    for g in guests:
        artists.extend(_split_tag(g))
    return uniq([a.strip() for a in artists if a.strip()])


def _split_tag(t: str | None) -> list[str]:
    return TAG_SPLITTER_REGEX.split(t) if t else []


def _get_tag(t: Any, keys: list[str], *, first: bool = False) -> str | None:
    if not t:
        return None
    for k in keys:
        try:
            values: list[str] = []
            raw_values = t[k].text if isinstance(t, mutagen.id3.ID3) else t[k]
            for val in raw_values:
                if isinstance(val, str):
                    values.append(val)
                elif isinstance(val, bytes):
                    values.append(val.decode())
                elif isinstance(val, mutagen.id3.ID3TimeStamp):  # type: ignore
                    values.append(val.text)
                else:
                    raise UnsupportedTagValueTypeError(
                        f"Encountered a tag value of type {type(val)}"
                    )
            if not values:
                continue
            if first:
                return values[0]
            return r" \\ ".join(values)
        except (KeyError, ValueError):
            pass
    return None


def _get_id3_cover(tags: Any) -> EmbeddedCover | None:
    if not tags:
        return None
    return _pick_picture(tags.getall("APIC"))


def _get_mp4_cover(tags: Any) -> EmbeddedCover | None:
    if not tags:
        return None
    covers = tags.get("covr") or []
    if not covers:
        return None
    cover = covers[0]
    mime = "image/png" if cover.imageformat == mutagen.mp4.MP4Cover.FORMAT_PNG else "image/jpeg"
    return EmbeddedCover(data=bytes(cover), mime=mime)


def _get_vorbis_cover(tags: Any) -> EmbeddedCover | None:
    if not tags:
        return None
    pictures: list[mutagen.flac.Picture] = []
    for raw in tags.get("metadata_block_picture", []):
        try:
            pictures.append(mutagen.flac.Picture(base64.b64decode(raw)))
        except (binascii.Error, struct.error, mutagen.MutagenError) as e:  # type: ignore
            logger.debug(f"Ignoring undecodable embedded picture: {e}")
    return _pick_picture(pictures)


def _pick_picture(pictures: list[Any]) -> EmbeddedCover | None:
    """Prefer the picture tagged as a front cover, else take the first one."""
    if not pictures:
        return None
    chosen = next((p for p in pictures if p.type == FRONT_COVER_PICTURE_TYPE), pictures[0])
    return EmbeddedCover(data=bytes(chosen.data), mime=chosen.mime or "")


def _parse_tracknumber(x: str | None) -> int | None:
    if x is None:
        return None
    return _parse_int(x.split("/", 1)[0].strip())


def _parse_int(x: str | None) -> int | None:
    if x is None:
        return None
    try:
        return int(x)
    except ValueError:
        return None


def _parse_year(value: str | None) -> int | None:
    if not value:
        return None
    if YEAR_REGEX.match(value):
        return int(value)
    # There may be a time value after the date... allow that and other crap.
    if m := DATE_REGEX.match(value):
        return int(m[1])
    return None
