"""
The tracks module turns audio files into Track records. It owns the extraction pipeline: read the tags,
fill in defaults, derive the album identifier, run the embedded cover through the cover cache, and
attach the timed lyrics sitting next to the file.

A file that cannot be read does not stop a rebuild. `extract_tracks` records it as an
ExtractionFailure next to the tracks that did extract.
"""

from __future__ import annotations

import hashlib
import logging
import math
import multiprocessing
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import uuid6

from lorchestre.audiotags import AudioTags
from lorchestre.common import UNKNOWN, LorchestreError
from lorchestre.covers import Color, cache_cover
from lorchestre.lyrics import LyricLine, read_lyrics

logger = logging.getLogger(__name__)

# Below this many files, extraction runs in the calling process.
MULTIPROCESSING_THRESHOLD = 50

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass
class Track:
    id: str
    title: str
    artists: list[str]
    track: int
    album: str
    album_artist: str | None
    album_id: str
    album_year: int | None
    mime: str
    cover_ext: str | None
    color: Color | None
    is_light: bool | None
    lyrics: list[LyricLine]
    duration: int
    bitrate: int
    created_at: datetime
    file_path: Path

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else UNKNOWN

    def dump(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artists": self.artists,
            "track": self.track,
            "album": self.album,
            "album_artist": self.album_artist,
            "album_id": self.album_id,
            "album_year": self.album_year,
            "mime": self.mime,
            "cover_ext": self.cover_ext,
            "color": self.color.dump() if self.color else None,
            "is_light": self.is_light,
            "lyrics": [x.dump() for x in self.lyrics],
            "duration": self.duration,
            "bitrate": self.bitrate,
            "created_at": self.created_at.isoformat(),
            "file_path": str(self.file_path),
        }


@dataclass(frozen=True)
class ExtractionFailure:
    path: Path
    reason: str

    def dump(self) -> dict[str, Any]:
        return {"path": str(self.path), "reason": self.reason}


@dataclass
class ExtractionResult:
    tracks: list[Track] = field(default_factory=list)
    failures: list[ExtractionFailure] = field(default_factory=list)


def album_id(album: str, artists: list[str]) -> str:
    """
    The album identifier: an MD5 over the album name followed by the primary artist. Two tracks with
    the same album name and primary artist always land in the same album. The same digest keys the
    album's cover in the cover cache.
    """
    primary_artist = artists[0] if artists else UNKNOWN
    return hashlib.md5(album.encode() + primary_artist.encode()).hexdigest()


def new_track_id() -> str:
    return uuid6.uuid7().hex


def extract_track(covers_dir: Path, path: Path) -> Track:
    """
    Build a Track from one audio file. Raises UnsupportedFiletypeError if the file cannot be opened or
    parsed, and OSError if it disappears mid-read. Cover and lyrics problems only degrade the track.
    """
    tags = AudioTags.from_file(path)

    title = tags.title or UNKNOWN
    album = tags.album or UNKNOWN
    aid = album_id(album, tags.artists)

    cover_ext: str | None = None
    color: Color | None = None
    if tags.cover is not None:
        cached = cache_cover(covers_dir, aid, tags.cover)
        if cached is not None:
            cover_ext = cached.ext
            color = cached.color

    return Track(
        id=new_track_id(),
        title=title,
        artists=tags.artists,
        track=tags.tracknumber or 0,
        album=album,
        album_artist=tags.albumartist,
        album_id=aid,
        album_year=tags.year,
        mime=tags.mime,
        cover_ext=cover_ext,
        color=color,
        is_light=color.is_light if color else None,
        lyrics=read_lyrics(path),
        duration=tags.duration_sec,
        bitrate=tags.bitrate,
        created_at=_created_at(path),
        file_path=path.absolute(),
    )


def extract_tracks(
    covers_dir: Path,
    paths: list[Path],
    max_proc: int = 1,
    # For testing.
    force_multiprocessing: bool = False,
) -> ExtractionResult:
    """
    Extract a Track from every path. Files that fail to extract are skipped and recorded. Results are
    returned in the order of the input paths.

    For large batches, we shard the paths across multiple processes.
    """
    if not paths:
        return ExtractionResult()
    covers_dir.mkdir(parents=True, exist_ok=True)

    if not force_multiprocessing and (len(paths) < MULTIPROCESSING_THRESHOLD or max_proc <= 1):
        logger.debug(f"Running track extraction in same process for {len(paths)} files")
        return _extract_tracks_executor(covers_dir, paths)

    # Shrink the number of processes when there are few files, to save on overhead.
    num_proc = max(1, min(max_proc, math.ceil(len(paths) / MULTIPROCESSING_THRESHOLD)))
    batch_size = len(paths) // num_proc + 1

    # Rebuilds can be started from a server worker thread, and forking from a thread is unsafe.
    ctx = multiprocessing.get_context("spawn")
    logger.debug(f"Creating pool of {num_proc} processes to extract {len(paths)} files")
    rv = ExtractionResult()
    with ctx.Pool(processes=num_proc) as pool:
        pending = [
            pool.apply_async(_extract_tracks_executor, (covers_dir, paths[i : i + batch_size]))
            for i in range(0, len(paths), batch_size)
        ]
        for p in pending:
            batch = p.get()
            rv.tracks.extend(batch.tracks)
            rv.failures.extend(batch.failures)
    return rv


def _extract_tracks_executor(covers_dir: Path, paths: list[Path]) -> ExtractionResult:
    """The implementation logic, split out for multiprocessing."""
    loop_start = time.time()
    rv = ExtractionResult()
    for p in paths:
        try:
            rv.tracks.append(extract_track(covers_dir, p))
        except (LorchestreError, OSError) as e:
            logger.warning(f"Skipping {p}: failed to extract track: {e}")
            rv.failures.append(ExtractionFailure(path=p, reason=str(e)))
    logger.debug(f"Extracted {len(rv.tracks)}/{len(paths)} tracks in {time.time() - loop_start:.3f}s")
    return rv


def _created_at(path: Path) -> datetime:
    try:
        st = os.stat(path)
    except OSError:
        return EPOCH
    ts = getattr(st, "st_birthtime", None) or st.st_ctime
    return datetime.fromtimestamp(ts, tz=timezone.utc)
