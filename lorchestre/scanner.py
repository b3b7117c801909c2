"""
The scanner module finds the media files under the music source directory.

Classifying every file means a stat and a MIME guess per entry, which adds up on large collections. So
before scanning, we compute a fingerprint: an MD5 over the paths of every entry under the source
directory. When it matches the fingerprint persisted by the previous scan, we reuse the persisted file
list instead of scanning again. The fingerprint only gates the scan; every file still goes through
tag extraction on every rebuild.
"""

from __future__ import annotations

import hashlib
import logging
import mimetypes
import os
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from lorchestre.config import Config

logger = logging.getLogger(__name__)

PLAYLIST_EXTENSIONS = [".m3u8", ".m3u"]

# Python's built-in table misses several formats that we can tag, so we register them on a private
# instance rather than on the global `mimetypes` state.
_MIMETYPES = mimetypes.MimeTypes()
for _ext, _type in [
    (".flac", "audio/flac"),
    (".m4a", "audio/mp4"),
    (".mp3", "audio/mpeg"),
    (".ogg", "audio/ogg"),
    (".oga", "audio/ogg"),
    (".opus", "audio/opus"),
    (".wav", "audio/wav"),
    (".aif", "audio/aiff"),
    (".aiff", "audio/aiff"),
]:
    _MIMETYPES.add_type(_type, _ext)


@dataclass
class MediaFiles:
    audio: list[Path] = field(default_factory=list)
    playlists: list[Path] = field(default_factory=list)

    def all(self) -> list[Path]:
        return self.audio + self.playlists


def is_playlist_file(p: Path) -> bool:
    return p.suffix.lower() in PLAYLIST_EXTENSIONS


def is_audio_file(p: Path) -> bool:
    guess, _ = _MIMETYPES.guess_type(p.name)
    return guess is not None and guess.startswith("audio/")


def classify(paths: list[Path]) -> MediaFiles:
    """Sort candidate paths into audio files and playlists by name only. Drops everything else."""
    rv = MediaFiles()
    for p in paths:
        if is_playlist_file(p):
            rv.playlists.append(p)
        elif is_audio_file(p):
            rv.audio.append(p)
    return rv


def walk(root: Path) -> Iterator[tuple[Path, list[str]]]:
    """
    Walk the tree under root, yielding each directory with its sorted file names. Directory names are
    sorted in place so the walk order is stable. Unreadable subtrees are logged and skipped.
    """

    def _onerror(e: OSError) -> None:
        logger.warning(f"Skipping unreadable directory {e.filename}: {e.strerror}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=_onerror):
        dirnames.sort()
        yield Path(dirpath), sorted(filenames)


def scan_media_dir(root: Path) -> MediaFiles:
    """Enumerate the audio files and playlists under root, recursively."""
    scan_start = time.time()
    candidates: list[Path] = []
    for directory, filenames in walk(root):
        for name in filenames:
            p = directory / name
            if not p.is_file():
                continue
            candidates.append(p)
    rv = classify(candidates)
    logger.debug(
        f"Scanned {root}: found {len(rv.audio)} audio files and {len(rv.playlists)} playlists "
        f"in {time.time() - scan_start:.3f}s"
    )
    return rv


def compute_fingerprint(root: Path) -> str:
    """
    MD5 over the concatenated paths of every entry (directories included) under root, in walk order.
    This only lists directories; it does not stat the entries.
    """
    hasher = hashlib.md5()
    for directory, filenames in walk(root):
        if directory != root:
            hasher.update(str(directory).encode())
        for name in filenames:
            hasher.update(str(directory / name).encode())
    return hasher.hexdigest()


def read_cached_media_files(c: Config) -> tuple[str, list[Path]] | None:
    """Read the persisted fingerprint and file list. Any problem reading them is a cache miss."""
    try:
        fingerprint = c.fingerprint_path.read_text(encoding="utf-8").strip()
        lines = c.media_list_path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Treating unreadable media file cache as a miss: {e}")
        return None
    if not fingerprint:
        return None
    return fingerprint, [Path(x) for x in lines if x]


def write_cached_media_files(c: Config, fingerprint: str, files: MediaFiles) -> None:
    """Persist the fingerprint and the file list, overwriting the previous ones."""
    try:
        c.cache_dir.mkdir(parents=True, exist_ok=True)
        # Write the list first, so a crash in between leaves a fingerprint that cannot match.
        c.fingerprint_path.unlink(missing_ok=True)
        c.media_list_path.write_text(
            "".join(str(p) + "\n" for p in files.all()),
            encoding="utf-8",
        )
        c.fingerprint_path.write_text(fingerprint, encoding="utf-8")
    except OSError as e:
        logger.warning(f"Failed to persist the media file cache in {c.cache_dir}: {e}")


def resolve_media_files(c: Config, force: bool = False) -> MediaFiles:
    """
    Return the media files under the music source directory, reusing the previous scan if the
    fingerprint is unchanged. Pass force to always rescan.
    """
    fingerprint = compute_fingerprint(c.music_source_dir)
    if not force:
        cached = read_cached_media_files(c)
        if cached is not None and cached[0] == fingerprint:
            logger.debug(f"Media fingerprint {fingerprint} unchanged, reusing the cached file list")
            return classify(cached[1])
        logger.debug(f"Media fingerprint changed to {fingerprint}, rescanning")

    files = scan_media_dir(c.music_source_dir)
    write_cached_media_files(c, fingerprint, files)
    return files
