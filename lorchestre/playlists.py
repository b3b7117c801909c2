"""
The playlists module reads M3U and M3U8 playlists from the music source directory.

Playlists are read-only here. Each entry runs through the same extraction pipeline as the album
tracks, sharing the same cover cache, so a playlist track carries its own track ID.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from lorchestre.common import LorchestreError
from lorchestre.tracks import Track, extract_track

logger = logging.getLogger(__name__)

PLAYLIST_NAME_DIRECTIVE = "#PLAYLIST:"


class PlaylistParseError(LorchestreError):
    pass


@dataclass
class Playlist:
    name: str
    # The playlist's identity: lookups and removals match on it.
    path: Path
    tracks: list[Track] = field(default_factory=list)

    def get_track(self, id: str) -> Track | None:
        for t in self.tracks:
            if t.id == id:
                return t
        return None

    def dump(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "tracks": [t.dump() for t in self.tracks],
        }


def read_playlist_entries(path: Path) -> tuple[str | None, list[Path]]:
    """
    Read the name directive and the track paths of a playlist file, in file order. Relative entries
    resolve against the playlist's directory. Remote URIs are skipped.
    """
    try:
        text = path.read_bytes().decode("utf-8", errors="replace")
    except OSError as e:
        raise PlaylistParseError(f"Failed to read playlist {path}: {e}") from e

    name: str | None = None
    entries: list[Path] = []
    for line in text.splitlines():
        line = line.strip().lstrip("\ufeff")
        if not line:
            continue
        if line.startswith(PLAYLIST_NAME_DIRECTIVE):
            name = line.removeprefix(PLAYLIST_NAME_DIRECTIVE).strip() or None
            continue
        if line.startswith("#"):
            continue
        if "://" in line:
            uri = urlparse(line)
            if uri.scheme != "file":
                logger.debug(f"Skipping remote entry {line} in playlist {path}")
                continue
            line = unquote(uri.path)
        entry = Path(line).expanduser()
        if not entry.is_absolute():
            entry = path.parent / entry
        entries.append(entry)
    return name, entries


def parse_m3u8(covers_dir: Path, path: Path) -> Playlist:
    """
    Parse a playlist file into a Playlist. Entries that fail to extract are logged and dropped, so the
    rest of the playlist stays playable. Raises PlaylistParseError if the file itself is unreadable.
    """
    name, entries = read_playlist_entries(path)
    playlist = Playlist(name=name or path.stem, path=path.absolute())
    for entry in entries:
        try:
            playlist.tracks.append(extract_track(covers_dir, entry))
        except (LorchestreError, OSError) as e:
            logger.warning(f"Skipping entry {entry} of playlist {path}: {e}")
    logger.debug(f"Parsed playlist {playlist.name} with {len(playlist.tracks)}/{len(entries)} tracks")
    return playlist
