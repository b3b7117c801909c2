"""
The catalog module holds the in-memory collection: albums grouped from extracted tracks, plus the
playlists. `build_catalog` runs the whole pipeline and produces a brand-new Catalog each time.

The add/remove methods on Catalog mutate the value they are called on. Never call them on a catalog
that is published in a CatalogStore; go through `CatalogStore.apply` instead, which works on a copy.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lorchestre.common import LorchestreError
from lorchestre.config import Config
from lorchestre.playlists import Playlist, parse_m3u8
from lorchestre.scanner import is_playlist_file, resolve_media_files
from lorchestre.tracks import ExtractionFailure, Track, extract_track, extract_tracks

logger = logging.getLogger(__name__)


@dataclass
class Album:
    name: str
    artist: str
    tracks: list[Track]
    year: int | None
    id: str

    def get_track(self, id: str) -> Track | None:
        for t in self.tracks:
            if t.id == id:
                return t
        return None

    def remove_track(self, path: Path) -> None:
        path = path.absolute()
        self.tracks = [t for t in self.tracks if t.file_path != path]

    def dump(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "artist": self.artist,
            "year": self.year,
            "tracks": [t.dump() for t in self.tracks],
        }


def new_album(track: Track) -> Album:
    """Start an album from its first track, which decides the album's artist and year."""
    return Album(
        name=track.album,
        artist=track.album_artist or track.primary_artist,
        tracks=[track],
        year=track.album_year,
        id=track.album_id,
    )


def group_albums(tracks: list[Track]) -> list[Album]:
    """Group tracks into albums by album ID, in the order each album is first seen."""
    albums: dict[str, Album] = {}
    for t in tracks:
        try:
            albums[t.album_id].tracks.append(t)
        except KeyError:
            albums[t.album_id] = new_album(t)
    return list(albums.values())


@dataclass
class Catalog:
    albums: list[Album] = field(default_factory=list)
    playlists: list[Playlist] = field(default_factory=list)

    def get_album(self, id: str) -> Album | None:
        for a in self.albums:
            if a.id == id:
                return a
        return None

    def get_track(self, id: str) -> Track | None:
        for a in self.albums:
            if t := a.get_track(id):
                return t
        for p in self.playlists:
            if t := p.get_track(id):
                return t
        return None

    def add_track(self, track: Track) -> None:
        if album := self.get_album(track.album_id):
            album.tracks.append(track)
        else:
            self.albums.append(new_album(track))

    def add_playlist(self, playlist: Playlist) -> None:
        self.remove_playlist(playlist.path)
        self.playlists.append(playlist)

    def add_media(self, covers_dir: Path, path: Path) -> None:
        """
        Extract one file and merge it in. Raises on extraction failure, leaving the catalog unchanged.
        """
        if is_playlist_file(path):
            self.add_playlist(parse_m3u8(covers_dir, path))
        else:
            self.add_track(extract_track(covers_dir, path))

    def remove_track(self, path: Path) -> None:
        for a in self.albums:
            a.remove_track(path)
        # An album without tracks must never be visible.
        self.albums = [a for a in self.albums if a.tracks]

    def remove_playlist(self, path: Path) -> None:
        path = path.absolute()
        self.playlists = [p for p in self.playlists if p.path != path]

    def remove_media(self, path: Path) -> None:
        if is_playlist_file(path):
            self.remove_playlist(path)
        else:
            self.remove_track(path)

    def dump(self) -> dict[str, Any]:
        return {
            "albums": [a.dump() for a in self.albums],
            "playlists": [p.dump() for p in self.playlists],
        }


@dataclass
class BuildResult:
    catalog: Catalog
    failures: list[ExtractionFailure] = field(default_factory=list)

    def dump(self) -> dict[str, Any]:
        return {
            "albums": len(self.catalog.albums),
            "playlists": len(self.catalog.playlists),
            "failures": [f.dump() for f in self.failures],
        }


def build_catalog(
    c: Config,
    force: bool = False,
    # For testing.
    force_multiprocessing: bool = False,
) -> BuildResult:
    """
    Build a complete Catalog from the music source directory. Pass force to bypass the fingerprint
    and rescan the directory. Files that fail to extract are left out of the catalog and reported
    in the result's failures.
    """
    build_start = time.time()
    files = resolve_media_files(c, force=force)

    extracted = extract_tracks(
        c.covers_dir,
        files.audio,
        max_proc=c.max_proc,
        force_multiprocessing=force_multiprocessing,
    )
    catalog = Catalog(albums=group_albums(extracted.tracks))
    failures = list(extracted.failures)

    for p in files.playlists:
        try:
            catalog.playlists.append(parse_m3u8(c.covers_dir, p))
        except (LorchestreError, OSError) as e:
            logger.warning(f"Skipping playlist {p}: {e}")
            failures.append(ExtractionFailure(path=p, reason=str(e)))

    logger.debug(
        f"Built catalog of {len(catalog.albums)} albums and {len(catalog.playlists)} playlists "
        f"({len(failures)} failures) in {time.time() - build_start:.3f}s"
    )
    return BuildResult(catalog=catalog, failures=failures)
