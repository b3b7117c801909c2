from lorchestre.audiotags import (
    AudioTags,
    EmbeddedCover,
    UnsupportedFiletypeError,
)
from lorchestre.catalog import (
    Album,
    BuildResult,
    Catalog,
    build_catalog,
    group_albums,
)
from lorchestre.common import (
    VERSION,
    LorchestreError,
    LorchestreExpectedError,
    initialize_logging,
)
from lorchestre.config import (
    Config,
    ConfigDecodeError,
    ConfigNotFoundError,
    InvalidConfigValueError,
)
from lorchestre.covers import (
    CachedCover,
    Color,
    CoverDecodeError,
    cache_cover,
)
from lorchestre.lyrics import (
    LyricLine,
    LyricsParseError,
    parse_lyrics,
    read_lyrics,
)
from lorchestre.notifier import UpdateNotifier
from lorchestre.playlists import (
    Playlist,
    PlaylistParseError,
    parse_m3u8,
)
from lorchestre.scanner import (
    MediaFiles,
    compute_fingerprint,
    resolve_media_files,
    scan_media_dir,
)
from lorchestre.store import CatalogStore
from lorchestre.tracks import (
    ExtractionFailure,
    Track,
    album_id,
    extract_track,
    extract_tracks,
)

__all__ = [
    # Plumbing
    "VERSION",
    "initialize_logging",
    "LorchestreError",
    "LorchestreExpectedError",
    # Configuration
    "Config",
    "ConfigDecodeError",
    "ConfigNotFoundError",
    "InvalidConfigValueError",
    # Tagging
    "AudioTags",
    "EmbeddedCover",
    "UnsupportedFiletypeError",
    # Lyrics
    "LyricLine",
    "LyricsParseError",
    "parse_lyrics",
    "read_lyrics",
    # Covers
    "CachedCover",
    "Color",
    "CoverDecodeError",
    "cache_cover",
    # Scanning
    "MediaFiles",
    "compute_fingerprint",
    "resolve_media_files",
    "scan_media_dir",
    # Tracks
    "ExtractionFailure",
    "Track",
    "album_id",
    "extract_track",
    "extract_tracks",
    # Playlists
    "Playlist",
    "PlaylistParseError",
    "parse_m3u8",
    # Catalog
    "Album",
    "BuildResult",
    "Catalog",
    "build_catalog",
    "group_albums",
    "CatalogStore",
    "UpdateNotifier",
]

initialize_logging(__name__)
