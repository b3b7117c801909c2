"""
The covers module is the content-addressed cover cache.

Covers are keyed by album identity (see `lorchestre.tracks.album_id`) and written once to
`{covers_dir}/{key}{ext}`. The presence of that file is the sole cache-hit signal: on a hit we neither
rewrite the file nor decode the image again. The dominant color computed on the miss is kept next to
the cover in `{key}.color.toml`, so that later hits still know the album's color.

There is no invalidation. A cover whose tags changed after it was cached stays stale until the cache
directory is cleared (`lorchestre cache clear`). We accept that in exchange for never paying the decode
and quantization cost twice.
"""

from __future__ import annotations

import io
import logging
import os
import re
import struct
import tempfile
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomli_w
from PIL import Image

from lorchestre.audiotags import EmbeddedCover
from lorchestre.common import LorchestreError

logger = logging.getLogger(__name__)

LIGHT_LUMINANCE_THRESHOLD = 180.0

# Downscale before quantizing; the dominant color of a thumbnail is the dominant color of the cover.
QUANTIZE_MAX_SIZE = (128, 128)

DEFAULT_COVER_EXT = ".png"
COVER_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpeg",
    "image/jpg": ".jpeg",
    "image/tiff": ".tiff",
    "image/bmp": ".bmp",
    "image/gif": ".gif",
}
# The extension ends up in a file name, so anything outside this is replaced by the default.
COVER_SUBTYPE_REGEX = re.compile(r"[a-z0-9][a-z0-9.+-]*")

# Pillow does not wrap everything a corrupt image can raise while decoding into OSError. Broken PNG
# chunks raise SyntaxError, and truncated data can raise EOFError or struct.error.
IMAGE_DECODE_ERRORS = (
    OSError,
    ValueError,
    SyntaxError,
    EOFError,
    struct.error,
    Image.DecompressionBombError,
)


class CoverDecodeError(LorchestreError):
    pass


@dataclass(frozen=True)
class Color:
    r: int
    g: int
    b: int

    @property
    def luminance(self) -> float:
        return 0.2126 * self.r + 0.7152 * self.g + 0.0722 * self.b

    @property
    def is_light(self) -> bool:
        return is_light_luminance(self.luminance)

    def dump(self) -> dict[str, Any]:
        return {"r": self.r, "g": self.g, "b": self.b}


@dataclass(frozen=True)
class CachedCover:
    ext: str
    color: Color | None


def is_light_luminance(luminance: float) -> bool:
    return luminance > LIGHT_LUMINANCE_THRESHOLD


def cover_ext(mime: str) -> str:
    mime = mime.lower().strip()
    if mime in COVER_EXTENSIONS:
        return COVER_EXTENSIONS[mime]
    subtype = mime.removeprefix("image/")
    if subtype != mime and COVER_SUBTYPE_REGEX.fullmatch(subtype):
        return "." + subtype
    return DEFAULT_COVER_EXT


def cover_path(covers_dir: Path, key: str, ext: str) -> Path:
    return covers_dir / f"{key}{ext}"


def color_path(covers_dir: Path, key: str) -> Path:
    return covers_dir / f"{key}.color.toml"


def decode_image(data: bytes) -> Image.Image:
    """Decode an image buffer into RGB pixels."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img.convert("RGB")
    except IMAGE_DECODE_ERRORS as e:
        raise CoverDecodeError(f"Failed to decode cover image: {e}") from e


def extract_dominant_color(img: Image.Image) -> Color:
    """Quantize the image down to a single-color palette and return that color."""
    try:
        img = img.copy()
        img.thumbnail(QUANTIZE_MAX_SIZE)
        palette = img.quantize(colors=1).getpalette()
    except IMAGE_DECODE_ERRORS as e:
        raise CoverDecodeError(f"Failed to quantize cover image: {e}") from e
    if not palette or len(palette) < 3:
        raise CoverDecodeError("Quantization produced an empty palette")
    return Color(r=palette[0], g=palette[1], b=palette[2])


def cache_cover(covers_dir: Path, key: str, cover: EmbeddedCover) -> CachedCover | None:
    """
    Make sure the embedded cover is in the cache, and return its extension and dominant color.
    Returns None if the cover could not be written, in which case the track simply has no cover.

    Two rebuilds may race on the same new album. The cover file is created exclusively, so the
    loser sees FileExistsError and keeps the winner's bytes, which come from the same tags anyway.
    The color file is moved into place before the cover file exists, so whoever sees the cover
    also sees its color.
    """
    ext = cover_ext(cover.mime)
    path = cover_path(covers_dir, key, ext)
    if path.exists():
        logger.debug(f"Cover cache hit for {key}{ext}")
        return CachedCover(ext=ext, color=_read_color(covers_dir, key))

    logger.debug(f"Cover cache miss for {key}{ext}, decoding embedded cover")
    color: Color | None = None
    try:
        color = extract_dominant_color(decode_image(cover.data))
    except CoverDecodeError as e:
        logger.warning(f"Failed to extract the color of cover {key}{ext}: {e}")

    try:
        covers_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Failed to create covers directory {covers_dir}, leaving the track without a cover: {e}")
        return None
    if color is not None:
        _write_color(covers_dir, key, color)

    try:
        with path.open("xb") as fp:
            fp.write(cover.data)
    except FileExistsError:
        logger.debug(f"Cover {key}{ext} was written concurrently, keeping the existing file")
        return CachedCover(ext=ext, color=_read_color(covers_dir, key))
    except OSError as e:
        logger.warning(f"Failed to cache cover {key}{ext}, leaving the track without a cover: {e}")
        return None

    return CachedCover(ext=ext, color=color)


def _read_color(covers_dir: Path, key: str) -> Color | None:
    path = color_path(covers_dir, key)
    try:
        with path.open("rb") as fp:
            data = tomllib.load(fp)
        return Color(r=int(data["r"]), g=int(data["g"]), b=int(data["b"]))
    except FileNotFoundError:
        return None
    except (OSError, tomllib.TOMLDecodeError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Ignoring unreadable cover color file {path}: {e}")
        return None


def _write_color(covers_dir: Path, key: str, color: Color) -> None:
    """Write the color file through a temporary file, so that readers never see it half-written."""
    path = color_path(covers_dir, key)
    tmp: str | None = None
    try:
        fd, tmp = tempfile.mkstemp(dir=covers_dir, prefix=f".{key}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as fp:
            tomli_w.dump(color.dump(), fp)
        os.replace(tmp, path)
    except OSError as e:
        logger.warning(f"Failed to write cover color file {path}: {e}")
        if tmp is not None:
            Path(tmp).unlink(missing_ok=True)
