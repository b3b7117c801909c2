import io
import logging
import struct
import time
import wave
import zlib
from collections.abc import Iterator
from pathlib import Path

import mutagen.id3
import mutagen.wave
import pytest
from click.testing import CliRunner
from PIL import Image

from lorchestre.config import Config

logger = logging.getLogger(__name__)

# The WAVE fixtures are one second of 8kHz mono 16-bit silence.
TEST_SAMPLE_RATE = 8000
TEST_DURATION = 1
TEST_BITRATE = TEST_SAMPLE_RATE * 16


@pytest.fixture(autouse=True)
def debug_logging() -> None:
    logging.getLogger().setLevel(logging.DEBUG)


@pytest.fixture()
def isolated_dir() -> Iterator[Path]:
    with CliRunner().isolated_filesystem():
        yield Path.cwd()


@pytest.fixture()
def config(isolated_dir: Path) -> Config:
    cache_dir = isolated_dir / "cache"
    cache_dir.mkdir()

    music_source_dir = isolated_dir / "source"
    music_source_dir.mkdir()

    return Config(
        music_source_dir=music_source_dir,
        cache_dir=cache_dir,
        max_proc=2,
        host="localhost",
        port=7700,
    )


def make_png(color: tuple[int, int, int] = (200, 30, 30), size: tuple[int, int] = (16, 16)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def make_broken_png(size: tuple[int, int] = (16, 16)) -> bytes:
    """
    A PNG that opens fine but breaks while loading: the pixel data is split over two IDAT chunks and
    the second chunk's type is mangled, so Pillow raises SyntaxError halfway through decoding.
    """

    def chunk(cid: bytes, data: bytes) -> bytes:
        return struct.pack(">I", len(data)) + cid + data + struct.pack(">I", zlib.crc32(cid + data))

    w, h = size
    # Stored (level 0) deflate, so the first half of the stream never holds every row.
    idat = zlib.compress(b"".join(b"\x00" + b"\xc8\x1e\x1e" * w for _ in range(h)), 0)
    half = len(idat) // 2
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", struct.pack(">IIBBBBB", w, h, 8, 2, 0, 0, 0))
        + chunk(b"IDAT", idat[:half])
        + chunk(b"I\xd2AT", idat[half:])
        + chunk(b"IEND", b"")
    )


def make_track(
    path: Path,
    *,
    title: str | None = "Track 1",
    artist: str | None = "Artist A",
    album: str | None = "A Cool Album",
    albumartist: str | None = None,
    tracknumber: str | None = "1",
    year: str | None = "1990",
    cover: bytes | None = None,
    cover_mime: str = "image/png",
) -> Path:
    """Write a WAVE file with ID3 tags. Pass None to leave a tag out."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(TEST_SAMPLE_RATE)
        w.writeframes(b"\x00\x00" * TEST_SAMPLE_RATE * TEST_DURATION)

    m = mutagen.wave.WAVE(path)
    m.add_tags()
    assert m.tags is not None
    if title is not None:
        m.tags.add(mutagen.id3.TIT2(encoding=3, text=[title]))
    if artist is not None:
        m.tags.add(mutagen.id3.TPE1(encoding=3, text=[artist]))
    if album is not None:
        m.tags.add(mutagen.id3.TALB(encoding=3, text=[album]))
    if albumartist is not None:
        m.tags.add(mutagen.id3.TPE2(encoding=3, text=[albumartist]))
    if tracknumber is not None:
        m.tags.add(mutagen.id3.TRCK(encoding=3, text=[tracknumber]))
    if year is not None:
        m.tags.add(mutagen.id3.TDRC(encoding=3, text=[year]))
    if cover is not None:
        m.tags.add(mutagen.id3.APIC(encoding=3, mime=cover_mime, type=3, desc="Cover", data=cover))
    m.save()
    return path


@pytest.fixture()
def source_dir(config: Config) -> Path:
    """
    A small collection: one album with a cover and lyrics, a second album without a cover, and a
    playlist over both.
    """
    src = config.music_source_dir
    cover = make_png((240, 240, 240))
    make_track(src / "Album 1" / "01.wav", title="Track 1", tracknumber="1", cover=cover)
    make_track(src / "Album 1" / "02.wav", title="Track 2", tracknumber="2", cover=cover)
    (src / "Album 1" / "01.lrc").write_text("[ar:Artist A]\n[00:01.00]Hello\n[00:02.50]World\n")
    make_track(
        src / "Album 2" / "01.wav",
        title="Track 1",
        artist="Artist B",
        album="Another Album",
        year="2001-04-20",
    )
    (src / "Album 1" / "notes.txt").write_text("not media")
    (src / "Mix.m3u8").write_text("#EXTM3U\n#PLAYLIST:My Mix\nAlbum 2/01.wav\nAlbum 1/02.wav\n")
    return src


def retry_for_sec(timeout_sec: float) -> Iterator[None]:
    start = time.time()
    while True:
        yield
        time.sleep(0.01)
        if time.time() - start >= timeout_sec:
            break
