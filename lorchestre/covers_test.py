import struct
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

import lorchestre.covers
from conftest import make_broken_png, make_png
from lorchestre.audiotags import EmbeddedCover
from lorchestre.covers import (
    CachedCover,
    Color,
    CoverDecodeError,
    cache_cover,
    color_path,
    cover_ext,
    cover_path,
    decode_image,
    extract_dominant_color,
    is_light_luminance,
)


def test_luminance_threshold() -> None:
    assert not is_light_luminance(180.0)
    assert is_light_luminance(181.0)
    assert Color(255, 255, 255).is_light
    assert not Color(0, 0, 0).is_light
    # Green weighs the most.
    assert Color(0, 255, 0).luminance == pytest.approx(0.7152 * 255)
    assert Color(0, 255, 0).is_light
    assert not Color(255, 0, 0).is_light


@pytest.mark.parametrize(
    ("mime", "ext"),
    [
        ("image/png", ".png"),
        ("image/jpeg", ".jpeg"),
        ("image/jpg", ".jpeg"),
        ("IMAGE/PNG", ".png"),
        ("image/webp", ".webp"),
        ("", ".png"),
        ("application/octet-stream", ".png"),
        ("image/svg+xml", ".svg+xml"),
        # Anything that is not a plain file name suffix falls back to the default.
        ("image/jpeg/x", ".png"),
        ("image/pn\x00g", ".png"),
        ("image/..", ".png"),
        ("image/", ".png"),
    ],
)
def test_cover_ext(mime: str, ext: str) -> None:
    assert cover_ext(mime) == ext


def test_extract_dominant_color() -> None:
    img = decode_image(make_png((10, 200, 30)))
    assert extract_dominant_color(img) == Color(10, 200, 30)


def test_decode_image_invalid() -> None:
    with pytest.raises(CoverDecodeError):
        decode_image(b"definitely not an image")


def test_decode_image_broken_png() -> None:
    with pytest.raises(CoverDecodeError):
        decode_image(make_broken_png())


@pytest.mark.parametrize("exc", [SyntaxError("broken PNG file"), EOFError(), struct.error("unpack")])
def test_decode_image_wraps_pillow_errors(exc: Exception, monkeypatch: pytest.MonkeyPatch) -> None:
    class BrokenImage:
        def load(self) -> None:
            raise exc

    def fake_open(fp: Any) -> BrokenImage:
        return BrokenImage()

    monkeypatch.setattr(Image, "open", fake_open)
    with pytest.raises(CoverDecodeError):
        decode_image(make_png())


def test_cache_cover_miss_then_hit(isolated_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    covers_dir = isolated_dir / "covers"
    data = make_png((250, 250, 250))
    cover = EmbeddedCover(data=data, mime="image/png")

    calls = 0
    real_decode = lorchestre.covers.decode_image

    def counting_decode(x: bytes):  # type: ignore
        nonlocal calls
        calls += 1
        return real_decode(x)

    monkeypatch.setattr(lorchestre.covers, "decode_image", counting_decode)

    first = cache_cover(covers_dir, "abc", cover)
    assert first == CachedCover(ext=".png", color=Color(250, 250, 250))
    assert first.color is not None and first.color.is_light
    assert cover_path(covers_dir, "abc", ".png").read_bytes() == data
    assert color_path(covers_dir, "abc").is_file()
    assert calls == 1

    # The second call is served from disk without decoding, and keeps the color.
    second = cache_cover(covers_dir, "abc", cover)
    assert second == first
    assert calls == 1


def test_cache_cover_never_overwrites(isolated_dir: Path) -> None:
    covers_dir = isolated_dir / "covers"
    cache_cover(covers_dir, "abc", EmbeddedCover(data=make_png((0, 0, 0)), mime="image/png"))
    original = cover_path(covers_dir, "abc", ".png").read_bytes()

    rv = cache_cover(covers_dir, "abc", EmbeddedCover(data=make_png((255, 255, 255)), mime="image/png"))
    # Stale until the cache is cleared.
    assert cover_path(covers_dir, "abc", ".png").read_bytes() == original
    assert rv is not None
    assert rv.color == Color(0, 0, 0)


def test_cache_cover_undecodable(isolated_dir: Path) -> None:
    covers_dir = isolated_dir / "covers"
    rv = cache_cover(covers_dir, "abc", EmbeddedCover(data=b"garbage", mime="image/jpeg"))
    assert rv == CachedCover(ext=".jpeg", color=None)
    # The bytes are still cached; only the color is lost.
    assert cover_path(covers_dir, "abc", ".jpeg").read_bytes() == b"garbage"
    assert not color_path(covers_dir, "abc").exists()


def test_cache_cover_hit_without_color_file(isolated_dir: Path) -> None:
    covers_dir = isolated_dir / "covers"
    covers_dir.mkdir()
    cover_path(covers_dir, "abc", ".png").write_bytes(make_png())
    rv = cache_cover(covers_dir, "abc", EmbeddedCover(data=make_png(), mime="image/png"))
    assert rv == CachedCover(ext=".png", color=None)


def test_cache_cover_broken_png(isolated_dir: Path) -> None:
    covers_dir = isolated_dir / "covers"
    data = make_broken_png()
    rv = cache_cover(covers_dir, "abc", EmbeddedCover(data=data, mime="image/png"))
    assert rv == CachedCover(ext=".png", color=None)
    assert cover_path(covers_dir, "abc", ".png").read_bytes() == data


def test_cache_cover_odd_mime(isolated_dir: Path) -> None:
    covers_dir = isolated_dir / "covers"
    rv = cache_cover(covers_dir, "abc", EmbeddedCover(data=make_png((0, 0, 0)), mime="image/jpeg/x"))
    assert rv == CachedCover(ext=".png", color=Color(0, 0, 0))
    assert cover_path(covers_dir, "abc", ".png").is_file()


def test_cache_cover_unwritable_dir(isolated_dir: Path) -> None:
    (isolated_dir / "blocker").write_text("not a directory")
    covers_dir = isolated_dir / "blocker" / "covers"
    assert cache_cover(covers_dir, "abc", EmbeddedCover(data=make_png(), mime="image/png")) is None


def test_cache_cover_write_failure(isolated_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    covers_dir = isolated_dir / "covers"

    def unwritable_path(covers_dir: Path, key: str, ext: str) -> Path:
        return covers_dir / "nonexistent" / f"{key}{ext}"

    monkeypatch.setattr(lorchestre.covers, "cover_path", unwritable_path)
    assert cache_cover(covers_dir, "abc", EmbeddedCover(data=make_png(), mime="image/png")) is None


def test_cache_cover_color_file_is_complete(isolated_dir: Path) -> None:
    covers_dir = isolated_dir / "covers"
    cache_cover(covers_dir, "abc", EmbeddedCover(data=make_png((1, 2, 3)), mime="image/png"))
    assert color_path(covers_dir, "abc").read_text() == "r = 1\ng = 2\nb = 3\n"
    # No temporary files are left behind.
    assert sorted(p.name for p in covers_dir.iterdir()) == ["abc.color.toml", "abc.png"]


def test_cache_cover_color_written_before_cover(isolated_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    covers_dir = isolated_dir / "covers"
    real_decode = lorchestre.covers.decode_image

    # Another worker finishes writing the cover file while we are still decoding.
    def decode_then_lose_race(data: bytes) -> Image.Image:
        img = real_decode(data)
        covers_dir.mkdir(parents=True, exist_ok=True)
        cover_path(covers_dir, "abc", ".png").write_bytes(data)
        return img

    monkeypatch.setattr(lorchestre.covers, "decode_image", decode_then_lose_race)
    rv = cache_cover(covers_dir, "abc", EmbeddedCover(data=make_png((0, 0, 0)), mime="image/png"))
    # The color still comes along, since it is in place before the cover file is created.
    assert rv == CachedCover(ext=".png", color=Color(0, 0, 0))
