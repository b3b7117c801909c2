from pathlib import Path

import pytest

from conftest import TEST_BITRATE, TEST_DURATION, make_png, make_track
from lorchestre.audiotags import (
    AudioTags,
    EmbeddedCover,
    UnsupportedFiletypeError,
    _parse_tracknumber,
    _parse_year,
    split_artists,
)


def test_getters(isolated_dir: Path) -> None:
    cover = make_png()
    p = make_track(
        isolated_dir / "01.wav",
        title="Track 1",
        artist="Artist A; Artist B feat. Artist C",
        album="A Cool Album",
        albumartist="Artist A",
        tracknumber="3/10",
        year="1990-02-05",
        cover=cover,
    )
    af = AudioTags.from_file(p)
    assert af.title == "Track 1"
    assert af.artists == ["Artist A", "Artist B", "Artist C"]
    assert af.album == "A Cool Album"
    assert af.albumartist == "Artist A"
    assert af.tracknumber == 3
    assert af.year == 1990
    assert af.duration_sec == TEST_DURATION
    assert af.bitrate == TEST_BITRATE
    assert af.mime == "audio/wav"
    assert af.cover == EmbeddedCover(data=cover, mime="image/png")
    assert af.path == p


def test_missing_tags(isolated_dir: Path) -> None:
    p = make_track(
        isolated_dir / "01.wav",
        title=None,
        artist=None,
        album=None,
        tracknumber=None,
        year=None,
    )
    af = AudioTags.from_file(p)
    assert af.title is None
    assert af.artists == []
    assert af.album is None
    assert af.albumartist is None
    assert af.tracknumber is None
    assert af.year is None
    assert af.cover is None


def test_unsupported_file(isolated_dir: Path) -> None:
    p = isolated_dir / "broken.mp3"
    p.write_text("this is not audio")
    with pytest.raises(UnsupportedFiletypeError):
        AudioTags.from_file(p)
    p = isolated_dir / "notes.txt"
    p.write_text("this is not audio either")
    with pytest.raises(UnsupportedFiletypeError):
        AudioTags.from_file(p)


def test_missing_file(isolated_dir: Path) -> None:
    with pytest.raises((UnsupportedFiletypeError, OSError)):
        AudioTags.from_file(isolated_dir / "nope.wav")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, []),
        ("", []),
        ("Artist A", ["Artist A"]),
        ("Artist A;Artist B", ["Artist A", "Artist B"]),
        ("Artist A / Artist B", ["Artist A", "Artist B"]),
        (r"Artist A \\ Artist B", ["Artist A", "Artist B"]),
        ("Artist A vs. Artist B", ["Artist A", "Artist B"]),
        ("Artist A feat. Artist B; Artist C", ["Artist A", "Artist B", "Artist C"]),
        ("Artist A ft. Artist A", ["Artist A"]),
        # Slashes without spaces are part of a name.
        ("AC/DC", ["AC/DC"]),
    ],
)
def test_split_artists(value: str | None, expected: list[str]) -> None:
    assert split_artists(value) == expected


def test_parse_tracknumber() -> None:
    assert _parse_tracknumber("3") == 3
    assert _parse_tracknumber("3/10") == 3
    assert _parse_tracknumber(" 7 / 10") == 7
    assert _parse_tracknumber("A1") is None
    assert _parse_tracknumber(None) is None


def test_parse_year() -> None:
    assert _parse_year("1990") == 1990
    assert _parse_year("1990-02-05") == 1990
    assert _parse_year("1990-02-05T10:00:00") == 1990
    assert _parse_year("the nineties") is None
    assert _parse_year(None) is None
