import pathlib
import sys

SRC_ROOT = pathlib.Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

import pytest

from reactivity_engine.references import parse_artist_url, parse_sound_url


def test_parse_artist_url_extracts_id_and_ignores_query() -> None:
    assert parse_artist_url("https://open.spotify.com/artist/4Z8W4fKeB5YxbusRsdQVPb") == "4Z8W4fKeB5YxbusRsdQVPb"
    assert parse_artist_url("https://open.spotify.com/artist/abc123?si=xyz") == "abc123"


@pytest.mark.parametrize(
    "url",
    [
        "https://open.spotify.com/intl-de/artist/abc123?si=x",
        "https://open.spotify.com/artist/abc123/discography",
        "https://open.spotify.com/intl-pt/artist/abc123/discography/all",
    ],
)
def test_parse_artist_url_finds_id_after_artist_segment(url) -> None:
    assert parse_artist_url(url) == "abc123"


@pytest.mark.parametrize(
    "url",
    [
        "",
        None,
        "not a url",
        "https://example.com/artist/abc123",
        "https://open.spotify.com/album/abc123",
        "https://open.spotify.com/artist/",
        "https://open.spotify.com/artist/abc-123",
    ],
)
def test_parse_artist_url_rejects_other_references(url) -> None:
    assert parse_artist_url(url) is None


def test_parse_sound_url_splits_name_and_id() -> None:
    reference = parse_sound_url("https://www.tiktok.com/music/My-Great-Song-7234567890123?lang=en")

    assert reference is not None
    assert reference.external_sound_id == "7234567890123"
    assert reference.name == "My Great Song"


def test_parse_sound_url_without_name() -> None:
    reference = parse_sound_url("https://www.tiktok.com/music/-7234567890123")

    assert reference is not None
    assert reference.external_sound_id == "7234567890123"
    assert reference.name is None


def test_parse_sound_url_ignores_trailing_segments() -> None:
    reference = parse_sound_url("https://www.tiktok.com/music/Late-Night-Drive-7234567890123/videos?lang=en")

    assert reference is not None
    assert reference.external_sound_id == "7234567890123"
    assert reference.name == "Late Night Drive"


@pytest.mark.parametrize(
    "url",
    [
        "https://tiktok.com/music/Song-123",
        "https://www.tiktok.com/video/Song-123",
        "https://www.tiktok.com/music/Song-Name",
        "https://www.tiktok.com/music/7234567890123",
        "https://www.tiktok.com/music/Song-",
        "https://www.tiktok.com/music/",
        "https://www.tiktok.com/tag/music/Song-123",
    ],
)
def test_parse_sound_url_rejects_other_references(url) -> None:
    assert parse_sound_url(url) is None
