"""Parsers for external artist and sound references."""
from __future__ import annotations

import re
from urllib.parse import urlparse

from .records import SoundReference

ARTIST_HOST = "open.spotify.com"
SOUND_HOST = "www.tiktok.com"

_ARTIST_ID = re.compile(r"^[A-Za-z0-9]+$")
_SOUND_ID = re.compile(r"^\d+$")


def parse_artist_url(url: str | None) -> str | None:
    """Return the external artist id embedded in a streaming artist URL.

    The id is the path segment following ``artist``, so locale prefixes
    (``/intl-de/artist/<id>``) and trailing segments (``/artist/<id>/discography``)
    are accepted; the query string (``?si=...``) is ignored. Anything else
    yields ``None``.
    """

    if not url:
        return None
    parsed = urlparse(url.strip())
    if parsed.netloc.lower() != ARTIST_HOST:
        return None
    segments = parsed.path.split("/")
    if "artist" not in segments:
        return None
    index = segments.index("artist") + 1
    if index >= len(segments) or not _ARTIST_ID.match(segments[index]):
        return None
    return segments[index]


def parse_sound_url(url: str | None) -> SoundReference | None:
    """Parse a social sound URL of the form ``/music/Song-Name-1234567890``.

    The id follows the last hyphen of the segment after ``music``; segments
    beyond it are ignored.
    """

    if not url:
        return None
    parsed = urlparse(url.strip())
    if parsed.netloc.lower() != SOUND_HOST:
        return None
    segments = parsed.path.split("/")
    if len(segments) < 3 or segments[1] != "music" or not segments[2]:
        return None
    raw_name, separator, sound_id = segments[2].rpartition("-")
    if not separator or not _SOUND_ID.match(sound_id):
        return None
    name = raw_name.replace("-", " ").strip()
    return SoundReference(external_sound_id=sound_id, name=name or None)


__all__ = ["ARTIST_HOST", "SOUND_HOST", "parse_artist_url", "parse_sound_url"]
