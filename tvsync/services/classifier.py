"""Content-type classification for playlist entries.

Rules are applied in order, first match wins:

1. URL path contains ``/movie/`` or ``/vod/``          -> movie
2. URL path contains ``/series/`` or ``/episode/``     -> series episode
3. group title contains a movie keyword                -> movie
4. group title contains a series keyword               -> series episode
5. name carries a season/episode marker                -> series episode
6. otherwise                                           -> live

Known false positives of step 5 (e.g. "2 Fast 2 Furious" is safe, but
"Top 10x10" is not) are accepted; callers can force a type with *override*.
"""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlparse

from tvsync.models.catalog import Classification, ContentType, SeriesInfo

MOVIE_URL_MARKERS = ("/movie/", "/vod/")
SERIES_URL_MARKERS = ("/series/", "/episode/")

MOVIE_KEYWORDS = ("vod", "movie", "film", "cinema", "movies", "films")
SERIES_KEYWORDS = ("series", "tv show", "tvshow", "episode")

# Each pattern captures (series name, season, episode).
SERIES_PATTERNS = [
    re.compile(r"^(.*?)\s*\bS(\d{1,2})E(\d{1,2})", re.IGNORECASE),
    re.compile(r"^(.*?)\s*\b(\d{1,2})x(\d{1,2})\b", re.IGNORECASE),
    re.compile(r"^(.*?)\s*Season\s*(\d+).*?Episode\s*(\d+)", re.IGNORECASE),
]

OVERRIDE_VALUES = {
    "live": ContentType.LIVE,
    "channel": ContentType.LIVE,
    "movie": ContentType.MOVIE,
    "vod": ContentType.MOVIE,
    "series": ContentType.SERIES_EPISODE,
    "episode": ContentType.SERIES_EPISODE,
}


def parse_override(value: Optional[str]) -> Optional[ContentType]:
    """Map a per-entry override attribute value to a content type, or None if unrecognised."""
    if not value:
        return None
    return OVERRIDE_VALUES.get(value.strip().lower())


def extract_series_info(name: str) -> Optional[SeriesInfo]:
    """Try the season/episode patterns in order against *name*.

    Numbers of 0 do not make a valid episode, so such a match is skipped.
    """
    for pattern in SERIES_PATTERNS:
        match = pattern.search(name or "")
        if not match:
            continue
        season, episode = int(match.group(2)), int(match.group(3))
        if season < 1 or episode < 1:
            continue
        series_name = match.group(1).strip().rstrip("-–|:.").strip()
        return SeriesInfo(series_name=series_name or name.strip(), season_number=season, episode_number=episode)
    return None


def _fallback_series_info(name: str) -> SeriesInfo:
    return SeriesInfo(series_name=(name or "").strip(), season_number=1, episode_number=1)


def _url_path(stream_url: str) -> str:
    try:
        path = urlparse(stream_url).path
    except ValueError:
        path = ""
    return (path or stream_url or "").lower()


def _contains_any(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


def classify(
    group_title: Optional[str],
    stream_url: str,
    name: str,
    override: Optional[ContentType] = None,
) -> Classification:
    """Decide whether an entry is live, a movie or a series episode."""
    if override is not None:
        if override == ContentType.SERIES_EPISODE:
            info = extract_series_info(name) or _fallback_series_info(name)
            return Classification(content_type=override, series_info=info)
        return Classification(content_type=override)

    path = _url_path(stream_url)
    group = (group_title or "").lower()

    if _contains_any(path, MOVIE_URL_MARKERS):
        return Classification(content_type=ContentType.MOVIE)

    if _contains_any(path, SERIES_URL_MARKERS):
        info = extract_series_info(name) or _fallback_series_info(name)
        return Classification(content_type=ContentType.SERIES_EPISODE, series_info=info)

    if _contains_any(group, MOVIE_KEYWORDS):
        return Classification(content_type=ContentType.MOVIE)

    if _contains_any(group, SERIES_KEYWORDS):
        info = extract_series_info(name) or _fallback_series_info(name)
        return Classification(content_type=ContentType.SERIES_EPISODE, series_info=info)

    info = extract_series_info(name)
    if info is not None:
        return Classification(content_type=ContentType.SERIES_EPISODE, series_info=info)

    return Classification(content_type=ContentType.LIVE)
