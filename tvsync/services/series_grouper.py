"""Series grouping — folds classified episodes into named series."""
from __future__ import annotations

from typing import Iterable

from tvsync.models.catalog import ContentType, RawEntry


def group_series(entries: Iterable[RawEntry]) -> dict[str, list[RawEntry]]:
    """Group series-episode entries of one source by series name.

    Names are compared exactly after trimming. Within a series, entries that
    share ``(season, episode)`` collapse to the one with the highest ordinal.
    The result is ordered by series name; each episode list is ordered by
    ``(season, episode)``. Non-episode entries are ignored.
    """
    groups: dict[str, dict[tuple[int, int], RawEntry]] = {}
    for entry in entries:
        if entry.content_type != ContentType.SERIES_EPISODE:
            continue
        name = (entry.series_name or "").strip()
        key = (entry.season_number, entry.episode_number)
        episodes = groups.setdefault(name, {})
        current = episodes.get(key)
        if current is None or entry.ordinal > current.ordinal:
            episodes[key] = entry

    return {
        name: [episodes[key] for key in sorted(episodes)]
        for name, episodes in sorted(groups.items())
    }
