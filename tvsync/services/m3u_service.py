"""M3U playlist parsing — #EXTINF attribute tokenizing and entry pairing.

Pure functions of text: fetching is the sync orchestrator's job.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import ValidationError

from tvsync.errors import MalformedInput
from tvsync.models.catalog import (
    UNCATEGORIZED,
    ContentType,
    EntryWarning,
    M3UParseResult,
    RawEntry,
)
from tvsync.services.classifier import classify, parse_override
from tvsync.services.series_grouper import group_series

logger = logging.getLogger(__name__)

EXTM3U = "#EXTM3U"
EXTINF = "#EXTINF:"
EXTGRP = "#EXTGRP:"

ATTRIBUTE_PATTERN = re.compile(r'([A-Za-z0-9_-]+)="([^"]*)"')

# Attribute names that force a content type for one entry.
OVERRIDE_ATTRIBUTES = ("x-content-type", "tvsync-type")


def _attribute_segment(line: str) -> str:
    """Everything before the last comma that is not inside a quoted value."""
    in_quotes = False
    cut = -1
    for i, ch in enumerate(line):
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            cut = i
    return line if cut == -1 else line[:cut]


def tokenize_attributes(line: str) -> dict[str, str]:
    """Extract ``key="value"`` pairs from one ``#EXTINF`` line.

    Keys are lower-cased; the last occurrence of a repeated key wins. Never
    raises: a line without attributes yields an empty mapping.
    """
    if line.startswith(EXTINF):
        line = line[len(EXTINF):]
    attributes: dict[str, str] = {}
    for key, value in ATTRIBUTE_PATTERN.findall(_attribute_segment(line)):
        attributes[key.lower()] = value
    return attributes


def extract_display_name(line: str) -> str:
    """Text after the last comma on the line, trimmed ("last comma wins")."""
    comma = line.rfind(",")
    if comma == -1:
        return ""
    return line[comma + 1:].strip()


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class _PendingExtinf:
    __slots__ = ("attributes", "name", "line", "group")

    def __init__(self, line_text: str, line_no: int):
        self.attributes = tokenize_attributes(line_text)
        self.name = extract_display_name(line_text) or self.attributes.get("tvg-name", "")
        self.line = line_no
        self.group: Optional[str] = None


def _build_entry(pending: _PendingExtinf, stream_url: str, ordinal: int) -> RawEntry:
    attrs = pending.attributes
    group = attrs.get("group-title") or pending.group or UNCATEGORIZED
    override = None
    for attr in OVERRIDE_ATTRIBUTES:
        override = override or parse_override(attrs.get(attr))

    classification = classify(group, stream_url, pending.name, override=override)
    info = classification.series_info
    catchup_days = _to_int(attrs.get("catchup-days")) or 0

    return RawEntry(
        display_name=pending.name,
        stream_url=stream_url,
        logo_url=attrs.get("tvg-logo") or None,
        group_title=group,
        epg_id=attrs.get("tvg-id") or None,
        catchup_days=max(catchup_days, 0),
        catchup_source=attrs.get("catchup-source") or None,
        channel_number=_to_int(attrs.get("tvg-chno")),
        ordinal=ordinal,
        content_type=classification.content_type,
        series_name=info.series_name if info else None,
        season_number=info.season_number if info else None,
        episode_number=info.episode_number if info else None,
    )


def parse_m3u(text: str) -> M3UParseResult:
    """Parse a playlist into classified entries.

    Each ``#EXTINF`` line is paired with the next non-comment line. An
    ``#EXTINF`` without a URL before the next ``#EXTINF`` (or end of file) is
    dropped with a warning; ordinals count only paired entries, so they are
    the zero-based emission order.

    Raises :class:`MalformedInput` only when the document has no playlist
    structure at all (e.g. an HTML error page served with status 200).
    """
    text = (text or "").lstrip("\ufeff")
    entries: list[RawEntry] = []
    warnings: list[EntryWarning] = []
    pending: Optional[_PendingExtinf] = None
    saw_directive = False

    def drop_pending(reason: str) -> None:
        warnings.append(EntryWarning(
            kind="missing_url",
            message=f"Entry '{pending.name}' has no stream URL ({reason}); skipped",
            line=pending.line,
            ref=pending.name or None,
        ))

    for line_no, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(EXTM3U):
            saw_directive = True
            continue
        if line.startswith(EXTINF):
            saw_directive = True
            if pending is not None:
                drop_pending("followed by another #EXTINF")
            pending = _PendingExtinf(line, line_no)
            continue
        if line.startswith(EXTGRP):
            if pending is not None:
                pending.group = line[len(EXTGRP):].strip() or None
            continue
        if line.startswith("#"):
            continue

        if pending is None:
            warnings.append(EntryWarning(
                kind="invalid_entry",
                message="Stream URL without a preceding #EXTINF; skipped",
                line=line_no,
            ))
            continue

        try:
            entries.append(_build_entry(pending, line, len(entries)))
        except ValidationError as e:
            warnings.append(EntryWarning(
                kind="invalid_entry",
                message=f"Entry '{pending.name}' rejected: {e.errors()[0].get('msg', e)}",
                line=pending.line,
                ref=pending.name or None,
            ))
        pending = None

    if pending is not None:
        drop_pending("end of playlist")

    if text.strip() and not saw_directive and not entries:
        raise MalformedInput("Document is not an M3U playlist (no #EXTM3U or #EXTINF directives)")

    result = M3UParseResult(
        entries=entries,
        channels=[e for e in entries if e.content_type == ContentType.LIVE],
        movies=[e for e in entries if e.content_type == ContentType.MOVIE],
        series=group_series(e for e in entries if e.content_type == ContentType.SERIES_EPISODE),
        warnings=warnings,
    )
    logger.debug(
        f"Parsed M3U: {len(result.channels)} live, {len(result.movies)} movies, "
        f"{len(result.series)} series, {len(warnings)} warning(s)"
    )
    return result
