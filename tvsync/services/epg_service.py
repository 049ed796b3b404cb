"""EPG service — XMLTV parsing, per-source guide refresh and now/next lookups."""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable, Optional, Union

from lxml import etree
from pydantic import ValidationError

from tvsync.errors import MalformedInput, TransportError, TvSyncError
from tvsync.models.catalog import EntryWarning, EpgChannel, EpgProgram, XmltvParseResult
from tvsync.models.source import SourceDescriptor, SourceKind
from tvsync.models.sync import EpgRefreshResult, SyncStatus

if TYPE_CHECKING:
    from tvsync.services.catalog_store import CatalogStore
    from tvsync.services.credential_service import CredentialService
    from tvsync.services.http_client import HttpClientService

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"

_XMLTV_TIME = re.compile(r"^(\d{14}|\d{12})\s*(?:([+-])(\d{2}):?(\d{2}))?")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_xmltv_time(time_str: Optional[str]) -> Optional[datetime]:
    """Parse an XMLTV timestamp like ``20260217120000 +0100`` into an aware UTC datetime.

    Without an offset the time is taken as UTC. Returns None when unparseable.
    """
    if not time_str:
        return None
    match = _XMLTV_TIME.match(time_str.strip())
    if not match:
        return None
    digits, sign, hours, minutes = match.groups()
    fmt = "%Y%m%d%H%M%S" if len(digits) == 14 else "%Y%m%d%H%M"
    try:
        dt = datetime.strptime(digits, fmt)
    except ValueError:
        return None
    offset = timedelta(0)
    if sign:
        offset = timedelta(hours=int(hours), minutes=int(minutes))
        if sign == "-":
            offset = -offset
    return dt.replace(tzinfo=timezone(offset)).astimezone(timezone.utc)


def _child_text(element, tag: str) -> Optional[str]:
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    text = child.text.strip()
    return text or None


def _icon_src(element) -> Optional[str]:
    icon = element.find("icon")
    if icon is None:
        return None
    return icon.get("src") or None


def _load_root(xml: Union[str, bytes]):
    if isinstance(xml, str):
        data = xml.encode("utf-8")
        parser = etree.XMLParser(recover=True, huge_tree=True, resolve_entities=False, no_network=True, encoding="utf-8")
    else:
        data = xml
        parser = etree.XMLParser(recover=True, huge_tree=True, resolve_entities=False, no_network=True)
    if not data or not data.strip():
        raise MalformedInput("EPG document is empty")
    try:
        root = etree.fromstring(data, parser)
    except etree.XMLSyntaxError as e:
        raise MalformedInput(f"EPG document is not valid XML: {e}") from e
    if root is None:
        raise MalformedInput("EPG document is not valid XML")
    if root.tag != "tv":
        raise MalformedInput(f"EPG document root is <{root.tag}>, expected <tv>")
    return root


def parse_xmltv(xml: Union[str, bytes]) -> XmltvParseResult:
    """Extract channels and programmes from an XMLTV document.

    Programmes missing ``channel``, ``start`` or ``stop``, with unparseable
    times, or ending at or before their start are skipped with a warning.
    Channel ids are returned as-is; matching them to catalog channels is the
    caller's business.
    """
    root = _load_root(xml)
    channels: list[EpgChannel] = []
    programs: list[EpgProgram] = []
    warnings: list[EntryWarning] = []

    for channel in root.iter("channel"):
        channel_id = (channel.get("id") or "").strip()
        if not channel_id:
            warnings.append(EntryWarning(
                kind="missing_attribute",
                message="<channel> without id; skipped",
                line=channel.sourceline,
            ))
            continue
        channels.append(EpgChannel(
            id=channel_id,
            display_name=_child_text(channel, "display-name") or channel_id,
            icon_url=_icon_src(channel),
        ))

    for programme in root.iter("programme"):
        channel_id = programme.get("channel")
        start_str = programme.get("start")
        stop_str = programme.get("stop")
        missing = [name for name, value in (("channel", channel_id), ("start", start_str), ("stop", stop_str)) if not value]
        if missing:
            warnings.append(EntryWarning(
                kind="missing_attribute",
                message=f"<programme> missing {', '.join(missing)}; skipped",
                line=programme.sourceline,
                ref=channel_id,
            ))
            continue

        start = parse_xmltv_time(start_str)
        stop = parse_xmltv_time(stop_str)
        if start is None or stop is None:
            warnings.append(EntryWarning(
                kind="invalid_entry",
                message=f"<programme> on '{channel_id}' has unparseable times ({start_str!r}, {stop_str!r}); skipped",
                line=programme.sourceline,
                ref=channel_id,
            ))
            continue
        if stop <= start:
            warnings.append(EntryWarning(
                kind="invalid_time_range",
                message=f"<programme> on '{channel_id}' stops at or before it starts ({start_str} -> {stop_str}); rejected",
                line=programme.sourceline,
                ref=channel_id,
            ))
            continue

        try:
            programs.append(EpgProgram(
                channel_id=channel_id,
                title=_child_text(programme, "title") or UNTITLED,
                description=_child_text(programme, "desc"),
                start_time=start,
                end_time=stop,
                category=_child_text(programme, "category"),
                icon_url=_icon_src(programme),
            ))
        except ValidationError as e:
            warnings.append(EntryWarning(
                kind="invalid_entry",
                message=f"<programme> on '{channel_id}' rejected: {e.errors()[0].get('msg', e)}",
                line=programme.sourceline,
                ref=channel_id,
            ))

    logger.debug(f"Parsed XMLTV: {len(channels)} channels, {len(programs)} programmes, {len(warnings)} warning(s)")
    return XmltvParseResult(channels=channels, programs=programs, warnings=warnings)


# ---------------------------------------------------------------------------
# Guide queries
# ---------------------------------------------------------------------------

def _for_channel(programs: Iterable[EpgProgram], channel_id: str) -> list[EpgProgram]:
    return sorted((p for p in programs if p.channel_id == channel_id), key=lambda p: p.start_time)


def current_program(programs: Iterable[EpgProgram], channel_id: str, now: Optional[datetime] = None) -> Optional[EpgProgram]:
    now = now or datetime.now(timezone.utc)
    for prog in _for_channel(programs, channel_id):
        if prog.start_time <= now < prog.end_time:
            return prog
    return None


def upcoming_programs(
    programs: Iterable[EpgProgram], channel_id: str, limit: int = 5, now: Optional[datetime] = None
) -> list[EpgProgram]:
    now = now or datetime.now(timezone.utc)
    return [p for p in _for_channel(programs, channel_id) if p.start_time > now][:limit]


def programs_in_range(
    programs: Iterable[EpgProgram], channel_id: str, start: datetime, end: datetime
) -> list[EpgProgram]:
    """Programmes that overlap ``[start, end)``."""
    return [p for p in _for_channel(programs, channel_id) if p.start_time < end and p.end_time > start]


def now_next(programs: Iterable[EpgProgram], channel_id: str, now: Optional[datetime] = None) -> dict:
    """Current and next programme for a channel, with progress of the current one."""
    now = now or datetime.now(timezone.utc)
    result: dict = {"current": None, "next": None}
    current = current_program(programs, channel_id, now)
    upcoming = upcoming_programs(programs, channel_id, limit=1, now=now)

    if current:
        duration = (current.end_time - current.start_time).total_seconds()
        elapsed = (now - current.start_time).total_seconds()
        progress_pct = round((elapsed / duration) * 100, 1) if duration > 0 else 0
        result["current"] = {
            "title": current.title,
            "description": current.description,
            "start": int(current.start_time.timestamp()),
            "stop": int(current.end_time.timestamp()),
            "progress_pct": min(progress_pct, 100.0),
        }
    if upcoming:
        nxt = upcoming[0]
        result["next"] = {"title": nxt.title, "start": int(nxt.start_time.timestamp())}
    return result


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------

class EpgService:
    """Fetches, parses and stores the guide of one source at a time.

    A refresh replaces the source's whole guide in one transaction; a
    failed fetch or parse leaves the stored guide untouched.
    """

    def __init__(
        self,
        http_client: "HttpClientService",
        store: "CatalogStore",
        credentials: "CredentialService",
        timeout: Optional[float] = None,
    ):
        self.http_client = http_client
        self.store = store
        self.credentials = credentials
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}

    def resolve_epg_url(self, source: SourceDescriptor) -> Optional[str]:
        if source.epg_url:
            return source.epg_url
        if source.kind == SourceKind.XTREAM:
            from tvsync.services.xtream_service import XtreamCodesClient

            client = XtreamCodesClient(
                source.url, source.username, self.credentials.decrypt(source.password), self.http_client
            )
            return client.xmltv_url()
        return None

    async def _fetch(self, url: str) -> bytes:
        response = await self.http_client.get(url, timeout=self.timeout)
        if not response.ok:
            raise TransportError(f"EPG fetch failed with HTTP {response.status}", status_code=response.status, url=url)
        logger.info(f"Fetched EPG: {len(response.content)} bytes")
        return response.content

    async def refresh(self, source: SourceDescriptor) -> EpgRefreshResult:
        lock = self._locks.setdefault(source.id, asyncio.Lock())
        async with lock:
            try:
                url = self.resolve_epg_url(source)
                if not url:
                    return EpgRefreshResult(source_id=source.id, status=SyncStatus.SUCCESS)
                data = await self._fetch(url)
                parsed = parse_xmltv(data)
                self.store.replace_epg(source.id, parsed.channels, parsed.programs)
            except TvSyncError as e:
                logger.error(f"EPG refresh failed for source '{source.display_name}': {e}")
                return EpgRefreshResult(
                    source_id=source.id,
                    status=SyncStatus.FAILURE,
                    error_kind=e.error_kind,
                    error=str(e),
                )

        logger.info(
            f"EPG refresh complete for '{source.display_name}': {len(parsed.channels)} channels, "
            f"{len(parsed.programs)} programmes, {len(parsed.warnings)} warning(s)"
        )
        return EpgRefreshResult(
            source_id=source.id,
            status=SyncStatus.SUCCESS,
            channels=len(parsed.channels),
            programs=len(parsed.programs),
            warnings=parsed.warnings,
        )

    def get_now_next(self, epg_id: str, source_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
        """Current and next stored programme of one EPG channel."""
        now = now or datetime.now(timezone.utc)
        programs = self.store.list_programs(epg_id, source_id=source_id, start=now)
        return now_next(programs, epg_id, now)
