"""Tests for M3U attribute tokenizing and playlist parsing."""

import pytest

from tvsync.errors import MalformedInput
from tvsync.models.catalog import UNCATEGORIZED, ContentType
from tvsync.services.m3u_service import extract_display_name, parse_m3u, tokenize_attributes

PLAYLIST = """#EXTM3U
#EXTINF:-1 tvg-id="bbc1" tvg-logo="http://logo/bbc1.png" group-title="UK" tvg-chno="101" catchup-days="7",BBC One
http://example.com/live/bbc1.m3u8
#EXTINF:-1 group-title="Films",Inception
http://example.com/vod/123.mp4
#EXTINF:-1 group-title="Shows",Breaking Bad S01E05
http://example.com/stream/555.mkv
#EXTINF:-1 group-title="Shows",Breaking Bad S01E04
http://example.com/stream/554.mkv
"""


class TestTokenizeAttributes:
    """Tests for tokenize_attributes / extract_display_name."""

    def test_basic_line(self):
        line = '#EXTINF:-1 tvg-id="bbc1" group-title="UK",BBC One'
        assert tokenize_attributes(line) == {"tvg-id": "bbc1", "group-title": "UK"}
        assert extract_display_name(line) == "BBC One"

    def test_keys_are_lower_cased_and_last_duplicate_wins(self):
        line = '#EXTINF:-1 TVG-ID="first" tvg-id="second",Name'
        assert tokenize_attributes(line) == {"tvg-id": "second"}

    def test_empty_values_allowed(self):
        assert tokenize_attributes('#EXTINF:-1 tvg-logo="" group-title="News",X') == {
            "tvg-logo": "",
            "group-title": "News",
        }

    def test_comma_inside_quoted_value(self):
        line = '#EXTINF:-1 tvg-name="News, Weather" group-title="UK",Channel'
        assert tokenize_attributes(line)["tvg-name"] == "News, Weather"
        assert extract_display_name(line) == "Channel"

    def test_no_attributes(self):
        assert tokenize_attributes("#EXTINF:-1,Plain") == {}
        assert tokenize_attributes("garbage without anything") == {}

    def test_display_name_uses_last_comma(self):
        assert extract_display_name("#EXTINF:-1,Movie, The") == "The"
        assert extract_display_name("#EXTINF:-1") == ""


class TestParseM3U:
    """Tests for parse_m3u."""

    def test_classifies_entries(self):
        result = parse_m3u(PLAYLIST)
        assert [e.display_name for e in result.channels] == ["BBC One"]
        assert [e.display_name for e in result.movies] == ["Inception"]
        assert list(result.series) == ["Breaking Bad"]
        assert [e.episode_number for e in result.series["Breaking Bad"]] == [4, 5]
        assert result.total_items == 4
        assert result.warnings == []

    def test_channel_fields(self):
        channel = parse_m3u(PLAYLIST).channels[0]
        assert channel.epg_id == "bbc1"
        assert channel.logo_url == "http://logo/bbc1.png"
        assert channel.group_title == "UK"
        assert channel.channel_number == 101
        assert channel.catchup_days == 7
        assert channel.stream_url == "http://example.com/live/bbc1.m3u8"

    def test_ordinals_are_emission_order(self):
        result = parse_m3u(PLAYLIST)
        assert [e.ordinal for e in result.entries] == [0, 1, 2, 3]

    def test_reparse_is_stable(self):
        first = parse_m3u(PLAYLIST)
        second = parse_m3u(PLAYLIST)
        assert [(e.ordinal, e.stream_url) for e in first.entries] == [(e.ordinal, e.stream_url) for e in second.entries]

    def test_extinf_without_url_is_dropped_with_warning(self):
        text = "#EXTM3U\n#EXTINF:-1,Lost\n#EXTINF:-1,Found\nhttp://x/found.ts\n#EXTINF:-1,Trailing\n"
        result = parse_m3u(text)
        assert [e.display_name for e in result.entries] == ["Found"]
        assert result.entries[0].ordinal == 0
        assert [w.kind for w in result.warnings] == ["missing_url", "missing_url"]
        assert result.warnings[0].line == 2

    def test_url_without_extinf_is_skipped(self):
        result = parse_m3u("#EXTM3U\nhttp://x/orphan.ts\n#EXTINF:-1,Ok\nhttp://x/ok.ts\n")
        assert len(result.entries) == 1
        assert result.warnings[0].kind == "invalid_entry"

    def test_name_falls_back_to_tvg_name(self):
        result = parse_m3u('#EXTM3U\n#EXTINF:-1 tvg-name="Fallback",\nhttp://x/1.ts\n')
        assert result.entries[0].display_name == "Fallback"

    def test_empty_name_is_preserved(self):
        result = parse_m3u("#EXTM3U\n#EXTINF:-1,\nhttp://x/1.ts\n")
        assert result.entries[0].display_name == ""

    def test_missing_group_is_uncategorized(self):
        result = parse_m3u("#EXTM3U\n#EXTINF:-1,Chan\nhttp://x/1.ts\n")
        assert result.entries[0].group_title == UNCATEGORIZED

    def test_extgrp_sets_group(self):
        result = parse_m3u("#EXTM3U\n#EXTINF:-1,Chan\n#EXTGRP:News\nhttp://x/1.ts\n")
        assert result.entries[0].group_title == "News"

    def test_bom_and_blank_lines(self):
        result = parse_m3u("\ufeff#EXTM3U\n\n#EXTINF:-1,Chan\n\nhttp://x/1.ts\n")
        assert len(result.entries) == 1

    def test_override_attribute(self):
        result = parse_m3u('#EXTM3U\n#EXTINF:-1 x-content-type="movie" group-title="UK",Docu\nhttp://x/2.ts\n')
        assert result.entries[0].content_type == ContentType.MOVIE

    def test_empty_document_is_valid(self):
        result = parse_m3u("")
        assert result.entries == []
        assert parse_m3u("#EXTM3U\n").entries == []

    def test_html_page_is_malformed(self):
        with pytest.raises(MalformedInput):
            parse_m3u("<html><body>Access denied</body></html>")
