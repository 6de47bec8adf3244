"""
Tests for response parsing strategies (JSON records and regex HTML fallback).
"""

import json

import pytest

from gram_trends.scrapers.response_parser import (
    FallbackHtmlParser,
    HtmlResponseParser,
    JsonRecordParser,
    extract_music_id,
    parse_count,
    synthesize_id,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1.2M", 1_200_000),
        ("35K", 35_000),
        ("1,024", 1024),
        ("2B", 2_000_000_000),
        ("  987 ", 987),
        ("12.5k videos", 12_500),
        ("", 0),
        (None, 0),
        ("n/a", 0),
        (4200, 4200),
    ],
)
def test_parse_count(raw, expected):
    assert parse_count(raw) == expected


def test_synthesize_id_slugifies_title_author_index():
    assert synthesize_id("Hello, World!", "DJ Test", 3) == "hello-world-dj-test-3"
    assert synthesize_id("", "", 7) == "7"
    assert synthesize_id("!!!", "???", 0) == "0"


def test_extract_music_id_from_link():
    assert extract_music_id("/music/original-sound-7234567890") == "7234567890"
    assert extract_music_id("https://www.tiktok.com/music/7234567890?lang=en") == "7234567890"
    assert extract_music_id("/video/123") is None


def test_json_parser_aliases_dedupes_and_defaults_rank():
    parser = JsonRecordParser()
    items = parser.parse([
        {"music_id": "111", "name": "Song A", "artist": "Artist A", "video_count": "1.5K", "cover": "a.jpg"},
        {"id": "222", "title": "Song B", "author": "Artist B", "play_count": 900, "rank": 7},
        {"id": "111", "title": "Dup", "author": "Dup"},
        "garbage",
        {"id": "333"},
    ])

    assert [i.id for i in items] == ["111", "222", "333"]
    first = items[0]
    assert first.title == "Song A"
    assert first.author == "Artist A"
    assert first.play_count == 1500
    assert first.cover_url == "a.jpg"
    assert first.rank == 1
    assert items[1].rank == 7
    assert items[2].title == "Unknown"
    assert items[2].author == "Unknown"


def test_json_parser_accepts_data_envelope_and_skips_bad_rank():
    parser = JsonRecordParser()
    items = parser.parse({"data": [{"id": "1", "title": "ok"}, {"id": "2", "rank": "abc"}]})
    assert [i.id for i in items] == ["1"]


def test_json_parser_caps_items():
    parser = JsonRecordParser(max_items=50)
    records = [{"id": str(i), "title": f"t{i}"} for i in range(80)]
    assert len(parser.parse(records)) == 50


def test_html_parser_inline_json_fragments_decode_escapes():
    html = (
        '<script>{"music_id":"9001","title":"Caf\\u00e9 \\"Live\\"","author":"Ana","video_count":4200}'
        '{"music_id":"9002","title":"Second","author":"Ben"}'
        '{"music_id":"9001","title":"Dup","author":"Dup"}</script>'
    )
    items = FallbackHtmlParser().parse(html)

    assert [i.id for i in items] == ["9001", "9002"]
    assert items[0].title == 'Café "Live"'
    assert items[0].author == "Ana"
    assert items[0].play_count == 4200
    assert [i.rank for i in items] == [1, 2]


def test_html_parser_music_links_when_no_inline_json():
    html = (
        '<a href="https://www.tiktok.com/music/espresso-7301">Espresso</a>'
        '<a class="x" href="/music/7302?x=1">Other Song</a>'
        '<a href="/music/7301">Espresso again</a>'
    )
    items = FallbackHtmlParser().parse(html)

    assert [(i.id, i.title) for i in items] == [("7301", "Espresso"), ("7302", "Other Song")]
    assert all(i.author == "Unknown" for i in items)


def test_response_parser_routes_by_content_type():
    parser = HtmlResponseParser()
    body = json.dumps([{"id": "1", "title": "json song"}])
    items = parser.parse_response("application/json; charset=utf-8", body)
    assert [i.title for i in items] == ["json song"]

    html_items = parser.parse_response("text/html", '<a href="/music/55">Linked</a>')
    assert [i.id for i in html_items] == ["55"]


def test_response_parser_rescans_empty_json_body_as_html():
    parser = HtmlResponseParser()
    body = json.dumps({"body": '<a href="/music/77">From Body</a>'})
    items = parser.parse_response("application/json", body)
    assert [(i.id, i.title) for i in items] == [("77", "From Body")]


def test_response_parser_empty_json_array_yields_nothing():
    parser = HtmlResponseParser()
    assert parser.parse_response("application/json", "[]") == []


def test_response_parser_invalid_json_falls_back_to_html():
    parser = HtmlResponseParser()
    items = parser.parse_response("application/json", '{broken <a href="/music/12">Broken</a>')
    assert [i.id for i in items] == ["12"]
