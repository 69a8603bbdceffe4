"""Tests for small utility helpers."""
from folio.utils.helpers import format_file_size, parse_tags, title_from_url, truncate_text


def test_title_from_url():
    assert title_from_url("https://example.com/papers/deep-learning_intro.pdf") == "deep learning intro"
    assert title_from_url("https://example.com/") == "example.com"
    assert title_from_url("https://example.com/a%20b.html") == "a b"


def test_format_file_size():
    assert format_file_size(0) == "0 B"
    assert format_file_size(512) == "512 B"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(50 * 1024 * 1024) == "50.0 MB"


def test_parse_tags():
    assert parse_tags(None) == []
    assert parse_tags(" bio, ,plants,bio ") == ["bio", "plants"]


def test_truncate_text():
    assert truncate_text("short", 10) == "short"
    assert truncate_text("a" * 20, 10) == "aaaaaaa..."
