"""Tests for the URL-keyed content cache."""

from __future__ import annotations

import sqlite3

from reelindex.cache import ContentCache

URL = "https://www.instagram.com/reel/XYZ/"


def test_fingerprint_is_sha1_hex():
    fp = ContentCache.fingerprint(URL)
    assert len(fp) == 40
    assert fp == ContentCache.fingerprint(URL)
    assert fp != ContentCache.fingerprint(URL + "?x=1")


def test_write_then_read(tmp_path, clock):
    cache = ContentCache(tmp_path / "cache.sqlite", ttl_seconds=60, clock=clock)
    assert cache.read(URL) is None
    cache.write(URL, {"meta": {"post_id": "XYZ"}})
    assert cache.read(URL) == {"meta": {"post_id": "XYZ"}}


def test_overwrite(tmp_path, clock):
    cache = ContentCache(tmp_path / "cache.sqlite", clock=clock)
    cache.write(URL, {"v": 1})
    cache.write(URL, {"v": 2})
    assert cache.read(URL) == {"v": 2}


def test_stale_entry_is_a_miss_but_kept(tmp_path, clock):
    path = tmp_path / "cache.sqlite"
    cache = ContentCache(path, ttl_seconds=60, clock=clock)
    cache.write(URL, {"v": 1})
    clock.advance(61)
    assert cache.read(URL) is None

    with sqlite3.connect(path) as conn:
        assert conn.execute("SELECT COUNT(*) FROM content_cache").fetchone()[0] == 1


def test_corrupt_payload_is_a_miss(tmp_path, clock):
    path = tmp_path / "cache.sqlite"
    cache = ContentCache(path, clock=clock)
    cache.write(URL, {"v": 1})
    with sqlite3.connect(path) as conn:
        conn.execute("UPDATE content_cache SET payload_json = '{not json'")
    assert cache.read(URL) is None


def test_database_error_is_a_miss(tmp_path, clock):
    path = tmp_path / "cache.sqlite"
    cache = ContentCache(path, clock=clock)
    with sqlite3.connect(path) as conn:
        conn.execute("DROP TABLE content_cache")
    assert cache.read(URL) is None


def test_purge_stale(tmp_path, clock):
    cache = ContentCache(tmp_path / "cache.sqlite", ttl_seconds=60, clock=clock)
    cache.write("https://a", {"v": 1})
    clock.advance(120)
    cache.write("https://b", {"v": 2})
    assert cache.purge_stale() == 1
    assert cache.read("https://b") == {"v": 2}
