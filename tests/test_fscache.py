import io
import time
from datetime import datetime, timezone

import pytest

from fasthttpkit.fscache import (
    MAX_SMALL_FILE_SIZE,
    BigFileReader,
    FileCache,
    FSFile,
    SmallFileReader,
)

NOW = datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def make_file(tmp_path, data, name="data.bin"):
    p = tmp_path / name
    p.write_bytes(data)
    return FSFile(str(p), "application/octet-stream", len(data), NOW)


def small_data():
    return bytes(range(256)) * 4


def big_data():
    return bytes(i % 251 for i in range(MAX_SMALL_FILE_SIZE * 3 + 17))


def test_is_big_threshold(tmp_path):
    small = make_file(tmp_path, b"x" * MAX_SMALL_FILE_SIZE, "a")
    big = make_file(tmp_path, b"x" * (MAX_SMALL_FILE_SIZE + 1), "b")
    index = FSFile(None, "text/html", MAX_SMALL_FILE_SIZE * 2, NOW,
                   dir_index=b"y" * (MAX_SMALL_FILE_SIZE * 2))
    assert small.is_big() is False
    assert big.is_big() is True
    assert index.is_big() is False
    for ff in (small, big):
        ff.release()


def test_last_modified_str_is_http_date(tmp_path):
    p = tmp_path / "f"
    p.write_bytes(b"abc")
    ff = FSFile(str(p), "text/plain", 3, datetime(1994, 11, 6, 8, 49, 37, tzinfo=timezone.utc))
    assert ff.last_modified_str == "Sun, 06 Nov 1994 08:49:37 GMT"
    ff.release()


def test_small_reader_reads_whole_file(tmp_path):
    data = small_data()
    ff = make_file(tmp_path, data)
    ff._inc_readers()
    reader = ff.new_reader()
    assert isinstance(reader, SmallFileReader)
    chunks = []
    while chunk := reader.read(100):
        chunks.append(chunk)
    assert b"".join(chunks) == data
    reader.close()
    assert ff.readers_count == 0
    ff.release()


def test_small_reader_byte_range(tmp_path):
    data = small_data()
    ff = make_file(tmp_path, data)
    ff._inc_readers()
    with ff.new_reader() as reader:
        reader.update_byte_range(10, 40)
        assert reader.read() == data[10:41]
        assert reader.read() == b""
    ff.release()


def test_small_reader_write_to(tmp_path):
    data = small_data()
    ff = make_file(tmp_path, data)
    ff._inc_readers()
    reader = ff.new_reader()
    out = io.BytesIO()
    n = reader.write_to(out)
    assert n == len(data)
    assert out.getvalue() == data
    reader.close()
    ff.release()


def test_dir_index_reader(tmp_path):
    page = b"<html><body>index</body></html>"
    ff = FSFile(None, "text/html; charset=utf-8", len(page), NOW, dir_index=page)
    ff._inc_readers()
    reader = ff.new_reader()
    reader.update_byte_range(6, 11)
    out = io.BytesIO()
    assert reader.write_to(out) == 6
    assert out.getvalue() == page[6:12]
    assert reader.read(3) == page[6:9]
    reader.close()
    ff.release()


def test_close_without_reference_raises(tmp_path):
    ff = make_file(tmp_path, b"hello")
    reader = ff.new_reader()
    with pytest.raises(RuntimeError):
        reader.close()
    ff.release()


def test_big_reader_reads_and_pools(tmp_path):
    data = big_data()
    ff = make_file(tmp_path, data)
    ff._inc_readers()
    reader = ff.new_reader()
    assert isinstance(reader, BigFileReader)
    assert reader.read() == data
    reader.close()
    assert ff.readers_count == 0

    ff._inc_readers()
    again = ff.new_reader()
    assert again is reader
    assert again.read(5) == data[:5]
    again.close()
    ff.release()


def test_big_reader_byte_range_write_to(tmp_path):
    data = big_data()
    ff = make_file(tmp_path, data)
    ff._inc_readers()
    reader = ff.new_reader()
    start, end = 100, MAX_SMALL_FILE_SIZE * 2 + 3
    reader.update_byte_range(start, end)
    out = io.BytesIO()
    assert reader.write_to(out) == end - start + 1
    assert out.getvalue() == data[start:end + 1]
    reader.close()
    ff.release()


def test_release_closes_file(tmp_path):
    ff = make_file(tmp_path, b"content")
    ff._inc_readers()
    reader = ff.new_reader()
    ff.release()
    with pytest.raises(ValueError):
        reader.read()


def test_cache_acquire_and_put(tmp_path):
    cache = FileCache(10)
    assert cache.acquire("/a") is None
    ff = make_file(tmp_path, b"first", "a")
    assert cache.put("/a", ff) is ff
    assert ff.readers_count == 1
    assert cache.acquire("/a") is ff
    assert ff.readers_count == 2
    assert "/a" in cache
    assert len(cache) == 1
    ff.release()


def test_cache_put_duplicate_keeps_existing(tmp_path):
    cache = FileCache(10)
    first = make_file(tmp_path, b"first", "a")
    second = make_file(tmp_path, b"second", "b")
    cache.put("/a", first)
    assert cache.put("/a", second) is first
    assert first.readers_count == 2
    second._inc_readers()
    reader = second.new_reader()
    with pytest.raises(ValueError):
        reader.read()
    first.release()


def test_cache_clean_defers_files_in_use(tmp_path):
    cache = FileCache(0.01)
    ff = make_file(tmp_path, small_data())
    cache.put("/f", ff)
    reader = ff.new_reader()
    time.sleep(0.05)
    assert cache.clean() == []
    assert "/f" not in cache
    assert reader.read(4) == small_data()[:4]
    reader.close()
    assert cache.clean() == [ff]
    assert cache.clean() == []


def test_cache_clean_keeps_fresh_entries(tmp_path):
    cache = FileCache(60)
    ff = make_file(tmp_path, b"fresh")
    cache.put("/f", ff)
    assert cache.clean() == []
    assert cache.acquire("/f") is ff
    ff.release()