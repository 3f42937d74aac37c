import io
import logging
import stat
import struct
import uuid

import pytest

from bfcfs.format import (
    FOOTER_SIZE,
    HEADER_SIZE,
    MAGIC,
    BfcfsError,
    FormatError,
    VerifyMode,
)
from bfcfs.index import (
    ContainerIndex,
    Entry,
    build_hierarchy,
    format_key_desc,
    load_index,
    parse_index_entries,
    verify_container,
)
from bfcfs.verify import crc32c

DIR = stat.S_IFDIR | 0o755
REG = stat.S_IFREG | 0o644
LNK = stat.S_IFLNK | 0o777
UUID_BYTES = bytes(range(16))


def _entry_bytes(path, mode, obj_off=0, obj_size=0, mtime_ns=0, comp=0, enc=0,
                 orig_size=0, crc=0):
    raw = path.encode()
    return (
        struct.pack("<I", len(raw))
        + raw
        + struct.pack("<QQIQIIQI", obj_off, obj_size, mode, mtime_ns, comp, enc,
                      orig_size, crc)
    )


def _blob(items, version=1, count=None):
    body = b"".join(_entry_bytes(*item) for item in items)
    n = len(items) if count is None else count
    return struct.pack("<II", version, n) + body


def _header(block_size=4096, features=0, magic=MAGIC):
    head = struct.pack("<8sIIQ16s32s", magic, 0, block_size, features, UUID_BYTES,
                       b"\0" * 32)
    return head.ljust(HEADER_SIZE, b"\0")


def _footer(index_size, index_offset, crc, start=b"BFCFIDX\0", end=b"BFCFEND\0"):
    return struct.pack("<8sQIQI16s8s", start, index_size, crc, index_offset, 0,
                       b"\0" * 16, end)


def _container(blob, header=None, offset=HEADER_SIZE, size=None, crc=None,
               footer_start=b"BFCFIDX\0"):
    data = (header or _header()) + blob
    footer = _footer(
        len(blob) if size is None else size,
        offset,
        crc32c(blob) if crc is None else crc,
        start=footer_start,
    )
    data += footer
    return io.BytesIO(data), len(data)


SAMPLE = [
    ("/", DIR),
    ("/a", DIR),
    ("/a/b", REG, 100, 50, 7, 0, 0, 10, 3),
    ("/a/c", LNK),
    ("top", REG),
]


def test_parse_single_entry_fields():
    entries = parse_index_entries(_blob([("/f", REG, 4096, 80, 123, 0, 0, 64, 99)]))
    assert len(entries) == 1
    e = entries[0]
    assert (e.path, e.obj_off, e.obj_size, e.mode, e.mtime_ns) == ("/f", 4096, 80, REG, 123)
    assert (e.comp, e.enc, e.orig_size, e.crc32c) == (0, 0, 64, 99)
    assert e.parent_id is None and e.first_child is None


def test_parse_keeps_order():
    entries = parse_index_entries(_blob(SAMPLE))
    assert [e.path for e in entries] == [item[0] for item in SAMPLE]


def test_blob_too_small():
    with pytest.raises(FormatError):
        parse_index_entries(b"\1\0\0\0")


def test_bad_version():
    with pytest.raises(FormatError, match="version"):
        parse_index_entries(_blob([("/f", REG)], version=2))


def test_empty_container():
    with pytest.raises(FormatError, match="empty"):
        parse_index_entries(_blob([], count=0))


def test_too_many_entries():
    with pytest.raises(FormatError, match="too many"):
        parse_index_entries(_blob([("/f", REG)], count=1_000_001))


@pytest.mark.parametrize("length", [0, 4097])
def test_invalid_path_length(length):
    blob = struct.pack("<III", 1, 1, length) + b"x" * (length + 48)
    with pytest.raises(FormatError, match="path length"):
        parse_index_entries(blob)


def test_truncated_entry():
    blob = _blob([("/f", REG)])[:-1]
    with pytest.raises(FormatError, match="truncated"):
        parse_index_entries(blob)


def test_truncated_path_length():
    blob = _blob([("/f", REG)], count=2) + b"\1\0"
    with pytest.raises(FormatError, match="truncated path length"):
        parse_index_entries(blob)


def test_fewer_entries_than_count():
    with pytest.raises(FormatError, match="expected 3 entries"):
        parse_index_entries(_blob([("/f", REG)], count=3))


def test_hierarchy_parents_and_children():
    entries = build_hierarchy(parse_index_entries(_blob(SAMPLE)))
    assert entries[0].parent_id is None
    assert entries[1].parent_id is None  # slash at position 0
    assert entries[2].parent_id == 1
    assert entries[3].parent_id == 1
    assert entries[4].parent_id is None
    assert (entries[1].first_child, entries[1].last_child) == (2, 3)
    assert entries[0].first_child is None
    assert entries[2].first_child is None


def test_hierarchy_missing_parent():
    entries = build_hierarchy(parse_index_entries(_blob([("/x/y", REG)])))
    assert entries[0].parent_id is None


def test_entry_predicates_and_name():
    entries = parse_index_entries(_blob(SAMPLE))
    assert entries[1].is_dir() and not entries[1].is_reg()
    assert entries[2].is_reg() and not entries[2].is_link()
    assert entries[3].is_link() and not entries[3].is_dir()
    assert entries[2].name() == "b"
    assert entries[4].name() == "top"


def test_format_key_desc_matches_uuid():
    assert format_key_desc(UUID_BYTES) == "bfcfs:" + str(uuid.UUID(bytes=UUID_BYTES))


def test_format_key_desc_rejects_bad_length():
    with pytest.raises(ValueError):
        format_key_desc(b"\0" * 8)


def test_load_index_full_container():
    stream, size = _container(_blob(SAMPLE))
    index = load_index(stream, size)
    assert isinstance(index, ContainerIndex)
    assert index.count == len(SAMPLE)
    assert index.block_size == 4096
    assert index.uuid == UUID_BYTES
    assert index.key_desc == format_key_desc(UUID_BYTES)
    assert index.entries[2].parent_id == 1


def test_load_index_keeps_key_override():
    stream, size = _container(_blob(SAMPLE))
    index = load_index(stream, size, "custom")
    assert index.key_desc == "custom"


def test_find_entry_and_children():
    stream, size = _container(_blob(SAMPLE + [("/a", DIR)]))
    index = load_index(stream, size)
    assert index.find_entry("/a/b") == 2
    assert index.find_entry("/a") == 1
    assert index.find_entry("/missing") is None
    assert index.children(1) == [2, 3]
    assert index.children(2) == []


def test_features_exposed():
    stream, size = _container(_blob(SAMPLE), header=_header(features=2))
    assert load_index(stream, size).features == 2


def test_bad_magic():
    stream, size = _container(_blob(SAMPLE), header=_header(magic=b"NOTBFC\0\0"))
    with pytest.raises(FormatError, match="magic"):
        load_index(stream, size)


@pytest.mark.parametrize("block_size", [256, 3000, 131072])
def test_bad_block_size(block_size):
    stream, size = _container(_blob(SAMPLE), header=_header(block_size=block_size))
    with pytest.raises(FormatError, match="block size"):
        load_index(stream, size)


def test_bad_footer_magic():
    stream, size = _container(_blob(SAMPLE), footer_start=b"XXXXXXX\0")
    with pytest.raises(FormatError, match="footer"):
        load_index(stream, size)


def test_index_offset_before_header_end():
    stream, size = _container(_blob(SAMPLE), offset=HEADER_SIZE - 1)
    with pytest.raises(FormatError, match="bounds"):
        load_index(stream, size)


def test_index_runs_into_footer():
    blob = _blob(SAMPLE)
    stream, size = _container(blob, size=len(blob) + 1)
    with pytest.raises(FormatError, match="bounds"):
        load_index(stream, size)


def test_zero_index_size():
    stream, size = _container(_blob(SAMPLE), size=0)
    with pytest.raises(FormatError, match="index size"):
        load_index(stream, size)


def test_file_too_small_for_footer():
    stream = io.BytesIO(_header())
    with pytest.raises(BfcfsError):
        load_index(stream, FOOTER_SIZE - 1)


def test_crc_mismatch_only_warns(caplog):
    blob = _blob(SAMPLE)
    stream, size = _container(blob, crc=crc32c(blob) ^ 1)
    with caplog.at_level(logging.WARNING, logger="bfcfs.index"):
        index = load_index(stream, size)
    assert index.count == len(SAMPLE)
    assert "CRC mismatch" in caplog.text


def test_verify_container_logs_mode(caplog):
    stream, size = _container(_blob(SAMPLE))
    index = load_index(stream, size)
    with caplog.at_level(logging.DEBUG, logger="bfcfs.index"):
        verify_container(index, VerifyMode.DEEP)
    assert "verification mode 2" in caplog.text


def test_entry_dataclass_defaults():
    e = Entry("/x", 0, 0, REG, 0, 0, 0, 0, 0)
    assert (e.parent_id, e.ext_idx, e.first_child, e.last_child) == (None, None, None, None)
    assert e.name() == "x"