"""Loading of a container's index: entries, paths and directory hierarchy."""

from __future__ import annotations

import logging
import stat
import struct
import uuid as _uuid
from dataclasses import dataclass, field
from typing import BinaryIO

from bfcfs.format import (
    FOOTER_SIZE,
    HEADER_SIZE,
    BfcfsError,
    ContainerHeader,
    FormatError,
    VerifyMode,
    parse_footer,
    parse_header,
)
from bfcfs.opts import DEFAULT_KEY_DESC
from bfcfs.verify import crc32c

logger = logging.getLogger(__name__)

INDEX_VERSION = 1
MAX_ENTRIES = 1_000_000
MAX_PATH_LEN = 4096
MAX_INDEX_SIZE = 256 * 1024 * 1024

_INDEX_HEADER = struct.Struct("<II")
_PATH_LEN = struct.Struct("<I")
_ENTRY_FIELDS = struct.Struct("<QQIQIIQI")


@dataclass
class Entry:
    """One object listed in the container index."""

    path: str
    obj_off: int
    obj_size: int
    mode: int
    mtime_ns: int
    comp: int
    enc: int
    orig_size: int
    crc32c: int
    parent_id: int | None = None
    ext_idx: int | None = None
    first_child: int | None = None
    last_child: int | None = None

    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    def is_reg(self) -> bool:
        return stat.S_ISREG(self.mode)

    def is_link(self) -> bool:
        return stat.S_ISLNK(self.mode)

    def name(self) -> str:
        """The last component of the entry's path."""
        return self.path.rpartition("/")[2]


@dataclass
class ContainerIndex:
    """A parsed container: its header, entries and key descriptor."""

    header: ContainerHeader
    entries: list[Entry]
    key_desc: str = DEFAULT_KEY_DESC
    _by_path: dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._by_path = {}
        for entry_id, entry in enumerate(self.entries):
            self._by_path.setdefault(entry.path, entry_id)

    @property
    def count(self) -> int:
        return len(self.entries)

    @property
    def block_size(self) -> int:
        return self.header.block_size

    @property
    def features(self) -> int:
        return self.header.features

    @property
    def uuid(self) -> bytes:
        return self.header.uuid

    def find_entry(self, path: str) -> int | None:
        """Id of the first entry whose path is ``path``, or None."""
        return self._by_path.get(path)

    def children(self, entry_id: int) -> list[int]:
        """Ids of the entries whose parent is ``entry_id``, in index order."""
        return [i for i, entry in enumerate(self.entries) if entry.parent_id == entry_id]


def parse_index_entries(blob: bytes) -> list[Entry]:
    """Parse the index blob into its entries."""
    if len(blob) < _INDEX_HEADER.size:
        raise FormatError("index blob too small for header")

    version, count = _INDEX_HEADER.unpack_from(blob)
    if version != INDEX_VERSION:
        raise FormatError(f"unsupported index version: {version}")
    if count == 0:
        raise FormatError("empty container")
    if count > MAX_ENTRIES:
        raise FormatError(f"too many entries: {count}")

    logger.info("parsing %d index entries (version %d)", count, version)

    end = len(blob)
    pos = _INDEX_HEADER.size
    entries: list[Entry] = []
    while len(entries) < count and pos < end:
        number = len(entries)
        if pos + _PATH_LEN.size > end:
            raise FormatError(f"truncated path length at entry {number}")
        (path_len,) = _PATH_LEN.unpack_from(blob, pos)
        pos += _PATH_LEN.size
        if path_len == 0 or path_len > MAX_PATH_LEN:
            raise FormatError(f"invalid path length in entry {number}: {path_len}")
        if pos + path_len + _ENTRY_FIELDS.size > end:
            raise FormatError(f"truncated entry {number}")

        raw_path = bytes(blob[pos:pos + path_len]).split(b"\0", 1)[0]
        pos += path_len
        (
            obj_off,
            obj_size,
            mode,
            mtime_ns,
            comp,
            enc,
            orig_size,
            crc,
        ) = _ENTRY_FIELDS.unpack_from(blob, pos)
        pos += _ENTRY_FIELDS.size

        entries.append(
            Entry(
                path=raw_path.decode("utf-8", "surrogateescape"),
                obj_off=obj_off,
                obj_size=obj_size,
                mode=mode,
                mtime_ns=mtime_ns,
                comp=comp,
                enc=enc,
                orig_size=orig_size,
                crc32c=crc,
            )
        )

    if len(entries) != count:
        raise FormatError(f"expected {count} entries, found {len(entries)}")
    return entries


def build_hierarchy(entries: list[Entry]) -> list[Entry]:
    """Set parent ids and directory child ranges on ``entries``; returns them."""
    first_by_path: dict[str, int] = {}
    for entry_id, entry in enumerate(entries):
        first_by_path.setdefault(entry.path, entry_id)

    for entry in entries:
        slash = entry.path.rfind("/")
        if slash > 0:
            entry.parent_id = first_by_path.get(entry.path[:slash])

    for entry_id, entry in enumerate(entries):
        if not entry.is_dir():
            continue
        kids = [i for i, child in enumerate(entries) if child.parent_id == entry_id]
        entry.first_child = kids[0] if kids else None
        entry.last_child = kids[-1] if kids else None
    return entries


def format_key_desc(uuid: bytes) -> str:
    """Default keyring descriptor ``bfcfs:<uuid>`` for a container UUID."""
    if len(uuid) != 16:
        raise ValueError(f"uuid must be 16 bytes, got {len(uuid)}")
    return DEFAULT_KEY_DESC + str(_uuid.UUID(bytes=bytes(uuid)))


def _read_at(stream: BinaryIO, pos: int, size: int) -> bytes:
    stream.seek(pos)
    return stream.read(size)


def load_index(
    stream: BinaryIO, file_size: int, key_desc: str = DEFAULT_KEY_DESC
) -> ContainerIndex:
    """Read the header, footer and index of the container in ``stream``."""
    header = parse_header(_read_at(stream, 0, HEADER_SIZE))
    logger.info(
        "header: block_size=%d, features=0x%x", header.block_size, header.features
    )

    if file_size < FOOTER_SIZE:
        raise BfcfsError(f"failed to read footer: file size {file_size}")
    footer = parse_footer(_read_at(stream, file_size - FOOTER_SIZE, FOOTER_SIZE))
    offset, size = footer.index_offset, footer.index_size
    logger.debug(
        "footer: index_offset=%d, index_size=%d, index_crc=0x%x",
        offset,
        size,
        footer.index_crc32,
    )

    if offset < HEADER_SIZE or offset + size > file_size - FOOTER_SIZE:
        raise FormatError(
            f"invalid index bounds: offset={offset}, size={size}, file_size={file_size}"
        )
    if size == 0 or size > MAX_INDEX_SIZE:
        raise FormatError(f"invalid index size: {size}")

    blob = _read_at(stream, offset, size)
    if len(blob) != size:
        raise BfcfsError(f"failed to read index blob: {len(blob)} bytes")

    calculated = crc32c(blob)
    if calculated != footer.index_crc32:
        logger.warning(
            "index CRC mismatch: calculated=0x%x, expected=0x%x (ignored)",
            calculated,
            footer.index_crc32,
        )

    entries = build_hierarchy(parse_index_entries(blob))

    if key_desc == DEFAULT_KEY_DESC:
        key_desc = format_key_desc(header.uuid)

    return ContainerIndex(header=header, entries=entries, key_desc=key_desc)


def verify_container(index: ContainerIndex, mode: VerifyMode) -> None:
    """Check container integrity at the given level; no checks are run yet."""
    mode = VerifyMode(mode)
    logger.debug(
        "container verification mode %d - skipped for now (%d entries)",
        mode,
        index.count,
    )