"""Inodes, directory listing, lookup and reads over a loaded container index."""

from __future__ import annotations

import errno as _errno
import logging
import stat
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO

from bfcfs.data import content_start
from bfcfs.format import BfcfsError, NotSupportedError
from bfcfs.index import ContainerIndex, Entry

logger = logging.getLogger(__name__)

ROOT_INO = 1
READDIR_BATCH = 100

_GOLDEN_RATIO_64 = 0x61C8864680B583EB
_MASK64 = (1 << 64) - 1


class DType(IntEnum):
    UNKNOWN = 0
    DIR = 4
    REG = 8
    LNK = 10


@dataclass(frozen=True)
class Inode:
    """Attributes of one file; ``entry_id`` is None for the synthetic root."""

    ino: int
    mode: int
    size: int
    mtime_ns: int
    entry_id: int | None
    uid: int = 0
    gid: int = 0

    @property
    def mtime(self) -> tuple[int, int]:
        """Modification time as (seconds, nanoseconds)."""
        return divmod(self.mtime_ns, 1_000_000_000)

    @property
    def atime_ns(self) -> int:
        return self.mtime_ns

    @property
    def ctime_ns(self) -> int:
        return self.mtime_ns


@dataclass(frozen=True)
class DirEntry:
    name: str
    ino: int
    d_type: DType


def _hash_64(value: int, bits: int) -> int:
    return ((value * _GOLDEN_RATIO_64) & _MASK64) >> (64 - bits)


def inode_number(obj_off: int, entry_id: int) -> int:
    """Inode number of an entry: hashed object offset in the low half, id in the high."""
    return _hash_64(obj_off, 32) | (entry_id << 32)


def _d_type(mode: int) -> DType:
    if stat.S_ISDIR(mode):
        return DType.DIR
    if stat.S_ISREG(mode):
        return DType.REG
    if stat.S_ISLNK(mode):
        return DType.LNK
    return DType.UNKNOWN


def _entry(index: ContainerIndex, entry_id: int) -> Entry:
    if not 0 <= entry_id < index.count:
        raise BfcfsError(f"invalid entry ID: {entry_id}", errno=_errno.EINVAL)
    return index.entries[entry_id]


def make_root_inode(index: ContainerIndex) -> Inode:
    """Inode of the entry "/" if the container has one, else a synthetic root."""
    root_id = index.find_entry("/")
    if root_id is not None:
        if not index.entries[root_id].is_dir():
            raise BfcfsError("root entry is not a directory", errno=_errno.ENOTDIR)
        return iget(index, root_id)

    logger.info("creating synthetic root directory")
    return Inode(
        ino=ROOT_INO,
        mode=stat.S_IFDIR | 0o755,
        size=0,
        mtime_ns=time.time_ns(),
        entry_id=None,
    )


def iget(index: ContainerIndex, entry_id: int) -> Inode:
    """Inode for entry ``entry_id``; directories, regular files and symlinks only."""
    entry = _entry(index, entry_id)
    if entry.is_dir():
        size = 0
    elif entry.is_reg() or entry.is_link():
        size = entry.orig_size
    else:
        raise NotSupportedError(f"unsupported file type for entry {entry_id}")
    return Inode(
        ino=inode_number(entry.obj_off, entry_id),
        mode=entry.mode,
        size=size,
        mtime_ns=entry.mtime_ns,
        entry_id=entry_id,
    )


def _child_ids(index: ContainerIndex, entry_id: int | None) -> list[int]:
    if entry_id is None:
        return [i for i, e in enumerate(index.entries) if "/" not in e.path]
    _entry(index, entry_id)
    return index.children(entry_id)


def readdir(
    index: ContainerIndex, entry_id: int | None, pos: int = 0
) -> tuple[list[DirEntry], int]:
    """List a directory from position ``pos``; returns the entries and the next position.

    Positions 0 and 1 are "." and ".."; children follow in index order, at most
    READDIR_BATCH of them per call. ``entry_id`` None means the synthetic root.
    """
    if pos < 0:
        raise ValueError(f"position must not be negative: {pos}")
    if entry_id is None:
        self_ino = parent_ino = ROOT_INO
    else:
        entry = _entry(index, entry_id)
        self_ino = inode_number(entry.obj_off, entry_id)
        parent_ino = (
            inode_number(index.entries[entry.parent_id].obj_off, entry.parent_id)
            if entry.parent_id is not None
            else ROOT_INO
        )

    result: list[DirEntry] = []
    if pos == 0:
        result.append(DirEntry(".", self_ino, DType.DIR))
        pos += 1
    if pos == 1:
        result.append(DirEntry("..", parent_ino, DType.DIR))
        pos += 1

    children = _child_ids(index, entry_id)
    first = pos - 2
    batch = children[first:first + READDIR_BATCH]
    for child_id in batch:
        child = index.entries[child_id]
        result.append(
            DirEntry(
                name=child.name(),
                ino=inode_number(child.obj_off, child_id),
                d_type=_d_type(child.mode),
            )
        )
        logger.debug("  emitted: %s", child.path)
    return result, pos + len(batch)


def lookup(index: ContainerIndex, dir_entry_id: int | None, name: str) -> Inode | None:
    """Inode of ``name`` inside the directory, or None if there is no such entry."""
    if dir_entry_id is None:
        full_path = name
    else:
        parent_path = _entry(index, dir_entry_id).path
        full_path = f"/{name}" if parent_path == "/" else f"{parent_path}/{name}"
    logger.debug("lookup: %s", full_path)
    found = index.find_entry(full_path)
    return None if found is None else iget(index, found)


def read_file(
    stream: BinaryIO, index: ContainerIndex, entry_id: int, pos: int, count: int
) -> bytes:
    """Read up to ``count`` bytes of the entry's content starting at ``pos``."""
    if pos < 0 or count < 0:
        raise ValueError("position and count must not be negative")
    entry = _entry(index, entry_id)
    if pos >= entry.orig_size:
        return b""
    count = min(count, entry.orig_size - pos)
    if count == 0:
        return b""
    start = content_start(stream, entry)
    stream.seek(start + pos)
    return stream.read(count)


def get_link(stream: BinaryIO, index: ContainerIndex, entry_id: int) -> str:
    """Target of the symlink entry ``entry_id``."""
    entry = _entry(index, entry_id)
    if not entry.is_link():
        raise BfcfsError(f"entry {entry_id} is not a symlink", errno=_errno.EINVAL)
    stream.seek(content_start(stream, entry))
    target = stream.read(entry.orig_size)
    if len(target) != entry.orig_size:
        raise BfcfsError("failed to read symlink target")
    return target.decode("utf-8", "surrogateescape")