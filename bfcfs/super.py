"""Mounting a container and the filesystem-wide operations on it."""

from __future__ import annotations

import errno as _errno
import logging
import os
import stat
from dataclasses import dataclass
from typing import BinaryIO

from bfcfs.crypto import CryptoContext
from bfcfs.format import (
    BFCFS_MAGIC,
    FEATURE_AEAD,
    FOOTER_SIZE,
    HEADER_SIZE,
    BfcfsError,
    VerifyMode,
)
from bfcfs.index import ContainerIndex, load_index, verify_container
from bfcfs.inode import DirEntry, Inode, get_link, lookup, make_root_inode, read_file, readdir
from bfcfs.opts import MountOptions, parse_mount_options

logger = logging.getLogger(__name__)

ST_RDONLY = 1
NAME_MAX = 255


@dataclass(frozen=True)
class StatFs:
    """Filesystem statistics as reported by statfs."""

    f_type: int
    f_bsize: int
    f_blocks: int
    f_bfree: int
    f_bavail: int
    f_files: int
    f_ffree: int
    f_fsid: tuple[int, int]
    f_namelen: int
    f_frsize: int
    f_flags: int


def validate_backing_file(path: str) -> int:
    """Check that ``path`` is a readable regular file big enough; return its size."""
    try:
        st = os.stat(path)
    except OSError as exc:
        raise BfcfsError(
            f"cannot open backing file '{path}': {exc.strerror}",
            errno=exc.errno or _errno.EIO,
        ) from exc
    if not stat.S_ISREG(st.st_mode):
        raise BfcfsError("backing file is not a regular file", errno=_errno.EINVAL)
    if not os.access(path, os.R_OK):
        raise BfcfsError("backing file is not readable", errno=_errno.EACCES)
    if st.st_size < HEADER_SIZE + FOOTER_SIZE:
        raise BfcfsError(
            f"backing file too small ({st.st_size} bytes)", errno=_errno.EINVAL
        )
    return st.st_size


class BfcFilesystem:
    """A mounted, read-only view of one container."""

    def __init__(
        self,
        options: MountOptions,
        index: ContainerIndex,
        stream: BinaryIO,
        crypto: CryptoContext,
        root_inode: Inode,
    ) -> None:
        self.options = options
        self.index: ContainerIndex | None = index
        self.stream: BinaryIO | None = stream
        self.crypto = crypto
        self._root = root_inode

    @property
    def closed(self) -> bool:
        return self.stream is None

    def _require_index(self) -> ContainerIndex:
        if self.index is None:
            raise BfcfsError("filesystem is unmounted", errno=_errno.EIO)
        return self.index

    def _require_open(self) -> tuple[BinaryIO, ContainerIndex]:
        index = self._require_index()
        if self.stream is None:
            raise BfcfsError("backing file is closed", errno=_errno.EIO)
        return self.stream, index

    def statfs(self) -> StatFs:
        """Sizes and counts of the container."""
        index = self._require_index()
        total = sum(e.orig_size for e in index.entries if e.is_reg())
        uuid = index.uuid
        block_size = index.block_size
        return StatFs(
            f_type=BFCFS_MAGIC,
            f_bsize=block_size,
            f_blocks=total >> index.header.block_bits,
            f_bfree=0,
            f_bavail=0,
            f_files=index.count,
            f_ffree=0,
            f_fsid=(
                uuid[0] ^ uuid[4] ^ uuid[8] ^ uuid[12],
                uuid[1] ^ uuid[5] ^ uuid[9] ^ uuid[13],
            ),
            f_namelen=NAME_MAX,
            f_frsize=block_size,
            f_flags=ST_RDONLY,
        )

    def root(self) -> Inode:
        """Inode of the root directory."""
        return self._root

    def lookup(self, dir_entry_id: int | None, name: str) -> Inode | None:
        """Inode of ``name`` in a directory, or None when it does not exist."""
        return lookup(self._require_index(), dir_entry_id, name)

    def readdir(
        self, entry_id: int | None, pos: int = 0
    ) -> tuple[list[DirEntry], int]:
        """Directory entries from ``pos`` on, and the position after them."""
        return readdir(self._require_index(), entry_id, pos)

    def read(self, entry_id: int, pos: int, count: int) -> bytes:
        """Up to ``count`` bytes of a file starting at ``pos``."""
        stream, index = self._require_open()
        return read_file(stream, index, entry_id, pos, count)

    def readlink(self, entry_id: int) -> str:
        """Target of a symlink."""
        stream, index = self._require_open()
        return get_link(stream, index, entry_id)

    def close(self) -> None:
        """Unmount: close the backing file and drop the index."""
        if self.stream is None and self.index is None:
            return
        logger.info("bfcfs (%s): unmounting filesystem", self.options.source)
        stream, self.stream = self.stream, None
        if stream is not None:
            stream.close()
        self.crypto.cleanup()
        self.index = None
        logger.info("bfcfs (%s): filesystem unmounted cleanly", self.options.source)

    def __enter__(self) -> BfcFilesystem:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def mount(data: str | None) -> BfcFilesystem:
    """Mount the container named by the option string ``data``."""
    opts = parse_mount_options(data)
    file_size = validate_backing_file(opts.source)
    try:
        stream = open(opts.source, "rb")
    except OSError as exc:
        raise BfcfsError(
            f"cannot open backing file '{opts.source}': {exc.strerror}",
            errno=exc.errno or _errno.EIO,
        ) from exc

    crypto = CryptoContext(device=opts.source)
    try:
        index = load_index(stream, file_size, opts.key_desc)
        logger.info("bfcfs (%s): loaded container with %d entries", opts.source, index.count)

        if index.features & FEATURE_AEAD:
            crypto.setup(index.features)

        if opts.verify != VerifyMode.NONE:
            verify_container(index, opts.verify)
            logger.info("bfcfs (%s): container verification passed", opts.source)

        root_inode = make_root_inode(index)
    except BaseException:
        crypto.cleanup()
        stream.close()
        raise

    logger.info("bfcfs (%s): mounted successfully", opts.source)
    return BfcFilesystem(opts, index, stream, crypto, root_inode)