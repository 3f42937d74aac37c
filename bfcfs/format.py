"""On-disk layout of BFC containers and the errors raised while reading them."""

from __future__ import annotations

import errno as _errno
import struct
from dataclasses import dataclass
from enum import IntEnum

BFCFS_MAGIC = 0xBFCF5001
HEADER_SIZE = 4096
FOOTER_SIZE = 56
MAGIC = b"BFCFv1\0\0"
INDEX_MAGIC = b"BFCFIDX"
INDEX_END = b"BFCFEND"
EXT_MAGIC = 0x58434642  # "BFCX"

FEATURE_ZSTD = 1 << 0
FEATURE_AEAD = 1 << 1

COMP_NONE = 0
COMP_ZSTD = 1

TYPE_FILE = 1
TYPE_DIR = 2
TYPE_SYMLINK = 3

ENC_NONE = 0
ENC_CHACHA20_POLY1305 = 1

ALIGN = 16
MIN_BLOCK_SIZE = 512
MAX_BLOCK_SIZE = 65536

_HEADER = struct.Struct("<8sIIQ16s32s")
_FOOTER = struct.Struct("<8sQIQI16s8s")
_OBJ_HEADER = struct.Struct("<BBBBHHIQQQI")

OBJ_HEADER_SIZE = _OBJ_HEADER.size


class BfcfsError(Exception):
    """Base error; ``errno`` carries the matching system error number."""

    errno = _errno.EIO

    def __init__(self, message: str = "", *, errno: int | None = None) -> None:
        super().__init__(message)
        if errno is not None:
            self.errno = errno


class FormatError(BfcfsError, ValueError):
    """The container holds data that does not follow the format."""

    errno = _errno.EINVAL


class NotSupportedError(BfcfsError):
    """The container uses a feature this implementation cannot handle."""

    errno = _errno.EOPNOTSUPP


class VerifyMode(IntEnum):
    NONE = 0
    SHALLOW = 1
    DEEP = 2


@dataclass(frozen=True)
class ContainerHeader:
    header_crc32: int
    block_size: int
    features: int
    uuid: bytes
    enc_salt: bytes

    @property
    def block_bits(self) -> int:
        """log2 of the block size."""
        return self.block_size.bit_length() - 1

    def has_feature(self, flag: int) -> bool:
        return bool(self.features & flag)


@dataclass(frozen=True)
class ContainerFooter:
    index_size: int
    index_crc32: int
    index_offset: int
    container_crc: int


@dataclass(frozen=True)
class ObjectHeader:
    type: int
    comp: int
    enc: int
    name_len: int
    mode: int
    mtime_ns: int
    orig_size: int
    enc_size: int
    crc32c: int

    def content_offset(self, obj_off: int) -> int:
        """Offset of the object's content when the object starts at ``obj_off``."""
        hdr_name_size = OBJ_HEADER_SIZE + self.name_len
        aligned = (hdr_name_size + ALIGN - 1) & ~(ALIGN - 1)
        return obj_off + aligned


def parse_header(data: bytes) -> ContainerHeader:
    """Parse and validate the fixed-size container header."""
    if len(data) < HEADER_SIZE:
        raise BfcfsError(f"failed to read header: {len(data)} bytes")
    magic, header_crc, block_size, features, uuid, salt = _HEADER.unpack_from(data)
    if magic != MAGIC:
        raise FormatError("invalid BFC magic")
    if (
        block_size < MIN_BLOCK_SIZE
        or block_size > MAX_BLOCK_SIZE
        or block_size & (block_size - 1)
    ):
        raise FormatError(f"invalid block size: {block_size}")
    return ContainerHeader(
        header_crc32=header_crc,
        block_size=block_size,
        features=features,
        uuid=bytes(uuid),
        enc_salt=bytes(salt),
    )


def parse_footer(data: bytes) -> ContainerFooter:
    """Parse the footer held in the last FOOTER_SIZE bytes of ``data``."""
    if len(data) < FOOTER_SIZE:
        raise BfcfsError(f"failed to read footer: {len(data)} bytes")
    (
        magic_start,
        index_size,
        index_crc,
        index_offset,
        container_crc,
        _reserved,
        magic_end,
    ) = _FOOTER.unpack(bytes(data[-FOOTER_SIZE:]))
    if magic_start[:7] != INDEX_MAGIC or magic_end[:7] != INDEX_END:
        raise FormatError("invalid footer magic")
    return ContainerFooter(
        index_size=index_size,
        index_crc32=index_crc,
        index_offset=index_offset,
        container_crc=container_crc,
    )


def parse_object_header(data: bytes) -> ObjectHeader:
    """Parse the header that precedes every stored object."""
    if len(data) < OBJ_HEADER_SIZE:
        raise BfcfsError(f"failed to read object header: {len(data)} bytes")
    (
        obj_type,
        comp,
        enc,
        _reserved,
        name_len,
        _padding,
        mode,
        mtime_ns,
        orig_size,
        enc_size,
        crc,
    ) = _OBJ_HEADER.unpack_from(data)
    return ObjectHeader(
        type=obj_type,
        comp=comp,
        enc=enc,
        name_len=name_len,
        mode=mode,
        mtime_ns=mtime_ns,
        orig_size=orig_size,
        enc_size=enc_size,
        crc32c=crc,
    )