"""CRC32C checksums for container data."""

from __future__ import annotations

import errno as _errno
import logging

from bfcfs.format import BfcfsError

logger = logging.getLogger(__name__)

_POLY = 0x82F63B78


def _make_table() -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = (crc >> 1) ^ _POLY if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_TABLE = _make_table()


class ChecksumError(BfcfsError):
    """Data does not match its stored checksum."""

    errno = _errno.EBADMSG

    def __init__(self, calculated: int, expected: int) -> None:
        super().__init__(
            f"CRC mismatch - calculated: 0x{calculated:08x}, expected: 0x{expected:08x}"
        )
        self.calculated = calculated
        self.expected = expected


def crc32c(data: bytes) -> int:
    """CRC32C (Castagnoli) of ``data`` from a zero seed, without final inversion."""
    crc = 0
    for byte in data:
        crc = _TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc


def verify_chunk_crc(data: bytes, expected: int) -> None:
    """Raise ChecksumError unless ``data`` has the checksum ``expected``."""
    calculated = crc32c(data)
    if calculated != expected:
        logger.debug(
            "CRC mismatch - calculated: 0x%08x, expected: 0x%08x", calculated, expected
        )
        raise ChecksumError(calculated, expected)