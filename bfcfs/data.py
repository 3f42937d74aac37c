"""Reading file content out of a container, one page at a time."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import BinaryIO

from bfcfs.format import (
    COMP_NONE,
    ENC_NONE,
    OBJ_HEADER_SIZE,
    BfcfsError,
    NotSupportedError,
    parse_object_header,
)
from bfcfs.index import Entry

logger = logging.getLogger(__name__)

PAGE_SIZE = 4096


def content_start(stream: BinaryIO, entry: Entry) -> int:
    """Offset in the container where the content of ``entry`` begins."""
    stream.seek(entry.obj_off)
    raw = stream.read(OBJ_HEADER_SIZE)
    return parse_object_header(raw).content_offset(entry.obj_off)


def read_page(
    stream: BinaryIO, entry: Entry, page_index: int, page_size: int = PAGE_SIZE
) -> bytes:
    """Return page ``page_index`` of the entry's content, zero-padded to ``page_size``."""
    if page_index < 0:
        raise ValueError(f"page index must not be negative: {page_index}")
    if page_size <= 0:
        raise ValueError(f"page size must be positive: {page_size}")
    if entry.comp != COMP_NONE or entry.enc != ENC_NONE:
        raise NotSupportedError("compressed/encrypted files not yet supported")

    start = content_start(stream, entry)
    page_offset = page_index * page_size
    if page_offset >= entry.orig_size:
        return bytes(page_size)

    to_read = min(page_size, entry.orig_size - page_offset)
    stream.seek(start + page_offset)
    data = stream.read(to_read)
    if len(data) != to_read:
        logger.warning("short read: expected %d, got %d", to_read, len(data))
    return data.ljust(page_size, b"\0")


def readahead(
    stream: BinaryIO,
    entry: Entry,
    page_indices: Iterable[int],
    page_size: int = PAGE_SIZE,
) -> Iterator[tuple[int, bytes | None]]:
    """Read each requested page; a page that fails comes back as None."""
    for page_index in page_indices:
        try:
            yield page_index, read_page(stream, entry, page_index, page_size)
        except BfcfsError as exc:
            logger.debug("readahead: page %d failed: %s", page_index, exc)
            yield page_index, None