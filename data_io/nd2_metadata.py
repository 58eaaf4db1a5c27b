import os
import struct
import logging
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from .nd2_chunks import read_exact

# Configure logging for this module
logger = logging.getLogger(__name__)
if not logger.hasHandlers(): # Avoid adding multiple handlers if already configured
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# Entry type tags found in ND2 metadata chunks
TYPE_BOOL = 1
TYPE_INT32 = 2
TYPE_UINT32 = 3
TYPE_DOUBLE = 6
TYPE_WIDE_STRING = 8
TYPE_UINT32_ARRAY = 11

# Bytes skipped for a tag that is not decoded
UNKNOWN_VALUE_SIZE = 4

_INT32 = struct.Struct('<i')
_UINT32 = struct.Struct('<I')
_DOUBLE = struct.Struct('<d')


@dataclass(frozen=True)
class MetadataEntry:
    """One key/value pair decoded from a metadata chunk. Values are kept as text."""
    key: str
    value: str
    value_type: str
    tag: int

    @property
    def is_empty(self) -> bool:
        return not self.key and not self.value


def read_wide_string(stream: BinaryIO) -> str:
    """
    Reads a null-terminated wide string.

    Each character occupies two bytes: the first is kept and the second is
    skipped. Only the low byte of each code unit survives, so anything
    outside Latin-1 comes back mangled. This matches the text produced by
    the nd2tonii tool and is not a real UTF-16 decode.

    Raises:
        TruncatedReadError: If the stream ends before the terminating zero.
    """
    chars = bytearray()
    while True:
        c = read_exact(stream, 1)[0]
        stream.seek(1, os.SEEK_CUR)
        if c == 0:
            break
        chars.append(c)
    return chars.decode('latin-1')


def _read_uint32_array(stream: BinaryIO) -> str:
    # Zero-terminated; the terminating zero is part of the text.
    value = ""
    while True:
        (u,) = _UINT32.unpack(read_exact(stream, _UINT32.size))
        value += f"{u} "
        if u == 0:
            return value


def read_entry(stream: BinaryIO) -> MetadataEntry | None:
    """
    Decodes the entry starting at the current stream position.

    Layout: one type-tag byte, one size-hint byte (unused), the key as a
    wide string, then the value encoded according to the tag. Tags that
    are not decoded are skipped by a fixed 4 bytes.

    Args:
        stream (BinaryIO): Stream positioned at the start of an entry.

    Returns:
        MetadataEntry | None: The decoded entry, or None when the stream has
        no room left for another entry.

    Raises:
        TruncatedReadError: If the stream ends in the middle of the entry.
    """
    head = stream.read(2)
    if len(head) < 2:
        return None
    tag = head[0]

    key = read_wide_string(stream)

    if tag == TYPE_BOOL:
        value_type, value = "bool", str(read_exact(stream, 1)[0])
    elif tag == TYPE_INT32:
        value_type, value = "int32", str(_INT32.unpack(read_exact(stream, _INT32.size))[0])
    elif tag == TYPE_UINT32:
        value_type, value = "uint32", str(_UINT32.unpack(read_exact(stream, _UINT32.size))[0])
    elif tag == TYPE_DOUBLE:
        value_type, value = "double", repr(_DOUBLE.unpack(read_exact(stream, _DOUBLE.size))[0])
    elif tag == TYPE_WIDE_STRING:
        value_type, value = "ws", read_wide_string(stream)
    elif tag == TYPE_UINT32_ARRAY:
        value_type, value = "array uint32", _read_uint32_array(stream)
    else:
        stream.seek(UNKNOWN_VALUE_SIZE, os.SEEK_CUR)
        value_type, value = "unknown", ""

    return MetadataEntry(key=key, value=value, value_type=value_type, tag=tag)


def iter_metadata_entries(stream: BinaryIO, end_offset: int) -> Iterator[MetadataEntry]:
    """
    Yields the entries of a metadata chunk.

    The stream must already be positioned at the chunk's data offset.
    Decoding stops once the cursor reaches `end_offset` (the chunk's
    next-chunk offset) or the stream runs dry.
    """
    while stream.tell() < end_offset:
        entry = read_entry(stream)
        if entry is None:
            return
        yield entry
