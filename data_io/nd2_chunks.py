import struct
import logging
from dataclasses import dataclass
from typing import BinaryIO, Iterator

# Configure logging for this module
logger = logging.getLogger(__name__)
if not logger.hasHandlers(): # Avoid adding multiple handlers if already configured
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

ND2_CHUNK_MAGIC = 0x0ABECEDA
CHUNK_HEADER_SIZE = 16
CHUNK_ALIGNMENT = 4096
MAX_CHUNK_NAME_LENGTH = 1024
PIXEL_CHUNK_PREFIX = "ImageDataSeq|"

_CHUNK_HEADER = struct.Struct('<4I')


class Nd2Error(Exception):
    """Base class for errors raised while reading an ND2 container."""


class FormatError(Nd2Error, ValueError):
    """The file does not follow the ND2 chunk layout (bad magic, corrupt header)."""


class TruncatedReadError(Nd2Error, EOFError):
    """The stream ended before the requested number of bytes could be read."""


@dataclass(frozen=True)
class Chunk:
    """One record of the ND2 container, with offsets resolved to absolute positions."""
    offset: int
    data_offset: int
    next_offset: int
    name: str

    @property
    def is_pixel_chunk(self) -> bool:
        """True if the chunk holds raw samples for one slice instead of metadata."""
        return self.name.startswith(PIXEL_CHUNK_PREFIX)


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Reads exactly `size` bytes or raises TruncatedReadError."""
    data = stream.read(size)
    if len(data) != size:
        raise TruncatedReadError(
            f"expected {size} bytes at offset {stream.tell() - len(data)}, got {len(data)}"
        )
    return data


def align_offset(offset: int, alignment: int = CHUNK_ALIGNMENT) -> int:
    """Rounds `offset` up to the next multiple of `alignment`."""
    return -(-offset // alignment) * alignment


def _read_chunk_name(stream: BinaryIO, offset: int) -> str:
    raw = stream.read(MAX_CHUNK_NAME_LENGTH)
    end = raw.find(b'\x00')
    if end < 0:
        if len(raw) < MAX_CHUNK_NAME_LENGTH:
            raise TruncatedReadError(f"chunk name at offset {offset} is cut off by end of file")
        raise FormatError(
            f"chunk name at offset {offset} is not terminated within {MAX_CHUNK_NAME_LENGTH} bytes"
        )
    return raw[:end].decode('ascii', errors='replace')


def read_chunk_header(stream: BinaryIO, offset: int) -> Chunk:
    """
    Reads and validates the chunk header located at `offset`.

    The header is four little-endian uint32 words: magic, data offset
    relative to the end of the header, next-chunk offset relative to the
    data offset, and an unused trailer word. The null-terminated chunk
    name follows immediately.

    Args:
        stream (BinaryIO): Seekable binary stream of the ND2 file.
        offset (int): Absolute position of the chunk header.

    Returns:
        Chunk: The chunk with `data_offset` and `next_offset` made absolute.

    Raises:
        TruncatedReadError: If the stream ends inside the header or name.
        FormatError: If the magic word does not match or the name is unterminated.
    """
    stream.seek(offset)
    magic, relative_data, relative_next, _unused = _CHUNK_HEADER.unpack(
        read_exact(stream, CHUNK_HEADER_SIZE)
    )
    if magic != ND2_CHUNK_MAGIC:
        raise FormatError(
            f"unexpected word 0x{magic:08X} at offset {offset} - file not in nd2 format?"
        )

    data_offset = offset + CHUNK_HEADER_SIZE + relative_data
    next_offset = data_offset + relative_next
    name = _read_chunk_name(stream, offset)
    return Chunk(offset=offset, data_offset=data_offset, next_offset=next_offset, name=name)


def iter_chunks(stream: BinaryIO) -> Iterator[Chunk]:
    """
    Walks the container chunk by chunk.

    The chunk at offset 0 is the file preamble: it is validated and then
    skipped. Scanning starts at the first alignment boundary and every
    following header is looked up at the aligned end of the previous chunk.
    Running out of data at a chunk boundary is the normal end of the scan.

    Yields:
        Chunk: Each chunk after the preamble, in file order.

    Raises:
        FormatError: If the preamble is missing or a header has a bad magic word.
    """
    try:
        read_chunk_header(stream, 0)
    except TruncatedReadError as e:
        raise FormatError(f"file too short to hold an nd2 header: {e}") from e

    offset = CHUNK_ALIGNMENT
    while True:
        try:
            chunk = read_chunk_header(stream, offset)
        except (TruncatedReadError, OSError) as e:
            logger.debug(f"End of chunk scan at offset {offset}: {e}")
            return
        logger.debug(f"Chunk '{chunk.name}' at {chunk.offset}, data at {chunk.data_offset}, "
                     f"next at {chunk.next_offset}")
        yield chunk
        offset = align_offset(chunk.next_offset)

