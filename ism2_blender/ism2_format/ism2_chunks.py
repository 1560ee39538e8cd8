"""Offset-tree chunk reader for ISM2 files.

ISM2 is not laid out sequentially. Every structural chunk starts with

    u32 magic
    u32 header size      (bytes from chunk start to the child offset table)
    u32 child count
    ...                  (type-specific header fields)
    u32 child_offsets[count]   (absolute file offsets)

and each child is reached by jumping to its absolute offset. ChunkReader
holds the whole file in memory and reads by absolute offset, so "seeking"
is passing an offset. All reads are bounds-checked and raise ISM2IOError
instead of returning short data.
"""

import logging
import struct

from .ism2_errors import ISM2IOError, FormatMismatch, UnknownChunkKind


_log = logging.getLogger("ism2_reader")

_U32 = struct.Struct("<I")
_U16 = struct.Struct("<H")

# Offset of the first type-specific field (after magic, size, count)
CHUNK_TAIL_START = 12


class Chunk:
    """A decoded chunk header and its child offset table."""

    __slots__ = ('magic', 'offset', 'header_size', 'count', 'tail', 'child_offsets')

    def __init__(self, magic, offset, header_size, count, tail, child_offsets=()):
        self.magic = magic
        self.offset = offset
        self.header_size = header_size
        self.count = count
        self.tail = tail                    # bytes between count and the offset table
        self.child_offsets = child_offsets  # tuple of absolute offsets

    @property
    def end(self):
        """Offset of the first byte after the header."""
        return self.offset + self.header_size

    def unpack_tail(self, fmt, pos=0):
        """Unpack little-endian fields from the header tail."""
        return struct.unpack_from(fmt, self.tail, pos)

    def __repr__(self):
        return (
            f"Chunk(magic=0x{self.magic:02X}, offset=0x{self.offset:X}, "
            f"count={self.count}, children={len(self.child_offsets)})"
        )


class ChunkReader:
    """Random-access reader over an in-memory ISM2 file.

    Usage:
        reader = ChunkReader(data)
        chunk = reader.read_chunk(offset, 0x03, 0x14)
        for child_offset in chunk.child_offsets:
            reader.dispatch(chunk.magic, child_offset, decoders)
    """

    def __init__(self, data):
        self.data = bytes(data)
        self.view = memoryview(self.data)
        self.size = len(self.data)

    # ---- Primitive reads ----

    def check_range(self, offset, size):
        if offset < 0 or size < 0 or offset + size > self.size:
            raise ISM2IOError.out_of_bounds(offset, size, self.size)

    def unpack(self, fmt, offset):
        """Unpack a struct format at an absolute offset."""
        self.check_range(offset, struct.calcsize(fmt))
        return struct.unpack_from(fmt, self.data, offset)

    def u32(self, offset):
        self.check_range(offset, 4)
        return _U32.unpack_from(self.data, offset)[0]

    def u16(self, offset):
        self.check_range(offset, 2)
        return _U16.unpack_from(self.data, offset)[0]

    def u32_array(self, offset, count):
        self.check_range(offset, 4 * count)
        return struct.unpack_from(f"<{count}I", self.data, offset)

    def bytes_at(self, offset, size):
        self.check_range(offset, size)
        return self.view[offset:offset + size]

    def cstring(self, offset):
        """Read a null-terminated string starting at offset."""
        self.check_range(offset, 1)
        end = self.data.find(b"\0", offset)
        if end == -1:
            raise ISM2IOError(
                f"Unterminated string at 0x{offset:X}",
                offset=offset, available=self.size,
            )
        # one character per byte
        return self.data[offset:end].decode("latin-1")

    # ---- Chunk structure ----

    def peek_magic(self, offset):
        """Return the 4-byte tag at offset without interpreting the chunk."""
        return self.u32(offset)

    def expect_u32(self, offset, expected, field="magic"):
        found = self.u32(offset)
        if found != expected:
            raise FormatMismatch(offset, expected, found, field)
        return found

    def expect_zero(self, offset, size, field="reserved"):
        raw = bytes(self.bytes_at(offset, size))
        if raw != b"\0" * size:
            raise FormatMismatch(offset, b"\0" * size, raw, field)

    def read_header(self, offset, magic, header_size):
        """Verify magic and header size, read the count and header tail.

        Used directly for leaf chunks whose count describes inline data
        rather than an offset table.
        """
        self.expect_u32(offset, magic, "magic")
        self.expect_u32(offset + 4, header_size, "header size")
        count = self.u32(offset + 8)
        tail = bytes(self.bytes_at(offset + CHUNK_TAIL_START,
                                   max(header_size - CHUNK_TAIL_START, 0)))
        return Chunk(magic, offset, header_size, count, tail)

    def read_chunk(self, offset, magic, header_size):
        """Read a container chunk: header plus its table of child offsets."""
        chunk = self.read_header(offset, magic, header_size)
        chunk.child_offsets = self.u32_array(chunk.end, chunk.count)
        _log.debug("chunk 0x%02X @ 0x%X: %d children", magic, offset, chunk.count)
        return chunk

    def dispatch(self, context_magic, offset, decoders):
        """Peek the tag at offset and hand the offset to its decoder.

        Args:
            context_magic: magic of the enclosing chunk (for error reports)
            offset: absolute offset of the child chunk
            decoders: dict of magic -> callable(offset), or None for chunk
                      kinds that are recognised but not decoded

        Returns:
            The decoder's result, or None for skipped kinds.

        Raises:
            UnknownChunkKind: if the tag is not a key of decoders
        """
        magic = self.peek_magic(offset)
        if magic not in decoders:
            raise UnknownChunkKind(context_magic, magic, offset)
        decoder = decoders[magic]
        if decoder is None:
            _log.debug("skipping chunk 0x%02X @ 0x%X", magic, offset)
            return None
        return decoder(offset)

    def walk(self, chunk, decoders):
        """Dispatch every child of chunk in table order.

        Returns the list of non-None decoder results.
        """
        results = []
        for child_offset in chunk.child_offsets:
            result = self.dispatch(chunk.magic, child_offset, decoders)
            if result is not None:
                results.append(result)
        return results
