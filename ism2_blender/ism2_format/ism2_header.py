"""ISM2 container header and section table parser."""

import struct

from .ism2_constants import (
    ISM2_MAGIC, CONTAINER_HEADER_SIZE, CONTAINER_HEADER_FORMAT,
    SECTION_ENTRY_FORMAT, SECTION_ENTRY_SIZE, SECTION_NAMES,
)
from .ism2_errors import FormatMismatch


class SectionInfo:
    """One (magic, offset) entry of the container's section table."""

    __slots__ = ('magic', 'offset')

    def __init__(self, magic, offset):
        self.magic = magic
        self.offset = offset

    @property
    def name(self):
        return SECTION_NAMES.get(self.magic, f"Unknown_0x{self.magic:02X}")

    def __repr__(self):
        return f"SectionInfo({self.name}, offset=0x{self.offset:X})"


class ISM2Header:
    """Represents the 32-byte ISM2 container header and its section table."""

    def __init__(self):
        self.version = 0
        self.file_size = 0
        self.sections = []  # list of SectionInfo in table order

    @property
    def section_count(self):
        return len(self.sections)

    @classmethod
    def read(cls, chunks):
        """Read the container header from a ChunkReader.

        Args:
            chunks: ChunkReader over the whole file

        Returns:
            ISM2Header instance

        Raises:
            FormatMismatch: if the file does not start with "ISM2"
            ISM2IOError: if the header or section table is truncated
        """
        magic, version, file_size, section_count = chunks.unpack(
            CONTAINER_HEADER_FORMAT, 0
        )
        if magic != ISM2_MAGIC:
            raise FormatMismatch(0, ISM2_MAGIC, magic, "file magic")

        header = cls()
        header.version = version
        header.file_size = file_size

        table = chunks.bytes_at(CONTAINER_HEADER_SIZE, section_count * SECTION_ENTRY_SIZE)
        header.sections = [
            SectionInfo(sec_magic, sec_offset)
            for sec_magic, sec_offset in struct.iter_unpack(SECTION_ENTRY_FORMAT, table)
        ]
        return header

    def __repr__(self):
        return (
            f"ISM2Header(version=0x{self.version:X}, file_size={self.file_size}, "
            f"sections=[{', '.join(s.name for s in self.sections)}])"
        )
