"""Full ISM2 file reader.

Loads the whole file into memory, parses the container header and section
table, and decodes the string table that every later section refers to.
Section bodies are decoded by the scene_graph layer.
"""

import logging

from .ism2_constants import SECTION_STRING_TABLE, CONTAINER_HEADER_SIZE
from .ism2_chunks import ChunkReader
from .ism2_errors import ISM2IOError, MissingStringTable
from .ism2_header import ISM2Header
from .ism2_strings import read_string_table


_log = logging.getLogger("ism2_reader")


class ISM2Reader:
    """Reads the container level of an ISM2 file.

    Usage:
        reader = ISM2Reader("path/to/file.ism2")
        reader.read()
        # Access parsed data:
        #   reader.header  - ISM2Header (version, file_size, sections)
        #   reader.strings - StringTable
        #   reader.chunks  - ChunkReader for decoding section bodies

    Pass data= instead of a path to read from bytes already in memory.
    """

    def __init__(self, filepath=None, data=None):
        if filepath is None and data is None:
            raise ValueError("ISM2Reader needs a filepath or data")
        self.filepath = filepath
        self.data = data
        self.chunks = None
        self.header = None
        self.strings = None

    def read(self):
        """Read the file, header, section table and string table."""
        if self.data is None:
            try:
                with open(self.filepath, "rb") as f:
                    self.data = f.read()
            except OSError as e:
                raise ISM2IOError(f"Cannot read {self.filepath}: {e}") from e

        self.chunks = ChunkReader(self.data)
        self.header = ISM2Header.read(self.chunks)

        if self.header.file_size != self.chunks.size:
            _log.warning(
                "Header declares %d bytes, file has %d",
                self.header.file_size, self.chunks.size,
            )

        if not self.header.sections:
            raise MissingStringTable(
                CONTAINER_HEADER_SIZE, SECTION_STRING_TABLE, None, "first section magic"
            )
        first = self.header.sections[0]
        if first.magic != SECTION_STRING_TABLE:
            raise MissingStringTable(
                CONTAINER_HEADER_SIZE, SECTION_STRING_TABLE, first.magic, "first section magic"
            )

        self.strings = read_string_table(self.chunks, first.offset)
        _log.debug("%r, %d strings", self.header, len(self.strings))

    @property
    def sections(self):
        """Section table entries after the string table."""
        return self.header.sections[1:]

    def dump_tree(self):
        """Log a summary of the container for debugging."""
        source = self.filepath if self.filepath is not None else "<memory>"
        _log.info("=== ISM2 File: %s ===", source)
        _log.info("Header: %r", self.header)
        _log.info("Strings: %d", len(self.strings))
        for section in self.header.sections:
            magic = self.chunks.peek_magic(section.offset)
            count = self.chunks.u32(section.offset + 8)
            _log.info("  %-20s @ 0x%08X  magic=0x%02X  children=%d",
                      section.name, section.offset, magic, count)
