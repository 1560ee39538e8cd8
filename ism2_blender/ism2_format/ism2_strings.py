"""ISM2 string table.

The string table is the first section of every ISM2 file. Later structures
refer to its entries by integer index, never by pointer.
"""

from .ism2_constants import SECTION_STRING_TABLE, HEADER_STRING_TABLE
from .ism2_errors import StringIndexError


class StringTable:
    """Ordered, index-addressed list of strings."""

    __slots__ = ('strings',)

    def __init__(self, strings=None):
        self.strings = list(strings or [])

    def __len__(self):
        return len(self.strings)

    def __iter__(self):
        return iter(self.strings)

    def __eq__(self, other):
        if not isinstance(other, StringTable):
            return NotImplemented
        return self.strings == other.strings

    def get(self, index, offset=None):
        """Resolve an index, raising StringIndexError when out of range.

        Args:
            index: table index
            offset: file offset of the reference (for the error message)
        """
        if not 0 <= index < len(self.strings):
            raise StringIndexError(index, len(self.strings), offset)
        return self.strings[index]

    def __getitem__(self, index):
        return self.get(index)

    def __repr__(self):
        return f"StringTable({len(self.strings)} entries)"


def read_string_table(chunks, offset):
    """Decode the string table chunk at offset.

    Layout: standard chunk header (magic 0x21, header size 0x0C) whose child
    table holds the absolute offset of each null-terminated string.
    """
    chunk = chunks.read_chunk(offset, SECTION_STRING_TABLE, HEADER_STRING_TABLE)
    return StringTable(chunks.cstring(o) for o in chunk.child_offsets)
