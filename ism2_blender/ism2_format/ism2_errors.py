"""Exceptions raised while decoding ISM2 files.

Every decode failure derives from ISM2Error, so callers can catch a single
type and still inspect the offending magic numbers, offsets or ids.
"""


def _hex(value):
    if value is None:
        return "?"
    if isinstance(value, (bytes, bytearray)):
        return repr(bytes(value))
    return f"0x{value:X}"


class ISM2Error(ValueError):
    """Base class for all ISM2 decode errors."""


class ISM2IOError(ISM2Error):
    """A read or seek fell outside the file, or the file could not be read."""

    def __init__(self, message, offset=None, size=None, available=None):
        super().__init__(message)
        self.offset = offset
        self.size = size
        self.available = available

    @classmethod
    def out_of_bounds(cls, offset, size, available):
        return cls(
            f"Read of {size} bytes at {_hex(offset)} exceeds file size "
            f"{_hex(available)}",
            offset=offset, size=size, available=available,
        )


class FormatMismatch(ISM2Error):
    """An expected magic number or header constant was not found."""

    def __init__(self, offset, expected, found, field="magic"):
        super().__init__(
            f"Expected {field} {_hex(expected)} at {_hex(offset)}, "
            f"found {_hex(found)}"
        )
        self.offset = offset
        self.expected = expected
        self.found = found
        self.field = field


class MissingStringTable(FormatMismatch):
    """The first section of the container is not the string table."""


class UnknownChunkKind(ISM2Error):
    """A nested chunk carries a magic number its parent does not know."""

    def __init__(self, context_magic, found_magic, offset=None):
        super().__init__(
            f"Unknown chunk magic {_hex(found_magic)} in chunk "
            f"{_hex(context_magic)} at {_hex(offset)}"
        )
        self.context_magic = context_magic
        self.found_magic = found_magic
        self.offset = offset


class MissingParent(ISM2Error):
    """A joint names a parent offset that holds no joint declared before it."""

    def __init__(self, joint_offset, parent_offset):
        super().__init__(
            f"Joint at {_hex(joint_offset)} references parent offset "
            f"{_hex(parent_offset)}, which is not a joint declared before it"
        )
        self.joint_offset = joint_offset
        self.parent_offset = parent_offset


class DuplicateJoint(ISM2Error):
    """A joint definition lists the same joint offset more than once."""

    def __init__(self, section_offset, joint_offset):
        super().__init__(
            f"Joint definition at {_hex(section_offset)} lists joint "
            f"{_hex(joint_offset)} more than once"
        )
        self.section_offset = section_offset
        self.joint_offset = joint_offset


class NoAttributes(ISM2Error):
    """A vertices chunk declares no attribute descriptors."""

    def __init__(self, offset):
        super().__init__(f"Vertices chunk at {_hex(offset)} has no attributes")
        self.offset = offset


class UnrecognizedBufferType(ISM2Error):
    """A buffer's type tag matches no known buffer shape."""

    def __init__(self, offset, type_tag):
        super().__init__(
            f"Unrecognized buffer type {_fmt_tag(type_tag)} at {_hex(offset)}"
        )
        self.offset = offset
        self.type_tag = type_tag


class SkinLinkageMiss(ISM2Error):
    """A vertex id used by skinning data matches no joint."""

    def __init__(self, vertex_id, context="rigging"):
        super().__init__(
            f"No joint carries vertex id {vertex_id} (referenced by {context})"
        )
        self.vertex_id = vertex_id
        self.context = context


class StringIndexError(ISM2Error):
    """A string-table index is outside the table."""

    def __init__(self, index, table_size, offset=None):
        super().__init__(
            f"String index {index} out of range (table has {table_size} "
            f"entries), referenced at {_hex(offset)}"
        )
        self.index = index
        self.table_size = table_size
        self.offset = offset


def _fmt_tag(tag):
    if isinstance(tag, tuple):
        return "(" + ", ".join(_hex(t) for t in tag) + ")"
    return _hex(tag)
