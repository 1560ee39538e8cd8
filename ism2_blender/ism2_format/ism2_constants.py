"""Constants for the ISM2 binary format."""

# File magic ("ISM2" as raw bytes)
ISM2_MAGIC = b"ISM2"

# Container header: magic(4) version(4) reserved(8) file_size(4)
#                   section_count(4) reserved(8)
CONTAINER_HEADER_SIZE = 0x20
CONTAINER_HEADER_FORMAT = "<4sI8xII8x"

# Section table entry: (magic u32, absolute offset u32)
SECTION_ENTRY_FORMAT = "<II"
SECTION_ENTRY_SIZE = 8

# ---------------------------------------------------------------------------
# Top-level section magic numbers
# ---------------------------------------------------------------------------

SECTION_JOINT_DEFINITION = 0x03
SECTION_MODEL_DATA = 0x0B
SECTION_STRING_TABLE = 0x21
SECTION_TEXTURE_DEFINITION = 0x2E
SECTION_JOINT_EXTRA = 0x32

# Sections seen in game files that this importer does not decode
SECTION_ANIMATION = 0x34
SECTION_MATERIALS = 0x61
SECTION_SHADER_NODES = 0x62

SECTION_NAMES = {
    SECTION_JOINT_DEFINITION: "JointDefinition",
    SECTION_MODEL_DATA: "ModelData",
    SECTION_STRING_TABLE: "StringTable",
    SECTION_TEXTURE_DEFINITION: "TextureDefinition",
    SECTION_JOINT_EXTRA: "JointExtra",
    SECTION_ANIMATION: "Animation",
    SECTION_MATERIALS: "Materials",
    SECTION_SHADER_NODES: "ShaderNodes",
}

# ---------------------------------------------------------------------------
# Nested chunk magic numbers
# ---------------------------------------------------------------------------

# Joint definition children
CHUNK_JOINT_GROUP = 0x04     # opaque, skipped
CHUNK_JOINT = 0x05

# Joint children
CHUNK_JOINT_ATTRIBUTES = 0x5B
CHUNK_JOINT_CHILD_LIST = 0x5C  # opaque, skipped

# Joint attribute records
ATTR_TRANSLATE = 0x14
ATTR_SCALE = 0x15
ATTR_ROTATE_X = 0x5D
ATTR_ROTATE_Y = 0x5E
ATTR_ROTATE_Z = 0x5F
ATTR_JOINT_ORIENT_X = 0x67
ATTR_JOINT_ORIENT_Y = 0x68
ATTR_JOINT_ORIENT_Z = 0x69

# Collision / physics attributes: recognised, not decoded
IGNORED_JOINT_ATTRIBUTES = frozenset(
    list(range(0x70, 0x78)) + list(range(0x7A, 0x7F))
)

# Model data
CHUNK_MODEL_GROUP = 0x0A
CHUNK_VERTICES = 0x59
CHUNK_MESH = 0x46
CHUNK_FACES = 0x45
CHUNK_MODEL_OPAQUE = 0x6E    # appears under 0x0A and 0x46, skipped

# Joint extra
CHUNK_SKIN_GROUP = 0x31
CHUNK_SKIN_BIND = 0x30
CHUNK_SKIN_BUFFER = 0x44

# Texture definition
CHUNK_TEXTURE = 0x2D

# ---------------------------------------------------------------------------
# Header sizes (bytes from chunk start to the child offset table)
# ---------------------------------------------------------------------------

HEADER_STRING_TABLE = 0x0C
HEADER_JOINT_DEFINITION = 0x14
HEADER_JOINT = 0x40
HEADER_JOINT_ATTRIBUTES = 0x0C
HEADER_MODEL_DATA = 0x0C
HEADER_MODEL_GROUP = 0x20
HEADER_VERTICES = 0x1C
HEADER_MESH = 0x1C
HEADER_FACES = 0x14
HEADER_JOINT_EXTRA = 0x14
HEADER_SKIN_GROUP = 0x14
HEADER_SKIN_BIND = 0x54
HEADER_SKIN_BUFFER = 0x20
HEADER_TEXTURE_DEFINITION = 0x0C

# Joint attribute records: magic, size, x, y, z / magic, size, axis, angle
JOINT_VEC3_FORMAT = "<I4x3f"
JOINT_ANGLE_FORMAT = "<I4x3ff"

# Vertex attribute descriptor: six u32 (type, 4 unknown, buffer offset)
VERTEX_ATTRIBUTE_FORMAT = "<6I"
VERTEX_ATTRIBUTE_SIZE = 24

# Texture entry: magic, base name, unknown, location, original name
TEXTURE_ENTRY_FORMAT = "<IIIII"

# Joint-extra buffer kinds, keyed by the (part1, part2, part3) header triple
SKIN_BUFFER_BONE_NAMES = (0x05, 0x01, 0x00)
SKIN_BUFFER_MATRICES = (0x0C, 0x10, 0x10)

# Joint parent offset meaning "no parent"
NO_PARENT_OFFSET = 0

# ---------------------------------------------------------------------------
# Vertex buffer layouts (32 bytes per vertex in both shapes)
# ---------------------------------------------------------------------------

GEOMETRY_VERTEX_SIZE = 0x20
RIGGING_VERTEX_SIZE = 0x20

# Normal/tangent inputs shorter than this are treated as degenerate
FRENET_EPSILON = 1e-6

# ---------------------------------------------------------------------------
# Inverse bind matrix element order
# ---------------------------------------------------------------------------

# File element i lands at target position IBM_ELEMENT_ORDER[i]. Each 4x4 in
# the file is row-major; the scene consumes column-major. The table is its
# own inverse.
IBM_ELEMENT_ORDER = (
    0, 4, 8, 12,
    1, 5, 9, 13,
    2, 6, 10, 14,
    3, 7, 11, 15,
)
