"""Geometry extraction from the ISM2 model data section (0x0B).

Layout (offsets relative to each chunk start):
    0x0B ModelData    header 0x0C, exactly one child: 0x0A
    0x0A ModelGroup   header 0x20, children: 0x59 | 0x46 | 0x6E (opaque)
    0x59 Vertices     header 0x1C
        +0x0C  u16  vertex type, u16 unknown
        +0x10  u32  vertex count
        +0x14  u32  vertex stride
        children: vertex attribute descriptors (6 x u32: type, 4 unknown,
                  absolute buffer offset)
    0x46 Mesh         header 0x1C
        +0x0C  u32  surface name (string table index)
        +0x18  u32  face count
        children: 0x45 | 0x6E (opaque)
    0x45 Faces        header 0x14, followed by face count x 3 x u16

A Vertices chunk describes one shared buffer. Only the first attribute
descriptor is used to locate it, and its type tag decides the shape:

    geometry (32 bytes/vertex):
        +0x00  3 x f32  position
        +0x0C  3 x f16  normal
        +0x12  f16      u
        +0x14  3 x f16  tangent
        +0x1A  f16      v
        +0x1C  4 bytes  padding
    rigging (32 bytes/vertex):
        +0x00  4 x u8   joint ids (in-file vertex ids)
        +0x04  4 x f32  weights
        +0x14  12 bytes padding

Which tags mean which shape comes from the FormatProfile.
"""

import logging
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Tuple

import numpy as np

from ..format_profiles import get_profile
from ..ism2_format.ism2_constants import (
    SECTION_MODEL_DATA, HEADER_MODEL_DATA,
    CHUNK_MODEL_GROUP, HEADER_MODEL_GROUP, CHUNK_MODEL_OPAQUE,
    CHUNK_VERTICES, HEADER_VERTICES, CHUNK_MESH, HEADER_MESH,
    CHUNK_FACES, HEADER_FACES,
    VERTEX_ATTRIBUTE_FORMAT, GEOMETRY_VERTEX_SIZE, RIGGING_VERTEX_SIZE,
    FRENET_EPSILON,
)
from ..ism2_format.ism2_errors import (
    FormatMismatch, NoAttributes, UnrecognizedBufferType,
)


_log = logging.getLogger("ism2_geometry")

GEOMETRY_DTYPE = np.dtype([
    ('position', '<f4', (3,)),
    ('normal', '<f2', (3,)),
    ('u', '<f2'),
    ('tangent', '<f2', (3,)),
    ('v', '<f2'),
    ('pad', 'V4'),
])

RIGGING_DTYPE = np.dtype([
    ('joints', 'u1', (4,)),
    ('weights', '<f4', (4,)),
    ('pad', 'V12'),
])

KIND_GEOMETRY = "geometry"
KIND_RIGGING = "rigging"


class GeometryVertex(NamedTuple):
    position: Tuple[float, float, float]
    uv: Tuple[float, float]
    normal: Tuple[float, float, float]
    tangent: Tuple[float, float, float]


class RiggingVertex(NamedTuple):
    joints: Tuple[int, int, int, int]
    weights: Tuple[float, float, float, float]


@dataclass
class VertexAttribute:
    """One vertex attribute descriptor."""
    type_tag: int
    unknown: Tuple[int, int, int, int]
    buffer_offset: int


class GeometryBuffer:
    """Decoded geometry vertices, stored column-wise."""

    kind = KIND_GEOMETRY

    __slots__ = ('positions', 'uvs', 'normals', 'tangents')

    def __init__(self, positions, uvs, normals, tangents):
        self.positions = positions  # (N, 3) float32
        self.uvs = uvs              # (N, 2) float32
        self.normals = normals      # (N, 3) float32, unit or zero
        self.tangents = tangents    # (N, 3) float32, unit or zero

    def __len__(self):
        return len(self.positions)

    def __getitem__(self, i):
        return GeometryVertex(
            position=tuple(float(c) for c in self.positions[i]),
            uv=tuple(float(c) for c in self.uvs[i]),
            normal=tuple(float(c) for c in self.normals[i]),
            tangent=tuple(float(c) for c in self.tangents[i]),
        )

    def __iter__(self):
        return (self[i] for i in range(len(self)))

    def bounds(self):
        """Axis-aligned (min_xyz, max_xyz) of all positions, or None if empty."""
        if len(self.positions) == 0:
            return None
        return (
            tuple(float(c) for c in self.positions.min(axis=0)),
            tuple(float(c) for c in self.positions.max(axis=0)),
        )


class RiggingBuffer:
    """Decoded rigging vertices, index-aligned with the geometry buffer."""

    kind = KIND_RIGGING

    __slots__ = ('joints', 'weights')

    def __init__(self, joints, weights):
        self.joints = joints    # (N, 4) uint8, in-file vertex ids
        self.weights = weights  # (N, 4) float32

    def __len__(self):
        return len(self.joints)

    def __getitem__(self, i):
        return RiggingVertex(
            joints=tuple(int(j) for j in self.joints[i]),
            weights=tuple(float(w) for w in self.weights[i]),
        )

    def __iter__(self):
        return (self[i] for i in range(len(self)))


@dataclass
class ParsedVertices:
    """A 0x59 Vertices chunk and its decoded buffer."""
    vertex_count: int
    vertex_type: int
    stride: int
    attributes: List[VertexAttribute]
    buffer: object  # GeometryBuffer or RiggingBuffer

    @property
    def kind(self):
        return self.buffer.kind


@dataclass
class ParsedMesh:
    """A 0x46 Mesh chunk: a named list of triangles."""
    name: str
    face_count: int
    faces: np.ndarray  # (F, 3) uint16 indices into the geometry buffer

    @property
    def num_faces(self):
        return len(self.faces)


@dataclass
class ParsedModelData:
    """Everything decoded from one model data section."""
    vertices: List[ParsedVertices] = field(default_factory=list)
    meshes: List[ParsedMesh] = field(default_factory=list)

    @property
    def geometry(self) -> Optional[GeometryBuffer]:
        """The first geometry buffer, or None."""
        for v in self.vertices:
            if v.kind == KIND_GEOMETRY:
                return v.buffer
        return None

    @property
    def rigging(self) -> Optional[RiggingBuffer]:
        """The first rigging buffer, or None."""
        for v in self.vertices:
            if v.kind == KIND_RIGGING:
                return v.buffer
        return None


def normalize_frenet(vectors, label="normal"):
    """Normalize an (N, 3) array of vectors row by row.

    Rows that are near zero length or non-finite become zero vectors and are
    reported once per call.

    Returns:
        (N, 3) float32 array
    """
    v = np.asarray(vectors, dtype=np.float64).reshape(-1, 3)
    lengths = np.sqrt(np.einsum('ij,ij->i', v, v))
    degenerate = ~np.isfinite(lengths) | (lengths < FRENET_EPSILON)
    safe = np.where(degenerate, 1.0, lengths)
    out = v / safe[:, None]
    out[degenerate] = 0.0

    if degenerate.any():
        first = int(np.argmax(degenerate))
        _log.warning(
            "%d degenerate %s vector(s) clamped to zero (first at vertex %d)",
            int(degenerate.sum()), label, first,
        )
    return out.astype(np.float32)


def decode_geometry_buffer(chunks, offset, count):
    """Decode count geometry vertices starting at offset."""
    raw = chunks.bytes_at(offset, count * GEOMETRY_VERTEX_SIZE)
    records = np.frombuffer(raw, dtype=GEOMETRY_DTYPE, count=count)
    return GeometryBuffer(
        positions=records['position'].astype(np.float32),
        uvs=np.stack([records['u'], records['v']], axis=1).astype(np.float32),
        normals=normalize_frenet(records['normal'], "normal"),
        tangents=normalize_frenet(records['tangent'], "tangent"),
    )


def decode_rigging_buffer(chunks, offset, count):
    """Decode count rigging vertices starting at offset."""
    raw = chunks.bytes_at(offset, count * RIGGING_VERTEX_SIZE)
    records = np.frombuffer(raw, dtype=RIGGING_DTYPE, count=count)
    return RiggingBuffer(
        joints=records['joints'].astype(np.uint8),
        weights=records['weights'].astype(np.float32),
    )


_BUFFER_DECODERS = {
    KIND_GEOMETRY: decode_geometry_buffer,
    KIND_RIGGING: decode_rigging_buffer,
}


def extract_model_data(chunks, offset, strings, profile=None) -> ParsedModelData:
    """Decode a model data section.

    Args:
        chunks: ChunkReader over the file
        offset: absolute offset of the 0x0B section
        strings: StringTable (for mesh surface names)
        profile: FormatProfile (defaults to the default profile)

    Returns:
        ParsedModelData
    """
    if profile is None:
        profile = get_profile()

    top = chunks.read_chunk(offset, SECTION_MODEL_DATA, HEADER_MODEL_DATA)
    if top.count != 1:
        raise FormatMismatch(offset + 8, 1, top.count, "child count")

    group = chunks.read_chunk(top.child_offsets[0], CHUNK_MODEL_GROUP, HEADER_MODEL_GROUP)

    model = ParsedModelData()
    for item in chunks.walk(group, {
        CHUNK_VERTICES: lambda o: _parse_vertices(chunks, o, profile),
        CHUNK_MESH: lambda o: _parse_mesh(chunks, o, strings),
        CHUNK_MODEL_OPAQUE: None,
    }):
        if isinstance(item, ParsedVertices):
            model.vertices.append(item)
        else:
            model.meshes.append(item)

    _log.debug("model data @ 0x%X: %d vertex buffers, %d meshes",
               offset, len(model.vertices), len(model.meshes))
    return model


def _parse_vertices(chunks, offset, profile):
    """Decode a 0x59 Vertices chunk and the buffer its first attribute locates."""
    chunk = chunks.read_chunk(offset, CHUNK_VERTICES, HEADER_VERTICES)
    vertex_type, vertex_count, stride = chunk.unpack_tail("<H2xII4x")

    attributes = []
    for attr_offset in chunk.child_offsets:
        type_tag, u1, u2, u3, u4, buffer_offset = chunks.unpack(
            VERTEX_ATTRIBUTE_FORMAT, attr_offset
        )
        attributes.append(VertexAttribute(type_tag, (u1, u2, u3, u4), buffer_offset))

    if not attributes:
        raise NoAttributes(offset)

    first = attributes[0]
    kind = profile.vertex_layout.classify(first.type_tag)
    if kind is None:
        raise UnrecognizedBufferType(offset, first.type_tag)

    expected_stride = GEOMETRY_VERTEX_SIZE if kind == KIND_GEOMETRY else RIGGING_VERTEX_SIZE
    if stride and stride != expected_stride:
        _log.warning(
            "Vertices @ 0x%X declare stride %d, decoding as %d-byte %s records",
            offset, stride, expected_stride, kind,
        )

    buffer = _BUFFER_DECODERS[kind](chunks, first.buffer_offset, vertex_count)
    return ParsedVertices(
        vertex_count=vertex_count,
        vertex_type=vertex_type,
        stride=stride,
        attributes=attributes,
        buffer=buffer,
    )


def _parse_mesh(chunks, offset, strings):
    """Decode a 0x46 Mesh chunk; the face count in its header is authoritative."""
    chunk = chunks.read_chunk(offset, CHUNK_MESH, HEADER_MESH)
    name_idx, face_count = chunk.unpack_tail("<I8xI")

    face_lists = chunks.walk(chunk, {
        CHUNK_FACES: lambda o: _parse_faces(chunks, o, face_count),
        CHUNK_MODEL_OPAQUE: None,
    })
    if face_lists:
        faces = np.concatenate(face_lists)
    else:
        faces = np.zeros((0, 3), dtype=np.uint16)

    return ParsedMesh(
        name=strings.get(name_idx, offset + 0x0C),
        face_count=face_count,
        faces=faces,
    )


def _parse_faces(chunks, offset, face_count):
    """Read exactly face_count triangles following a 0x45 header."""
    header = chunks.read_header(offset, CHUNK_FACES, HEADER_FACES)
    raw = chunks.bytes_at(header.end, face_count * 6)
    return np.frombuffer(raw, dtype='<u2', count=face_count * 3).reshape(face_count, 3).astype(np.uint16)
