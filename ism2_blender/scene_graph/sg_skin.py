"""Joint-extra section (0x32): bone name lists and inverse bind matrices.

Layout (offsets relative to each chunk start):
    0x32 JointExtra   header 0x14, +0x0C 8 zero bytes, children: 0x31
    0x31 SkinGroup    header 0x14, +0x0C u32 name1, +0x10 u32 name2,
                      children: 0x30
    0x30 SkinBind     header 0x54, +0x0C u32 unknown, +0x10 4 zero bytes,
                      +0x14 16 x f32 matrix, children: 0x44
    0x44 SkinBuffer   header 0x20 (leaf), +0x08 u32 entry count,
                      +0x0C 4 zero bytes, +0x10 3 x u32 kind triple,
                      +0x1C 4 zero bytes, data follows the header

Buffer kinds by triple:
    (0x05, 0x01, 0x00)  entry count x u16 string-table indices (bone names)
    (0x0C, 0x10, 0x10)  entry count / 16 matrices of 16 x f32

Inverse bind matrices are matched to joints by their position in file
order, looked up through the SkinLinkage built from the joint hierarchy.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ..ism2_format.ism2_constants import (
    SECTION_JOINT_EXTRA, HEADER_JOINT_EXTRA,
    CHUNK_SKIN_GROUP, HEADER_SKIN_GROUP,
    CHUNK_SKIN_BIND, HEADER_SKIN_BIND,
    CHUNK_SKIN_BUFFER, HEADER_SKIN_BUFFER,
    SKIN_BUFFER_BONE_NAMES, SKIN_BUFFER_MATRICES,
    IBM_ELEMENT_ORDER,
)
from ..ism2_format.ism2_errors import UnrecognizedBufferType


_log = logging.getLogger("ism2_skin")

KIND_BONE_NAMES = "bone_names"
KIND_MATRICES = "inverse_bind_matrices"

IDENTITY_MATRIX = np.identity(4, dtype=np.float32).reshape(16)


def permute_matrix(matrix, element_order=IBM_ELEMENT_ORDER):
    """Reorder the 16 elements of one matrix, or of each row of an (M, 16) array.

    File element i moves to position element_order[i]. With the default
    order, applying this twice gives back the input.
    """
    m = np.asarray(matrix, dtype=np.float32)
    out = np.empty_like(m)
    out[..., np.asarray(element_order, dtype=np.intp)] = m
    return out


@dataclass
class SkinBuffer:
    """One 0x44 buffer: either bone names or raw inverse bind matrices."""
    kind: str
    entry_count: int
    bone_names: List[str] = field(default_factory=list)
    matrices: Optional[np.ndarray] = None   # (M, 16) float32, file element order


@dataclass
class ParsedSkinBind:
    """A 0x30 chunk: an auxiliary matrix and its buffers."""
    unknown: int
    matrix: np.ndarray      # (16,) float32
    buffers: List[SkinBuffer] = field(default_factory=list)


@dataclass
class ParsedSkinGroup:
    """A 0x31 chunk: a named group of bind records."""
    name1: str
    name2: str
    binds: List[ParsedSkinBind] = field(default_factory=list)


@dataclass
class ParsedJointExtra:
    """Everything decoded from a joint-extra section."""
    groups: List[ParsedSkinGroup] = field(default_factory=list)

    def _buffers(self, kind):
        for group in self.groups:
            for bind in group.binds:
                for buf in bind.buffers:
                    if buf.kind == kind:
                        yield buf

    @property
    def bone_names(self) -> List[str]:
        """All bone names, in file order."""
        names = []
        for buf in self._buffers(KIND_BONE_NAMES):
            names.extend(buf.bone_names)
        return names

    @property
    def inverse_bind_matrices(self) -> np.ndarray:
        """All inverse bind matrices in file order and element order, (M, 16)."""
        arrays = [buf.matrices for buf in self._buffers(KIND_MATRICES)]
        if not arrays:
            return np.zeros((0, 16), dtype=np.float32)
        return np.concatenate(arrays)


def extract_joint_extra(chunks, offset, strings) -> ParsedJointExtra:
    """Decode a joint-extra section.

    Args:
        chunks: ChunkReader over the file
        offset: absolute offset of the 0x32 section
        strings: StringTable

    Returns:
        ParsedJointExtra
    """
    section = chunks.read_chunk(offset, SECTION_JOINT_EXTRA, HEADER_JOINT_EXTRA)
    chunks.expect_zero(offset + 0x0C, 8, "joint extra padding")

    extra = ParsedJointExtra(groups=chunks.walk(section, {
        CHUNK_SKIN_GROUP: lambda o: _parse_group(chunks, o, strings),
    }))

    _log.debug("joint extra @ 0x%X: %d groups, %d bone names, %d matrices",
               offset, len(extra.groups), len(extra.bone_names),
               len(extra.inverse_bind_matrices))
    return extra


def _parse_group(chunks, offset, strings):
    chunk = chunks.read_chunk(offset, CHUNK_SKIN_GROUP, HEADER_SKIN_GROUP)
    name1_idx, name2_idx = chunk.unpack_tail("<II")
    return ParsedSkinGroup(
        name1=strings.get(name1_idx, offset + 0x0C),
        name2=strings.get(name2_idx, offset + 0x10),
        binds=chunks.walk(chunk, {
            CHUNK_SKIN_BIND: lambda o: _parse_bind(chunks, o, strings),
        }),
    )


def _parse_bind(chunks, offset, strings):
    chunk = chunks.read_chunk(offset, CHUNK_SKIN_BIND, HEADER_SKIN_BIND)
    chunks.expect_zero(offset + 0x10, 4, "skin bind padding")
    values = chunk.unpack_tail("<I4x16f")
    return ParsedSkinBind(
        unknown=values[0],
        matrix=np.array(values[1:], dtype=np.float32),
        buffers=chunks.walk(chunk, {
            CHUNK_SKIN_BUFFER: lambda o: _parse_buffer(chunks, o, strings),
        }),
    )


def _parse_buffer(chunks, offset, strings):
    """Decode a 0x44 leaf buffer, choosing its shape from the kind triple."""
    header = chunks.read_header(offset, CHUNK_SKIN_BUFFER, HEADER_SKIN_BUFFER)
    chunks.expect_zero(offset + 0x0C, 4, "skin buffer padding")
    chunks.expect_zero(offset + 0x1C, 4, "skin buffer padding")
    kind_triple = tuple(header.unpack_tail("<4xIII4x"))
    entry_count = header.count

    if kind_triple == SKIN_BUFFER_BONE_NAMES:
        raw = chunks.bytes_at(header.end, entry_count * 2)
        indices = np.frombuffer(raw, dtype='<u2', count=entry_count)
        names = [
            strings.get(int(idx), header.end + 2 * i)
            for i, idx in enumerate(indices)
        ]
        return SkinBuffer(KIND_BONE_NAMES, entry_count, bone_names=names)

    if kind_triple == SKIN_BUFFER_MATRICES:
        matrix_count = entry_count // 16
        raw = chunks.bytes_at(header.end, matrix_count * 64)
        matrices = np.frombuffer(raw, dtype='<f4', count=matrix_count * 16)
        return SkinBuffer(
            KIND_MATRICES, entry_count,
            matrices=matrices.reshape(matrix_count, 16).astype(np.float32),
        )

    raise UnrecognizedBufferType(offset, kind_triple)


def inverse_bind_matrices_by_joint(matrices, linkage, joint_count,
                                   element_order=IBM_ELEMENT_ORDER):
    """Permute file-order matrices and place each at its joint's index.

    Matrix i belongs to the joint whose vertex id is i. Joints that receive
    no matrix keep the identity.

    Args:
        matrices: (M, 16) array in file order and file element order
        linkage: SkinLinkage from the joint hierarchy
        joint_count: number of joints
        element_order: file-to-output element positions (SkinConfig)

    Returns:
        (joint_count, 16) float32 array

    Raises:
        SkinLinkageMiss: no joint carries vertex id i
    """
    result = np.tile(IDENTITY_MATRIX, (joint_count, 1))
    permuted = permute_matrix(
        np.asarray(matrices, dtype=np.float32).reshape(-1, 16), element_order
    )
    for i, matrix in enumerate(permuted):
        result[linkage.joint_for(i, "inverse bind matrix")] = matrix
    return result
