"""Parse the ISM2 joint definition section (0x03) into a joint hierarchy.

Layout (offsets relative to each chunk start):
    0x03 JointDefinition   header 0x14, children: 0x04 (opaque) | 0x05
    0x05 Joint             header 0x40
        +0x0C  u32  name (string table index)
        +0x1C  u32  parent joint chunk offset (0 = root)
        +0x2C  u32  vertex id (skinning palette slot)
        children: 0x5B (attribute table) | 0x5C (child list, opaque)
    0x5B JointAttributes   header 0x0C, children: attribute records
        0x14 translate / 0x15 scale:     magic, size, x, y, z
        0x5D/5E/5F rotate X/Y/Z:         magic, size, axis x/y/z, angle
        0x67/68/69 joint orient X/Y/Z:   same as rotate

Parents are stored as absolute chunk offsets. Decoding is two-pass: the
first pass assigns every joint chunk a dense index in table order, the
second decodes fields and resolves parent offsets through that map. The map
is discarded afterwards; only indices survive.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..format_profiles import get_profile
from ..ism2_format.ism2_constants import (
    SECTION_JOINT_DEFINITION, HEADER_JOINT_DEFINITION,
    CHUNK_JOINT_GROUP, CHUNK_JOINT, HEADER_JOINT,
    CHUNK_JOINT_ATTRIBUTES, HEADER_JOINT_ATTRIBUTES, CHUNK_JOINT_CHILD_LIST,
    ATTR_TRANSLATE, ATTR_SCALE,
    ATTR_ROTATE_X, ATTR_ROTATE_Y, ATTR_ROTATE_Z,
    ATTR_JOINT_ORIENT_X, ATTR_JOINT_ORIENT_Y, ATTR_JOINT_ORIENT_Z,
    IGNORED_JOINT_ATTRIBUTES, JOINT_VEC3_FORMAT, JOINT_ANGLE_FORMAT,
    NO_PARENT_OFFSET,
)
from ..ism2_format.ism2_errors import (
    DuplicateJoint, MissingParent, SkinLinkageMiss, UnknownChunkKind,
)


_log = logging.getLogger("ism2_skeleton")

# Euler component slot for each angle attribute
_ROTATE_AXIS = {ATTR_ROTATE_X: 0, ATTR_ROTATE_Y: 1, ATTR_ROTATE_Z: 2}
_ORIENT_AXIS = {ATTR_JOINT_ORIENT_X: 0, ATTR_JOINT_ORIENT_Y: 1, ATTR_JOINT_ORIENT_Z: 2}

IDENTITY_QUATERNION = (0.0, 0.0, 0.0, 1.0)


def euler_to_quaternion(roll, pitch, yaw):
    """Convert Euler angles in radians to a unit quaternion (x, y, z, w).

    roll rotates about X, pitch about Y, yaw about Z. The pitch term carries
    the opposite sign pairing from the outer two.
    """
    cy = math.cos(yaw * 0.5)
    sy = math.sin(yaw * 0.5)
    cr = math.cos(roll * 0.5)
    sr = math.sin(roll * 0.5)
    cp = math.cos(pitch * 0.5)
    sp = math.sin(pitch * 0.5)

    w = cy * cr * cp + sy * sr * sp
    x = cy * sr * cp - sy * cr * sp
    y = cy * cr * sp + sy * sr * cp
    z = sy * cr * cp - cy * sr * sp
    return (x, y, z, w)


@dataclass
class ParsedJoint:
    """A single joint of the hierarchy."""
    name: str
    index: int
    parent_idx: Optional[int]    # None for a root
    vertex_id: int               # skinning palette slot
    translation: Optional[Tuple[float, float, float]] = None
    rotation: Optional[Tuple[float, float, float, float]] = None  # (x, y, z, w)
    scale: Optional[Tuple[float, float, float]] = None
    orient: Optional[Tuple[float, float, float, float]] = None    # joint orient, (x, y, z, w)
    children: List[int] = field(default_factory=list)

    @property
    def is_root(self):
        return self.parent_idx is None


class SkinLinkage:
    """Maps in-file vertex ids onto dense joint indices.

    Built once from the joint hierarchy; rigging joint bytes and inverse
    bind matrix positions are both looked up through it.
    """

    __slots__ = ('_joint_by_vertex_id',)

    def __init__(self, mapping=None):
        self._joint_by_vertex_id = dict(mapping or {})

    @classmethod
    def from_joints(cls, joints, unused_vertex_id=0xFFFFFFFF):
        linkage = cls()
        for joint in joints:
            if joint.vertex_id == unused_vertex_id:
                continue
            if joint.vertex_id in linkage:
                _log.warning(
                    "Joint %r repeats vertex id %d (already joint %d); keeping the first",
                    joint.name, joint.vertex_id, linkage.joint_for(joint.vertex_id),
                )
                continue
            linkage._joint_by_vertex_id[joint.vertex_id] = joint.index
        return linkage

    def joint_for(self, vertex_id, context="rigging"):
        """Return the joint index for vertex_id, raising SkinLinkageMiss."""
        try:
            return self._joint_by_vertex_id[vertex_id]
        except KeyError:
            raise SkinLinkageMiss(vertex_id, context) from None

    def __contains__(self, vertex_id):
        return vertex_id in self._joint_by_vertex_id

    def __len__(self):
        return len(self._joint_by_vertex_id)

    def items(self):
        return self._joint_by_vertex_id.items()

    def __eq__(self, other):
        if not isinstance(other, SkinLinkage):
            return NotImplemented
        return self._joint_by_vertex_id == other._joint_by_vertex_id

    def __repr__(self):
        return f"SkinLinkage({self._joint_by_vertex_id})"


@dataclass
class ParsedSkeleton:
    """Complete joint hierarchy extracted from an ISM2 file."""
    joints: List[ParsedJoint]
    linkage: SkinLinkage

    @property
    def roots(self) -> List[int]:
        return [j.index for j in self.joints if j.parent_idx is None]

    def find_joint_by_name(self, name: str) -> Optional[ParsedJoint]:
        for joint in self.joints:
            if joint.name == name:
                return joint
        return None

    def get_children(self, joint_idx: int) -> List[int]:
        return self.joints[joint_idx].children


def extract_skeleton(chunks, offset, strings, profile=None) -> ParsedSkeleton:
    """Decode a joint definition section.

    Args:
        chunks: ChunkReader over the file
        offset: absolute offset of the 0x03 section
        strings: StringTable
        profile: FormatProfile (defaults to the default profile)

    Returns:
        ParsedSkeleton

    Raises:
        MissingParent: a parent offset names no joint declared before the child
        DuplicateJoint: the same joint offset is listed twice
        UnknownChunkKind: an unexpected chunk kind in the hierarchy
    """
    if profile is None:
        profile = get_profile()
    config = profile.skeleton

    section = chunks.read_chunk(offset, SECTION_JOINT_DEFINITION, HEADER_JOINT_DEFINITION)

    # Pass 1: chunk offset -> dense joint index, in table order
    index_by_offset: Dict[int, int] = {}
    for child_offset in section.child_offsets:
        magic = chunks.peek_magic(child_offset)
        if magic == CHUNK_JOINT:
            if child_offset in index_by_offset:
                raise DuplicateJoint(offset, child_offset)
            index_by_offset[child_offset] = len(index_by_offset)
        elif magic != CHUNK_JOINT_GROUP:
            raise UnknownChunkKind(section.magic, magic, child_offset)

    children: List[List[int]] = [[] for _ in index_by_offset]

    # Pass 2: decode fields and resolve parents
    def decode_joint(joint_offset):
        return _parse_joint(chunks, joint_offset, strings, config,
                            index_by_offset, children)

    joints = chunks.walk(section, {
        CHUNK_JOINT_GROUP: None,
        CHUNK_JOINT: decode_joint,
    })

    for joint in joints:
        joint.children = children[joint.index]

    _log.debug("decoded %d joints, %d roots", len(joints),
               sum(1 for j in joints if j.parent_idx is None))

    return ParsedSkeleton(
        joints=joints,
        linkage=SkinLinkage.from_joints(joints, config.unused_vertex_id),
    )


def _parse_joint(chunks, offset, strings, config, index_by_offset, children):
    """Decode one 0x05 joint chunk."""
    chunk = chunks.read_chunk(offset, CHUNK_JOINT, HEADER_JOINT)
    name_idx, parent_offset, vertex_id = chunk.unpack_tail("<I12xI12xI16x")
    index = index_by_offset[offset]

    if parent_offset == NO_PARENT_OFFSET:
        parent_idx = None
    else:
        parent_idx = index_by_offset.get(parent_offset)
        # a parent must precede its child in table order
        if parent_idx is None or parent_idx >= index:
            raise MissingParent(offset, parent_offset)
        children[parent_idx].append(index)

    attributes = []
    for result in chunks.walk(chunk, {
        CHUNK_JOINT_ATTRIBUTES: lambda o: _parse_attribute_table(chunks, o),
        CHUNK_JOINT_CHILD_LIST: None,
    }):
        attributes.extend(result)

    joint = ParsedJoint(
        name=strings.get(name_idx, offset + 0x0C),
        index=index,
        parent_idx=parent_idx,
        vertex_id=vertex_id,
    )
    _apply_attributes(joint, attributes, config)
    return joint


def _parse_attribute_table(chunks, offset):
    """Decode a 0x5B attribute table into a list of (magic, value) pairs."""
    chunk = chunks.read_chunk(offset, CHUNK_JOINT_ATTRIBUTES, HEADER_JOINT_ATTRIBUTES)

    def vec3(o):
        magic, x, y, z = chunks.unpack(JOINT_VEC3_FORMAT, o)
        return (magic, (x, y, z))

    def angle(o):
        magic, _ax, _ay, _az, value = chunks.unpack(JOINT_ANGLE_FORMAT, o)
        return (magic, value)

    decoders = {
        ATTR_TRANSLATE: vec3,
        ATTR_SCALE: vec3,
        ATTR_ROTATE_X: angle,
        ATTR_ROTATE_Y: angle,
        ATTR_ROTATE_Z: angle,
        ATTR_JOINT_ORIENT_X: angle,
        ATTR_JOINT_ORIENT_Y: angle,
        ATTR_JOINT_ORIENT_Z: angle,
    }
    for magic in IGNORED_JOINT_ATTRIBUTES:
        decoders[magic] = None

    return chunks.walk(chunk, decoders)


def _apply_attributes(joint, attributes, config):
    """Fold decoded attribute records into the joint's transform fields."""
    rotate = [None, None, None]
    orient = [None, None, None]

    for magic, value in attributes:
        if magic == ATTR_TRANSLATE:
            joint.translation = value
        elif magic == ATTR_SCALE:
            joint.scale = value
        elif magic in _ROTATE_AXIS:
            rotate[_ROTATE_AXIS[magic]] = value
        elif magic in _ORIENT_AXIS:
            orient[_ORIENT_AXIS[magic]] = value

    joint.rotation = _angles_to_quaternion(rotate, config)
    joint.orient = _angles_to_quaternion(orient, config)


def _angles_to_quaternion(angles, config):
    """Quaternion from up to three optional Euler components.

    Returns None when no component was declared; missing components of a
    partial declaration count as zero.
    """
    if all(a is None for a in angles):
        return None
    roll, pitch, yaw = (0.0 if a is None else a for a in angles)
    if config.angles_in_degrees:
        roll, pitch, yaw = math.radians(roll), math.radians(pitch), math.radians(yaw)
    return euler_to_quaternion(roll, pitch, yaw)
