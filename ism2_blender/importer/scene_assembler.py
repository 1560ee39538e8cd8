"""Lay a decoded ISM2Model out as a renderer-agnostic scene.

The output mirrors the usual interchange layout: flat lists of binary
buffers, typed accessors over them, meshes with primitives, nodes, skins,
materials and textures, all cross-referenced by list index. No file I/O
happens here apart from the injected texture loader.

Node order:
    [mesh nodes..., joint nodes..., synthetic root]

The synthetic root parents every mesh node and every joint root, so viewers
that only follow a single scene root still reach the whole model.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..ism2_format.ism2_errors import ISM2Error
from ..scene_graph.sg_skeleton import SkinLinkage
from ..scene_graph.sg_skin import inverse_bind_matrices_by_joint


_log = logging.getLogger("ism2_scene")

# Accessor component types (interchange enum values)
COMPONENT_UNSIGNED_BYTE = 5121
COMPONENT_UNSIGNED_SHORT = 5123
COMPONENT_FLOAT = 5126

_COMPONENT_DTYPES = {
    COMPONENT_UNSIGNED_BYTE: np.dtype('u1'),
    COMPONENT_UNSIGNED_SHORT: np.dtype('<u2'),
    COMPONENT_FLOAT: np.dtype('<f4'),
}

_TYPE_WIDTHS = {"SCALAR": 1, "VEC2": 2, "VEC3": 3, "VEC4": 4, "MAT4": 16}

ROOT_NODE_NAME = "ISM2_Root"
SKIN_NAME = "Armature"


# ---------------------------------------------------------------------------
# Output records
# ---------------------------------------------------------------------------

@dataclass
class TextureImage:
    """What a texture loader returns: an RGBA raster."""
    width: int
    height: int
    pixels: object  # flat RGBA sequence, row-major


@dataclass
class SceneBuffer:
    name: str
    data: bytes


@dataclass
class SceneAccessor:
    buffer: int
    component_type: int
    count: int
    accessor_type: str
    min: Optional[List[float]] = None
    max: Optional[List[float]] = None
    normalized: bool = False


@dataclass
class ScenePrimitive:
    attributes: Dict[str, int]
    indices: int
    material: Optional[int] = None


@dataclass
class SceneMesh:
    name: str
    primitives: List[ScenePrimitive] = field(default_factory=list)


@dataclass
class SceneNode:
    name: Optional[str] = None
    mesh: Optional[int] = None
    skin: Optional[int] = None
    children: List[int] = field(default_factory=list)
    translation: Optional[Tuple[float, float, float]] = None
    rotation: Optional[Tuple[float, float, float, float]] = None  # (x, y, z, w)
    scale: Optional[Tuple[float, float, float]] = None


@dataclass
class SceneSkin:
    name: str
    joints: List[int]                       # node indices, in joint index order
    inverse_bind_matrices: Optional[int]    # accessor index
    skeleton: Optional[int] = None          # node index of the joint root


@dataclass
class SceneMaterial:
    name: str
    texture: Optional[int] = None


@dataclass
class SceneTexture:
    name: str
    width: int
    height: int
    pixels: object


@dataclass
class AssembledScene:
    buffers: List[SceneBuffer] = field(default_factory=list)
    accessors: List[SceneAccessor] = field(default_factory=list)
    meshes: List[SceneMesh] = field(default_factory=list)
    nodes: List[SceneNode] = field(default_factory=list)
    skins: List[SceneSkin] = field(default_factory=list)
    materials: List[SceneMaterial] = field(default_factory=list)
    textures: List[SceneTexture] = field(default_factory=list)
    scene_nodes: List[int] = field(default_factory=list)
    bounds: Optional[Tuple[Tuple[float, float, float], Tuple[float, float, float]]] = None
    joint_nodes: List[int] = field(default_factory=list)  # node index per joint index

    @property
    def root(self) -> Optional[int]:
        return self.scene_nodes[0] if self.scene_nodes else None

    def accessor_array(self, index):
        """Return an accessor's data as a numpy array shaped (count, width)."""
        accessor = self.accessors[index]
        dtype = _COMPONENT_DTYPES[accessor.component_type]
        width = _TYPE_WIDTHS[accessor.accessor_type]
        data = self.buffers[accessor.buffer].data
        return np.frombuffer(data, dtype=dtype, count=accessor.count * width).reshape(
            accessor.count, width
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def compute_bounds(positions):
    """Componentwise (min, max) of an (N, 3) array, or None when empty."""
    positions = np.asarray(positions, dtype=np.float32).reshape(-1, 3)
    if len(positions) == 0:
        return None
    return (
        tuple(float(c) for c in positions.min(axis=0)),
        tuple(float(c) for c in positions.max(axis=0)),
    )


def remap_joint_ids(joint_ids, linkage):
    """Map in-file vertex ids to dense joint indices, as unsigned bytes.

    Args:
        joint_ids: (N, 4) array of vertex ids from a rigging buffer
        linkage: SkinLinkage

    Raises:
        SkinLinkageMiss: an id has no joint
        ISM2Error: a joint index does not fit in a byte
    """
    ids = np.asarray(joint_ids)
    table = {}
    for vertex_id in np.unique(ids):
        joint_index = linkage.joint_for(int(vertex_id), "rigging")
        if joint_index > 0xFF:
            raise ISM2Error(
                f"Joint index {joint_index} (vertex id {int(vertex_id)}) does not fit in a byte"
            )
        table[int(vertex_id)] = joint_index

    remapped = np.zeros(ids.shape, dtype=np.uint8)
    for vertex_id, joint_index in table.items():
        remapped[ids == vertex_id] = joint_index
    return remapped


def _add_accessor(scene, name, array, component_type, accessor_type,
                  with_bounds=False, normalized=False):
    """Append a buffer holding array and an accessor over it; return the accessor index."""
    dtype = _COMPONENT_DTYPES[component_type]
    width = _TYPE_WIDTHS[accessor_type]
    array = np.ascontiguousarray(array, dtype=dtype).reshape(-1, width)

    scene.buffers.append(SceneBuffer(name, array.tobytes()))
    accessor = SceneAccessor(
        buffer=len(scene.buffers) - 1,
        component_type=component_type,
        count=len(array),
        accessor_type=accessor_type,
        normalized=normalized,
    )
    if with_bounds and len(array):
        accessor.min = [float(c) for c in array.min(axis=0)]
        accessor.max = [float(c) for c in array.max(axis=0)]
    scene.accessors.append(accessor)
    return len(scene.accessors) - 1


def _load_texture(texture_loader, base_name):
    try:
        return texture_loader(base_name)
    except FileNotFoundError:
        return None


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def assemble_scene(model, texture_loader: Optional[Callable] = None) -> AssembledScene:
    """Build an AssembledScene from a decoded ISM2Model.

    Args:
        model: ISM2Model after build()
        texture_loader: callable(base_name) -> TextureImage or None. A None
            result or FileNotFoundError marks the texture as missing.

    Returns:
        AssembledScene

    Raises:
        SkinLinkageMiss: rigging or inverse bind data names a vertex id that
            no joint carries
    """
    scene = AssembledScene()
    skeleton = model.skeleton
    linkage = skeleton.linkage if skeleton is not None else SkinLinkage()
    has_joints = skeleton is not None and len(skeleton.joints) > 0

    _assemble_materials(scene, model.textures, texture_loader)
    default_material = 0 if len(scene.materials) == 1 else None

    # Meshes
    mesh_nodes = []
    skinned_nodes = []
    all_positions = []
    for md_index, model_data in enumerate(model.model_data):
        geometry = model_data.geometry
        if geometry is None:
            if model_data.meshes:
                _log.warning("Model data %d has %d meshes but no geometry buffer",
                             md_index, len(model_data.meshes))
            continue
        all_positions.append(geometry.positions)

        prefix = f"model{md_index}"
        attributes = {
            "POSITION": _add_accessor(scene, f"{prefix}_positions", geometry.positions,
                                      COMPONENT_FLOAT, "VEC3", with_bounds=True),
            "NORMAL": _add_accessor(scene, f"{prefix}_normals", geometry.normals,
                                    COMPONENT_FLOAT, "VEC3"),
            "TEXCOORD_0": _add_accessor(scene, f"{prefix}_uvs", geometry.uvs,
                                        COMPONENT_FLOAT, "VEC2"),
            "_TANGENT": _add_accessor(scene, f"{prefix}_tangents", geometry.tangents,
                                      COMPONENT_FLOAT, "VEC3"),
        }

        skinned = False
        rigging = model_data.rigging
        if rigging is not None:
            if len(rigging) != len(geometry):
                _log.warning(
                    "Model data %d: %d rigging vertices for %d geometry vertices, weights skipped",
                    md_index, len(rigging), len(geometry),
                )
            else:
                joints = remap_joint_ids(rigging.joints, linkage)
                attributes["JOINTS_0"] = _add_accessor(
                    scene, f"{prefix}_joints", joints, COMPONENT_UNSIGNED_BYTE, "VEC4")
                attributes["WEIGHTS_0"] = _add_accessor(
                    scene, f"{prefix}_weights", rigging.weights, COMPONENT_FLOAT, "VEC4")
                skinned = has_joints

        for mesh in model_data.meshes:
            indices = _add_accessor(scene, f"{prefix}_{mesh.name}_indices", mesh.faces.reshape(-1),
                                    COMPONENT_UNSIGNED_SHORT, "SCALAR")
            scene.meshes.append(SceneMesh(
                name=mesh.name,
                primitives=[ScenePrimitive(dict(attributes), indices, default_material)],
            ))
            scene.nodes.append(SceneNode(name=mesh.name, mesh=len(scene.meshes) - 1))
            mesh_nodes.append(len(scene.nodes) - 1)
            if skinned:
                skinned_nodes.append(len(scene.nodes) - 1)

    if all_positions:
        scene.bounds = compute_bounds(np.concatenate(all_positions))

    # Joints
    joint_roots = []
    if has_joints:
        start = len(scene.nodes)
        for joint in skeleton.joints:
            scene.nodes.append(SceneNode(
                name=joint.name,
                children=[start + c for c in joint.children],
                translation=joint.translation,
                rotation=joint.rotation,
                scale=joint.scale,
            ))
        scene.joint_nodes = [start + j.index for j in skeleton.joints]
        joint_roots = [start + r for r in skeleton.roots]

        if skinned_nodes or model.joint_extra is not None:
            _assemble_skin(scene, model, skeleton, joint_roots)
            for node_index in skinned_nodes:
                scene.nodes[node_index].skin = len(scene.skins) - 1

    # Synthetic root
    scene.nodes.append(SceneNode(name=ROOT_NODE_NAME, children=mesh_nodes + joint_roots))
    scene.scene_nodes = [len(scene.nodes) - 1]

    _log.debug("assembled %d meshes, %d nodes, %d skins, %d textures",
               len(scene.meshes), len(scene.nodes), len(scene.skins), len(scene.textures))
    return scene


def _assemble_skin(scene, model, skeleton, joint_roots):
    """Add the skin and, when the file has them, its inverse bind matrices."""
    ibm_accessor = None
    joint_extra = model.joint_extra
    if joint_extra is not None:
        matrices = joint_extra.inverse_bind_matrices
        if len(matrices):
            by_joint = inverse_bind_matrices_by_joint(
                matrices, skeleton.linkage, len(skeleton.joints),
                model.profile.skin.ibm_element_order,
            )
            ibm_accessor = _add_accessor(scene, "inverse_bind_matrices", by_joint,
                                         COMPONENT_FLOAT, "MAT4")

    scene.skins.append(SceneSkin(
        name=SKIN_NAME,
        joints=list(scene.joint_nodes),
        inverse_bind_matrices=ibm_accessor,
        skeleton=joint_roots[0] if joint_roots else None,
    ))


def _assemble_materials(scene, textures, texture_loader):
    """One material per texture reference; a texture only when its image loads."""
    for parsed in textures:
        material = SceneMaterial(name=parsed.base_name)
        if texture_loader is None:
            _log.debug("No texture loader, %r left unloaded", parsed.base_name)
        else:
            image = _load_texture(texture_loader, parsed.base_name)
            if image is None:
                _log.warning("Texture %r not found, material left untextured",
                             parsed.base_name)
            else:
                scene.textures.append(SceneTexture(
                    name=parsed.base_name,
                    width=image.width,
                    height=image.height,
                    pixels=image.pixels,
                ))
                material.texture = len(scene.textures) - 1
        scene.materials.append(material)
