import logging

import numpy as np
import pytest

import ism2_builder as ib
from ism2_blender.format_profiles import FormatProfile, SkinConfig
from ism2_blender.importer.scene_assembler import (
    COMPONENT_FLOAT, COMPONENT_UNSIGNED_BYTE, COMPONENT_UNSIGNED_SHORT,
    ROOT_NODE_NAME, TextureImage, assemble_scene, compute_bounds, remap_joint_ids,
)
from ism2_blender.ism2_format.ism2_errors import ISM2Error, SkinLinkageMiss
from ism2_blender.scene_graph.sg_skeleton import SkinLinkage
from ism2_blender.scene_graph.sg_skin import permute_matrix


def _rigged_file(builder, rig_ids=(7, 3), with_extra=False):
    hip_name = builder.string("hip")
    knee_name = builder.string("knee")
    body = builder.string("body")
    hip = ib.joint(hip_name, vertex_id=0 if with_extra else 7,
                   attributes=[ib.vec3_attr(0x14, 0.0, 1.0, 0.0)])
    knee = ib.joint(knee_name, parent=hip, vertex_id=1 if with_extra else 3)
    builder.add_section(0x03, ib.joint_definition([hip, knee]))
    builder.add_section(0x0B, ib.model_data([
        ib.vertices(0x00, [
            ib.geometry_vertex((0.0, 0.0, 0.0)),
            ib.geometry_vertex((1.0, 0.0, 0.0)),
            ib.geometry_vertex((0.0, 1.0, 0.0)),
        ]),
        ib.vertices(0x01, [
            ib.rigging_vertex((rig_ids[0],) * 4, (1.0, 0.0, 0.0, 0.0)),
            ib.rigging_vertex((rig_ids[1],) + (rig_ids[0],) * 3, (1.0, 0.0, 0.0, 0.0)),
            ib.rigging_vertex((rig_ids[0], rig_ids[1]) + (rig_ids[0],) * 2, (0.5, 0.5, 0.0, 0.0)),
        ]),
        ib.mesh(body, [0, 1, 2]),
    ]))
    if with_extra:
        builder.add_section(0x32, ib.joint_extra([
            ib.skin_group(body, body, [ib.skin_bind([
                ib.bone_name_buffer([hip_name, knee_name]),
                ib.matrix_buffer([
                    [float(i) for i in range(16)],
                    [float(100 + i) for i in range(16)],
                ]),
            ])]),
        ]))
    return builder.build()


def test_remap_joint_ids():
    linkage = SkinLinkage({7: 0, 3: 1})
    out = remap_joint_ids(np.array([[7, 3, 7, 7], [3, 3, 3, 3]]), linkage)
    assert out.dtype == np.uint8
    assert out.tolist() == [[0, 1, 0, 0], [1, 1, 1, 1]]


def test_remap_rejects_indices_wider_than_a_byte():
    with pytest.raises(ISM2Error):
        remap_joint_ids(np.array([[1, 1, 1, 1]]), SkinLinkage({1: 300}))


def test_compute_bounds():
    assert compute_bounds(np.zeros((0, 3))) is None
    assert compute_bounds([[1, -2, 3], [-1, 5, 0]]) == ((-1.0, -2.0, 0.0), (1.0, 5.0, 3.0))


def test_minimal_scene_layout(decode, minimal_bytes):
    scene = assemble_scene(decode(minimal_bytes))

    assert len(scene.meshes) == 1
    primitive = scene.meshes[0].primitives[0]
    assert set(primitive.attributes) == {"POSITION", "NORMAL", "TEXCOORD_0", "_TANGENT"}
    assert primitive.material is None

    positions = scene.accessors[primitive.attributes["POSITION"]]
    assert positions.component_type == COMPONENT_FLOAT
    assert positions.accessor_type == "VEC3"
    assert positions.count == 3
    assert positions.min == [-3.0, 0.0, -1.0]
    assert positions.max == [1.0, 2.0, 4.0]

    indices = scene.accessors[primitive.indices]
    assert indices.component_type == COMPONENT_UNSIGNED_SHORT
    assert scene.accessor_array(primitive.indices).reshape(-1).tolist() == [0, 1, 2]

    assert scene.bounds == ((-3.0, 0.0, -1.0), (1.0, 2.0, 4.0))
    root = scene.nodes[scene.root]
    assert root.name == ROOT_NODE_NAME
    assert scene.root == len(scene.nodes) - 1
    # mesh node first, then the single joint
    assert root.children == [0, 1]
    assert scene.nodes[0].mesh == 0
    assert scene.nodes[1].name == "root"
    assert scene.joint_nodes == [1]
    assert scene.skins == []


def test_rigged_mesh_gets_remapped_joints_and_a_skin(builder, decode):
    scene = assemble_scene(decode(_rigged_file(builder)))

    primitive = scene.meshes[0].primitives[0]
    joints = scene.accessors[primitive.attributes["JOINTS_0"]]
    assert joints.component_type == COMPONENT_UNSIGNED_BYTE
    assert joints.accessor_type == "VEC4"
    assert scene.accessor_array(primitive.attributes["JOINTS_0"])[:, :2].tolist() == [
        [0, 0], [1, 0], [0, 1],
    ]
    weights = scene.accessor_array(primitive.attributes["WEIGHTS_0"])
    assert weights[2].tolist() == [0.5, 0.5, 0.0, 0.0]

    hip_node, knee_node = scene.joint_nodes
    assert scene.nodes[hip_node].translation == (0.0, 1.0, 0.0)
    assert scene.nodes[hip_node].children == [knee_node]

    skin = scene.skins[0]
    assert skin.joints == [hip_node, knee_node]
    assert skin.skeleton == hip_node
    assert skin.inverse_bind_matrices is None
    assert scene.nodes[0].skin == 0
    assert scene.nodes[scene.root].children == [0, hip_node]


def test_rigging_id_without_joint(builder, decode):
    model = decode(_rigged_file(builder, rig_ids=(7, 9)))
    with pytest.raises(SkinLinkageMiss) as excinfo:
        assemble_scene(model)
    assert excinfo.value.vertex_id == 9


def test_inverse_bind_matrices_follow_joint_order(builder, decode):
    scene = assemble_scene(decode(_rigged_file(builder, rig_ids=(0, 1), with_extra=True)))

    skin = scene.skins[0]
    accessor = scene.accessors[skin.inverse_bind_matrices]
    assert accessor.accessor_type == "MAT4"
    assert accessor.count == 2
    matrices = scene.accessor_array(skin.inverse_bind_matrices)
    np.testing.assert_array_equal(matrices[0], permute_matrix(np.arange(16, dtype=np.float32)))
    np.testing.assert_array_equal(matrices[1], permute_matrix(np.arange(100, 116, dtype=np.float32)))


def test_mismatched_rigging_length_skips_weights(builder, decode, caplog):
    name = builder.string("m")
    builder.add_section(0x03, ib.joint_definition([ib.joint(name, vertex_id=0)]))
    builder.add_section(0x0B, ib.model_data([
        ib.vertices(0x00, [ib.geometry_vertex((0.0, 0.0, 0.0)), ib.geometry_vertex((1.0, 0.0, 0.0))]),
        ib.vertices(0x01, [ib.rigging_vertex((0, 0, 0, 0), (1.0, 0.0, 0.0, 0.0))]),
        ib.mesh(name, [0, 1, 1]),
    ]))

    with caplog.at_level(logging.WARNING, logger="ism2_scene"):
        scene = assemble_scene(decode(builder.build()))

    assert "JOINTS_0" not in scene.meshes[0].primitives[0].attributes
    assert scene.skins == []
    assert any("weights skipped" in r.getMessage() for r in caplog.records)


def _textured_file(builder):
    base = builder.string("chr_face")
    builder.add_section(0x2E, ib.texture_definition([ib.texture_entry(base, base, base)]))
    builder.add_section(0x0B, ib.model_data([
        ib.vertices(0x00, [ib.geometry_vertex((0.0, 0.0, 0.0))] * 3),
        ib.mesh(base, [0, 1, 2]),
    ]))
    return builder.build()


def test_missing_texture_leaves_material_untextured(builder, decode, caplog):
    def loader(name):
        raise FileNotFoundError(name)

    with caplog.at_level(logging.WARNING, logger="ism2_scene"):
        scene = assemble_scene(decode(_textured_file(builder)), texture_loader=loader)

    assert len(scene.materials) == 1
    assert scene.materials[0].name == "chr_face"
    assert scene.materials[0].texture is None
    assert scene.textures == []
    assert scene.meshes[0].primitives[0].material == 0
    assert any("chr_face" in r.getMessage() for r in caplog.records)


def test_loaded_texture_is_attached(builder, decode):
    requested = []

    def loader(name):
        requested.append(name)
        return TextureImage(1, 1, bytes([255, 0, 0, 255]))

    scene = assemble_scene(decode(_textured_file(builder)), texture_loader=loader)

    assert requested == ["chr_face"]
    assert scene.materials[0].texture == 0
    assert scene.textures[0].width == 1
    assert bytes(scene.textures[0].pixels) == bytes([255, 0, 0, 255])


def test_without_loader_no_texture_is_read(builder, decode):
    scene = assemble_scene(decode(_textured_file(builder)))
    assert scene.materials[0].texture is None
    assert scene.textures == []


def test_profile_sets_inverse_bind_element_order(builder, decode):
    profile = FormatProfile(profile_id="row_major",
                            skin=SkinConfig(ibm_element_order=tuple(range(16))))
    scene = assemble_scene(decode(_rigged_file(builder, rig_ids=(0, 1), with_extra=True),
                                  profile=profile))

    matrices = scene.accessor_array(scene.skins[0].inverse_bind_matrices)
    assert matrices[0].tolist() == [float(i) for i in range(16)]
    assert matrices[1].tolist() == [float(100 + i) for i in range(16)]
