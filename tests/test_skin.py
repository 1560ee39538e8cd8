import numpy as np
import pytest

import ism2_builder as ib
from ism2_blender.ism2_format.ism2_errors import (
    FormatMismatch, SkinLinkageMiss, UnrecognizedBufferType,
)
from ism2_blender.scene_graph.sg_skeleton import SkinLinkage
from ism2_blender.scene_graph.sg_skin import (
    IDENTITY_MATRIX, inverse_bind_matrices_by_joint, permute_matrix,
)


def _matrix(start):
    return [float(start + i) for i in range(16)]


def test_permute_transposes_row_major_input():
    m = np.arange(16, dtype=np.float32)
    out = permute_matrix(m)
    assert out.tolist() == np.arange(16).reshape(4, 4).T.reshape(16).tolist()


def test_permute_twice_is_identity():
    stack = np.random.default_rng(3).random((5, 16)).astype(np.float32)
    np.testing.assert_array_equal(permute_matrix(permute_matrix(stack)), stack)


def test_bone_names_and_matrices(builder, decode):
    g1 = builder.string("group")
    g2 = builder.string("skin")
    hip = builder.string("hip")
    knee = builder.string("knee")
    builder.add_section(0x32, ib.joint_extra([
        ib.skin_group(g1, g2, [ib.skin_bind([
            ib.bone_name_buffer([hip, knee]),
            ib.matrix_buffer([_matrix(0), _matrix(100)]),
        ], unknown=7)]),
    ]))

    extra = decode(builder.build()).joint_extra

    group = extra.groups[0]
    assert (group.name1, group.name2) == ("group", "skin")
    bind = group.binds[0]
    assert bind.unknown == 7
    np.testing.assert_array_equal(bind.matrix, IDENTITY_MATRIX)
    assert extra.bone_names == ["hip", "knee"]
    assert extra.inverse_bind_matrices.shape == (2, 16)
    assert extra.inverse_bind_matrices[1].tolist() == _matrix(100)
    assert bind.buffers[1].entry_count == 32


def test_matrices_across_binds_keep_file_order(builder, decode):
    g = builder.string("g")
    builder.add_section(0x32, ib.joint_extra([
        ib.skin_group(g, g, [
            ib.skin_bind([ib.matrix_buffer([_matrix(0)])]),
            ib.skin_bind([ib.matrix_buffer([_matrix(50)])]),
        ]),
    ]))

    matrices = decode(builder.build()).joint_extra.inverse_bind_matrices

    assert matrices[:, 0].tolist() == [0.0, 50.0]


def test_section_without_matrices(builder, decode):
    g = builder.string("g")
    builder.add_section(0x32, ib.joint_extra([ib.skin_group(g, g, [])]))

    extra = decode(builder.build()).joint_extra

    assert extra.bone_names == []
    assert extra.inverse_bind_matrices.shape == (0, 16)


def test_unknown_buffer_triple(builder, decode):
    g = builder.string("g")
    builder.add_section(0x32, ib.joint_extra([
        ib.skin_group(g, g, [ib.skin_bind([ib.matrix_buffer([_matrix(0)], triple=(0x0C, 0x10, 0x08))])]),
    ]))

    with pytest.raises(UnrecognizedBufferType) as excinfo:
        decode(builder.build())
    assert excinfo.value.type_tag == (0x0C, 0x10, 0x08)


def test_nonzero_section_padding(builder, decode):
    g = builder.string("g")
    section = ib.Chunk(0x32, 0x14, tail=[ib.u32(1), ib.zeros(4)],
                       children=[ib.skin_group(g, g, [])])
    builder.add_section(0x32, section)

    with pytest.raises(FormatMismatch):
        decode(builder.build())


def test_matrices_placed_by_vertex_id():
    linkage = SkinLinkage({0: 2, 1: 0})
    file_matrices = np.array([_matrix(0), _matrix(100)], dtype=np.float32)

    result = inverse_bind_matrices_by_joint(file_matrices, linkage, joint_count=3)

    assert result.shape == (3, 16)
    np.testing.assert_array_equal(result[2], permute_matrix(file_matrices[0]))
    np.testing.assert_array_equal(result[0], permute_matrix(file_matrices[1]))
    np.testing.assert_array_equal(result[1], IDENTITY_MATRIX)


def test_matrix_without_joint_is_fatal():
    linkage = SkinLinkage({0: 0})
    with pytest.raises(SkinLinkageMiss) as excinfo:
        inverse_bind_matrices_by_joint(np.zeros((2, 16)), linkage, joint_count=1)
    assert excinfo.value.vertex_id == 1
    assert excinfo.value.context == "inverse bind matrix"


def test_permute_with_custom_order():
    order = tuple(range(1, 16)) + (0,)
    out = permute_matrix(np.arange(16, dtype=np.float32), order)
    assert out[1] == 0.0
    assert out[0] == 15.0
