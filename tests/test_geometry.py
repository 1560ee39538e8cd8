import logging

import numpy as np
import pytest

import ism2_builder as ib
from ism2_blender.format_profiles import get_profile
from ism2_blender.ism2_format.ism2_errors import (
    FormatMismatch, NoAttributes, UnknownChunkKind, UnrecognizedBufferType,
)
from ism2_blender.ism2_format.ism2_constants import GEOMETRY_VERTEX_SIZE, RIGGING_VERTEX_SIZE
from ism2_blender.scene_graph.sg_geometry import (
    GEOMETRY_DTYPE, RIGGING_DTYPE, normalize_frenet,
)


def test_record_dtypes_match_vertex_sizes():
    assert GEOMETRY_DTYPE.itemsize == GEOMETRY_VERTEX_SIZE == 32
    assert RIGGING_DTYPE.itemsize == RIGGING_VERTEX_SIZE == 32


def _model(builder, group_children):
    builder.string("surface")
    builder.add_section(0x0B, ib.model_data(group_children))
    return builder.build()


def test_geometry_buffer_fields(builder, decode):
    data = _model(builder, [ib.vertices(0x02, [
        ib.geometry_vertex((1.0, 2.0, 3.0), uv=(0.25, 0.75), normal=(0.0, 0.0, 2.0), tangent=(3.0, 0.0, 0.0)),
        ib.geometry_vertex((-1.0, 0.5, 0.0), uv=(1.0, 0.0), normal=(0.0, 1.0, 0.0)),
    ])])

    model_data = decode(data).model_data[0]
    geometry = model_data.geometry

    assert model_data.rigging is None
    assert len(geometry) == 2
    v0 = geometry[0]
    assert v0.position == (1.0, 2.0, 3.0)
    assert v0.uv == (0.25, 0.75)
    assert v0.normal == (0.0, 0.0, 1.0)
    assert v0.tangent == (1.0, 0.0, 0.0)
    assert geometry[1].normal == (0.0, 1.0, 0.0)
    assert geometry.positions.dtype == np.float32
    assert geometry.bounds() == ((-1.0, 0.5, 0.0), (1.0, 2.0, 3.0))


def test_zero_normal_decodes_to_zero_and_is_logged(builder, decode, caplog):
    data = _model(builder, [ib.vertices(0x00, [
        ib.geometry_vertex((0.0, 0.0, 0.0), normal=(0.0, 0.0, 1.0)),
        ib.geometry_vertex((1.0, 0.0, 0.0), normal=(0.0, 0.0, 0.0)),
    ])])

    with caplog.at_level(logging.WARNING, logger="ism2_geometry"):
        geometry = decode(data).model_data[0].geometry

    assert geometry[1].normal == (0.0, 0.0, 0.0)
    assert np.isfinite(geometry.normals).all()
    messages = [r.getMessage() for r in caplog.records]
    assert any("normal" in m and "vertex 1" in m for m in messages)


def test_normalize_frenet_handles_non_finite_and_tiny_vectors():
    vectors = np.array([
        [3.0, 4.0, 0.0],
        [1e-9, 0.0, 0.0],
        [np.inf, 0.0, 0.0],
        [np.nan, 1.0, 0.0],
    ])
    out = normalize_frenet(vectors)
    assert out.dtype == np.float32
    np.testing.assert_allclose(out[0], [0.6, 0.8, 0.0], rtol=1e-6)
    assert (out[1:] == 0.0).all()


def test_rigging_buffer(builder, decode):
    data = _model(builder, [ib.vertices(0x07, [
        ib.rigging_vertex((7, 3, 0, 0), (0.5, 0.25, 0.25, 0.0)),
        ib.rigging_vertex((3, 3, 3, 3), (1.0, 0.0, 0.0, 0.0)),
    ])])

    rigging = decode(data).model_data[0].rigging

    assert len(rigging) == 2
    assert rigging[0].joints == (7, 3, 0, 0)
    assert rigging[0].weights == (0.5, 0.25, 0.25, 0.0)
    assert rigging.joints.dtype == np.uint8


def test_geometry_and_rigging_in_one_group(builder, decode):
    data = _model(builder, [
        ib.vertices(0x00, [ib.geometry_vertex((0.0, 0.0, 0.0))]),
        ib.vertices(0x01, [ib.rigging_vertex((0, 0, 0, 0), (1.0, 0.0, 0.0, 0.0))]),
        ib.opaque(0x6E),
    ])

    model_data = decode(data).model_data[0]

    assert [v.kind for v in model_data.vertices] == ["geometry", "rigging"]
    assert model_data.vertices[0].attributes[0].type_tag == 0x00


def test_no_attributes_is_fatal(builder, decode):
    data = _model(builder, [ib.vertices(0x00, [ib.geometry_vertex((0.0, 0.0, 0.0))],
                                        with_attribute=False)])
    with pytest.raises(NoAttributes):
        decode(data)


def test_unknown_type_tag_is_fatal(builder, decode):
    data = _model(builder, [ib.vertices(0x05, [ib.geometry_vertex((0.0, 0.0, 0.0))])])
    with pytest.raises(UnrecognizedBufferType) as excinfo:
        decode(data)
    assert excinfo.value.type_tag == 0x05


def test_profile_decides_tag_three(builder, decode):
    data = _model(builder, [ib.vertices(0x03, [
        ib.rigging_vertex((1, 0, 0, 0), (1.0, 0.0, 0.0, 0.0)),
    ])])

    assert decode(data).model_data[0].vertices[0].kind == "geometry"
    later = decode(data, profile=get_profile("ism2_bone_weights_v3"))
    assert later.model_data[0].vertices[0].kind == "rigging"


def test_faces_stop_at_declared_count(builder, decode):
    name = builder.string("body")
    builder.add_section(0x0B, ib.model_data([
        ib.vertices(0x00, [ib.geometry_vertex((float(i), 0.0, 0.0)) for i in range(4)]),
        ib.mesh(name, [0, 1, 2, 1, 2, 3, 9, 9, 9], face_count=2),
    ]))

    mesh = decode(builder.build()).model_data[0].meshes[0]

    assert mesh.name == "body"
    assert mesh.face_count == 2
    assert mesh.num_faces == 2
    assert mesh.faces.tolist() == [[0, 1, 2], [1, 2, 3]]
    assert mesh.faces.dtype == np.uint16


def test_mesh_without_faces_chunk(builder, decode):
    name = builder.string("empty")
    builder.add_section(0x0B, ib.model_data([ib.mesh(name, [], children=[ib.opaque(0x6E)])]))

    mesh = decode(builder.build()).model_data[0].meshes[0]

    assert mesh.faces.shape == (0, 3)


def test_model_data_needs_exactly_one_group(builder, decode):
    builder.string("x")
    group = ib.Chunk(0x0A, 0x20, tail=[ib.zeros(20)])
    builder.add_section(0x0B, ib.Chunk(0x0B, 0x0C, children=[group, group]))
    with pytest.raises(FormatMismatch) as excinfo:
        decode(builder.build())
    assert excinfo.value.field == "child count"


def test_unknown_chunk_in_model_group(builder, decode):
    data = _model(builder, [ib.opaque(0x47)])
    with pytest.raises(UnknownChunkKind) as excinfo:
        decode(data)
    assert excinfo.value.context_magic == 0x0A


def test_vertex_buffer_past_end_of_file(builder, decode):
    from ism2_blender.ism2_format.ism2_errors import ISM2IOError

    data = _model(builder, [ib.vertices(0x00, [ib.geometry_vertex((0.0, 0.0, 0.0))], count=50)])
    with pytest.raises(ISM2IOError):
        decode(data)


def test_stride_mismatch_is_logged(builder, decode, caplog):
    data = _model(builder, [ib.vertices(0x00, [ib.geometry_vertex((0.0, 0.0, 0.0))], stride=0x30)])
    with caplog.at_level(logging.WARNING, logger="ism2_geometry"):
        decode(data)
    assert any("stride 48" in r.getMessage() for r in caplog.records)
