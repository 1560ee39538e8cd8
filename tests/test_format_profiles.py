import pytest

from ism2_blender.format_profiles import (
    DEFAULT_PROFILE_ID, FORMAT_PROFILES, FormatProfile, SkinConfig, VertexLayoutConfig,
    get_profile, get_profile_items, register_profile,
)


def test_default_profile_classifies_tags():
    layout = get_profile().vertex_layout
    assert get_profile().profile_id == DEFAULT_PROFILE_ID
    assert [layout.classify(t) for t in (0x00, 0x02, 0x03, 0x0E)] == ["geometry"] * 4
    assert [layout.classify(t) for t in (0x01, 0x07)] == ["rigging"] * 2
    assert layout.classify(0x05) is None


def test_profiles_disagree_on_tag_three():
    assert get_profile("ism2_v1").vertex_layout.classify(0x03) == "geometry"
    assert get_profile("ism2_bone_weights_v3").vertex_layout.classify(0x03) == "rigging"


def test_unknown_profile_id():
    assert get_profile("nonexistent") is None


def test_register_profile_adds_enum_item():
    profile = FormatProfile(
        profile_id="test_only",
        name="Test",
        vertex_layout=VertexLayoutConfig(geometry_types=frozenset({0x09}),
                                         rigging_types=frozenset()),
    )
    register_profile(profile)
    try:
        assert get_profile("test_only") is profile
        assert ("test_only", "Test", "Test") in get_profile_items()
    finally:
        del FORMAT_PROFILES["test_only"]


def test_enum_items_describe_builtin_profiles():
    ids = [item[0] for item in get_profile_items()]
    assert ids[:2] == ["ism2_v1", "ism2_bone_weights_v3"]
    assert all(len(item) == 3 for item in get_profile_items())


def test_default_inverse_bind_order_is_its_own_inverse():
    order = get_profile().skin.ibm_element_order
    assert [order[order[i]] for i in range(16)] == list(range(16))


def test_inverse_bind_order_must_be_a_permutation():
    with pytest.raises(ValueError):
        SkinConfig(ibm_element_order=tuple(range(15)) + (0,))
    assert SkinConfig(ibm_element_order=tuple(range(16))).ibm_element_order[15] == 15
