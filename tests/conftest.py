import pytest

from ism2_builder import ISM2Builder, minimal_file

from ism2_blender.scene_graph.sg_classes import load_ism2


@pytest.fixture
def builder():
    return ISM2Builder()


@pytest.fixture
def minimal_bytes():
    return minimal_file()


@pytest.fixture
def decode():
    """Decode bytes into a built ISM2Model."""
    def _decode(data, profile=None):
        return load_ism2(data=data, profile=profile)
    return _decode
