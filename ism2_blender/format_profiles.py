"""Format profiles for ISM2 import.

ISM2 files from different engine revisions agree on the chunk structure but
not on every lookup table. The vertex attribute type tag is the main one:
across revisions the same tag has named both a geometry buffer and a
rigging buffer. A FormatProfile pins down those tables so the decoders never
guess. A tag that is in neither table is an error.

Profiles are registered in a global dict and selected from the Blender
import dialog.

Adding a profile:
    1. Decode reference files with the closest existing profile
    2. Note the attribute type tags that raise UnrecognizedBufferType
       and check skinned poses against the inverse bind element order
    3. Create a FormatProfile with the corrected tables
    4. Call register_profile() to add it to the registry
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from .ism2_format.ism2_constants import IBM_ELEMENT_ORDER


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VertexLayoutConfig:
    """Attribute type tag -> vertex buffer shape."""

    # Tags whose buffer holds position / UV / normal / tangent records.
    geometry_types: FrozenSet[int] = frozenset({0x00, 0x02, 0x03, 0x0E})

    # Tags whose buffer holds joint id / weight records.
    rigging_types: FrozenSet[int] = frozenset({0x01, 0x07})

    def classify(self, type_tag: int) -> Optional[str]:
        """Return "geometry", "rigging", or None for an unknown tag."""
        if type_tag in self.geometry_types:
            return "geometry"
        if type_tag in self.rigging_types:
            return "rigging"
        return None


@dataclass(frozen=True)
class SkeletonConfig:
    """Joint decoding conventions."""

    # Stored Euler angles are degrees and get converted to radians.
    angles_in_degrees: bool = True

    # Joints carrying this vertex id take no part in skinning.
    unused_vertex_id: int = 0xFFFFFFFF


@dataclass(frozen=True)
class SkinConfig:
    """Joint-extra decoding conventions."""

    # File element i of an inverse bind matrix lands at position
    # ibm_element_order[i] of the column-major output.
    ibm_element_order: Tuple[int, ...] = IBM_ELEMENT_ORDER

    def __post_init__(self):
        if sorted(self.ibm_element_order) != list(range(16)):
            raise ValueError(
                f"ibm_element_order must be a permutation of 0..15, got {self.ibm_element_order!r}"
            )


@dataclass(frozen=True)
class FormatProfile:
    """Complete decode profile for one ISM2 revision."""

    profile_id: str = "ism2_v1"
    name: str = "ISM2 (default)"
    vertex_layout: VertexLayoutConfig = field(default_factory=VertexLayoutConfig)
    skeleton: SkeletonConfig = field(default_factory=SkeletonConfig)
    skin: SkinConfig = field(default_factory=SkinConfig)
    notes: str = ""


# ---------------------------------------------------------------------------
# Profile registry
# ---------------------------------------------------------------------------

FORMAT_PROFILES: Dict[str, FormatProfile] = {}

DEFAULT_PROFILE_ID = "ism2_v1"


def register_profile(profile: FormatProfile) -> None:
    """Register a format profile in the global registry."""
    FORMAT_PROFILES[profile.profile_id] = profile


def get_profile(profile_id: str = DEFAULT_PROFILE_ID) -> Optional[FormatProfile]:
    """Look up a profile by its profile_id string."""
    return FORMAT_PROFILES.get(profile_id)


def get_profile_items() -> List[Tuple[str, str, str]]:
    """Return (identifier, name, description) tuples for Blender EnumProperty."""
    return [
        (pid, prof.name, prof.notes or prof.name)
        for pid, prof in FORMAT_PROFILES.items()
    ]


# ---------------------------------------------------------------------------
# Built-in profiles
# ---------------------------------------------------------------------------

register_profile(FormatProfile(
    profile_id="ism2_v1",
    name="ISM2 (default)",
    notes="Geometry tags 0x00/0x02/0x03/0x0E, rigging tags 0x01/0x07",
))

register_profile(FormatProfile(
    profile_id="ism2_bone_weights_v3",
    name="ISM2 (tag 0x03 = bone weights)",
    vertex_layout=VertexLayoutConfig(
        geometry_types=frozenset({0x00, 0x02, 0x0E}),
        rigging_types=frozenset({0x01, 0x03, 0x07}),
    ),
    notes="Revision where attribute tag 0x03 marks the rigging buffer",
))
