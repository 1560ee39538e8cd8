"""Texture definition section (0x2E).

    0x2E TextureDefinition   header 0x0C, children: 0x2D
    0x2D Texture             u32 magic, u32 base name, u32 unknown,
                             u32 original location, u32 original name
                             (all names are string-table indices)
"""

from dataclasses import dataclass
from typing import List

from ..ism2_format.ism2_constants import (
    SECTION_TEXTURE_DEFINITION, HEADER_TEXTURE_DEFINITION,
    CHUNK_TEXTURE, TEXTURE_ENTRY_FORMAT,
)


@dataclass
class ParsedTexture:
    """A texture reference. base_name keys the external image lookup."""
    base_name: str
    original_location: str
    original_name: str


def extract_textures(chunks, offset, strings) -> List[ParsedTexture]:
    """Decode a texture definition section into its texture references."""
    section = chunks.read_chunk(offset, SECTION_TEXTURE_DEFINITION, HEADER_TEXTURE_DEFINITION)

    def parse_texture(o):
        _magic, base_idx, _unknown, location_idx, name_idx = chunks.unpack(
            TEXTURE_ENTRY_FORMAT, o
        )
        return ParsedTexture(
            base_name=strings.get(base_idx, o + 4),
            original_location=strings.get(location_idx, o + 12),
            original_name=strings.get(name_idx, o + 16),
        )

    return chunks.walk(section, {CHUNK_TEXTURE: parse_texture})
