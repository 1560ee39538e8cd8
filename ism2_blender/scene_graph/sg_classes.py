"""Decoded ISM2 container.

Provides the section-level view of an ISM2 file:
- Section: tagged union over the decodable top-level sections
- ISM2Model: version, file size, string table and decoded sections

Sections are decoded in table order. The joint hierarchy, model data and
texture definition only need the string table; the skin linkage that ties
them together is applied later by the scene assembler.
"""

import logging
from dataclasses import dataclass
from typing import List

from ..format_profiles import get_profile
from ..ism2_format.ism2_constants import (
    SECTION_STRING_TABLE, SECTION_JOINT_DEFINITION, SECTION_JOINT_EXTRA,
    SECTION_MODEL_DATA, SECTION_TEXTURE_DEFINITION,
)
from ..ism2_format.ism2_reader import ISM2Reader
from .sg_geometry import extract_model_data
from .sg_skeleton import extract_skeleton
from .sg_skin import extract_joint_extra
from .sg_textures import extract_textures


_log = logging.getLogger("ism2_reader")

SECTION_KIND_JOINT_HIERARCHY = "joint_hierarchy"
SECTION_KIND_JOINT_EXTRA = "joint_extra"
SECTION_KIND_MODEL_DATA = "model_data"
SECTION_KIND_TEXTURES = "texture_definition"

_SECTION_KINDS = {
    SECTION_JOINT_DEFINITION: SECTION_KIND_JOINT_HIERARCHY,
    SECTION_JOINT_EXTRA: SECTION_KIND_JOINT_EXTRA,
    SECTION_MODEL_DATA: SECTION_KIND_MODEL_DATA,
    SECTION_TEXTURE_DEFINITION: SECTION_KIND_TEXTURES,
}


@dataclass
class Section:
    """One decoded top-level section.

    kind is one of "joint_hierarchy", "joint_extra", "model_data",
    "texture_definition"; data is the matching Parsed* structure (a list of
    ParsedTexture for texture definitions).
    """
    kind: str
    data: object


class ISM2Model:
    """Decodes every known section of an ISM2 file.

    Usage:
        reader = ISM2Reader("model.ism2")
        reader.read()
        model = ISM2Model(reader)
        model.build()
        model.skeleton, model.model_data, model.textures ...
    """

    def __init__(self, reader, profile=None):
        self.reader = reader
        self.profile = profile if profile is not None else get_profile()
        self.sections: List[Section] = []

    @property
    def version(self):
        return self.reader.header.version

    @property
    def file_size(self):
        return self.reader.header.file_size

    @property
    def strings(self):
        return self.reader.strings

    def build(self):
        """Decode all sections after the string table, in table order."""
        chunks = self.reader.chunks
        strings = self.reader.strings

        decoders = {
            SECTION_JOINT_DEFINITION: lambda o: extract_skeleton(chunks, o, strings, self.profile),
            SECTION_JOINT_EXTRA: lambda o: extract_joint_extra(chunks, o, strings),
            SECTION_MODEL_DATA: lambda o: extract_model_data(chunks, o, strings, self.profile),
            SECTION_TEXTURE_DEFINITION: lambda o: extract_textures(chunks, o, strings),
        }

        self.sections = []
        for info in self.reader.sections:
            decode = decoders.get(info.magic)
            if decode is None:
                if info.magic == SECTION_STRING_TABLE:
                    _log.debug("repeated string table @ 0x%X ignored", info.offset)
                else:
                    _log.debug("skipping section %s @ 0x%X", info.name, info.offset)
                continue
            self.sections.append(Section(_SECTION_KINDS[info.magic], decode(info.offset)))
        return self

    def _first(self, kind):
        for section in self.sections:
            if section.kind == kind:
                return section.data
        return None

    def _all(self, kind):
        return [s.data for s in self.sections if s.kind == kind]

    @property
    def skeleton(self):
        """The first joint hierarchy, or None."""
        return self._first(SECTION_KIND_JOINT_HIERARCHY)

    @property
    def joint_extra(self):
        """The first joint-extra section, or None."""
        return self._first(SECTION_KIND_JOINT_EXTRA)

    @property
    def model_data(self):
        """All model data sections, in table order."""
        return self._all(SECTION_KIND_MODEL_DATA)

    @property
    def textures(self):
        """All texture references, flattened across texture sections."""
        result = []
        for textures in self._all(SECTION_KIND_TEXTURES):
            result.extend(textures)
        return result


def load_ism2(filepath=None, data=None, profile=None) -> ISM2Model:
    """Read and fully decode an ISM2 file from a path or from bytes."""
    reader = ISM2Reader(filepath, data=data)
    reader.read()
    return ISM2Model(reader, profile).build()
