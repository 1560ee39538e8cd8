"""Blender operators and menu entries for ISM2 import."""

import bpy
from bpy.props import StringProperty, BoolProperty, EnumProperty
from bpy_extras.io_utils import ImportHelper


def _format_profile_items(self, context):
    """Dynamic enum items for the format profile dropdown."""
    from .format_profiles import get_profile_items
    return get_profile_items()


class ImportISM2(bpy.types.Operator, ImportHelper):
    """Import an ISM2 model file"""
    bl_idname = "import_scene.ism2"
    bl_label = "Import ISM2"
    bl_options = {'REGISTER', 'UNDO'}

    filename_ext = ".ism2"

    filter_glob: StringProperty(
        default="*.ism2",
        options={'HIDDEN'},
    )

    format_profile: EnumProperty(
        name="Format Profile",
        description="ISM2 revision (decides how vertex buffer type tags are read)",
        items=_format_profile_items,
    )

    import_skeleton: BoolProperty(
        name="Import Skeleton",
        description="Build an armature from the joint hierarchy",
        default=True,
    )

    import_weights: BoolProperty(
        name="Import Weights",
        description="Create vertex groups from the rigging buffer and bind meshes to the armature",
        default=True,
    )

    import_textures: BoolProperty(
        name="Import Textures",
        description="Look for texture images next to the model or in a textures/ folder",
        default=True,
    )

    import_normals: BoolProperty(
        name="Import Normals",
        description="Import vertex normals as custom split normals",
        default=True,
    )

    flip_uv_v: BoolProperty(
        name="Flip UV V",
        description="Apply v = 1 - v to texture coordinates",
        default=True,
    )

    def execute(self, context):
        from .importer.import_ism2 import import_ism2
        return import_ism2(context, self.filepath, self)

    def draw(self, context):
        layout = self.layout
        layout.prop(self, "format_profile")
        layout.separator()
        layout.prop(self, "import_skeleton")
        row = layout.row()
        row.enabled = self.import_skeleton
        row.prop(self, "import_weights")
        layout.prop(self, "import_normals")
        layout.prop(self, "flip_uv_v")
        layout.prop(self, "import_textures")


def menu_func_import(self, context):
    self.layout.operator(ImportISM2.bl_idname, text="ISM2 Model (.ism2)")


def register():
    bpy.utils.register_class(ImportISM2)
    bpy.types.TOPBAR_MT_file_import.append(menu_func_import)


def unregister():
    bpy.types.TOPBAR_MT_file_import.remove(menu_func_import)
    bpy.utils.unregister_class(ImportISM2)
