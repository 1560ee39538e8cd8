"""ISM2 file import for Blender.

Decodes an ISM2 file, assembles it into an AssembledScene and builds
Blender objects from that: one mesh object per mesh, an armature from the
joint nodes, vertex groups from the remapped joint indices and weights, and
materials with image textures where the texture file was found.

Supports multiple ISM2 revisions via FormatProfile (see format_profiles.py).
"""

import logging
import os
import time

import bpy

from ..format_profiles import get_profile, DEFAULT_PROFILE_ID
from ..ism2_format.ism2_errors import ISM2Error
from ..scene_graph.sg_classes import load_ism2
from ..utils.texture_lookup import make_texture_loader
from .armature_builder import build_armature
from .material_builder import build_material, clear_caches, read_blender_image
from .mesh_builder import build_mesh
from .scene_assembler import assemble_scene


_log = logging.getLogger("ism2_import")


def import_ism2(context, filepath, operator=None):
    """Import an ISM2 file into the current Blender scene.

    Args:
        context: Blender context
        filepath: path to the .ism2 file
        operator: the import operator (for options and error reporting)

    Returns:
        {'FINISHED'} or {'CANCELLED'}
    """
    t_start = time.time()
    basename = os.path.splitext(os.path.basename(filepath))[0]

    options = {
        'import_skeleton': True,
        'import_weights': True,
        'import_textures': True,
        'import_normals': True,
        'flip_uv_v': True,
    }
    if operator is not None:
        for key in options:
            options[key] = getattr(operator, key, options[key])

    profile_id = getattr(operator, 'format_profile', DEFAULT_PROFILE_ID) if operator else DEFAULT_PROFILE_ID
    profile = get_profile(profile_id)
    if profile is None:
        _report(operator, 'WARNING', f"Unknown format profile '{profile_id}', using default")
        profile = get_profile()

    clear_caches()

    texture_loader = None
    if options['import_textures']:
        texture_loader = make_texture_loader(filepath, read_blender_image)

    try:
        model = load_ism2(filepath, profile=profile)
        scene = assemble_scene(model, texture_loader)
    except ISM2Error as e:
        _report(operator, 'ERROR', f"Failed to read ISM2 file: {e}")
        return {'CANCELLED'}

    if not scene.meshes and not scene.joint_nodes:
        _report(operator, 'WARNING', "No geometry or joints found in ISM2 file")
        return {'CANCELLED'}

    collection = bpy.data.collections.new(basename)
    context.scene.collection.children.link(collection)

    armature_obj = None
    bone_names = []
    if options['import_skeleton'] and scene.joint_nodes:
        armature_obj, bone_names = build_armature(
            context, scene, armature_name=f"{basename}_Armature", collection=collection,
        )

    created = 0
    for mesh_index, scene_mesh in enumerate(scene.meshes):
        obj = build_mesh(scene, mesh_index, name=scene_mesh.name or f"{basename}_{mesh_index:03d}",
                         options=options)
        if obj is None:
            _log.warning("Mesh %d (%s) has no usable triangles", mesh_index, scene_mesh.name)
            continue
        collection.objects.link(obj)
        created += 1

        primitive = scene_mesh.primitives[0]
        if primitive.material is not None:
            obj.data.materials.append(build_material(scene, primitive.material))

        if armature_obj is not None and options['import_weights'] and "JOINTS_0" in primitive.attributes:
            assign_vertex_groups(
                obj,
                scene.accessor_array(primitive.attributes["JOINTS_0"]),
                scene.accessor_array(primitive.attributes["WEIGHTS_0"]),
                bone_names,
            )
            parent_to_armature(obj, armature_obj)

    elapsed = time.time() - t_start
    _report(operator, 'INFO',
            f"Imported {created} meshes, {len(scene.joint_nodes)} joints, "
            f"{len(scene.textures)}/{len(scene.materials)} textures from {basename} "
            f"in {elapsed:.2f}s")
    return {'FINISHED'}


def assign_vertex_groups(mesh_obj, joints, weights, bone_names):
    """Create one vertex group per joint and assign the blend weights.

    Args:
        mesh_obj: Blender mesh Object
        joints: (N, 4) dense joint indices
        weights: (N, 4) blend weights
        bone_names: bone name per joint index
    """
    groups = [mesh_obj.vertex_groups.new(name=name) for name in bone_names]

    for vi, (vertex_joints, vertex_weights) in enumerate(zip(joints, weights)):
        for j, w in zip(vertex_joints, vertex_weights):
            if w <= 0.0:
                continue
            groups[int(j)].add([vi], float(w), 'ADD')


def parent_to_armature(mesh_obj, armature_obj):
    """Parent a mesh to an armature with an Armature modifier."""
    mesh_obj.parent = armature_obj
    mod = mesh_obj.modifiers.new(name="Armature", type='ARMATURE')
    mod.object = armature_obj


def _report(operator, level, message):
    """Report a message through the operator, or log it when there is none."""
    if operator is not None and hasattr(operator, 'report'):
        operator.report({level}, message)
    else:
        _log.log(logging.getLevelName(level), message)
