"""Build a Blender Armature from the joint nodes of an AssembledScene.

Joint nodes carry local translation / rotation / scale. World matrices are
composed down the hierarchy (parent @ local) and each bone is placed at its
world head, pointing along the joint's world Y axis.
"""

import bpy
from mathutils import Matrix, Quaternion, Vector


# Minimum bone length to prevent zero-length bones in Blender
_MIN_BONE_LENGTH = 0.05

# Maximum bone length to prevent oversized display
_MAX_BONE_LENGTH = 12.0


def local_matrix(node):
    """4x4 local matrix of a SceneNode from its optional TRS."""
    translation = Vector(node.translation) if node.translation is not None else Vector()
    if node.rotation is not None:
        x, y, z, w = node.rotation
        rotation = Quaternion((w, x, y, z))
    else:
        rotation = Quaternion()
    scale = Vector(node.scale) if node.scale is not None else Vector((1.0, 1.0, 1.0))
    return Matrix.LocRotScale(translation, rotation, scale)


def joint_world_matrices(scene):
    """World matrix per joint index, composed from the joint roots down."""
    node_to_joint = {node_idx: j for j, node_idx in enumerate(scene.joint_nodes)}
    world = {}

    def visit(node_idx, parent_world):
        m = parent_world @ local_matrix(scene.nodes[node_idx])
        world[node_to_joint[node_idx]] = m
        for child in scene.nodes[node_idx].children:
            visit(child, m)

    has_parent = set()
    for node_idx in scene.joint_nodes:
        has_parent.update(scene.nodes[node_idx].children)
    for node_idx in scene.joint_nodes:
        if node_idx not in has_parent:
            visit(node_idx, Matrix.Identity(4))
    return world


def build_armature(context, scene, armature_name="Armature", collection=None):
    """Create an armature object with one bone per joint.

    Args:
        context: Blender context
        scene: AssembledScene with joint nodes
        armature_name: name for the armature data and object
        collection: collection to link into (defaults to the active one)

    Returns:
        (armature object, list of bone names indexed by joint index)
    """
    world = joint_world_matrices(scene)
    bone_names = [
        scene.nodes[node_idx].name or f"Joint_{j:03d}"
        for j, node_idx in enumerate(scene.joint_nodes)
    ]
    node_to_joint = {node_idx: j for j, node_idx in enumerate(scene.joint_nodes)}

    armature = bpy.data.armatures.new(armature_name)
    armature.display_type = 'OCTAHEDRAL'
    arm_obj = bpy.data.objects.new(armature_name, armature)

    if collection is None:
        collection = context.collection
    collection.objects.link(arm_obj)

    context.view_layer.objects.active = arm_obj
    arm_obj.select_set(True)
    bpy.ops.object.mode_set(mode='EDIT')

    edit_bones = armature.edit_bones
    bone_map = {}  # joint index -> EditBone

    for j, node_idx in enumerate(scene.joint_nodes):
        eb = edit_bones.new(bone_names[j])
        bone_names[j] = eb.name  # Blender may uniquify duplicates
        m = world.get(j, Matrix.Identity(4))
        head = m.to_translation()

        children = [node_to_joint[c] for c in scene.nodes[node_idx].children]
        if children:
            child_head = world.get(children[0], m).to_translation()
            length = (child_head - head).length
        else:
            length = 0.0
        length = max(min(length, _MAX_BONE_LENGTH), _MIN_BONE_LENGTH)

        rot = m.to_3x3().normalized()
        eb.head = head
        eb.tail = head + rot @ Vector((0.0, length, 0.0))
        eb.align_roll(rot @ Vector((0.0, 0.0, 1.0)))
        eb.use_connect = False
        bone_map[j] = eb

    for j, node_idx in enumerate(scene.joint_nodes):
        for child_node in scene.nodes[node_idx].children:
            bone_map[node_to_joint[child_node]].parent = bone_map[j]

    bpy.ops.object.mode_set(mode='OBJECT')

    arm_obj["ism2_joint_count"] = len(scene.joint_nodes)
    return arm_obj, bone_names
