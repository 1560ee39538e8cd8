"""Build Blender meshes from an AssembledScene.

Converts each SceneMesh primitive into a Blender mesh object with:
- Positions and triangle faces
- Custom split normals
- A UV layer (optionally V-flipped)
Degenerate and out-of-range triangles are dropped before mesh creation.
"""

import bpy
import numpy as np


def build_mesh(scene, mesh_index, name=None, options=None):
    """Create a Blender mesh object from scene.meshes[mesh_index].

    Only the first primitive is built; the assembler emits one per mesh.

    Args:
        scene: AssembledScene
        mesh_index: index into scene.meshes
        name: name for the Blender mesh and object (defaults to the mesh name)
        options: import options dict (import_normals, flip_uv_v)

    Returns:
        bpy.types.Object, or None when the mesh has no usable triangles
    """
    if options is None:
        options = {'import_normals': True, 'flip_uv_v': True}

    scene_mesh = scene.meshes[mesh_index]
    if not scene_mesh.primitives:
        return None
    primitive = scene_mesh.primitives[0]
    name = name or scene_mesh.name

    positions = scene.accessor_array(primitive.attributes["POSITION"])
    num_verts = len(positions)
    tris = scene.accessor_array(primitive.indices).reshape(-1, 3).astype(np.int64)
    tris = _clean_triangles(tris, num_verts)
    if len(tris) == 0:
        return None

    num_tris = len(tris)
    loop_indices = tris.ravel()

    mesh = bpy.data.meshes.new(name)
    mesh.vertices.add(num_verts)
    mesh.vertices.foreach_set("co", positions.ravel())

    mesh.loops.add(num_tris * 3)
    mesh.loops.foreach_set("vertex_index", loop_indices.astype(np.int32))

    mesh.polygons.add(num_tris)
    mesh.polygons.foreach_set("loop_start", np.arange(0, num_tris * 3, 3, dtype=np.int32))
    mesh.polygons.foreach_set("loop_total", np.full(num_tris, 3, dtype=np.int32))
    mesh.update()

    if "TEXCOORD_0" in primitive.attributes:
        uvs = scene.accessor_array(primitive.attributes["TEXCOORD_0"])
        _set_uv_layer(mesh, uvs, loop_indices, "UVMap",
                      uv_v_flip=options.get('flip_uv_v', True))

    mesh.validate(clean_customdata=False)
    mesh.update()

    if options.get('import_normals', True) and "NORMAL" in primitive.attributes:
        normals = scene.accessor_array(primitive.attributes["NORMAL"])
        _set_custom_normals(mesh, normals, loop_indices)

    return bpy.data.objects.new(name, mesh)


def _clean_triangles(tris, num_verts):
    """Drop out-of-range, degenerate and duplicate triangles, keeping order."""
    in_range = (tris < num_verts).all(axis=1)
    distinct = (
        (tris[:, 0] != tris[:, 1]) &
        (tris[:, 1] != tris[:, 2]) &
        (tris[:, 0] != tris[:, 2])
    )
    tris = tris[in_range & distinct]

    seen = set()
    keep = []
    for i, tri in enumerate(tris):
        key = tuple(sorted(tri.tolist()))
        if key in seen:
            continue
        seen.add(key)
        keep.append(i)
    return tris[keep]


def _set_custom_normals(mesh, normals, loop_indices):
    """Set custom split normals, reading vertex indices back if validate() changed the loops."""
    if len(mesh.loops) == len(loop_indices):
        indices = loop_indices
    else:
        indices = np.empty(len(mesh.loops), dtype=np.int32)
        mesh.loops.foreach_get("vertex_index", indices)

    loop_normals = normals[indices]
    # Zero normals (degenerate in the file) fall back to Blender's own
    mesh.normals_split_custom_set([tuple(n) for n in loop_normals])


def _set_uv_layer(mesh, uvs, loop_indices, layer_name="UVMap", uv_v_flip=True):
    """Set per-loop UV coordinates; uv_v_flip applies v = 1.0 - v."""
    uv_layer = mesh.uv_layers.new(name=layer_name)
    count = min(len(loop_indices), len(uv_layer.data))

    loop_uvs = uvs[loop_indices[:count]].astype(np.float32)
    if uv_v_flip:
        loop_uvs[:, 1] = 1.0 - loop_uvs[:, 1]
    uv_layer.data.foreach_set("uv", loop_uvs.ravel())
