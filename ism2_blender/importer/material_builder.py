"""Build Blender materials and images from an AssembledScene.

Creates Principled BSDF materials with:
- An Image Texture node on Base Color (and Alpha) when the texture loaded
- A UV Map node feeding the texture
Also provides the Blender-side image reader used by the texture lookup.
"""

import logging

import bpy
import numpy as np

from .scene_assembler import TextureImage


_log = logging.getLogger("ism2_import")


# Cache: texture index -> Blender image name
_image_cache = {}

# Cache: material index -> Blender material
_material_cache = {}


def clear_caches():
    """Clear the image and material caches. Call at start of each import."""
    global _image_cache, _material_cache
    _image_cache = {}
    _material_cache = {}


def read_blender_image(path):
    """Load an image file through Blender and return it as a TextureImage.

    Pixels are RGBA bytes, rows top to bottom.
    """
    try:
        bl_image = bpy.data.images.load(path, check_existing=True)
    except RuntimeError as e:
        # Blender reports unreadable files as RuntimeError
        raise FileNotFoundError(f"Cannot load image {path}: {e}") from e

    w, h = bl_image.size
    floats = np.empty(w * h * 4, dtype=np.float32)
    bl_image.pixels.foreach_get(floats)
    rgba = np.clip(floats * 255.0 + 0.5, 0, 255).astype(np.uint8).reshape(h, w, 4)
    return TextureImage(width=w, height=h, pixels=rgba[::-1].tobytes())


def build_material(scene, material_index):
    """Create (or reuse) the Blender material for scene.materials[material_index]."""
    if material_index in _material_cache:
        return _material_cache[material_index]

    scene_material = scene.materials[material_index]
    mat = bpy.data.materials.new(name=scene_material.name)
    mat.use_nodes = True
    nodes = mat.node_tree.nodes
    links = mat.node_tree.links
    nodes.clear()

    output_node = nodes.new(type='ShaderNodeOutputMaterial')
    output_node.location = (400, 0)

    bsdf = nodes.new(type='ShaderNodeBsdfPrincipled')
    bsdf.location = (0, 0)
    links.new(bsdf.outputs['BSDF'], output_node.inputs['Surface'])

    if scene_material.texture is not None:
        bl_image = _get_or_create_blender_image(scene, scene_material.texture)
        if bl_image is not None:
            _add_texture_to_material(mat, bsdf, bl_image, nodes, links)

    _material_cache[material_index] = mat
    return mat


def _add_texture_to_material(mat, bsdf, bl_image, nodes, links):
    tex_node = nodes.new(type='ShaderNodeTexImage')
    tex_node.location = (-400, 0)
    tex_node.image = bl_image
    links.new(tex_node.outputs['Color'], bsdf.inputs['Base Color'])
    links.new(tex_node.outputs['Alpha'], bsdf.inputs['Alpha'])

    uv_node = nodes.new(type='ShaderNodeUVMap')
    uv_node.location = (-700, 0)
    uv_node.uv_map = "UVMap"
    links.new(uv_node.outputs['UV'], tex_node.inputs['Vector'])


def _get_or_create_blender_image(scene, texture_index):
    """Turn a SceneTexture into a packed Blender image."""
    if texture_index in _image_cache:
        return bpy.data.images.get(_image_cache[texture_index])

    texture = scene.textures[texture_index]
    w, h = texture.width, texture.height
    if w == 0 or h == 0:
        return None

    rgba = np.frombuffer(bytes(texture.pixels), dtype=np.uint8, count=w * h * 4)
    # Blender rows run bottom to top
    floats = rgba.reshape(h, w, 4)[::-1].astype(np.float32) / 255.0

    bl_image = bpy.data.images.new(name=texture.name, width=w, height=h, alpha=True)
    bl_image.pixels.foreach_set(floats.ravel())
    bl_image.pack()

    _image_cache[texture_index] = bl_image.name
    return bl_image
