bl_info = {
    "name": "ISM2 Format",
    "author": "Kaiko",
    "version": (0, 1, 0),
    "blender": (4, 4, 0),
    "location": "File > Import",
    "description": "Import ISM2 model files: meshes, skeleton, skin weights and textures.",
    "category": "Import-Export",
}


def register():
    from . import operators
    operators.register()


def unregister():
    from . import operators
    operators.unregister()


if __name__ == "__main__":
    register()
