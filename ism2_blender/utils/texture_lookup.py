"""Locate texture images referenced by an ISM2 model.

ISM2 texture entries only carry a base name. The image is looked for as
<base_name>.<ext> next to the model file, then in a "textures" directory
beside it. Matching is case-insensitive since extracted game archives mix
upper- and lower-case names.
"""

import os


TEXTURE_EXTENSIONS = (".png", ".tga", ".dds", ".bmp")
TEXTURE_SUBDIR = "textures"


def texture_search_dirs(model_path):
    """Directories searched for a model's textures, in priority order."""
    model_dir = os.path.dirname(os.path.abspath(model_path))
    return [model_dir, os.path.join(model_dir, TEXTURE_SUBDIR)]


def find_texture_file(base_name, search_dirs, extensions=TEXTURE_EXTENSIONS):
    """Return the path of the first image matching base_name, or None."""
    wanted = [(base_name + ext).lower() for ext in extensions]
    for directory in search_dirs:
        if not os.path.isdir(directory):
            continue
        by_lower = {}
        for entry in sorted(os.listdir(directory)):
            by_lower.setdefault(entry.lower(), entry)
        for name in wanted:
            entry = by_lower.get(name)
            if entry is not None:
                path = os.path.join(directory, entry)
                if os.path.isfile(path):
                    return path
    return None


def make_texture_loader(model_path, read_image):
    """Build a texture_loader for assemble_scene().

    Args:
        model_path: path of the .ism2 file
        read_image: callable(path) -> TextureImage that decodes an image file

    Returns:
        callable(base_name) -> TextureImage, raising FileNotFoundError when no
        file matches
    """
    search_dirs = texture_search_dirs(model_path)

    def load(base_name):
        path = find_texture_file(base_name, search_dirs)
        if path is None:
            raise FileNotFoundError(
                f"No image for texture {base_name!r} in {', '.join(search_dirs)}"
            )
        return read_image(path)

    return load
