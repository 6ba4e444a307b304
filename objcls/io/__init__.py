"""
I/O for object classification.

Provides:
- Image sources (numpy-backed, Pillow / .npy loading)
- Ephemeral invocation workspaces with guaranteed cleanup
"""

from .image_source import (
    ImageSource,
    ArrayImageSource,
    open_image_source,
    pixel_size_from_dpi,
)

from .workspace import (
    EphemeralWorkspace,
    remove_path,
    registered_paths,
    unique_token,
)

__all__ = [
    'ImageSource',
    'ArrayImageSource',
    'open_image_source',
    'pixel_size_from_dpi',
    'EphemeralWorkspace',
    'remove_path',
    'registered_paths',
    'unique_token',
]
