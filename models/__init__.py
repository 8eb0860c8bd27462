
"""
models/__init__.py
------------------
Expose the shared model cache interface.
"""

from .model_cache import ModelCache, get_model_cache, clear_model_caches
from .vision_encoder import extract_image_embeds, get_component_factories

__all__ = [
    "ModelCache",
    "get_model_cache",
    "clear_model_caches",
    "extract_image_embeds",
    "get_component_factories",
]
