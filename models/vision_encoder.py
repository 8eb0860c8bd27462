"""
models/vision_encoder.py
------------------------
Builders for the two expensive inference components: the image preprocessor
and the CLIP vision encoder.
Default: transformers CLIPVisionModelWithProjection (ViT-B/16, 512-dim).
Alternative: open_clip, wrapped to expose the same call signatures.
"""

from functools import lru_cache
from typing import Any, Callable, Tuple

import torch

from game_core.settings import ScoringSettings

EMBED_FIELDS = (
    "image_embeds",
    "embeddings",
    "pooler_output",
)


# ──────────────────────────────────────────────────────────────────────────────
# transformers backend
# ──────────────────────────────────────────────────────────────────────────────
def load_clip_processor(model_id: str):
    from transformers import CLIPImageProcessor

    return CLIPImageProcessor.from_pretrained(model_id)


def load_clip_vision_model(model_id: str, device: str = "cpu"):
    from transformers import CLIPVisionModelWithProjection

    model = CLIPVisionModelWithProjection.from_pretrained(model_id)
    return model.to(device).eval()


# ──────────────────────────────────────────────────────────────────────────────
# open_clip backend
# ──────────────────────────────────────────────────────────────────────────────
class OpenClipPreprocessor:
    """Adapts an open_clip transform to the processor(images=..., return_tensors=...) call."""

    def __init__(self, transform):
        self.transform = transform

    def __call__(self, images, return_tensors: str = "pt"):
        return {"pixel_values": self.transform(images).unsqueeze(0)}


class OpenClipVisionEncoder:
    """Adapts an open_clip model so calling it yields an `image_embeds` field."""

    def __init__(self, model):
        self.model = model

    def __call__(self, pixel_values):
        return {"image_embeds": self.model.encode_image(pixel_values)}


@lru_cache(maxsize=2)
def _create_open_clip(model_name: str, pretrained: str, device: str = "cpu"):
    import open_clip

    model, _, preprocess = open_clip.create_model_and_transforms(
        model_name, pretrained=pretrained, device=device
    )
    return model.eval(), preprocess


def load_open_clip_processor(model_name: str, pretrained: str, device: str = "cpu"):
    # Shares one model build with load_open_clip_encoder for the same device
    _, preprocess = _create_open_clip(model_name, pretrained, device)
    return OpenClipPreprocessor(preprocess)


def load_open_clip_encoder(model_name: str, pretrained: str, device: str = "cpu"):
    model, _ = _create_open_clip(model_name, pretrained, device)
    return OpenClipVisionEncoder(model)


# ──────────────────────────────────────────────────────────────────────────────
# Factory selection
# ──────────────────────────────────────────────────────────────────────────────
def get_component_factories(settings: ScoringSettings) -> Tuple[Callable[[], Any], Callable[[], Any]]:
    """Return (preprocessor_factory, encoder_factory) for the configured backend."""
    if settings.backend == "transformers":
        return (
            lambda: load_clip_processor(settings.model_id),
            lambda: load_clip_vision_model(settings.model_id, settings.device),
        )
    elif settings.backend == "open_clip":
        return (
            lambda: load_open_clip_processor(
                settings.open_clip_model, settings.open_clip_pretrained, settings.device
            ),
            lambda: load_open_clip_encoder(
                settings.open_clip_model, settings.open_clip_pretrained, settings.device
            ),
        )
    else:
        raise ValueError(f"Unknown backend: {settings.backend}")


def extract_image_embeds(out: Any):
    """
    Pull the embedding tensor out of a model output.
    The output may be a bare tensor/array, a dict, or a ModelOutput-style object.
    """
    if isinstance(out, torch.Tensor) or hasattr(out, "__array__"):
        return out

    if isinstance(out, dict):
        for name in EMBED_FIELDS:
            v = out.get(name)
            if v is not None:
                return v

    for name in EMBED_FIELDS:
        v = getattr(out, name, None)
        if v is not None:
            return v

    if isinstance(out, dict):
        keys = list(out.keys())
    else:
        keys = [a for a in dir(out) if not a.startswith("_")]
    raise TypeError(
        f"Expected image embeddings, got {type(out)}. "
        f"Available keys/attrs(sample): {keys[:20]}"
    )
