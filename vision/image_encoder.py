"""
vision/image_encoder.py
-----------------------
Turn one image reference into one embedding vector.

Steps:
 1. acquire the raw image (URL, data URL, path, bytes)
 2. resize to a fixed square resolution when configured
 3. run the cached preprocessor
 4. run the cached vision encoder
 5. extract `image_embeds` as a flat, read-only float32 vector
"""

import time
from typing import Optional

import numpy as np
import torch

from game_core.logger import setup_logger
from game_core.settings import ScoringSettings, get_settings
from models.model_cache import ModelCache, get_model_cache
from models.vision_encoder import extract_image_embeds
from scoring.vector_utils import normalize as l2_normalize
from vision.image_source import (
    DEFAULT_FETCH_TIMEOUT,
    ImageInput,
    ImageRef,
    load_image,
    resize_image,
)

logger = setup_logger()


def _move_inputs(inputs, device):
    """Move tensor values to the target device; other values pass through."""
    if device is None or str(device) == "cpu":
        return inputs
    return {
        k: v.to(device) if isinstance(v, torch.Tensor) else v
        for k, v in dict(inputs).items()
    }


def _to_vector(emb) -> np.ndarray:
    if isinstance(emb, torch.Tensor):
        emb = emb.detach().cpu().float().numpy()
    return np.array(emb, dtype=np.float32).reshape(-1)


class ImageEncoder:
    """Encodes images with the (preprocessor, encoder) pair held by a ModelCache."""

    def __init__(
        self,
        cache: ModelCache,
        image_size: Optional[int] = 256,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        device: str = "cpu",
        normalize: bool = False,
    ):
        self.cache = cache
        self.image_size = image_size or None
        self.fetch_timeout = fetch_timeout
        self.device = device
        self.normalize = normalize

    @classmethod
    def from_settings(cls, settings: Optional[ScoringSettings] = None, cache: Optional[ModelCache] = None):
        settings = settings or get_settings()
        return cls(
            cache=cache or get_model_cache(settings),
            image_size=settings.image_size,
            fetch_timeout=settings.fetch_timeout_seconds,
            device=settings.device,
            normalize=settings.normalize_embeddings,
        )

    def _target_size(self, image: ImageRef) -> Optional[int]:
        if isinstance(image, ImageInput) and image.resize_to:
            return image.resize_to
        return self.image_size

    def encode(self, image: ImageRef) -> np.ndarray:
        """Return the embedding for one image; raises FetchError / DecodeError."""
        t0 = time.perf_counter()
        img = load_image(image, timeout=self.fetch_timeout)

        size = self._target_size(image)
        if size:
            img = resize_image(img, size)

        processor, vision_model = self.cache.get_instance()
        inputs = _move_inputs(processor(images=img, return_tensors="pt"), self.device)

        with torch.inference_mode():
            out = vision_model(**inputs)

        vec = _to_vector(extract_image_embeds(out))
        if self.normalize:
            vec = l2_normalize(vec)
        vec.setflags(write=False)

        logger.debug("Encoded image to dim=%d in %.1f ms", vec.shape[0], (time.perf_counter() - t0) * 1000)
        return vec


def embed_image(image: ImageRef) -> np.ndarray:
    """Encode with the process-wide model cache and the current settings."""
    return ImageEncoder.from_settings().encode(image)
