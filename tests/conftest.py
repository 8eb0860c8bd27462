import io
import os
import tempfile
import threading
import time

# Keep test logs out of the working tree; must run before project imports
os.environ.setdefault("SKETCHMATCH_LOG_DIR", tempfile.mkdtemp(prefix="sketchmatch-logs-"))

import numpy as np
import pytest
from PIL import Image

from models.model_cache import ModelCache, clear_model_caches
from vision.image_encoder import ImageEncoder


class CountingFactory:
    """Stand-in for an expensive constructor; counts how often it runs."""

    def __init__(self, product, delay: float = 0.0, error: Exception = None):
        self.product = product
        self.delay = delay
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.product


def stub_processor(images, return_tensors="pt"):
    return {"pixel_values": np.asarray(images, dtype=np.float32) / 255.0}


class StubVisionModel:
    """Embeds an image as the mean colour of each cell of a 4x4 grid (48 dims)."""

    def __init__(self):
        self.seen_shapes = []

    def __call__(self, pixel_values):
        self.seen_shapes.append(pixel_values.shape)
        h, w, c = pixel_values.shape
        grid = pixel_values[: h - h % 4, : w - w % 4].reshape(4, h // 4, 4, w // 4, c)
        return {"image_embeds": grid.mean(axis=(1, 3)).reshape(1, -1)}


def png_bytes(color=(200, 30, 30), size=(64, 64), pattern=False) -> bytes:
    img = Image.new("RGB", size, color)
    if pattern:
        for x in range(size[0] // 2):
            for y in range(size[1]):
                img.putpixel((x, y), (color[2], color[0], color[1]))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture(autouse=True)
def _fresh_caches():
    clear_model_caches()
    yield
    clear_model_caches()


@pytest.fixture
def vision_model():
    return StubVisionModel()


@pytest.fixture
def stub_cache(vision_model):
    return ModelCache(CountingFactory(stub_processor), CountingFactory(vision_model), key="stub")


@pytest.fixture
def encoder(stub_cache):
    return ImageEncoder(stub_cache, image_size=32)


@pytest.fixture
def image_file(tmp_path):
    path = tmp_path / "target.png"
    path.write_bytes(png_bytes(pattern=True))
    return path


@pytest.fixture
def other_image_file(tmp_path):
    path = tmp_path / "sketch.png"
    path.write_bytes(png_bytes(color=(20, 180, 60)))
    return path
