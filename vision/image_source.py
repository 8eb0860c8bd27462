"""
vision/image_source.py
----------------------
Resolve an image reference into an RGB PIL image.
Supported references:
- http(s) URL      : fetched with requests
- data: URL        : "data:image/png;base64,...."
- local file path
- raw base64 string, raw bytes, or an already-open PIL image
"""

import base64
import binascii
import io
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import requests
from PIL import Image, UnidentifiedImageError

from game_core.errors import DecodeError, FetchError

DEFAULT_FETCH_TIMEOUT = 10.0
RESAMPLE = Image.Resampling.BICUBIC
_B64_RE = re.compile(r"^[A-Za-z0-9+/\s]+={0,2}$")
# Shorter than any encoded image; shorter strings are treated as paths
_MIN_B64_LEN = 64


@dataclass(frozen=True)
class ImageInput:
    """Reference to one image plus an optional square resize target."""
    location: str
    resize_to: Optional[int] = None


ImageRef = Union[ImageInput, str, bytes, Image.Image]


def _decode_bytes(raw: bytes, location: str) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(location, f"Not a valid image: {e}") from e
    return img.convert("RGB")


def _decode_b64(s: str, location: str) -> bytes:
    s = s.strip()
    if s.startswith("data:"):
        s = s.split(",", 1)[1] if "," in s else ""
    s = "".join(s.split())
    try:
        return base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(location, f"Invalid base64 payload: {e}") from e


def _looks_like_b64(s: str) -> bool:
    compact = "".join(s.split())
    return (
        len(compact) >= _MIN_B64_LEN
        and len(compact) % 4 == 0
        and _B64_RE.match(s) is not None
    )


def fetch_bytes(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> bytes:
    try:
        r = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise FetchError(url, f"Request failed: {e}") from e
    if r.status_code != 200:
        raise FetchError(url, f"HTTP {r.status_code}")
    return r.content


def load_image(ref: ImageRef, timeout: float = DEFAULT_FETCH_TIMEOUT) -> Image.Image:
    """Acquire and decode one image reference; raises FetchError or DecodeError."""
    if isinstance(ref, Image.Image):
        return ref.convert("RGB")
    if isinstance(ref, (bytes, bytearray)):
        return _decode_bytes(bytes(ref), "<bytes>")
    if isinstance(ref, ImageInput):
        ref = ref.location
    if not isinstance(ref, str) or not ref.strip():
        raise FetchError(str(ref), "Empty image reference")

    location = ref.strip()
    if location.startswith(("http://", "https://")):
        return _decode_bytes(fetch_bytes(location, timeout=timeout), location)
    if location.startswith("data:"):
        return _decode_bytes(_decode_b64(location, location), location)
    path = os.path.expanduser(location)
    if os.path.isfile(path):
        return _decode_bytes(Path(path).read_bytes(), location)
    if Path(location).suffix or not _looks_like_b64(location):
        raise FetchError(location, "File not found")
    # Bare base64 payload, e.g. a canvas export without the data: prefix
    return _decode_bytes(_decode_b64(location, location), location)


def resize_image(image: Image.Image, size: int) -> Image.Image:
    """Resize to exactly size x size; aspect ratio is not preserved."""
    if image.size == (size, size):
        return image
    return image.resize((size, size), resample=RESAMPLE)
