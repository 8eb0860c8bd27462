"""
game_core/errors.py
-------------------
Error taxonomy for the scoring engine.
A timeout is not an error: it is reported as ScoringOutcome.TIMED_OUT.
"""


class ScoringError(Exception):
    """Base class for every failure raised by the scoring pipeline."""


class CacheConstructionError(ScoringError, RuntimeError):
    """The preprocessor or the vision encoder could not be built."""

    def __init__(self, component: str, key: str, reason: str):
        self.component = component
        self.key = key
        super().__init__(f"Failed to construct {component} for '{key}': {reason}")


class ImageInputError(ScoringError):
    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"{reason} ({_shorten(location)})")


class FetchError(ImageInputError):
    """The image reference could not be retrieved."""


class DecodeError(ImageInputError):
    """The retrieved bytes are not a valid image."""


class LengthMismatchError(ScoringError, ValueError):
    """Two embeddings of different dimensionality were compared."""

    def __init__(self, len_a: int, len_b: int):
        self.len_a = len_a
        self.len_b = len_b
        super().__init__(f"Embeddings must be of the same length: {len_a} vs {len_b}")


def _shorten(location: str, limit: int = 80) -> str:
    # data: URLs and base64 payloads can be megabytes long
    return location if len(location) <= limit else location[:limit] + "..."
