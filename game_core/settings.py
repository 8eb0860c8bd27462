"""
game_core/settings.py
---------------------
Runtime configuration for the scoring engine.
Every field can be overridden through SKETCHMATCH_* environment variables.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ScoringSettings(BaseSettings):
    backend: Literal["transformers", "open_clip"] = "transformers"
    model_id: str = "openai/clip-vit-base-patch16"
    open_clip_model: str = "ViT-B-16"
    open_clip_pretrained: str = "openai"
    device: str = "cpu"                           # or "cuda"

    image_size: Optional[int] = 256               # square resize target, 0 disables
    chunk_size: int = 128
    timeout_seconds: float = 15.0
    fetch_timeout_seconds: float = 10.0
    max_workers: int = 4
    normalize_embeddings: bool = False

    pin_cache_across_reloads: bool = True
    warmup_on_startup: bool = False

    log_dir: str = "logs"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="SKETCHMATCH_", protected_namespaces=())

    @property
    def cache_key(self) -> str:
        """Stable registry key for the model cache of this configuration."""
        if self.backend == "open_clip":
            return f"open_clip:{self.open_clip_model}/{self.open_clip_pretrained}"
        return f"{self.backend}:{self.model_id}"


@lru_cache(maxsize=1)
def get_settings() -> ScoringSettings:
    # Cached load; call get_settings.cache_clear() after changing the environment
    return ScoringSettings()
