"""
api/main.py
-----------
SketchMatch scoring service — REST API layer
--------------------------------------------
Receives {query_image, ans_image}, hands it to the background scoring
worker and returns {status, output, outcome}.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from game_core.logger import setup_logger
from game_core.settings import ScoringSettings, get_settings
from models.model_cache import get_model_cache
from scoring.messages import ScoringRequest, ScoringResponse
from scoring.scoring_task import ScoringTask
from scoring.worker import ScoringWorker

logger = setup_logger()

ERROR_STATUS = {
    "InvalidRequest": 422,
    "DecodeError": 422,
    "FetchError": 502,
    "CacheConstructionError": 503,
    "WorkerStopped": 503,
}


# ─────────────────────────────────────────────────────────────────────────────
# 🏭 App Factory
# ─────────────────────────────────────────────────────────────────────────────

def create_app(
    worker: Optional[ScoringWorker] = None,
    settings: Optional[ScoringSettings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    worker = worker or ScoringWorker(ScoringTask.from_settings(settings))
    # Report on the cache the worker actually encodes with
    cache = getattr(worker.task.encoder, "cache", None) or get_model_cache(settings)

    # ─────────────────────────────────────────────────────────────────────────
    # 🔁 Lifespan: start/stop the worker, optionally warm the model cache
    # ─────────────────────────────────────────────────────────────────────────
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        worker.start()
        if settings.warmup_on_startup:
            try:
                await asyncio.to_thread(cache.get_instance)
            except Exception:
                logger.exception("Model warmup failed; will retry lazily on first request")
                cache.reset()
        logger.info("Scoring service started (%s)", settings.cache_key)
        try:
            yield
        finally:
            worker.stop()
            logger.info("Scoring service stopped")

    app = FastAPI(
        title="SketchMatch Scoring",
        version="0.1.0",
        description="Scores sketch/target image similarity with CLIP embeddings.",
        lifespan=lifespan,
    )
    app.state.worker = worker
    app.state.settings = settings

    # ─────────────────────────────────────────────────────────────────────────
    # 🎯 Main Endpoint: /compare
    # ─────────────────────────────────────────────────────────────────────────

    @app.post("/compare", response_model=ScoringResponse, response_model_exclude_none=True)
    async def compare_endpoint(req: ScoringRequest):
        response = await asyncio.wrap_future(worker.post_message(req.model_dump()))
        if response["status"] == "error":
            status = ERROR_STATUS.get(response["error"], 500)
            raise HTTPException(status_code=status, detail=response)
        return response

    # ─────────────────────────────────────────────────────────────────────────
    # 🩺 Health & Config Endpoints
    # ─────────────────────────────────────────────────────────────────────────

    @app.get("/health")
    def health_check():
        return {
            "status": "healthy" if worker.running else "stopped",
            "backend": settings.backend,
            "model": settings.cache_key,
            "model_ready": cache.is_ready,
        }

    @app.get("/config")
    def get_current_config():
        return settings.model_dump()

    return app


app = create_app()
