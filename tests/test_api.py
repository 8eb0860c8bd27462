from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from game_core.settings import ScoringSettings
from scoring.scoring_task import ScoringTask
from scoring.worker import ScoringWorker


@pytest.fixture
def client(encoder):
    worker = ScoringWorker(ScoringTask(encoder, timeout=5.0, executor=ThreadPoolExecutor(max_workers=2)))
    app = create_app(worker=worker, settings=ScoringSettings())
    with TestClient(app) as c:
        yield c


def test_compare_identical_images(client, image_file):
    r = client.post("/compare", json={"query_image": str(image_file), "ans_image": str(image_file)})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "complete"
    assert body["outcome"] == "completed"
    assert body["output"] == pytest.approx(1.0, abs=1e-5)


def test_compare_fetch_error_maps_to_502(client, image_file, tmp_path):
    r = client.post("/compare", json={"query_image": str(tmp_path / "x.png"), "ans_image": str(image_file)})
    assert r.status_code == 502
    assert r.json()["detail"]["error"] == "FetchError"


def test_compare_decode_error_maps_to_422(client, image_file):
    r = client.post("/compare", json={"query_image": "data:image/png;base64,AAAA", "ans_image": str(image_file)})
    assert r.status_code == 422
    assert r.json()["detail"]["error"] == "DecodeError"


def test_compare_rejects_missing_fields(client):
    r = client.post("/compare", json={"query_image": "a.png"})
    assert r.status_code == 422


def test_health_and_config(client):
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["backend"] == "transformers"
    assert health["model_ready"] is False

    config = client.get("/config").json()
    assert config["timeout_seconds"] == 15.0
    assert config["chunk_size"] == 128


def test_health_reports_the_worker_cache(client, image_file):
    assert client.get("/health").json()["model_ready"] is False
    client.post("/compare", json={"query_image": str(image_file), "ans_image": str(image_file)})
    assert client.get("/health").json()["model_ready"] is True
