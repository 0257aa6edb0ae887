from datetime import date

import httpx
import pytest
from fastapi import FastAPI

from lottery_forecast.api.errors import register_exception_handlers, status_for
from lottery_forecast.api.v1.router import api_router
from lottery_forecast.errors import (
    InsufficientData,
    InvalidEnsembleWeights,
    PredictionFailed,
    StorageError,
    TrainingInProgress,
    UnknownStrategy,
)


@pytest.fixture
async def client(seeded_engine):
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api/v1")
    app.state.engine = seeded_engine
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.parametrize(
    "error, status",
    [
        (UnknownStrategy("x"), 404),
        (TrainingInProgress(1, 2), 409),
        (InvalidEnsembleWeights("x"), 422),
        (InsufficientData("x"), 422),
        (PredictionFailed("x"), 500),
        (StorageError("x"), 500),
    ],
)
def test_status_mapping(error, status):
    assert status_for(error) == status


async def test_predict_endpoint(client):
    response = await client.post("/api/v1/forecast/predict", json={"lottery_type": "ssq", "algorithm": "statistical"})
    assert response.status_code == 200
    body = response.json()
    assert len(body["predicted_numbers"]) == 6
    assert body["target_draw_date"] == date.today().isoformat()

    history = await client.get("/api/v1/forecast/predictions/ssq")
    assert [p["id"] for p in history.json()] == [body["id"]]


async def test_unknown_lottery_is_404(client):
    response = await client.post("/api/v1/forecast/predict", json={"lottery_type": "powerball"})
    assert response.status_code == 404
    assert response.json()["error"] == "UnknownLotteryType"


async def test_algorithm_catalogue(client):
    response = await client.get("/api/v1/forecast/algorithms/ssq")
    assert "hybrid" in response.json()
    info = await client.get("/api/v1/forecast/algorithms", params={"kind": "lstm"})
    assert info.json()[0]["required_data_size"] == 1000


async def test_unknown_training_job_is_404(client):
    response = await client.get("/api/v1/training/jobs/9999")
    assert response.status_code == 404


async def test_invalid_drawing_is_422(client):
    response = await client.post("/api/v1/drawings", json={
        "lottery_type": "ssq",
        "draw_number": "bad",
        "draw_date": date.today().isoformat(),
        "winning_numbers": [1, 2, 3],
        "special_numbers": [1],
    })
    assert response.status_code == 422


async def test_rankings_endpoint(client):
    response = await client.get("/api/v1/forecast/rankings")
    assert response.status_code == 200
    assert response.json() == []
