"""
Unit tests for the Product Service error handler.
"""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from product_service.app.core.exceptions import (
    InsufficientStockError,
    NotFoundError,
    ProductValidationError,
    StockConflictError,
)
from product_service.app.middleware.error import setup_product_error_handling


class Payload(BaseModel):
    quantity: int


@pytest.fixture
def app() -> FastAPI:
    app = FastAPI()
    setup_product_error_handling(app)

    @app.get("/missing")
    async def missing():
        raise NotFoundError("p1")

    @app.get("/short")
    async def short():
        raise InsufficientStockError("p1", available=2, requested=3)

    @app.get("/invalid")
    async def invalid():
        raise ProductValidationError({"price": "must be >= 0"})

    @app.get("/conflict")
    async def conflict():
        raise StockConflictError("version moved")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    @app.post("/body")
    async def body(payload: Payload):
        return payload

    return app


@pytest.fixture
async def http(app):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestErrorResponses:
    @pytest.mark.asyncio
    async def test_not_found(self, http):
        response = await http.get("/missing")

        assert response.status_code == 404
        assert response.json() == {"message": "Produit non trouvé"}

    @pytest.mark.asyncio
    async def test_insufficient_stock_reports_quantities(self, http):
        response = await http.get("/short")

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Stock insuffisant"
        assert body["available"] == 2
        assert body["requested"] == 3

    @pytest.mark.asyncio
    async def test_domain_validation(self, http):
        response = await http.get("/invalid")

        assert response.status_code == 400
        assert response.json()["message"] == "Données invalides"
        assert "price" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_conflict(self, http):
        response = await http.get("/conflict")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_request_body_validation_is_400(self, http):
        response = await http.post("/body", json={"quantity": "many"})

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Données invalides"
        assert "quantity" in body["error"]

    @pytest.mark.asyncio
    async def test_unknown_route(self, http):
        response = await http.get("/nowhere")

        assert response.status_code == 404
        assert response.json() == {"message": "Not Found"}

    @pytest.mark.asyncio
    async def test_unexpected_error(self, http):
        response = await http.get("/boom")

        assert response.status_code == 500
        assert response.json() == {"message": "Erreur serveur", "error": "kaboom"}
