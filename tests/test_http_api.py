"""HTTP transport tests using FastAPI's TestClient."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from garage_pos import http_api, procedures

AUTH = {"Authorization": "Bearer counter-1"}


@pytest.fixture
def client(runtime_context) -> TestClient:
    return TestClient(http_api.create_app(runtime_context))


def test_ping_needs_no_token(client):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_token_is_401(client):
    response = client.post("/call/addCustomer", json={"name": "Asha"})
    assert response.status_code == 401
    assert response.json() == {"kind": "unauthenticated", "message": "Auth required"}


@pytest.mark.parametrize("header", ["Basic abc", "Bearer", "Bearer   "])
def test_malformed_authorization_is_anonymous(header):
    assert http_api.resolve_caller(header, http_api.bearer_uid) == procedures.ANONYMOUS


def test_verifier_rejecting_token_is_anonymous(runtime_context):
    client = TestClient(http_api.create_app(runtime_context, verify_token=lambda token: None))
    assert client.post("/call/listCustomers", headers=AUTH).status_code == 401


def test_sale_flow_over_http(client):
    customer = client.post("/call/addCustomer", json={"name": "Asha"}, headers=AUTH).json()
    item = client.post(
        "/call/addInventoryItem",
        json={"brand": "Castrol", "name": "GTX", "volumeMl": 1000, "quantity": 10},
        headers=AUTH,
    ).json()

    response = client.post(
        "/call/addSale",
        json={"customerId": customer["id"], "lines": [{"itemId": item["id"], "quantity": 2, "price": 100}]},
        headers=AUTH,
    )

    assert response.status_code == 200
    body = response.json()
    assert float(body["total"]) == 236.0
    assert float(body["due"]) == 236.0

    listed = client.post("/call/listInventory", headers=AUTH).json()["items"]
    assert listed[0]["quantity"] == 8


@pytest.mark.parametrize(
    "name, payload, status, kind",
    [
        ("addSale", {"customerId": "C1", "lines": []}, 400, "invalid-argument"),
        ("deleteSale", {"id": "S-NOPE"}, 404, "not-found"),
        ("updateInventoryItem", {"id": "I-NOPE"}, 412, "failed-precondition"),
        ("noSuchProcedure", {}, 404, "not-found"),
    ],
)
def test_errors_map_to_status_codes(client, name, payload, status, kind):
    response = client.post(f"/call/{name}", json=payload, headers=AUTH)
    assert response.status_code == status
    assert response.json()["kind"] == kind


def test_internal_error_is_500(client, monkeypatch):
    def explode(context):
        raise RuntimeError("boom")

    monkeypatch.setattr(procedures.core_logic, "list_customers", explode)
    response = client.post("/call/listCustomers", headers=AUTH)
    assert response.status_code == 500
    assert response.json() == {"kind": "internal", "message": "boom"}


def test_gst_summary_endpoint(client):
    assert client.get("/gstSummaryHttp", params={"month": "2024-05"}).status_code == 401

    response = client.get("/gstSummaryHttp", params={"month": "2024-05"}, headers=AUTH)
    assert response.status_code == 200
    assert response.json()["month"] == "2024-05"
