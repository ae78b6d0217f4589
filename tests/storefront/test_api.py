"""Integration tests for the storefront API via httpx ASGITransport."""

import httpx
import pytest
from sqlalchemy import text

from storefront import main

pytestmark = pytest.mark.anyio

BUYER = {
    "name": "Lin Mei",
    "phone": "0912345678",
    "email": "mei@example.com",
    "address": "No. 1, Zhongshan Rd, Taipei",
    "account_last5": "12345",
}


@pytest.fixture
async def client(committer):
    main.app.dependency_overrides[main.get_committer] = lambda: committer
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    main.app.dependency_overrides.clear()


async def _submit(client, quantities, buyer=BUYER):
    return await client.post("/api/orders/draft", json={"buyer": buyer, "quantities": quantities})


class TestInventoryEndpoints:
    async def test_snapshot(self, client):
        resp = await client.get("/api/inventory")

        assert resp.status_code == 200
        assert resp.json() == {"A": 5, "B": 10, "C": 0, "D": -1}

    async def test_reconcile(self, client):
        resp = await client.post(
            "/api/cart/reconcile",
            json={
                "cart": {
                    "A": {"quantity": 9, "unit_price": 50, "stock": 9},
                    "C": {"quantity": 1, "unit_price": 80, "stock": 3},
                }
            },
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["cart"]["A"]["quantity"] == 5
        assert body["cart"]["A"]["adjusted"] is True
        assert body["cart"]["A"]["original_quantity"] == 9
        assert body["cart"]["C"]["quantity"] == 0
        assert body["cart"]["C"]["out_of_stock"] is True
        assert body["events"] == [
            {"code": "A", "stock": 5, "kind": "adjusted"},
            {"code": "C", "stock": 0, "kind": "sold_out"},
        ]


class TestCheckoutFlow:
    async def test_submit_and_confirm(self, client):
        resp = await _submit(client, {"A": 3})
        assert resp.status_code == 200
        draft = resp.json()
        assert draft["total_amount"] == 215
        assert "sid" in client.cookies

        resp = await client.post(
            "/api/orders/confirm", json={"token": draft["token"], "action": "confirm"}
        )
        assert resp.status_code == 200
        confirmed = resp.json()
        assert confirmed["status"] == "confirmed"
        assert confirmed["total_amount"] == 215

        resp = await client.get(f"/api/orders/{confirmed['order_id']}")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Lin Mei"

        resp = await client.get("/api/inventory")
        assert resp.json()["A"] == 2

    async def test_second_confirm_is_duplicate(self, client):
        token = (await _submit(client, {"A": 1})).json()["token"]
        await client.post("/api/orders/confirm", json={"token": token, "action": "confirm"})

        resp = await client.post("/api/orders/confirm", json={"token": token, "action": "confirm"})

        assert resp.status_code == 409
        assert resp.json()["error"] == "duplicate_submission"

    async def test_cancel(self, client):
        token = (await _submit(client, {"A": 1})).json()["token"]

        resp = await client.post("/api/orders/confirm", json={"token": token, "action": "cancel"})

        assert resp.json() == {"status": "cancelled"}
        assert (await client.get("/api/inventory")).json()["A"] == 5

    async def test_confirm_without_session_cookie(self, client):
        resp = await client.post("/api/orders/confirm", json={"token": "x", "action": "confirm"})

        assert resp.status_code == 409
        assert resp.json()["error"] == "duplicate_submission"

    async def test_insufficient_stock_names_code_and_remaining(self, client, engine):
        token = (await _submit(client, {"A": 4})).json()["token"]
        async with engine.begin() as conn:
            await conn.execute(text("UPDATE inventory SET stock = 1 WHERE code = 'A'"))

        resp = await client.post("/api/orders/confirm", json={"token": token, "action": "confirm"})

        assert resp.status_code == 409
        body = resp.json()
        assert (body["error"], body["code"], body["available"]) == ("insufficient_stock", "A", 1)


class TestErrors:
    async def test_empty_cart(self, client):
        resp = await _submit(client, {"A": 0})

        assert resp.status_code == 400
        assert resp.json()["error"] == "empty_cart"

    @pytest.mark.parametrize("value", ["lots", 2.5, None, [1], True])
    async def test_invalid_quantity(self, client, value):
        resp = await _submit(client, {"A": value})

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_quantity"

    async def test_unknown_product(self, client):
        resp = await _submit(client, {"Z": 1})

        assert resp.status_code == 404
        assert resp.json()["error"] == "product_not_found"

    async def test_unknown_order(self, client):
        resp = await client.get("/api/orders/nope1")

        assert resp.status_code == 404
        assert resp.json()["error"] == "order_not_found"

    async def test_bad_account_digits_rejected(self, client):
        resp = await _submit(client, {"A": 1}, buyer={**BUYER, "account_last5": "12a"})

        assert resp.status_code == 422

    async def test_every_error_has_distinct_message(self, client):
        messages = {
            (await _submit(client, {"A": 0})).json()["message"],
            (await _submit(client, {"A": "x"})).json()["message"],
            (await _submit(client, {"Z": 1})).json()["message"],
            (await client.get("/api/orders/nope1")).json()["message"],
        }

        assert len(messages) == 4


class TestOperationalEndpoints:
    async def test_ledger_events(self, client):
        token = (await _submit(client, {"A": 1})).json()["token"]
        await client.post("/api/orders/confirm", json={"token": token, "action": "confirm"})

        resp = await client.get("/api/ledger/events/A")

        assert [e["event_type"] for e in resp.json()] == ["InventoryDecremented"]

    async def test_warmup(self, client):
        assert (await client.get("/_ah/warmup")).json() == {"status": "ok"}

    async def test_health(self, client):
        assert (await client.get("/health")).json()["status"] == "ok"
