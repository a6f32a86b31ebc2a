"""Integration tests for the shop router mounted in a host application."""

import httpx
import pytest
from conftest import count_rows, insert_product
from fastapi import FastAPI, Request

from shopkit.main import Shop
from shopkit.providers.fake import FakeProvider


async def grant_role(metadata, product, params):
    pass


async def header_admin(request: Request) -> bool:
    return request.headers.get("X-Admin") == "yes"


async def enrich_from_header(request: Request):
    user = request.headers.get("X-User")
    if user is None:
        return None
    return {"userId": user}


ADMIN = {"X-Admin": "yes"}


@pytest.fixture()
def paypal():
    return FakeProvider("paypal")


@pytest.fixture()
def coinbase():
    return FakeProvider("coinbase")


@pytest.fixture()
def shop(db, paypal, coinbase):
    return Shop(
        db,
        paypal=paypal,
        coinbase=coinbase,
        is_admin=header_admin,
        enrich_metadata=enrich_from_header,
        product_actions={
            "grant-role": {
                "label": "Grant role",
                "params": [{"key": "role", "label": "Role"}],
                "handler": grant_role,
            }
        },
    )


@pytest.fixture()
async def client(shop):
    app = FastAPI()
    app.include_router(shop.router, prefix="/shop")
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestAdmin:
    async def test_admin_check(self, client):
        assert (await client.get("/shop/admin/check")).json() == {"isAdmin": False}
        assert (await client.get("/shop/admin/check", headers=ADMIN)).json() == {"isAdmin": True}

    async def test_admin_check_without_predicate(self, db):
        app = FastAPI()
        app.include_router(Shop(db).router, prefix="/shop")
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
            response = await c.get("/shop/admin/check")
        assert response.json() == {"isAdmin": False}

    async def test_actions_list_requires_admin(self, client):
        response = await client.get("/shop/actions/list")
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    async def test_actions_list(self, client):
        response = await client.get("/shop/actions/list", headers=ADMIN)

        assert response.status_code == 200
        assert response.json() == {
            "error": None,
            "actions": [
                {
                    "key": "grant-role",
                    "label": "Grant role",
                    "params": [{"key": "role", "label": "Role", "type": "text"}],
                }
            ],
        }


class TestProductRoutes:
    async def test_create_requires_admin(self, client):
        response = await client.post("/shop/product/create", json={"name": "Mug", "price": 8})
        assert response.status_code == 403

    async def test_create_and_fetch(self, client):
        response = await client.post(
            "/shop/product/create",
            json={"name": "VIP", "price": 20, "action": "grant-role", "action_params": {"role": "vip"}},
            headers=ADMIN,
        )

        assert response.status_code == 201
        product = response.json()["product"]
        assert product["name"] == "VIP"
        assert product["action"] == "grant-role"

        fetched = await client.get(f"/shop/product/{product['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["product"]["id"] == product["id"]

    async def test_create_with_unknown_action(self, client):
        response = await client.post(
            "/shop/product/create",
            json={"name": "VIP", "price": 20, "action": "nope"},
            headers=ADMIN,
        )
        assert response.status_code == 400
        assert response.json() == {"error": "unknown action 'nope'", "product": None}

    async def test_get_missing_product(self, client):
        response = await client.get("/shop/product/404")
        assert response.status_code == 404
        assert response.json() == {"error": "product not found", "product": None}

    async def test_list_and_delete(self, client, db):
        pid = await insert_product(db)

        listed = await client.get("/shop/products/list")
        assert [p["id"] for p in listed.json()["products"]] == [pid]

        deleted = await client.delete(f"/shop/product/delete/{pid}", headers=ADMIN)
        assert deleted.json() == {"error": None, "success": True}
        assert (await client.get("/shop/products/list")).json()["products"] == []


class TestCategoryRoutes:
    async def test_create_list_filter(self, client):
        created = await client.post("/shop/category/create", json={"name": "Hats"}, headers=ADMIN)
        assert created.status_code == 201
        category_id = created.json()["category"]["id"]

        await client.post(
            "/shop/product/create",
            json={"name": "Cap", "price": 5, "category_id": category_id},
            headers=ADMIN,
        )

        categories = (await client.get("/shop/categories/list")).json()["categories"]
        assert [c["name"] for c in categories] == ["Hats"]

        hats = (await client.get("/shop/products/list/Hats")).json()["products"]
        assert [p["name"] for p in hats] == ["Cap"]
        assert hats[0]["category_name"] == "Hats"

    async def test_delete_missing(self, client):
        response = await client.delete("/shop/category/delete/404", headers=ADMIN)
        assert response.status_code == 404
        assert response.json() == {"error": "category not found", "success": False}


class TestPaymentCreate:
    async def test_paypal(self, client, db, paypal):
        pid = await insert_product(db)

        response = await client.post(
            "/shop/payment/create",
            json={"product_id": pid, "payment_method": "paypal"},
            headers={"X-User": "u-7"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["error"] is None
        assert set(body) == {"error", "approvalUrl", "orderId"}
        assert paypal.calls[0]["metadata"] == {"product_id": pid, "userId": "u-7"}

    async def test_crypto(self, client, db):
        pid = await insert_product(db)

        response = await client.post(
            "/shop/payment/create",
            json={"product_id": pid, "payment_method": "crypto"},
            headers={"X-User": "u-7"},
        )

        assert set(response.json()) == {"error", "hostedUrl", "chargeCode"}

    async def test_enrichment_rejection_is_unauthorized(self, client, db, paypal):
        pid = await insert_product(db)

        response = await client.post(
            "/shop/payment/create",
            json={"product_id": pid, "payment_method": "paypal"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}
        assert paypal.calls == []

    async def test_unknown_method(self, client, db):
        pid = await insert_product(db)

        response = await client.post(
            "/shop/payment/create",
            json={"product_id": pid, "payment_method": "cash"},
            headers={"X-User": "u-7"},
        )

        assert response.status_code == 400
        assert "unsupported payment method" in response.json()["error"]

    async def test_missing_product(self, client):
        response = await client.post(
            "/shop/payment/create",
            json={"product_id": 404, "payment_method": "paypal"},
            headers={"X-User": "u-7"},
        )
        assert response.status_code == 404

    async def test_provider_error(self, client, db, paypal):
        pid = await insert_product(db)
        paypal.configure(should_succeed=False, failure_reason="gateway down")

        response = await client.post(
            "/shop/payment/create",
            json={"product_id": pid, "payment_method": "paypal"},
            headers={"X-User": "u-7"},
        )

        assert response.status_code == 502
        assert response.json() == {"error": "gateway down"}


class TestPaymentNotifications:
    async def test_provider_event_is_recorded_and_readable(self, client, db, paypal):
        pid = await insert_product(db)

        await paypal.emit("completed", {
            "provider": "paypal",
            "orderId": "ORDER-9",
            "amount": "20.00",
            "metadata": {"product_id": pid, "userId": "u-7"},
        })

        assert await count_rows(db, "orders") == 1
        rows = await db.query_database("SELECT id FROM orders")
        response = await client.get(f"/shop/order/{rows[0]['id']}", headers=ADMIN)

        body = response.json()
        assert body["order"]["status"] == "completed"
        assert body["order"]["payment_id"] == "ORDER-9"
        assert body["order"]["custom_id"] == "u-7"
        assert [item["product_id"] for item in body["items"]] == [pid]

    async def test_paypal_capture_needs_paypal_client(self, client):
        # the fake provider has no capture_order
        response = await client.post("/shop/payment/paypal/capture", json={"orderId": "X"})
        assert response.status_code == 400

    async def test_coinbase_webhook_needs_coinbase_client(self, client):
        response = await client.post("/shop/payment/coinbase/webhook", content=b"{}")
        assert response.status_code == 400
        assert response.json()["received"] is False


class TestErrorResponses:
    async def test_failing_enrichment_hook_answers_with_error_body(self, db, paypal):
        async def session_lookup(request: Request):
            raise RuntimeError("session store down")

        app = FastAPI()
        app.include_router(Shop(db, paypal=paypal, enrich_metadata=session_lookup).router, prefix="/shop")
        pid = await insert_product(db)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
            response = await c.post(
                "/shop/payment/create",
                json={"product_id": pid, "payment_method": "paypal"},
            )

        assert response.status_code == 500
        assert response.json() == {"error": "session store down"}
        assert paypal.calls == []

    async def test_failing_admin_hook_answers_with_error_body(self, db):
        async def broken_admin(request: Request) -> bool:
            raise RuntimeError("auth backend unreachable")

        app = FastAPI()
        app.include_router(Shop(db, is_admin=broken_admin).router, prefix="/shop")

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
            response = await c.post("/shop/category/create", json={"name": "Hats"})

        assert response.status_code == 500
        assert response.json() == {"error": "auth backend unreachable", "category": None}

    async def test_payment_without_product_id(self, client):
        response = await client.post(
            "/shop/payment/create",
            json={"payment_method": "paypal"},
            headers={"X-User": "u-7"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "product_id is required"}

    async def test_payment_with_non_json_body(self, client):
        response = await client.post("/shop/payment/create", content=b"not json")

        assert response.status_code == 400
        assert response.json() == {"error": "request body must be a JSON object"}

    async def test_negative_price_is_rejected(self, client):
        response = await client.post(
            "/shop/product/create",
            json={"name": "Mug", "price": -1},
            headers=ADMIN,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["product"] is None
        assert body["error"].startswith("price:")

    async def test_capture_without_order_id(self, client):
        response = await client.post("/shop/payment/paypal/capture", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "orderId is required", "status": None}
