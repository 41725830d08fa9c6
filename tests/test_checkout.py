"""
Checkout: cart lines become placed orders and stock moves with them,
all or nothing.
"""
import pytest


async def _cart(client, buyer, product, qty):
    resp = await client.post(
        "/api/buyer/cart", json={"productId": product["id"], "quantity": qty},
        headers=buyer["headers"],
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def _stock(client, farmer):
    resp = await client.get("/api/farmer/products", headers=farmer["headers"])
    return {p["name"]: (p["quantity"], p["status"])
            for p in resp.json()["products"]}


class TestCheckout:

    @pytest.mark.asyncio
    async def test_places_every_line(self, client, farmer, buyer, add_product):
        a = await add_product(farmer, name="A", quantity=10, price=5.0)
        b = await add_product(farmer, name="B", quantity=3, price=7.0)
        await _cart(client, buyer, a, 4)
        await _cart(client, buyer, b, 3)

        resp = await client.post(
            "/api/buyer/orders",
            json={"shippingAddress": "Bole", "paymentMethod": "bank",
                  "notes": "handle with care"},
            headers=buyer["headers"],
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["totalAmount"] == 4 * 5.0 + 3 * 7.0
        placed = body["data"]
        assert len(placed) == 2
        for o in placed:
            assert o["status"] == "pending"
            assert o["orderNumber"].startswith("ORD-")
            assert o["shippingAddress"] == "Bole"
            assert o["paymentMethod"] == "bank"
            assert o["orderDate"] is not None

        assert await _stock(client, farmer) == {
            "A": (6, "available"),
            "B": (0, "sold_out"),
        }
        resp = await client.get("/api/buyer/cart", headers=buyer["headers"])
        assert resp.json()["totalItems"] == 0

        # a sold out lot disappears from the catalog
        resp = await client.get("/api/buyer/products")
        assert [p["name"] for p in resp.json()["data"]] == ["A"]

    @pytest.mark.asyncio
    async def test_empty_cart(self, client, buyer):
        resp = await client.post("/api/buyer/orders", json={},
                                 headers=buyer["headers"])
        assert resp.status_code == 400
        assert resp.json()["error"] == "Cart is empty"

    @pytest.mark.asyncio
    async def test_short_line_rolls_everything_back(
        self, client, farmer, buyer, add_product
    ):
        a = await add_product(farmer, name="A", quantity=10)
        b = await add_product(farmer, name="B", quantity=10)
        await _cart(client, buyer, a, 2)
        await _cart(client, buyer, b, 8)
        # the farmer sells B elsewhere after it went into the cart
        await client.put("/api/farmer/products", json={"id": b["id"], "quantity": 5},
                         headers=farmer["headers"])

        resp = await client.post("/api/buyer/orders", json={},
                                 headers=buyer["headers"])
        assert resp.status_code == 409
        assert resp.json() == {"success": False, "error": "Insufficient stock for B"}

        assert await _stock(client, farmer) == {
            "A": (10, "available"),
            "B": (5, "available"),
        }
        resp = await client.get("/api/buyer/cart", headers=buyer["headers"])
        assert resp.json()["totalItems"] == 2
        resp = await client.get("/api/buyer/orders", headers=buyer["headers"])
        assert resp.json()["data"] == []

    @pytest.mark.asyncio
    async def test_two_buyers_cannot_oversell(
        self, client, signup, farmer, buyer, add_product
    ):
        p = await add_product(farmer, name="Last lot", quantity=5)
        other = await signup("buyer")
        await _cart(client, buyer, p, 5)
        await _cart(client, other, p, 5)

        first = await client.post("/api/buyer/orders", json={},
                                  headers=buyer["headers"])
        second = await client.post("/api/buyer/orders", json={},
                                   headers=other["headers"])
        assert first.status_code == 201
        assert second.status_code == 409
        assert await _stock(client, farmer) == {"Last lot": (0, "sold_out")}

    @pytest.mark.asyncio
    async def test_orders_listing_and_stats(self, client, farmer, buyer, add_product):
        p = await add_product(farmer, quantity=100)
        for qty in (1, 2, 3):
            await _cart(client, buyer, p, qty)
            await client.post("/api/buyer/orders", json={},
                              headers=buyer["headers"])

        resp = await client.get("/api/buyer/orders?limit=2",
                                headers=buyer["headers"])
        body = resp.json()
        assert [o["quantity"] for o in body["data"]] == [3, 2]
        assert body["pagination"]["total"] == 3
        assert body["stats"]["total"] == 3
        assert body["stats"]["totalSpent"] == 60.0

        order_id = body["data"][0]["id"]
        await client.put("/api/farmer/orders",
                         json={"orderId": order_id, "status": "cancelled"},
                         headers=farmer["headers"])
        resp = await client.get("/api/buyer/orders?status=cancelled",
                                headers=buyer["headers"])
        assert [o["id"] for o in resp.json()["data"]] == [order_id]
        assert resp.json()["stats"]["totalSpent"] == 30.0


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_restocks_once(self, client, farmer, buyer, add_product):
        p = await add_product(farmer, name="Lot", quantity=5)
        await _cart(client, buyer, p, 5)
        resp = await client.post("/api/buyer/orders", json={},
                                 headers=buyer["headers"])
        order_id = resp.json()["data"][0]["id"]
        assert await _stock(client, farmer) == {"Lot": (0, "sold_out")}

        for _ in range(2):
            resp = await client.put(
                "/api/farmer/orders",
                json={"orderId": order_id, "status": "cancelled"},
                headers=farmer["headers"],
            )
            assert resp.status_code == 200
        assert await _stock(client, farmer) == {"Lot": (5, "available")}

    @pytest.mark.asyncio
    async def test_cancelled_cannot_reopen(self, client, farmer, buyer, add_product):
        p = await add_product(farmer)
        await _cart(client, buyer, p, 1)
        resp = await client.post("/api/buyer/orders", json={},
                                 headers=buyer["headers"])
        order_id = resp.json()["data"][0]["id"]
        await client.put("/api/farmer/orders",
                         json={"orderId": order_id, "status": "cancelled"},
                         headers=farmer["headers"])
        resp = await client.put("/api/farmer/orders",
                                json={"orderId": order_id, "status": "confirmed"},
                                headers=farmer["headers"])
        assert resp.status_code == 400
