"""
Tests for the admin sign-in, the admin JSON feeds, pages and health.
"""
import pytest


async def _admin_login(client):
    resp = await client.post("/admin/login", data={
        "username": "admin", "password": "supasecret", "next": "/admin",
    })
    assert resp.status_code == 303
    assert resp.headers["location"] == "/admin"


class TestAdminLogin:

    @pytest.mark.asyncio
    async def test_page_redirects_to_login(self, client):
        resp = await client.get("/admin")
        assert resp.status_code == 307
        assert resp.headers["location"] == "/admin/login?next=/admin"

    @pytest.mark.asyncio
    async def test_bad_credentials(self, client):
        resp = await client.post("/admin/login", data={
            "username": "admin", "password": "nope",
        })
        assert resp.status_code == 401
        assert "Invalid credentials" in resp.text

    @pytest.mark.asyncio
    async def test_login_then_page_then_logout(self, client):
        await _admin_login(client)
        resp = await client.get("/admin")
        assert resp.status_code == 200
        assert "Marketplace overview" in resp.text
        resp = await client.get("/admin/logout")
        assert resp.status_code == 303
        resp = await client.get("/api/admin/stats")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_offsite_next_is_ignored(self, client):
        resp = await client.post("/admin/login", data={
            "username": "admin", "password": "supasecret",
            "next": "//evil.example.com/",
        })
        assert resp.status_code == 303
        assert resp.headers["location"] == "/admin"

    @pytest.mark.asyncio
    async def test_feeds_need_admin(self, client, buyer):
        for path in ("/api/admin/stats", "/api/admin/users",
                     "/api/admin/products", "/api/admin/orders",
                     "/api/admin/timings"):
            resp = await client.get(path, headers=buyer["headers"])
            assert resp.status_code == 401, path


class TestAdminFeeds:

    @pytest.mark.asyncio
    async def test_stats(self, client, farmer, buyer, add_product):
        p = await add_product(farmer)
        await client.post("/api/buyer/cart", json={"productId": p["id"], "quantity": 2},
                          headers=buyer["headers"])
        await client.post("/api/buyer/orders", json={}, headers=buyer["headers"])
        await client.post(f"/api/buyer/favorites/{p['id']}",
                          headers=buyer["headers"])
        client.cookies.clear()

        await _admin_login(client)
        resp = await client.get("/api/admin/stats")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["users"]["total"] == 2
        assert data["users"]["byRole"] == {"farmer": 1, "buyer": 1}
        assert data["users"]["unverified"] == 2
        assert data["products"]["total"] == 1
        # the favorite is not an order
        assert data["orders"]["total"] == 1
        assert data["orders"]["revenue"] == 20.0

    @pytest.mark.asyncio
    async def test_users_and_verify(self, client, farmer, buyer):
        await _admin_login(client)
        resp = await client.get("/api/admin/users?role=farmer")
        body = resp.json()
        assert body["total"] == 1
        uid = body["items"][0]["id"]

        resp = await client.patch(f"/api/admin/users/{uid}",
                                  json={"isVerified": True})
        assert resp.status_code == 200
        assert resp.json()["user"]["isVerified"] is True

        resp = await client.patch(f"/api/admin/users/{uid}",
                                  json={"isVerified": "yes"})
        assert resp.status_code == 400
        resp = await client.patch("/api/admin/users/99999",
                                  json={"isVerified": True})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_products_orders_timings(self, client, farmer, buyer, add_product):
        p = await add_product(farmer)
        await client.post("/api/buyer/cart", json={"productId": p["id"], "quantity": 1},
                          headers=buyer["headers"])
        await client.post("/api/buyer/orders", json={}, headers=buyer["headers"])
        client.cookies.clear()

        await _admin_login(client)
        resp = await client.get("/api/admin/products")
        assert [x["id"] for x in resp.json()["items"]] == [p["id"]]
        resp = await client.get("/api/admin/orders")
        items = resp.json()["items"]
        assert len(items) == 1
        assert items[0]["buyer"]["user"]["fullName"] == buyer["user"]["fullName"]

        resp = await client.get("/api/admin/timings")
        kinds = {t["kind"] for t in resp.json()["items"]}
        assert "buyer.checkout" in kinds


class TestPagesAndHealth:

    @pytest.mark.asyncio
    async def test_pages_render(self, client):
        for path in ("/", "/login", "/register?role=farmer",
                     "/forgot-password", "/farmer", "/buyer", "/admin/login"):
            resp = await client.get(path)
            assert resp.status_code == 200, path
            assert "Darcho" in resp.text

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["database"] == "sqlite"

    @pytest.mark.asyncio
    async def test_unknown_route_uses_error_shape(self, client):
        resp = await client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert resp.json()["success"] is False
