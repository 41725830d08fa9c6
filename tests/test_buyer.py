"""
Tests for the /api/buyer catalog, cart, favorites, profile and dashboard.
Checkout lives in test_checkout.py.
"""
import pytest

from conftest import PASSWORD


class TestCatalog:

    @pytest.mark.asyncio
    async def test_public_listing(self, client, farmer, add_product):
        await add_product(farmer, name="Guji Natural", price=9.0,
                          category="natural", origin_region="Guji",
                          cuppingScore=86.0)
        await add_product(farmer, name="Sidamo Washed", price=11.0,
                          category="washed", origin_region="Sidama",
                          cuppingScore=88.0)
        await add_product(farmer, name="Empty", quantity=0)

        resp = await client.get("/api/buyer/products")
        assert resp.status_code == 200
        body = resp.json()
        names = {p["name"] for p in body["data"]}
        assert names == {"Guji Natural", "Sidamo Washed"}
        assert body["pagination"]["total"] == 2
        first = body["data"][0]
        assert first["farmer"]["user"]["fullName"] == farmer["user"]["fullName"]

    @pytest.mark.asyncio
    async def test_filters(self, client, farmer, add_product):
        await add_product(farmer, name="Guji Natural", price=9.0,
                          category="natural", origin_region="Guji")
        await add_product(farmer, name="Sidamo Washed", price=11.0,
                          category="washed", origin_region="Sidama")

        resp = await client.get("/api/buyer/products?category=natural")
        assert [p["name"] for p in resp.json()["data"]] == ["Guji Natural"]
        resp = await client.get("/api/buyer/products?region=Sidama")
        assert [p["name"] for p in resp.json()["data"]] == ["Sidamo Washed"]
        resp = await client.get("/api/buyer/products?minPrice=10")
        assert [p["name"] for p in resp.json()["data"]] == ["Sidamo Washed"]
        resp = await client.get("/api/buyer/products?maxPrice=10")
        assert [p["name"] for p in resp.json()["data"]] == ["Guji Natural"]

    @pytest.mark.asyncio
    async def test_search_matches_farmer_name(self, client, signup, add_product):
        grower = await signup("farmer", fullName="Tadesse Worku")
        await add_product(grower, name="Plain Beans")
        resp = await client.get("/api/buyer/products?search=tadesse")
        assert [p["name"] for p in resp.json()["data"]] == ["Plain Beans"]
        resp = await client.get("/api/buyer/products?search=nothing-like-this")
        assert resp.json()["data"] == []

    @pytest.mark.asyncio
    async def test_search_wildcards_are_literal(self, client, farmer, add_product):
        await add_product(farmer, name="100% Arabica")
        await add_product(farmer, name="Plain Beans")
        resp = await client.get("/api/buyer/products", params={"search": "%"})
        assert [p["name"] for p in resp.json()["data"]] == ["100% Arabica"]
        resp = await client.get("/api/buyer/products", params={"search": "_"})
        assert resp.json()["data"] == []

    @pytest.mark.asyncio
    async def test_sort_and_pagination(self, client, farmer, add_product):
        for i, price in enumerate([5.0, 15.0, 10.0]):
            await add_product(farmer, name=f"Lot {i}", price=price)

        resp = await client.get(
            "/api/buyer/products?sortBy=pricePerUnit&sortOrder=asc&limit=2"
        )
        body = resp.json()
        assert [p["pricePerUnit"] for p in body["data"]] == [5.0, 10.0]
        pg = body["pagination"]
        assert pg == {"page": 1, "limit": 2, "total": 3, "totalPages": 2,
                      "hasNextPage": True, "hasPrevPage": False}

        resp = await client.get(
            "/api/buyer/products?sortBy=pricePerUnit&sortOrder=asc&limit=2&page=2"
        )
        body = resp.json()
        assert [p["pricePerUnit"] for p in body["data"]] == [15.0]
        assert body["pagination"]["hasPrevPage"] is True

    @pytest.mark.asyncio
    async def test_unknown_sort_falls_back(self, client, farmer, add_product):
        await add_product(farmer)
        resp = await client.get("/api/buyer/products?sortBy=password_hash")
        assert resp.status_code == 200
        assert len(resp.json()["data"]) == 1

    @pytest.mark.asyncio
    async def test_product_detail(self, client, farmer, add_product):
        p = await add_product(farmer)
        resp = await client.get(f"/api/buyer/products/{p['id']}")
        assert resp.status_code == 200
        assert resp.json()["data"]["farmer"]["farmName"] == "Highland Farm"
        resp = await client.get("/api/buyer/products/999999")
        assert resp.status_code == 404


class TestCart:

    @pytest.mark.asyncio
    async def test_add_and_merge(self, client, farmer, buyer, add_product):
        p = await add_product(farmer)
        for qty in (3, 2):
            resp = await client.post(
                "/api/buyer/cart", json={"productId": p["id"], "quantity": qty},
                headers=buyer["headers"],
            )
            assert resp.status_code == 201
        resp = await client.get("/api/buyer/cart", headers=buyer["headers"])
        body = resp.json()
        assert body["totalItems"] == 1
        assert body["data"][0]["quantity"] == 5
        assert body["data"][0]["orderNumber"].startswith("CART-")
        assert body["data"][0]["farmerName"] == farmer["user"]["fullName"]
        assert body["totalPrice"] == 50.0

    @pytest.mark.asyncio
    async def test_add_validation(self, client, farmer, buyer, add_product):
        p = await add_product(farmer, quantity=4)
        h = buyer["headers"]
        resp = await client.post("/api/buyer/cart", json={"productId": p["id"]},
                                 headers=h)
        assert resp.status_code == 400
        resp = await client.post("/api/buyer/cart",
                                 json={"productId": p["id"], "quantity": -1},
                                 headers=h)
        assert resp.status_code == 400
        resp = await client.post("/api/buyer/cart",
                                 json={"productId": 424242, "quantity": 1},
                                 headers=h)
        assert resp.status_code == 404
        resp = await client.post("/api/buyer/cart",
                                 json={"productId": p["id"], "quantity": 5},
                                 headers=h)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Insufficient stock available"

    @pytest.mark.asyncio
    async def test_update_remove_clear(self, client, farmer, buyer, add_product):
        p1 = await add_product(farmer, name="A")
        p2 = await add_product(farmer, name="B")
        h = buyer["headers"]
        r1 = await client.post("/api/buyer/cart",
                               json={"productId": p1["id"], "quantity": 1},
                               headers=h)
        await client.post("/api/buyer/cart",
                          json={"productId": p2["id"], "quantity": 1}, headers=h)
        line = r1.json()["data"]

        resp = await client.put(f"/api/buyer/cart/{line['id']}",
                                json={"quantity": 7}, headers=h)
        assert resp.status_code == 200
        assert resp.json()["data"]["totalPrice"] == 70.0

        resp = await client.put(f"/api/buyer/cart/{line['id']}",
                                json={"quantity": 1000}, headers=h)
        assert resp.status_code == 400

        resp = await client.delete(f"/api/buyer/cart/{line['id']}", headers=h)
        assert resp.status_code == 200
        resp = await client.delete(f"/api/buyer/cart/{line['id']}", headers=h)
        assert resp.status_code == 404

        resp = await client.delete("/api/buyer/cart", headers=h)
        assert resp.json()["removed"] == 1
        resp = await client.get("/api/buyer/cart", headers=h)
        assert resp.json()["totalItems"] == 0

    @pytest.mark.asyncio
    async def test_cannot_edit_someone_elses_line(
        self, client, signup, farmer, buyer, add_product
    ):
        p = await add_product(farmer)
        resp = await client.post("/api/buyer/cart",
                                 json={"productId": p["id"], "quantity": 1},
                                 headers=buyer["headers"])
        line_id = resp.json()["data"]["id"]
        other = await signup("buyer")
        resp = await client.put(f"/api/buyer/cart/{line_id}",
                                json={"quantity": 2}, headers=other["headers"])
        assert resp.status_code == 404


class TestFavorites:

    @pytest.mark.asyncio
    async def test_add_list_remove(self, client, farmer, buyer, add_product):
        p = await add_product(farmer)
        h = buyer["headers"]
        resp = await client.post(f"/api/buyer/favorites/{p['id']}", headers=h)
        assert resp.status_code == 201
        assert resp.json()["data"]["orderNumber"].startswith("FAV-")

        resp = await client.post(f"/api/buyer/favorites/{p['id']}", headers=h)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Product already in favorites"

        resp = await client.get("/api/buyer/favorites", headers=h)
        body = resp.json()
        assert body["pagination"]["total"] == 1
        assert body["data"][0]["product"]["id"] == p["id"]

        resp = await client.delete(f"/api/buyer/favorites/{p['id']}", headers=h)
        assert resp.status_code == 200
        resp = await client.delete(f"/api/buyer/favorites/{p['id']}", headers=h)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_product(self, client, buyer):
        resp = await client.post("/api/buyer/favorites/9999",
                                 headers=buyer["headers"])
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_favorites_are_not_orders(self, client, farmer, buyer, add_product):
        p = await add_product(farmer)
        await client.post(f"/api/buyer/favorites/{p['id']}", headers=buyer["headers"])
        resp = await client.get("/api/buyer/orders", headers=buyer["headers"])
        assert resp.json()["data"] == []
        resp = await client.get("/api/farmer/orders", headers=farmer["headers"])
        assert resp.json()["orders"] == []


class TestProfileAndDashboard:

    @pytest.mark.asyncio
    async def test_profile_update(self, client, buyer):
        h = buyer["headers"]
        resp = await client.get("/api/buyer/profile", headers=h)
        assert resp.json()["data"]["companyName"] == "Bean Roasters"
        resp = await client.put(
            "/api/buyer/profile",
            json={"companyName": "Bean Co", "preferredRegions": ["Guji"],
                  "fullName": "New Name"},
            headers=h,
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["companyName"] == "Bean Co"
        assert data["preferredRegions"] == ["Guji"]
        assert data["fullName"] == "New Name"

    @pytest.mark.asyncio
    async def test_profile_phone_taken(self, client, signup, buyer):
        other = await signup("buyer")
        resp = await client.put(
            "/api/buyer/profile", json={"phone": other["payload"]["phone"]},
            headers=buyer["headers"],
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_profile_email_taken_in_other_case(self, client, signup, buyer):
        other = await signup("farmer")
        resp = await client.put(
            "/api/buyer/profile",
            json={"email": other["payload"]["email"].upper()},
            headers=buyer["headers"],
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Phone or email already in use"
        # the owner can still sign in by email
        resp = await client.post("/api/auth/login", json={
            "email": other["payload"]["email"], "password": PASSWORD,
        })
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == other["user"]["id"]

    @pytest.mark.asyncio
    async def test_profile_email_is_lower_cased(self, client, buyer):
        resp = await client.put(
            "/api/buyer/profile", json={"email": "New.Address@Example.com"},
            headers=buyer["headers"],
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == "new.address@example.com"
        resp = await client.post("/api/auth/login", json={
            "email": "NEW.ADDRESS@example.com", "password": PASSWORD,
        })
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_profile_keeps_own_email(self, client, buyer):
        resp = await client.put(
            "/api/buyer/profile",
            json={"email": buyer["payload"]["email"].upper(),
                  "phone": buyer["payload"]["phone"]},
            headers=buyer["headers"],
        )
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_profile_preferred_regions(self, client, buyer):
        h = buyer["headers"]
        resp = await client.put(
            "/api/buyer/profile", json={"preferredRegions": "Guji"}, headers=h
        )
        assert resp.json()["data"]["preferredRegions"] == ["Guji"]
        resp = await client.put(
            "/api/buyer/profile", json={"preferredRegions": 3}, headers=h
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_dashboard_keeps_farmer_of_deleted_product(
        self, client, farmer, buyer, add_product
    ):
        h = buyer["headers"]
        p = await add_product(farmer, price=10.0)
        await client.post("/api/buyer/cart",
                          json={"productId": p["id"], "quantity": 3}, headers=h)
        await client.post("/api/buyer/orders", json={}, headers=h)
        resp = await client.delete(
            f"/api/farmer/products?id={p['id']}", headers=farmer["headers"]
        )
        assert resp.status_code == 200

        resp = await client.get("/api/buyer/dashboard", headers=h)
        data = resp.json()["data"]
        assert data["stats"]["totalOrders"] == 1
        assert len(data["topFarmers"]) == 1
        top = data["topFarmers"][0]
        assert top["farmName"] == "Highland Farm"
        assert top["orderCount"] == 1
        assert top["totalSpent"] == 30.0

    @pytest.mark.asyncio
    async def test_dashboard(self, client, farmer, buyer, add_product):
        h = buyer["headers"]
        p1 = await add_product(farmer, name="Ordered", category="washed",
                               cuppingScore=84.0)
        await add_product(farmer, name="Better", category="washed",
                          cuppingScore=90.0)
        await add_product(farmer, name="Other", category="natural",
                          cuppingScore=95.0)
        await client.post("/api/buyer/cart",
                          json={"productId": p1["id"], "quantity": 2}, headers=h)
        await client.post("/api/buyer/orders", json={}, headers=h)
        await client.post(f"/api/buyer/favorites/{p1['id']}", headers=h)
        await client.post("/api/buyer/cart",
                          json={"productId": p1["id"], "quantity": 1}, headers=h)

        resp = await client.get("/api/buyer/dashboard", headers=h)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["stats"] == {
            "totalOrders": 1, "cartItems": 1, "favorites": 1,
            "activeChats": 0, "totalSpent": 20.0,
        }
        assert len(data["recentOrders"]) == 1
        assert len(data["monthlyData"]) == 6
        assert data["monthlyData"][-1]["total"] == 20.0
        assert data["topFarmers"][0]["farmName"] == "Highland Farm"
        assert data["topFarmers"][0]["orderCount"] == 1
        # only washed lots, best cupping score first
        assert [p["name"] for p in data["recommendedProducts"]] == [
            "Better", "Ordered",
        ]
        assert data["buyerProfile"]["companyName"] == "Bean Roasters"
