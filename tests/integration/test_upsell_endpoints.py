"""
HTTP tests for the upsell endpoints.
"""
import pytest
from sqlalchemy import update

from catalog_addon.models import UpsellBundle as UpsellBundleRecord
from catalog_addon.services.upsell_service import UpsellService

BASE = "/api/upsells"


async def create_upsell(client, headers, main, linked, **extra):
    payload = {
        "mainProductId": main.id,
        "linkedProducts": [{"productId": p.id, "order": i} for i, p in enumerate(linked)],
        **extra,
    }
    return await client.post(f"{BASE}/", json=payload, headers=headers)


class TestCalculateDiscount:
    @pytest.mark.asyncio
    async def test_discount_response_shape(self, client, admin_headers, make_product):
        main, a, b = await make_product(), await make_product(), await make_product()
        resp = await create_upsell(
            client, admin_headers, main, [a, b],
            hasDiscount=True, discountType="percentage", discountValue=10,
        )
        assert resp.status_code == 201

        resp = await client.post(f"{BASE}/calculate-discount", json={
            "cartItems": [
                {"productId": a.id, "quantity": 1, "price": 50},
                {"productId": b.id, "quantity": 1, "price": 30},
            ]
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["totalDiscount"] == 8
        assert len(body["applicableDiscounts"]) == 1
        applied = body["applicableDiscounts"][0]
        assert applied["linkedProductsTotal"] == 80
        assert applied["discountAmount"] == 8
        assert applied["linkedProductIds"] == [a.id, b.id]
        assert applied["productCount"] == 2
        assert body["discounts"][0]["productIds"] == [a.id, b.id]
        assert body["discounts"][0]["mainProductId"] == main.id

    @pytest.mark.asyncio
    async def test_empty_cart(self, client):
        resp = await client.post(f"{BASE}/calculate-discount", json={"cartItems": []})

        assert resp.status_code == 200
        assert resp.json() == {"applicableDiscounts": [], "totalDiscount": 0, "discounts": []}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"cartItems": "A,B"}, {"cartItems": {"productId": 1}}])
    async def test_invalid_cart(self, client, payload):
        resp = await client.post(f"{BASE}/calculate-discount", json=payload)

        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_CART"

    @pytest.mark.asyncio
    async def test_oversized_line_ignored(self, client, admin_headers, make_product):
        main, a, b = await make_product(), await make_product(), await make_product()
        await create_upsell(
            client, admin_headers, main, [b],
            hasDiscount=True, discountType="percentage", discountValue=10,
        )

        resp = await client.post(f"{BASE}/calculate-discount", json={
            "cartItems": [
                {"productId": a.id, "quantity": "1e600000", "price": "1e600000"},
                {"productId": b.id, "quantity": 1, "price": 30},
            ]
        })

        assert resp.status_code == 200
        assert resp.json()["totalDiscount"] == 3

    @pytest.mark.asyncio
    async def test_no_auth_required(self, client):
        resp = await client.post(f"{BASE}/calculate-discount", json={"cartItems": [{"foo": 1}]})

        assert resp.status_code == 200


class TestAdminAccess:
    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        resp = await client.get(f"{BASE}/")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_requires_admin(self, client, customer_headers):
        resp = await client.get(f"{BASE}/", headers=customer_headers)
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_rejects_garbage_token(self, client):
        resp = await client.get(f"{BASE}/", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401


class TestUpsellCrud:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client, admin_headers, make_product):
        main = await make_product(title="Camera", price_min="199.99", price_max="249.99")
        a = await make_product(title="Lens Cap")

        resp = await create_upsell(client, admin_headers, main, [a])
        assert resp.status_code == 201
        created = resp.json()
        assert created["mainProduct"]["title"] == "Camera"
        assert created["mainProduct"]["priceRange"] == {"min": 199.99, "max": 249.99}
        assert created["linkedProducts"][0]["product"]["title"] == "Lens Cap"
        assert created["activeLinkedProductsCount"] == 1
        assert created["totalLinkedProductsCount"] == 1
        assert created["hasDiscount"] is False
        assert created["discountType"] == "percentage"
        assert created["discountValue"] == 0
        assert created["createdBy"] == 1

        resp = await client.get(f"{BASE}/{created['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == created["id"]

    @pytest.mark.asyncio
    async def test_get_missing(self, client, admin_headers):
        resp = await client.get(f"{BASE}/999", headers=admin_headers)

        assert resp.status_code == 404
        body = resp.json()
        assert body["code"] == "UPSELL_NOT_FOUND"
        assert body["message"] == "Upsell not found"

    @pytest.mark.asyncio
    async def test_create_errors(self, client, admin_headers, make_product):
        main, a = await make_product(), await make_product()

        resp = await create_upsell(client, admin_headers, main, [main])
        assert resp.status_code == 400
        assert resp.json()["code"] == "SELF_LINK"

        resp = await create_upsell(client, admin_headers, main, [a, a])
        assert resp.status_code == 409

        resp = await create_upsell(client, admin_headers, main, [a], hasDiscount=True, discountType="bogo", discountValue=5)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_DISCOUNT_CONFIG"

        assert (await create_upsell(client, admin_headers, main, [a])).status_code == 201
        resp = await create_upsell(client, admin_headers, main, [a])
        assert resp.status_code == 409
        assert resp.json()["code"] == "DUPLICATE_UPSELL"

    @pytest.mark.asyncio
    async def test_update_disable_discount(self, client, admin_headers, make_product):
        main, a = await make_product(), await make_product()
        created = (await create_upsell(
            client, admin_headers, main, [a],
            hasDiscount=True, discountType="fixed", discountValue=15,
        )).json()
        assert created["discountType"] == "fixed"

        resp = await client.put(f"{BASE}/{created['id']}", json={"hasDiscount": False}, headers=admin_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["hasDiscount"] is False
        assert body["discountType"] == "percentage"
        assert body["discountValue"] == 0
        assert body["version"] == created["version"] + 1

    @pytest.mark.asyncio
    async def test_list_and_delete(self, client, admin_headers, make_product):
        m1, m2, a = await make_product(), await make_product(), await make_product()
        first = (await create_upsell(client, admin_headers, m1, [a])).json()
        await create_upsell(client, admin_headers, m2, [a], isActive=False)

        resp = await client.get(f"{BASE}/", params={"isActive": "true"}, headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["pagination"] == {"page": 1, "limit": 10, "total": 1, "pages": 1}
        assert [item["id"] for item in body["items"]] == [first["id"]]

        resp = await client.delete(f"{BASE}/{first['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = await client.get(f"{BASE}/{first['id']}", headers=admin_headers)
        assert resp.status_code == 404


class TestLinkedProductEndpoints:
    @pytest.mark.asyncio
    async def test_linked_product_lifecycle(self, client, admin_headers, make_product):
        main, a, b = await make_product(), await make_product(), await make_product()
        upsell_id = (await create_upsell(client, admin_headers, main, [a])).json()["id"]
        url = f"{BASE}/{upsell_id}/linked-products"

        resp = await client.post(url, json={"productId": b.id, "order": 2}, headers=admin_headers)
        assert resp.status_code == 200
        assert [l["productId"] for l in resp.json()["linkedProducts"]] == [a.id, b.id]

        resp = await client.post(url, json={"productId": b.id}, headers=admin_headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "DUPLICATE_LINK"

        resp = await client.put(f"{url}/order", json={"productId": b.id, "order": 0}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["linkedProducts"][1]["order"] == 0

        resp = await client.put(f"{url}/toggle", json={"productId": a.id}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["activeLinkedProductsCount"] == 1

        resp = await client.put(f"{url}/toggle", json={"productId": 4242}, headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["message"] == "Linked product not found"

        resp = await client.request("DELETE", url, json={"productId": a.id}, headers=admin_headers)
        assert resp.status_code == 200
        assert [l["productId"] for l in resp.json()["linkedProducts"]] == [b.id]

        # Removing again is a no-op
        resp = await client.request("DELETE", url, json={"productId": a.id}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["totalLinkedProductsCount"] == 1

    @pytest.mark.asyncio
    async def test_add_to_missing_upsell(self, client, admin_headers, make_product):
        a = await make_product()

        resp = await client.post(f"{BASE}/777/linked-products", json={"productId": a.id}, headers=admin_headers)

        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_concurrent_edit_conflict(self, client, admin_headers, make_product, monkeypatch):
        main, a, b = await make_product(), await make_product(), await make_product()
        upsell_id = (await create_upsell(client, admin_headers, main, [a])).json()["id"]

        save = UpsellService._save

        async def save_after_other_writer(db, record, bundle, user_id):
            # Another admin commits between our read and our write
            await db.execute(
                update(UpsellBundleRecord)
                .where(UpsellBundleRecord.id == record.id)
                .values(version=UpsellBundleRecord.version + 1)
            )
            return await save(db, record, bundle, user_id)

        monkeypatch.setattr(UpsellService, "_save", staticmethod(save_after_other_writer))

        resp = await client.post(
            f"{BASE}/{upsell_id}/linked-products", json={"productId": b.id}, headers=admin_headers
        )

        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "CONCURRENT_MODIFICATION"
        assert body["error"] == "concurrent_modification"
        assert body["details"]["bundle_id"] == upsell_id

        monkeypatch.undo()
        resp = await client.get(f"{BASE}/{upsell_id}", headers=admin_headers)
        assert [l["productId"] for l in resp.json()["linkedProducts"]] == [a.id]


class TestLookupEndpoints:
    @pytest.mark.asyncio
    async def test_public_view_filters_entries(self, client, admin_headers, make_product, db):
        main, a, b, c = [await make_product() for _ in range(4)]
        upsell_id = (await create_upsell(client, admin_headers, main, [a, b, c])).json()["id"]
        await client.put(
            f"{BASE}/{upsell_id}/linked-products/toggle", json={"productId": b.id}, headers=admin_headers
        )
        # c is taken off sale after being linked
        c.status = "archived"
        await db.commit()

        resp = await client.get(f"{BASE}/public/main-product/{main.id}")

        assert resp.status_code == 200
        assert [l["productId"] for l in resp.json()["linkedProducts"]] == [a.id]

        admin_view = await client.get(f"{BASE}/main-product/{main.id}", headers=admin_headers)
        assert admin_view.status_code == 200
        assert len(admin_view.json()["linkedProducts"]) == 3

    @pytest.mark.asyncio
    async def test_public_view_missing(self, client):
        resp = await client.get(f"{BASE}/public/main-product/31337")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_by_linked_product(self, client, admin_headers, make_product):
        m1, m2, a = await make_product(), await make_product(), await make_product()
        await create_upsell(client, admin_headers, m1, [a])
        await create_upsell(client, admin_headers, m2, [a])

        resp = await client.get(f"{BASE}/linked-product/{a.id}", headers=admin_headers)

        assert resp.status_code == 200
        assert {u["mainProductId"] for u in resp.json()} == {m1.id, m2.id}

        resp = await client.get(f"{BASE}/linked-product/{m1.id}", headers=admin_headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_search_products(self, client, admin_headers, make_product):
        main = await make_product(title="Tent")
        await make_product(title="Tent Pegs")
        await make_product(title="Tent Lamp", status="draft")

        resp = await client.get(
            f"{BASE}/search/products",
            params={"q": "tent", "excludeId": main.id},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert [p["title"] for p in body["items"]] == ["Tent Pegs"]
        assert body["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["database"] == "connected"
