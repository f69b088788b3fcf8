"""HTTP tests for the customer, order, order-item and manual lookups."""

from datetime import date

import pytest


@pytest.fixture
def orders(store):
    store.add_customer(1, "Alice Smith", phone="010-1234-0001", email="alice@example.com")
    store.add_order(1001, customer_id=1, total_amount=59.8)
    store.add_order(2001, customer_id=1, status="shipping", total_amount=12.5)
    return store


# === Customers ===

async def test_get_customer(client, orders):
    r = await client.get("/customers/1")

    assert r.status_code == 200
    assert r.json()["name"] == "Alice Smith"
    assert r.json()["email"] == "alice@example.com"


async def test_unknown_customer_is_404(client):
    r = await client.get("/customers/77")

    assert r.status_code == 404
    assert r.json()["error"]["details"] == {"customer_id": 77}


async def test_non_numeric_customer_id_is_400(client):
    r = await client.get("/customers/abc")

    assert r.status_code == 400


# === Orders ===

async def test_get_order_and_status(client, orders):
    order = (await client.get("/orders/1001")).json()
    status = (await client.get("/orders/2001/status")).json()

    assert order["customer_id"] == 1
    assert order["total_amount"] == 59.8
    assert order["status"] == "preparing"
    assert status == {"order_id": 2001, "status": "shipping"}


async def test_update_order_status(client, orders):
    r = await client.patch("/orders/1001", json={"status": " Delivered "})

    assert r.status_code == 200
    assert r.json() == {"order_id": 1001, "status": "delivered"}
    assert orders.orders[1001].status == "delivered"


@pytest.mark.parametrize("body", [{}, {"status": ""}, {"status": "lost"}])
async def test_invalid_order_status_is_400(client, orders, body):
    r = await client.patch("/orders/1001", json=body)

    assert r.status_code == 400
    assert orders.orders[1001].status == "preparing"


async def test_update_unknown_order_is_404(client):
    r = await client.patch("/orders/5", json={"status": "shipping"})

    assert r.status_code == 404


async def test_delete_order_removes_its_items(client, orders):
    await client.post("/order-items/1001", json={"product_id": 7, "quantity": 1, "unit_price": 9.9})

    r = await client.delete("/orders/1001")

    assert r.json() == {"order_id": 1001, "deleted": True}
    assert (await client.get("/orders/1001")).status_code == 404
    assert (await client.get("/order-items/1001")).status_code == 404
    assert (await client.delete("/orders/1001")).status_code == 404


# === Order items ===

async def test_add_same_product_merges_quantity(client, orders):
    first = await client.post("/order-items/1001", json={"product_id": 7, "quantity": 1, "unit_price": 9.9})
    second = await client.post("/order-items/1001", json={"product_id": 7, "quantity": 2, "unit_price": 8.5})
    await client.post("/order-items/1001", json={"product_id": 3, "quantity": 1, "unit_price": 0})

    assert first.status_code == 201
    assert second.json()["order_item_id"] == first.json()["order_item_id"]
    assert second.json()["quantity"] == 3
    assert second.json()["unit_price"] == 8.5
    items = (await client.get("/order-items/1001")).json()
    assert [(i["product_id"], i["quantity"]) for i in items] == [(7, 3), (3, 1)]


@pytest.mark.parametrize(
    "body",
    [
        {"product_id": 0, "quantity": 1, "unit_price": 1},
        {"product_id": 7, "quantity": 0, "unit_price": 1},
        {"product_id": 7, "quantity": 1, "unit_price": -1},
        {"product_id": 7, "quantity": 1},
    ],
)
async def test_invalid_order_item_is_400(client, orders, body):
    r = await client.post("/order-items/1001", json=body)

    assert r.status_code == 400
    assert orders.order_items[1001] == []


async def test_order_items_of_unknown_order_are_404(client):
    listed = await client.get("/order-items/9")
    added = await client.post("/order-items/9", json={"product_id": 7, "quantity": 1, "unit_price": 1})

    assert listed.status_code == 404
    assert added.status_code == 404


async def test_update_order_item_quantity(client, orders):
    await client.post("/order-items/1001", json={"product_id": 7, "quantity": 1, "unit_price": 9.9})

    r = await client.patch("/order-items/1001", json={"product_id": 7, "quantity": 5})
    missing = await client.patch("/order-items/1001", json={"product_id": 8, "quantity": 5})

    assert r.json()["quantity"] == 5
    assert r.json()["unit_price"] == 9.9
    assert missing.status_code == 404


async def test_remove_order_item(client, orders):
    await client.post("/order-items/1001", json={"product_id": 7, "quantity": 1, "unit_price": 9.9})

    r = await client.request("DELETE", "/order-items/1001", json={"product_id": 7})
    again = await client.request("DELETE", "/order-items/1001", json={"product_id": 7})

    assert r.json() == {"deleted": True, "order_id": 1001, "product_id": 7}
    assert again.status_code == 404
    assert (await client.get("/order-items/1001")).json() == []


# === Manuals ===

@pytest.fixture
def manuals(store):
    store.add_manual(1, "Refund policy", edited_at=date(2024, 3, 1), category_id=2)
    store.add_manual(2, "Delivery delays", edited_at=date(2024, 5, 1), category_id=1)
    store.add_manual(3, "Partial REFUND handling", edited_at=date(2024, 4, 1), category_id=2)
    store.add_manual(4, "100%_guarantee", edited_at=date(2024, 1, 1))
    return store


async def test_list_manuals_newest_edit_first(client, manuals):
    r = await client.get("/manuals")

    body = r.json()
    assert [m["manual_id"] for m in body["data"]] == [2, 3, 1, 4]
    assert body["data"][0]["edited_at"] == "2024-05-01"
    assert body["meta"] == {"page": 1, "limit": 20, "total": 4}


async def test_list_manuals_filters_title_case_insensitively(client, manuals):
    r = await client.get("/manuals", params={"q": "  refund "})

    assert [m["manual_id"] for m in r.json()["data"]] == [3, 1]
    assert r.json()["meta"]["total"] == 2


async def test_list_manuals_pages(client, manuals):
    r = await client.get("/manuals", params={"page": 2, "limit": 3})

    assert [m["manual_id"] for m in r.json()["data"]] == [4]
    assert r.json()["meta"] == {"page": 2, "limit": 3, "total": 4}


async def test_list_manuals_clamps_paging(client, manuals):
    r = await client.get("/manuals", params={"page": 0, "limit": 500})

    assert r.json()["meta"] == {"page": 1, "limit": 100, "total": 4}


async def test_get_manual(client, manuals):
    found = await client.get("/manuals/3")
    missing = await client.get("/manuals/30")

    assert found.json()["title"] == "Partial REFUND handling"
    assert missing.status_code == 404
