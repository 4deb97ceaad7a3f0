"""Inventory endpoints: stock movements, alert levels and stock notifications."""

import pytest
from sqlalchemy import select

from lanchonete.core.security import UserRole
from lanchonete.models import Notification, NotificationPriority, Product
from lanchonete.services.inventory import stock_alert

from .conftest import auth_headers


@pytest.fixture
async def stock(seed, menu):
    """Tracked products at every alert level (min 5, max 50)."""
    category_id = menu["category"].id
    fries, juice, water, sauce = await seed(
        Product(name="Batata Frita", price=12.0, category_id=category_id,
                track_stock=True, stock_quantity=10, min_stock_level=5, max_stock_level=50),
        Product(name="Suco", price=8.0, category_id=category_id,
                track_stock=True, stock_quantity=3, min_stock_level=5, max_stock_level=50),
        Product(name="Água", price=4.0, category_id=category_id,
                track_stock=True, stock_quantity=0, min_stock_level=5, max_stock_level=50),
        Product(name="Ketchup", price=1.0, category_id=category_id,
                track_stock=True, stock_quantity=80, min_stock_level=5, max_stock_level=50),
    )
    return {"fries": fries, "juice": juice, "water": water, "sauce": sauce}


async def _move(client, user, product_id, type, quantity, reason="Conferência"):
    return await client.post(
        "/api/admin/inventory",
        json={"product_id": product_id, "type": type, "quantity": quantity, "reason": reason},
        headers=auth_headers(user),
    )


def test_stock_alert_levels():
    def product(quantity, track=True):
        return Product(track_stock=track, stock_quantity=quantity, min_stock_level=5, max_stock_level=50)

    assert stock_alert(product(0)) == {"type": "out_of_stock", "message": "Produto esgotado"}
    assert stock_alert(product(5)) == {"type": "low_stock", "message": "Estoque baixo (5/5)"}
    assert stock_alert(product(51)) == {"type": "over_stock", "message": "Estoque alto (51/50)"}
    assert stock_alert(product(6)) is None
    assert stock_alert(product(0, track=False)) is None


# =============================================================================
# MOVEMENTS
# =============================================================================

async def test_movement_types(client, admin, stock):
    fries = stock["fries"].id

    response = await _move(client, admin, fries, "ENTRADA", 5, reason="Compra")
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["product"]["stock_quantity"] == 15
    assert data["movement"]["quantity"] == 5
    assert (data["movement"]["previous_stock"], data["movement"]["new_stock"]) == (10, 15)
    assert data["movement"]["user_id"] == admin.id

    # Never below zero; the movement records what actually left
    response = await _move(client, admin, fries, "SAIDA", 20, reason="Perda")
    data = response.json()["data"]
    assert data["product"]["stock_quantity"] == 0
    assert data["movement"]["quantity"] == 15

    response = await _move(client, admin, fries, "AJUSTE", 8)
    data = response.json()["data"]
    assert data["product"]["stock_quantity"] == 8
    assert data["movement"]["quantity"] == 8
    assert (data["movement"]["previous_stock"], data["movement"]["new_stock"]) == (0, 8)


async def test_invalid_movements(client, admin, stock):
    response = await _move(client, admin, stock["fries"].id, "ENTRADA", 0)
    assert response.status_code == 400
    assert response.json()["error"] == "Quantidade deve ser maior que zero"

    response = await _move(client, admin, 999, "ENTRADA", 1)
    assert response.status_code == 404
    assert response.json()["error"] == "Produto não encontrado"

    response = await _move(client, admin, stock["fries"].id, "DESCARTE", 1)
    assert response.status_code == 422


async def test_inventory_permissions(client, staff, make_user, stock):
    manager = await make_user(UserRole.MANAGER)

    response = await client.get("/api/admin/inventory", headers=auth_headers(staff))
    assert response.status_code == 403

    response = await client.get("/api/admin/inventory", headers=auth_headers(manager))
    assert response.status_code == 200

    response = await _move(client, manager, stock["fries"].id, "ENTRADA", 1)
    assert response.status_code == 403


async def test_movement_history(client, admin, stock):
    fries, juice = stock["fries"].id, stock["juice"].id
    await _move(client, admin, fries, "ENTRADA", 5)
    await _move(client, admin, juice, "ENTRADA", 2)
    await _move(client, admin, fries, "SAIDA", 1)

    headers = auth_headers(admin)
    response = await client.get("/api/admin/inventory/movements", headers=headers)
    data = response.json()["data"]
    assert data["pagination"]["total"] == 3
    assert [m["type"] for m in data["items"]] == ["SAIDA", "ENTRADA", "ENTRADA"]

    response = await client.get(
        "/api/admin/inventory/movements",
        params={"product_id": fries, "type": "ENTRADA"},
        headers=headers,
    )
    items = response.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["product_id"] == fries


# =============================================================================
# LISTING & ALERTS
# =============================================================================

async def test_inventory_listing(client, admin, stock):
    headers = auth_headers(admin)
    response = await client.get(
        "/api/admin/inventory",
        params={"track_stock": "true", "sort_by": "stock_quantity"},
        headers=headers,
    )
    items = response.json()["data"]["items"]
    assert [i["name"] for i in items] == ["Água", "Suco", "Batata Frita", "Ketchup"]
    assert items[0]["category_name"] == "Lanches"
    assert items[0]["stock_alert"]["type"] == "out_of_stock"
    assert items[2]["stock_alert"] is None
    assert items[2]["sales_last_30_days"] == 0

    response = await client.get("/api/admin/inventory", params={"low_stock": "true"}, headers=headers)
    assert {i["name"] for i in response.json()["data"]["items"]} == {"Água", "Suco"}


async def test_alert_buckets(client, admin, stock):
    response = await client.get("/api/admin/inventory/alerts", headers=auth_headers(admin))
    assert response.status_code == 200
    data = response.json()["data"]
    assert [p["name"] for p in data["alerts"]["out_of_stock"]] == ["Água"]
    assert [p["name"] for p in data["alerts"]["low_stock"]] == ["Suco"]
    assert [p["name"] for p in data["alerts"]["over_stock"]] == ["Ketchup"]
    assert data["stats"] == {
        "total_products": 4,
        "out_of_stock_count": 1,
        "low_stock_count": 1,
        "over_stock_count": 1,
        "total_alerts": 3,
    }


async def test_low_stock_notifies_once_per_level(client, admin, stock, db, channel):
    fries = stock["fries"].id

    await _move(client, admin, fries, "SAIDA", 6)   # 10 -> 4: low
    await _move(client, admin, fries, "SAIDA", 2)   # still low
    await _move(client, admin, fries, "SAIDA", 2)   # out

    notifications = (await db.execute(select(Notification).order_by(Notification.id))).scalars().all()
    assert [n.title for n in notifications] == ["Estoque Baixo", "Produto Esgotado"]
    assert notifications[0].message == "Batata Frita com estoque baixo (4/5)"
    assert notifications[0].priority == NotificationPriority.NORMAL
    assert notifications[1].priority == NotificationPriority.HIGH

    # Only the HIGH one reaches the outbound channel
    assert [m["channel"] for m in channel.sent] == ["sms", "email"]
    assert "Produto Esgotado" in channel.sent[0]["body"]
