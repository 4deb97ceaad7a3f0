"""Settings, sales report and export endpoints."""

from types import SimpleNamespace

import pytest

from lanchonete.core.security import UserRole
from lanchonete.routers import admin as admin_router

from .conftest import auth_headers


async def test_public_settings(client):
    response = await client.get("/api/settings/public")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["restaurant_name"] == "Lanchonete Next"
    assert "PIX" in data["payment_methods"]


async def test_settings_upsert_and_grouping(client, admin):
    headers = auth_headers(admin)
    response = await client.post("/api/admin/settings", json={"settings": [
        {"key": "opening_hour", "value": "18:00", "category": "horario"},
        {"key": "max_tables", "value": 12},
        {"key": "happy_hour", "value": {"start": "18:00", "discount": 0.1}, "category": "promo"},
    ]}, headers=headers)
    assert response.json()["data"] == {"created": 3, "updated": 0}

    response = await client.post("/api/admin/settings", json={"settings": [
        {"key": "max_tables", "value": 15},
    ]}, headers=headers)
    assert response.json()["data"] == {"created": 0, "updated": 1}

    response = await client.get("/api/admin/settings", headers=headers)
    assert response.json()["data"] == {
        "general": {"max_tables": 15},
        "horario": {"opening_hour": "18:00"},
        "promo": {"happy_hour": {"start": "18:00", "discount": 0.1}},
    }


async def test_settings_require_admin(client, make_user):
    manager = await make_user(UserRole.MANAGER)
    response = await client.get("/api/admin/settings", headers=auth_headers(manager))
    assert response.status_code == 403


async def test_sales_report(client, make_user, staff, menu):
    manager = await make_user(UserRole.MANAGER)
    await client.post(
        "/api/orders",
        json={"items": [{"product_id": menu["burger"].id, "quantity": 2}]},
        headers=auth_headers(staff),
    )

    response = await client.get("/api/admin/reports", params={"period": "day"}, headers=auth_headers(manager))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["period"] == "day"
    assert data["total_orders"] == 1
    assert data["total_revenue"] == 40.0
    assert data["top_products"][0]["name"] == "X-Burger"

    response = await client.get(
        "/api/admin/reports",
        params={"period": "month", "reference": "2024-02-10T10:00:00Z"},
        headers=auth_headers(manager),
    )
    data = response.json()["data"]
    assert data["start"] == "2024-02-01T00:00:00+00:00"
    assert data["end"] == "2024-03-01T00:00:00+00:00"
    assert data["total_orders"] == 0


async def test_sales_report_access(client, staff, admin):
    response = await client.get("/api/admin/reports", headers=auth_headers(staff))
    assert response.status_code == 403

    response = await client.get("/api/admin/reports", params={"period": "week"}, headers=auth_headers(admin))
    assert response.status_code == 422


async def test_export_is_queued(client, admin, monkeypatch):
    calls = []

    def delay(*args):
        calls.append(args)
        return SimpleNamespace(id="task-123")

    monkeypatch.setattr(admin_router, "export_orders_report", SimpleNamespace(delay=delay))

    response = await client.post(
        "/api/admin/reports/export",
        json={"period": "month", "reference": "2024-05-10T12:00:00+00:00"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 202
    assert response.json()["data"] == {"task_id": "task-123", "period": "month"}
    assert calls == [("month", "2024-05-10T12:00:00+00:00")]


@pytest.mark.parametrize("role,expected", [(UserRole.CUSTOMER, 403), (UserRole.STAFF, 403)])
async def test_export_access(client, make_user, role, expected):
    user = await make_user(role)
    response = await client.post("/api/admin/reports/export", json={}, headers=auth_headers(user))
    assert response.status_code == expected
