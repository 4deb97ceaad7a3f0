"""Order endpoints end to end: table flow, payment, scoping, caching."""

from lanchonete.core.cache import CacheDuration
from lanchonete.core.security import UserRole
from lanchonete.models import Order, OrderStatus
from lanchonete.services.lifecycle import CLEAR_BLOCKED_MESSAGE

from .conftest import auth_headers


async def _create(client, user, menu, table=None, quantity=2):
    body = {"items": [{"product_id": menu["burger"].id, "quantity": quantity}]}
    if table is not None:
        body["table_id"] = table.id
    response = await client.post("/api/orders", json=body, headers=auth_headers(user))
    assert response.status_code == 201, response.text
    return response.json()["data"]


# =============================================================================
# TABLE FLOW
# =============================================================================

async def test_full_table_flow(client, staff, menu, table, channel):
    headers = auth_headers(staff)
    order = await _create(client, staff, menu, table)
    assert order["status"] == "CONFIRMADO"
    assert order["total"] == 40.0

    response = await client.get(f"/api/tables/{table.id}", headers=headers)
    assert response.json()["data"]["status"] == "OCUPADA"
    assert response.json()["data"]["assigned_to"] == staff.id

    # Kitchen working: clear refused
    for status in ("CONFIRMADO", "PREPARANDO"):
        if status != "CONFIRMADO":
            await client.put(f"/api/orders/{order['id']}", json={"status": status}, headers=headers)
        response = await client.post(f"/api/tables/{table.id}/clear", headers=headers)
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"] == CLEAR_BLOCKED_MESSAGE

    response = await client.put(f"/api/orders/{order['id']}", json={"status": "PRONTO"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "PRONTO"

    # Payment without amount charges the total verbatim
    response = await client.post(f"/api/orders/{order['id']}/payment", json={}, headers=headers)
    assert response.status_code == 200
    paid = response.json()["data"]
    assert paid["status"] == "FINALIZADO"
    assert paid["is_paid"] is True
    assert paid["payment_amount"] == 40.0
    assert paid["payment_method"] == "DINHEIRO"

    # Payment does not free the table
    response = await client.get(f"/api/tables/{table.id}", headers=headers)
    assert response.json()["data"]["status"] == "OCUPADA"

    response = await client.post(f"/api/tables/{table.id}/clear", headers=headers)
    assert response.status_code == 200
    cleared = response.json()["data"]
    assert cleared["status"] == "LIVRE"
    assert cleared["assigned_to"] is None

    # New order and ready order went out to the manager
    assert any(m["channel"] == "sms" and "Novo Pedido" in m["body"] for m in channel.sent)
    assert any(m["channel"] == "sms" and "Pedido Pronto" in m["body"] for m in channel.sent)


async def test_payment_body_variants(client, staff, menu):
    headers = auth_headers(staff)

    first = await _create(client, staff, menu)
    response = await client.post(
        f"/api/orders/{first['id']}/payment",
        json={"paymentSession": {"payments": [{"method": "CARTAO", "amount": 40}]}, "paymentMethod": "PIX"},
        headers=headers,
    )
    assert response.json()["data"]["payment_method"] == "CARTAO"

    second = await _create(client, staff, menu)
    response = await client.post(
        f"/api/orders/{second['id']}/payment",
        json={"paymentMethod": "pix", "totalPaid": 50},
        headers=headers,
    )
    data = response.json()["data"]
    assert data["payment_method"] == "PIX"
    assert data["payment_amount"] == 50.0

    response = await client.post(f"/api/orders/{second['id']}/payment", json={}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Pedido já foi pago"

    third = await _create(client, staff, menu)
    response = await client.post(
        f"/api/orders/{third['id']}/payment", json={"paymentMethod": "CHEQUE"}, headers=headers
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Método de pagamento inválido"


async def test_payment_creates_notification(client, staff, menu):
    headers = auth_headers(staff)
    order = await _create(client, staff, menu)
    await client.post(f"/api/orders/{order['id']}/payment", json={"paymentMethod": "PIX"}, headers=headers)

    response = await client.get("/api/notifications", params={"type": "PAYMENT"}, headers=headers)
    items = response.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["message"] == f"Pagamento de R$ 40.00 via PIX recebido para o pedido #{order['id']}"


async def test_add_products_endpoint(client, staff, menu, table):
    headers = auth_headers(staff)
    order = await _create(client, staff, menu, table, quantity=1)

    response = await client.post(
        f"/api/orders/{order['id']}/add-products",
        json={"products": [{"product_id": menu["soda"].id, "quantity": 2}]},
        headers=headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 31.0
    assert {i["product"]["name"] for i in data["items"]} == {"X-Burger", "Refrigerante"}

    response = await client.post(
        f"/api/orders/{order['id']}/add-products",
        json={"products": [{"product_id": menu["off"].id}]},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Produto X-Especial não está disponível"

    takeaway = await _create(client, staff, menu)
    response = await client.post(
        f"/api/orders/{takeaway['id']}/add-products",
        json={"products": [{"product_id": menu["soda"].id}]},
        headers=headers,
    )
    assert response.status_code == 404


async def test_receive_and_cancel_endpoints(client, staff, menu, table):
    headers = auth_headers(staff)
    order = await _create(client, staff, menu, table)

    response = await client.post(f"/api/orders/{order['id']}/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "CANCELADO"

    # Cancelling does not free the table
    response = await client.get(f"/api/tables/{table.id}", headers=headers)
    assert response.json()["data"]["status"] == "OCUPADA"

    other = await _create(client, staff, menu)
    response = await client.put(f"/api/orders/{other['id']}/receive", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "ENTREGUE"
    assert response.json()["data"]["received_at"] is not None


async def test_invalid_status_is_a_400(client, staff, menu):
    order = await _create(client, staff, menu)
    response = await client.put(
        f"/api/orders/{order['id']}", json={"status": "VOANDO"}, headers=auth_headers(staff)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Status inválido: VOANDO"


async def test_validation_errors_use_envelope(client, staff):
    response = await client.post("/api/orders", json={"items": []}, headers=auth_headers(staff))
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["error"].startswith("Dados inválidos")


# =============================================================================
# ACCESS
# =============================================================================

async def test_requires_authentication(client):
    response = await client.get("/api/orders")
    assert response.status_code == 401
    assert response.json()["error"] == "Token não fornecido"

    response = await client.get("/api/orders", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.json()["error"] == "Token inválido"


async def test_customer_scoping(client, make_user, staff, menu):
    alice = await make_user(UserRole.CUSTOMER)
    bob = await make_user(UserRole.CUSTOMER)

    mine = await _create(client, alice, menu)
    theirs = await _create(client, bob, menu)
    await _create(client, staff, menu)

    response = await client.get("/api/orders", headers=auth_headers(alice))
    ids = [o["id"] for o in response.json()["data"]["items"]]
    assert ids == [mine["id"]]

    response = await client.get(f"/api/orders/{theirs['id']}", headers=auth_headers(alice))
    assert response.status_code == 403

    response = await client.put(
        f"/api/orders/{theirs['id']}", json={"status": "CANCELADO"}, headers=auth_headers(alice)
    )
    assert response.status_code == 403

    # Customers cannot settle payments
    response = await client.post(f"/api/orders/{mine['id']}/payment", json={}, headers=auth_headers(alice))
    assert response.status_code == 403
    assert response.json()["error"] == "Acesso negado"


async def test_manager_sees_staff_orders_only(client, make_user, staff, customer, menu):
    manager = await make_user(UserRole.MANAGER)
    staff_order = await _create(client, staff, menu)
    await _create(client, customer, menu)

    response = await client.get("/api/orders", headers=auth_headers(manager))
    ids = [o["id"] for o in response.json()["data"]["items"]]
    assert ids == [staff_order["id"]]

    response = await client.get("/api/orders", headers=auth_headers(staff))
    assert response.json()["data"]["pagination"]["total"] == 2


async def test_list_filters(client, staff, menu, table):
    headers = auth_headers(staff)
    on_table = await _create(client, staff, menu, table)
    takeaway = await _create(client, staff, menu)
    await client.post(f"/api/orders/{takeaway['id']}/payment", json={}, headers=headers)

    response = await client.get("/api/orders", params={"table_id": table.id}, headers=headers)
    assert [o["id"] for o in response.json()["data"]["items"]] == [on_table["id"]]

    response = await client.get("/api/orders", params={"status": "finalizado,cancelado"}, headers=headers)
    assert [o["id"] for o in response.json()["data"]["items"]] == [takeaway["id"]]

    response = await client.get("/api/orders", params={"is_paid": "false"}, headers=headers)
    assert [o["id"] for o in response.json()["data"]["items"]] == [on_table["id"]]

    response = await client.get("/api/orders", params={"status": "NADA"}, headers=headers)
    assert response.status_code == 400


# =============================================================================
# CACHING
# =============================================================================

async def test_listing_is_cached_until_stale(client, staff, menu, seed, clock):
    headers = auth_headers(staff)
    await _create(client, staff, menu)

    response = await client.get("/api/orders", headers=headers)
    assert response.json()["data"]["pagination"]["total"] == 1

    # Written behind the API's back: no invalidation happens
    await seed(Order(user_id=staff.id, status=OrderStatus.CONFIRMADO, total=5.0))

    response = await client.get("/api/orders", headers=headers)
    assert response.json()["data"]["pagination"]["total"] == 1

    clock.advance(CacheDuration.SHORT)
    response = await client.get("/api/orders", headers=headers)
    assert response.json()["data"]["pagination"]["total"] == 2


async def test_writes_invalidate_listing(client, staff, menu):
    headers = auth_headers(staff)
    await _create(client, staff, menu)
    response = await client.get("/api/orders", headers=headers)
    assert response.json()["data"]["pagination"]["total"] == 1

    await _create(client, staff, menu)
    response = await client.get("/api/orders", headers=headers)
    assert response.json()["data"]["pagination"]["total"] == 2


async def test_pending_summary(client, staff, menu):
    headers = auth_headers(staff)
    first = await _create(client, staff, menu)
    await _create(client, staff, menu)
    await client.post(f"/api/orders/{first['id']}/cancel", headers=headers)

    response = await client.get("/api/orders/summary", headers=headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["pending_count"] == 1
    assert data["first_order_at"] is not None


# =============================================================================
# EDITING ITEMS
# =============================================================================

async def test_customer_adds_items_before_kitchen(client, make_user, customer, staff, menu):
    order = await _create(client, customer, menu, quantity=1)
    items = {"items": [{"product_id": menu["soda"].id, "quantity": 2}]}

    response = await client.put(f"/api/orders/{order['id']}/items", json=items, headers=auth_headers(customer))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 31.0
    assert len(data["items"]) == 2

    stranger = await make_user(UserRole.CUSTOMER)
    response = await client.put(f"/api/orders/{order['id']}/items", json=items, headers=auth_headers(stranger))
    assert response.status_code == 403

    await client.put(f"/api/orders/{order['id']}", json={"status": "PREPARANDO"}, headers=auth_headers(staff))
    response = await client.put(f"/api/orders/{order['id']}/items", json=items, headers=auth_headers(customer))
    assert response.status_code == 400
    assert response.json()["error"] == "Não é possível adicionar itens a um pedido em preparo ou pronto"

    # Staff can still extend an order in the kitchen
    response = await client.put(f"/api/orders/{order['id']}/items", json=items, headers=auth_headers(staff))
    assert response.status_code == 200
    assert response.json()["data"]["total"] == 42.0


async def test_closed_orders_take_no_items(client, staff, menu):
    headers = auth_headers(staff)
    order = await _create(client, staff, menu, quantity=1)
    await client.post(f"/api/orders/{order['id']}/payment", json={}, headers=headers)

    response = await client.put(
        f"/api/orders/{order['id']}/items",
        json={"items": [{"product_id": menu["soda"].id}]},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Não é possível adicionar itens a um pedido finalizado ou cancelado"

    other = await _create(client, staff, menu, quantity=1)
    response = await client.put(
        f"/api/orders/{other['id']}/items",
        json={"items": [{"product_id": menu["off"].id}]},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Produto X-Especial não está disponível"

    response = await client.put(
        "/api/orders/999/items",
        json={"items": [{"product_id": menu["soda"].id}]},
        headers=headers,
    )
    assert response.status_code == 404
