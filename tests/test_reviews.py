"""Order reviews: only the customer, only once, only after delivery."""

from lanchonete.core.security import UserRole

from .conftest import auth_headers


async def _delivered_order(client, customer, menu):
    headers = auth_headers(customer)
    response = await client.post(
        "/api/orders",
        json={"items": [{"product_id": menu["burger"].id}]},
        headers=headers,
    )
    order = response.json()["data"]
    response = await client.put(f"/api/orders/{order['id']}/receive", headers=headers)
    assert response.json()["data"]["status"] == "ENTREGUE"
    return order


async def test_review_after_delivery(client, customer, menu):
    headers = auth_headers(customer)
    response = await client.post(
        "/api/orders",
        json={"items": [{"product_id": menu["soda"].id}]},
        headers=headers,
    )
    pending = response.json()["data"]
    response = await client.post(f"/api/orders/{pending['id']}/review", json={"rating": 4}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Apenas pedidos entregues podem ser avaliados"

    order = await _delivered_order(client, customer, menu)
    response = await client.post(
        f"/api/orders/{order['id']}/review",
        json={"rating": 5, "comment": "  Lanche excelente  "},
        headers=headers,
    )
    assert response.status_code == 201
    review = response.json()["data"]
    assert review["rating"] == 5
    assert review["comment"] == "Lanche excelente"
    assert review["user_id"] == customer.id

    response = await client.post(f"/api/orders/{order['id']}/review", json={"rating": 1}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Este pedido já foi avaliado"


async def test_review_visibility(client, make_user, customer, staff, menu):
    order = await _delivered_order(client, customer, menu)

    response = await client.get(f"/api/orders/{order['id']}/review", headers=auth_headers(customer))
    assert response.status_code == 200
    assert response.json()["data"] is None

    await client.post(f"/api/orders/{order['id']}/review", json={"rating": 3}, headers=auth_headers(customer))

    stranger = await make_user(UserRole.CUSTOMER)
    response = await client.get(f"/api/orders/{order['id']}/review", headers=auth_headers(stranger))
    assert response.status_code == 404
    response = await client.post(
        f"/api/orders/{order['id']}/review", json={"rating": 1}, headers=auth_headers(stranger),
    )
    assert response.status_code == 404

    # Staff can read but not rate
    response = await client.get(f"/api/orders/{order['id']}/review", headers=auth_headers(staff))
    assert response.json()["data"]["rating"] == 3
    response = await client.post(
        f"/api/orders/{order['id']}/review", json={"rating": 5}, headers=auth_headers(staff),
    )
    assert response.status_code == 404


async def test_rating_range(client, customer, menu):
    order = await _delivered_order(client, customer, menu)
    response = await client.post(
        f"/api/orders/{order['id']}/review", json={"rating": 6}, headers=auth_headers(customer),
    )
    assert response.status_code == 422


async def test_report_includes_reviews(client, make_user, customer, menu):
    manager = await make_user(UserRole.MANAGER)
    for rating in (5, 4):
        order = await _delivered_order(client, customer, menu)
        await client.post(
            f"/api/orders/{order['id']}/review", json={"rating": rating}, headers=auth_headers(customer),
        )

    response = await client.get("/api/admin/reports", params={"period": "day"}, headers=auth_headers(manager))
    assert response.json()["data"]["reviews"] == {"reviews": 2, "average_rating": 4.5}
