"""Order / table transitions driven directly through OrderLifecycle."""

import pytest

from lanchonete.core.exceptions import BusinessRuleError, NotFoundError
from lanchonete.core.security import UserRole
from lanchonete.models import (
    Category,
    DeliveryType,
    DiningTable,
    Order,
    OrderStatus,
    Product,
    TableStatus,
    User,
)
from lanchonete.schemas import OrderCreate, OrderItemIn
from lanchonete.services.lifecycle import CLEAR_BLOCKED_MESSAGE, OrderLifecycle


@pytest.fixture
async def world(db):
    """Staff member, waiter who opened the table, a table and two products."""
    waiter = User(email="garcom@lanchonete.com", name="Garcom", password_hash="x", role=UserRole.STAFF)
    cashier = User(email="caixa@lanchonete.com", name="Caixa", password_hash="x", role=UserRole.STAFF)
    category = Category(name="Lanches")
    table = DiningTable(number=7, capacity=4)
    db.add_all([waiter, cashier, category, table])
    await db.commit()

    burger = Product(name="X-Burger", price=20.0, category_id=category.id)
    juice = Product(name="Suco", price=7.25, category_id=category.id)
    hidden = Product(name="X-Tudo", price=35.0, category_id=category.id, is_available=False)
    db.add_all([burger, juice, hidden])
    await db.commit()

    return {
        "lifecycle": OrderLifecycle(db),
        "waiter": waiter,
        "cashier": cashier,
        "table": table,
        "burger": burger,
        "juice": juice,
        "hidden": hidden,
    }


async def _order_on_table(world, quantity=2):
    payload = OrderCreate(
        table_id=world["table"].id,
        items=[OrderItemIn(product_id=world["burger"].id, quantity=quantity)],
    )
    return await world["lifecycle"].create_order(world["waiter"], payload)


async def _seed_order(db, world, status):
    order = Order(
        user_id=world["waiter"].id,
        table_id=world["table"].id,
        status=status,
        total=10.0,
    )
    world["table"].status = TableStatus.OCUPADA
    world["table"].assigned_to = world["waiter"].id
    db.add(order)
    await db.commit()
    return order


# =============================================================================
# CLEAR
# =============================================================================

async def test_clear_table_without_orders(world):
    table = await world["lifecycle"].clear_table(world["table"].id)
    assert table.status == TableStatus.LIVRE
    assert table.assigned_to is None


@pytest.mark.parametrize("status", [
    OrderStatus.PENDENTE,
    OrderStatus.PRONTO,
    OrderStatus.ENTREGUE,
    OrderStatus.FINALIZADO,
    OrderStatus.CANCELADO,
])
async def test_clear_succeeds_without_kitchen_work(db, world, status):
    await _seed_order(db, world, status)

    table = await world["lifecycle"].clear_table(world["table"].id)

    assert table.status == TableStatus.LIVRE
    assert table.assigned_to is None


@pytest.mark.parametrize("status", [OrderStatus.CONFIRMADO, OrderStatus.PREPARANDO])
async def test_clear_refused_while_kitchen_is_working(db, world, status):
    await _seed_order(db, world, status)
    await _seed_order(db, world, OrderStatus.FINALIZADO)

    with pytest.raises(BusinessRuleError) as exc:
        await world["lifecycle"].clear_table(world["table"].id)

    assert exc.value.message == CLEAR_BLOCKED_MESSAGE
    assert exc.value.status_code == 400

    await db.refresh(world["table"])
    assert world["table"].status == TableStatus.OCUPADA
    assert world["table"].assigned_to == world["waiter"].id


async def test_clear_missing_table(world):
    with pytest.raises(NotFoundError):
        await world["lifecycle"].clear_table(999)


# =============================================================================
# CREATE
# =============================================================================

async def test_create_order_occupies_table(world):
    order = await _order_on_table(world, quantity=3)

    assert order.status == OrderStatus.CONFIRMADO
    assert order.total == 60.0
    assert [i.quantity for i in order.items] == [3]
    assert order.items[0].price == 20.0
    assert world["table"].status == TableStatus.OCUPADA
    assert world["table"].assigned_to == world["waiter"].id


async def test_create_order_rejects_unavailable_product(world):
    payload = OrderCreate(items=[OrderItemIn(product_id=world["hidden"].id)])
    with pytest.raises(BusinessRuleError, match="X-Tudo não está disponível"):
        await world["lifecycle"].create_order(world["waiter"], payload)


async def test_create_order_rejects_unknown_product(world):
    payload = OrderCreate(items=[OrderItemIn(product_id=4242)])
    with pytest.raises(BusinessRuleError, match="Produto 4242 não encontrado"):
        await world["lifecycle"].create_order(world["waiter"], payload)


async def test_delivery_requires_address(world):
    payload = OrderCreate(
        delivery_type=DeliveryType.DELIVERY,
        items=[OrderItemIn(product_id=world["burger"].id)],
    )
    with pytest.raises(BusinessRuleError, match="Endereço"):
        await world["lifecycle"].create_order(world["waiter"], payload)


def test_quantity_is_sanitized():
    assert OrderItemIn(product_id=1, quantity="3").quantity == 3
    assert OrderItemIn(product_id=1, quantity=0).quantity == 1
    assert OrderItemIn(product_id=1, quantity="abc").quantity == 1
    assert OrderItemIn(product_id=1, quantity=-4).quantity == 1


# =============================================================================
# PAYMENT
# =============================================================================

async def test_payment_without_amount_charges_order_total(world):
    order = await _order_on_table(world)

    paid = await world["lifecycle"].process_payment(order.id, "PIX", world["cashier"].id)

    assert paid.status == OrderStatus.FINALIZADO
    assert paid.is_paid is True
    assert paid.payment_amount == order.total == 40.0
    assert paid.payment_method == "PIX"
    assert paid.payment_processed_at is not None


async def test_payment_keeps_table_occupied_under_cashier(world):
    order = await _order_on_table(world)

    await world["lifecycle"].process_payment(order.id, "DINHEIRO", world["cashier"].id)

    table = await world["lifecycle"].get_table(world["table"].id)
    assert table.status == TableStatus.OCUPADA
    assert table.assigned_to == world["cashier"].id


async def test_payment_with_explicit_amount(world):
    order = await _order_on_table(world)
    paid = await world["lifecycle"].process_payment(order.id, "CARTAO", world["cashier"].id, amount=45.0)
    assert paid.payment_amount == 45.0
    assert paid.total == 40.0


async def test_payment_rules(db, world):
    order = await _order_on_table(world)
    lifecycle = world["lifecycle"]

    with pytest.raises(BusinessRuleError, match="Método de pagamento inválido"):
        await lifecycle.process_payment(order.id, "BITCOIN", world["cashier"].id)
    with pytest.raises(BusinessRuleError, match="Valor total inválido"):
        await lifecycle.process_payment(order.id, "PIX", world["cashier"].id, amount=0)

    await lifecycle.process_payment(order.id, "PIX", world["cashier"].id)
    with pytest.raises(BusinessRuleError, match="Pedido já foi pago"):
        await lifecycle.process_payment(order.id, "PIX", world["cashier"].id)

    cancelled = await _seed_order(db, world, OrderStatus.CANCELADO)
    with pytest.raises(BusinessRuleError, match="cancelado"):
        await lifecycle.process_payment(cancelled.id, "PIX", world["cashier"].id)

    with pytest.raises(NotFoundError):
        await lifecycle.process_payment(999, "PIX", world["cashier"].id)


async def test_payment_is_atomic(world, monkeypatch):
    order = await _order_on_table(world)
    lifecycle = world["lifecycle"]
    # The rollback expires every loaded instance
    order_id, table_id = order.id, world["table"].id
    waiter_id, cashier_id = world["waiter"].id, world["cashier"].id

    def broken_table_write(table, staff_user_id):
        raise RuntimeError("table write failed")

    monkeypatch.setattr(lifecycle, "_occupy_table", broken_table_write)

    with pytest.raises(RuntimeError):
        await lifecycle.process_payment(order_id, "PIX", cashier_id)

    reloaded = await lifecycle.get_order(order_id)
    assert reloaded.status == OrderStatus.CONFIRMADO
    assert reloaded.is_paid is False
    assert reloaded.payment_amount is None

    table = await lifecycle.get_table(table_id)
    assert table.assigned_to == waiter_id


# =============================================================================
# ADD PRODUCTS
# =============================================================================

async def test_add_products_appends_to_active_order(world):
    order = await _order_on_table(world, quantity=1)

    updated = await world["lifecycle"].add_products(
        order.id, [OrderItemIn(product_id=world["juice"].id, quantity=2)]
    )

    assert updated.id == order.id
    assert len(updated.items) == 2
    assert updated.total == 34.5


async def test_add_products_errors_are_reported_as_400(world):
    order = await _order_on_table(world)
    lifecycle = world["lifecycle"]

    with pytest.raises(BusinessRuleError, match="X-Tudo não está disponível"):
        await lifecycle.add_products(order.id, [OrderItemIn(product_id=world["hidden"].id)])

    # Paid: the table stays OCUPADA but has no active order
    await lifecycle.process_payment(order.id, "PIX", world["cashier"].id)
    with pytest.raises(BusinessRuleError, match="Não há pedido ativo nesta mesa"):
        await lifecycle.add_products(order.id, [OrderItemIn(product_id=world["juice"].id)])

    await lifecycle.clear_table(world["table"].id)
    with pytest.raises(BusinessRuleError, match="Mesa não está ocupada"):
        await lifecycle.add_products(order.id, [OrderItemIn(product_id=world["juice"].id)])


async def test_add_products_needs_an_order_with_table(world):
    payload = OrderCreate(items=[OrderItemIn(product_id=world["burger"].id)])
    takeaway = await world["lifecycle"].create_order(world["waiter"], payload)

    with pytest.raises(NotFoundError, match="sem mesa associada"):
        await world["lifecycle"].add_products(takeaway.id, [OrderItemIn(product_id=world["juice"].id)])


# =============================================================================
# STATUS CHANGES
# =============================================================================

async def test_update_to_ready_reports_transition_and_keeps_table(world):
    order = await _order_on_table(world)
    lifecycle = world["lifecycle"]

    updated, became_ready = await lifecycle.update_order(order, status="PRONTO")
    assert updated.status == OrderStatus.PRONTO
    assert became_ready is True

    _, again = await lifecycle.update_order(updated, status="PRONTO")
    assert again is False

    table = await lifecycle.get_table(world["table"].id)
    assert table.status == TableStatus.OCUPADA


async def test_update_validation(world):
    order = await _order_on_table(world)
    lifecycle = world["lifecycle"]

    with pytest.raises(BusinessRuleError, match="Pelo menos um campo"):
        await lifecycle.update_order(order)
    with pytest.raises(BusinessRuleError, match="Status inválido"):
        await lifecycle.update_order(order, status="VOANDO")
    with pytest.raises(BusinessRuleError, match="Método de pagamento inválido"):
        await lifecycle.update_order(order, payment_method="CHEQUE")


async def test_receive_and_cancel(world):
    lifecycle = world["lifecycle"]
    order = await _order_on_table(world)

    received = await lifecycle.receive_order(order.id)
    assert received.status == OrderStatus.ENTREGUE
    assert received.received_at is not None
    with pytest.raises(BusinessRuleError, match="já foi recebido"):
        await lifecycle.receive_order(order.id)

    other = await _order_on_table(world)
    cancelled = await lifecycle.cancel_order(other.id)
    assert cancelled.status == OrderStatus.CANCELADO
    with pytest.raises(BusinessRuleError, match="já está cancelado"):
        await lifecycle.cancel_order(other.id)

    paid = await _order_on_table(world)
    await lifecycle.process_payment(paid.id, "PIX", world["cashier"].id)
    with pytest.raises(BusinessRuleError, match="não pode ser cancelado"):
        await lifecycle.cancel_order(paid.id)


# =============================================================================
# STATUS CHECK & RECONCILE
# =============================================================================

async def test_check_and_reconcile(db, world):
    lifecycle = world["lifecycle"]
    table = world["table"]

    check = await lifecycle.check_table_status(table.id)
    assert check["should_be_occupied"] is False
    assert check["status_matches"] is True

    await _seed_order(db, world, OrderStatus.PRONTO)
    table.status = TableStatus.LIVRE
    table.assigned_to = None
    await db.commit()

    check = await lifecycle.check_table_status(table.id)
    assert check["should_be_occupied"] is True
    assert check["status_matches"] is False
    assert len(check["active_orders"]) == 1

    reconciled = await lifecycle.reconcile_table(table.id)
    assert reconciled.status == TableStatus.OCUPADA
    assert reconciled.assigned_to == world["waiter"].id
