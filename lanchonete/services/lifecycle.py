"""
Order / Table Lifecycle

Owns every state transition that touches both an order and its table:

1. Order creation      -> order CONFIRMADO, table OCUPADA (one transaction)
2. Adding products     -> appended to the table's active order, or to a
                          given order (customers only before the kitchen)
3. Payment             -> order FINALIZADO + paid, table stays OCUPADA
                          under the acting staff member (one transaction)
4. Receive / cancel    -> order status only
5. Table clear         -> LIVRE, unassigned; refused while kitchen work
                          (CONFIRMADO / PREPARANDO) is in flight
6. Status check and reconcile of a table against its active orders

Payment does not free the table and neither do status updates or
cancellation; only an explicit clear (or a reconcile that finds no
active order) does.

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
import logging
from collections import Counter
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lanchonete.core.exceptions import (
    BusinessRuleError,
    LanchoneteError,
    NotFoundError,
    PermissionDeniedError,
)
from lanchonete.core.security import UserRole, has_min_role
from lanchonete.models import (
    CLOSED_STATUSES,
    IN_FLIGHT_STATUSES,
    DeliveryType,
    DiningTable,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    Product,
    ProductAddOn,
    TableStatus,
    User,
    utcnow,
)
from lanchonete.schemas import OrderCreate, OrderItemIn

logger = logging.getLogger(__name__)

CLEAR_BLOCKED_MESSAGE = "Não é possível limpar a mesa. Há pedidos em preparo/ativos na mesa."
VALID_PAYMENT_METHODS = {m.value for m in PaymentMethod}
VALID_STATUSES = {s.value for s in OrderStatus}
CUSTOMER_EDITABLE_STATUSES = (OrderStatus.PENDENTE, OrderStatus.CONFIRMADO)


class OrderLifecycle:
    """Order and table transitions bound to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # LOADERS
    # =========================================================================

    async def get_order(self, order_id: int) -> Order:
        """Order with items and products loaded; NotFoundError when missing."""
        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Pedido não encontrado")
        return order

    async def get_table(self, table_id: int) -> DiningTable:
        table = await self.db.get(DiningTable, table_id)
        if not table:
            raise NotFoundError("Mesa não encontrada")
        return table

    async def active_orders(self, table_id: int) -> list[Order]:
        """Orders still keeping the table busy, newest first."""
        result = await self.db.execute(
            select(Order)
            .where(Order.table_id == table_id, Order.status.not_in(CLOSED_STATUSES))
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def _addon_links(self, product_id: int) -> dict[int, ProductAddOn]:
        result = await self.db.execute(select(ProductAddOn).where(ProductAddOn.product_id == product_id))
        return {link.addon_id: link for link in result.scalars().all()}

    async def _addon_price(self, product: Product, addon_ids: Sequence[int]) -> float:
        """
        Price of the add-ons chosen for one unit of ``product``.

        Every add-on must be linked to the product, available and within
        its ``max_quantity``; required add-ons must be present.
        """
        links = await self._addon_links(product.id)
        chosen = Counter(addon_ids)

        extra = 0.0
        for addon_id, count in chosen.items():
            link = links.get(addon_id)
            if link is None or not link.addon.is_available:
                raise BusinessRuleError(f"Adicional {addon_id} não está disponível para {product.name}")
            if count > link.addon.max_quantity:
                raise BusinessRuleError(
                    f"Adicional {link.addon.name} permite no máximo {link.addon.max_quantity} por item"
                )
            extra += link.addon.price * count

        missing = [link.addon.name for link in links.values() if link.is_required and link.addon_id not in chosen]
        if missing:
            raise BusinessRuleError(f"{product.name} exige o adicional: {', '.join(missing)}")
        return extra

    async def _priced_items(self, items: Sequence[OrderItemIn]) -> tuple[list[OrderItem], float]:
        """Build order lines priced from the catalogue, add-ons included."""
        lines = []
        total = 0.0
        for item in items:
            product = await self.db.get(Product, item.product_id)
            if not product:
                raise BusinessRuleError(f"Produto {item.product_id} não encontrado")
            if not product.is_available:
                raise BusinessRuleError(f"Produto {product.name} não está disponível")

            unit_price = round(product.price + await self._addon_price(product, item.addon_ids), 2)
            line = OrderItem(
                product_id=product.id,
                quantity=item.quantity,
                price=unit_price,
                notes=item.notes,
                customizations=json.dumps({"addon_ids": item.addon_ids}) if item.addon_ids else None,
            )
            lines.append(line)
            total += unit_price * item.quantity
        return lines, round(total, 2)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_order(self, user: User, payload: OrderCreate) -> Order:
        """
        Create a CONFIRMADO order; when it targets a table, occupy the table
        and assign it to the creator in the same transaction.
        """
        if payload.delivery_type == DeliveryType.DELIVERY and not payload.delivery_address:
            raise BusinessRuleError("Endereço de entrega é obrigatório para delivery")

        table = None
        if payload.table_id is not None:
            table = await self.get_table(payload.table_id)

        lines, total = await self._priced_items(payload.items)

        order = Order(
            user_id=user.id,
            table_id=payload.table_id,
            status=OrderStatus.CONFIRMADO,
            delivery_type=payload.delivery_type,
            delivery_address=payload.delivery_address,
            notes=payload.notes,
            payment_method=payload.payment_method.value if payload.payment_method else None,
            total=total,
            items=lines,
        )

        try:
            self.db.add(order)
            if table is not None:
                table.status = TableStatus.OCUPADA
                table.assigned_to = user.id
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"📝 Order #{order.id} created by user #{user.id} "
            f"(table={payload.table_id}, total={total:.2f})"
        )
        return await self.get_order(order.id)

    # =========================================================================
    # ADD PRODUCTS
    # =========================================================================

    async def add_products_to_table_order(self, table_id: int, products: Sequence[OrderItemIn]) -> Order:
        """
        Append products to the active order of an occupied table.

        Raises:
            NotFoundError: table missing
            BusinessRuleError: table not occupied, no active order, or a
                product missing / unavailable
        """
        table = await self.get_table(table_id)
        if table.status != TableStatus.OCUPADA:
            raise BusinessRuleError("Mesa não está ocupada")

        active = await self.active_orders(table_id)
        if not active:
            raise BusinessRuleError("Não há pedido ativo nesta mesa")

        order = await self.get_order(active[0].id)
        lines, added = await self._priced_items(products)

        try:
            order.items.extend(lines)
            order.total = round(order.total + added, 2)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"🛒 {len(lines)} product line(s) added to order #{order.id} (table {table.number})")
        return await self.get_order(order.id)

    async def add_products(self, order_id: int, products: Sequence[OrderItemIn]) -> Order:
        """
        Resolve the order's table and delegate to
        ``add_products_to_table_order``. Any failure of that routine is
        reported as a 400 carrying its message unchanged.
        """
        order = await self.db.get(Order, order_id)
        if not order or order.table_id is None:
            raise NotFoundError("Pedido não encontrado ou sem mesa associada")

        try:
            return await self.add_products_to_table_order(order.table_id, products)
        except LanchoneteError as e:
            raise BusinessRuleError(e.message) from e

    async def add_items(self, order_id: int, items: Sequence[OrderItemIn], user: User) -> Order:
        """
        Append lines to an order and recompute its total from all lines.

        Staff and above may extend any order that is not closed; customers
        only their own orders, and only before the kitchen starts.

        Raises:
            NotFoundError: order missing
            PermissionDeniedError: a customer touching someone else's order
            BusinessRuleError: order status does not allow new items, or a
                product / add-on is invalid
        """
        order = await self.get_order(order_id)

        if has_min_role(user.role, UserRole.STAFF):
            if order.is_paid or order.status in CLOSED_STATUSES:
                raise BusinessRuleError("Não é possível adicionar itens a um pedido finalizado ou cancelado")
        else:
            if order.user_id != user.id:
                raise PermissionDeniedError("Acesso negado: você só pode modificar seus próprios pedidos")
            if order.status not in CUSTOMER_EDITABLE_STATUSES:
                raise BusinessRuleError("Não é possível adicionar itens a um pedido em preparo ou pronto")

        lines, _ = await self._priced_items(items)

        try:
            order.items.extend(lines)
            order.total = round(sum(line.price * line.quantity for line in order.items), 2)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"🛒 {len(lines)} item(s) added to order #{order.id} by user #{user.id}")
        return await self.get_order(order.id)

    # =========================================================================
    # PAYMENT
    # =========================================================================

    def _occupy_table(self, table: DiningTable, staff_user_id: int) -> None:
        table.status = TableStatus.OCUPADA
        table.assigned_to = staff_user_id

    async def process_payment(
        self,
        order_id: int,
        method: str,
        staff_user_id: int,
        amount: Optional[float] = None,
    ) -> Order:
        """
        Finalize an order as paid.

        The order becomes FINALIZADO with payment metadata stamped. When it
        sits on a table, the table is (re)marked OCUPADA under the acting
        staff member. Both writes commit together or not at all.

        Args:
            order_id: Order to settle
            method: One of the PaymentMethod values
            staff_user_id: Staff member processing the payment
            amount: Charged amount; defaults to ``order.total`` unchanged

        Returns:
            The updated order
        """
        order = await self.get_order(order_id)

        if order.is_paid or order.status == OrderStatus.FINALIZADO:
            raise BusinessRuleError("Pedido já foi pago")
        if order.status == OrderStatus.CANCELADO:
            raise BusinessRuleError("Pedido cancelado não pode ser pago")
        if method not in VALID_PAYMENT_METHODS:
            raise BusinessRuleError("Método de pagamento inválido")
        if amount is not None and amount <= 0:
            raise BusinessRuleError("Valor total inválido")

        charged = order.total if amount is None else amount

        table = None
        if order.table_id is not None:
            table = await self.db.get(DiningTable, order.table_id)

        try:
            order.status = OrderStatus.FINALIZADO
            order.is_paid = True
            order.payment_method = method
            order.payment_amount = charged
            order.payment_processed_at = utcnow()
            if table is not None:
                self._occupy_table(table, staff_user_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error(f"❌ Payment of order #{order_id} rolled back")
            raise

        logger.info(f"💳 Order #{order_id} paid: {charged:.2f} via {method} (staff #{staff_user_id})")
        return await self.get_order(order_id)

    # =========================================================================
    # STATUS CHANGES
    # =========================================================================

    async def update_order(
        self,
        order: Order,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> tuple[Order, bool]:
        """
        Change status and/or payment method. Never touches the table.

        Returns:
            (updated order, True when the order just became PRONTO)
        """
        if not status and payment_method is None:
            raise BusinessRuleError("Pelo menos um campo deve ser fornecido para atualização")
        if status and status not in VALID_STATUSES:
            raise BusinessRuleError(f"Status inválido: {status}")
        if payment_method and payment_method not in VALID_PAYMENT_METHODS:
            raise BusinessRuleError(f"Método de pagamento inválido: {payment_method}")

        previous = order.status
        if status:
            order.status = OrderStatus(status)
        if payment_method:
            order.payment_method = payment_method
        await self.db.commit()

        became_ready = order.status == OrderStatus.PRONTO and previous != OrderStatus.PRONTO
        logger.info(f"🔄 Order #{order.id}: {previous.value} -> {order.status.value}")
        return await self.get_order(order.id), became_ready

    async def receive_order(self, order_id: int) -> Order:
        order = await self.get_order(order_id)
        if order.status == OrderStatus.ENTREGUE or order.received_at is not None:
            raise BusinessRuleError("Pedido já foi recebido")
        if order.status == OrderStatus.CANCELADO:
            raise BusinessRuleError("Pedido cancelado não pode ser recebido")

        if order.status != OrderStatus.FINALIZADO:
            order.status = OrderStatus.ENTREGUE
        order.received_at = utcnow()
        await self.db.commit()

        logger.info(f"📦 Order #{order_id} received")
        return await self.get_order(order_id)

    async def cancel_order(self, order_id: int) -> Order:
        order = await self.get_order(order_id)
        if order.status == OrderStatus.CANCELADO:
            raise BusinessRuleError("Pedido já está cancelado")
        if order.is_paid or order.status == OrderStatus.FINALIZADO:
            raise BusinessRuleError("Pedido já foi pago ou finalizado e não pode ser cancelado")

        order.status = OrderStatus.CANCELADO
        await self.db.commit()

        logger.info(f"❌ Order #{order_id} cancelled")
        return await self.get_order(order_id)

    # =========================================================================
    # TABLES
    # =========================================================================

    async def ensure_clearable(self, table: DiningTable) -> None:
        """Refuse to free a table while any of its orders is CONFIRMADO or PREPARANDO."""
        in_flight = (await self.db.execute(
            select(func.count(Order.id)).where(
                Order.table_id == table.id,
                Order.status.in_(IN_FLIGHT_STATUSES),
            )
        )).scalar() or 0

        if in_flight:
            logger.warning(f"🚫 Table {table.number} not freed: {in_flight} order(s) in the kitchen")
            raise BusinessRuleError(CLEAR_BLOCKED_MESSAGE)

    async def clear_table(self, table_id: int) -> DiningTable:
        """
        Reset a table to LIVRE with no assignee.

        Raises:
            NotFoundError: table missing
            BusinessRuleError: some order of the table is CONFIRMADO or
                PREPARANDO; the table is left untouched
        """
        table = await self.get_table(table_id)
        await self.ensure_clearable(table)

        table.status = TableStatus.LIVRE
        table.assigned_to = None
        await self.db.commit()

        logger.info(f"🧹 Table {table.number} cleared")
        return table

    async def check_table_status(self, table_id: int) -> dict[str, Any]:
        """Compare the stored table status with what its orders imply."""
        table = await self.get_table(table_id)
        active = await self.active_orders(table_id)

        should_be_occupied = bool(active)
        status_matches = (
            (should_be_occupied and table.status == TableStatus.OCUPADA)
            or (not should_be_occupied and table.status == TableStatus.LIVRE)
        )
        return {
            "table": table,
            "active_orders": active,
            "should_be_occupied": should_be_occupied,
            "status_matches": status_matches,
        }

    async def reconcile_table(self, table_id: int) -> DiningTable:
        """
        Align the table with its active orders: OCUPADA under the owner of
        the newest active order, or LIVRE when there is none.
        """
        table = await self.get_table(table_id)
        active = await self.active_orders(table_id)

        if active:
            table.status = TableStatus.OCUPADA
            table.assigned_to = active[0].user_id
        else:
            table.status = TableStatus.LIVRE
            table.assigned_to = None
        await self.db.commit()

        logger.info(f"🔧 Table {table.number} reconciled -> {table.status.value}")
        return table
