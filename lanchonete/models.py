"""
SQLAlchemy Database Models

Entities of the ordering system:
- Users with roles (customer, staff, manager, admin)
- Menu categories, products, add-ons and stock movements
- Dining tables with status and assigned staff member
- Orders with line items, payment data and customer reviews
- In-app notifications
- Admin key/value settings

Author: Khalil Bannouri
Version: 1.0.0
"""

import enum
import json
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from lanchonete.core.security import UserRole
from lanchonete.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDENTE = "PENDENTE"
    CONFIRMADO = "CONFIRMADO"
    PREPARANDO = "PREPARANDO"
    PRONTO = "PRONTO"
    ENTREGUE = "ENTREGUE"
    FINALIZADO = "FINALIZADO"
    CANCELADO = "CANCELADO"


# Kitchen work in flight: a table holding one of these cannot be cleared
IN_FLIGHT_STATUSES = (OrderStatus.CONFIRMADO, OrderStatus.PREPARANDO)

# Orders in these states no longer keep a table busy
CLOSED_STATUSES = (OrderStatus.CANCELADO, OrderStatus.ENTREGUE, OrderStatus.FINALIZADO)


class PaymentMethod(str, enum.Enum):
    DINHEIRO = "DINHEIRO"
    CARTAO = "CARTAO"
    PIX = "PIX"
    CARTAO_CREDITO = "CARTAO_CREDITO"
    CARTAO_DEBITO = "CARTAO_DEBITO"
    DIVIDIDO = "DIVIDIDO"


class DeliveryType(str, enum.Enum):
    RETIRADA = "RETIRADA"
    DELIVERY = "DELIVERY"


class TableStatus(str, enum.Enum):
    LIVRE = "LIVRE"
    OCUPADA = "OCUPADA"
    RESERVADA = "RESERVADA"
    MANUTENCAO = "MANUTENCAO"


class NotificationType(str, enum.Enum):
    ORDER = "ORDER"
    PAYMENT = "PAYMENT"
    TABLE = "TABLE"
    USER = "USER"
    SYSTEM = "SYSTEM"


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class MovementType(str, enum.Enum):
    """Stock movement: incoming, outgoing or an absolute recount."""
    ENTRADA = "ENTRADA"
    SAIDA = "SAIDA"
    AJUSTE = "AJUSTE"


# =============================================================================
# USERS
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), default=UserRole.CUSTOMER, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<User #{self.id} - {self.email} - {self.role.value}>"


# =============================================================================
# MENU
# =============================================================================

class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    products = relationship("Product", back_populates="category", passive_deletes=True)

    def __repr__(self):
        return f"<Category #{self.id} - {self.name}>"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    is_available = Column(Boolean, default=True, nullable=False)
    preparation_time = Column(Integer, default=15, nullable=False)  # minutes

    # Stock control applies only when track_stock is set
    track_stock = Column(Boolean, default=False, nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    min_stock_level = Column(Integer, default=5, nullable=False)
    max_stock_level = Column(Integer, default=100, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="products")
    addon_links = relationship(
        "ProductAddOn",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Product #{self.id} - {self.name} - {self.price:.2f}>"


class AddOn(Base):
    """Extra (adicional) that can be ordered with linked products."""
    __tablename__ = "addons"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False, default=0.0)
    max_quantity = Column(Integer, nullable=False, default=1)  # per order line
    is_available = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    product_links = relationship(
        "ProductAddOn",
        back_populates="addon",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<AddOn #{self.id} - {self.name} - {self.price:.2f}>"


class ProductAddOn(Base):
    __tablename__ = "product_addons"
    __table_args__ = (UniqueConstraint("product_id", "addon_id", name="uq_product_addon"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    addon_id = Column(Integer, ForeignKey("addons.id", ondelete="CASCADE"), nullable=False, index=True)
    is_required = Column(Boolean, default=False, nullable=False)

    product = relationship("Product", back_populates="addon_links")
    addon = relationship("AddOn", back_populates="product_links", lazy="joined")


class StockMovement(Base):
    """
    One change of a product's stock. ``quantity`` is the amount moved
    (for AJUSTE, the difference to the previous count); the counts before
    and after are kept alongside.
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    type = Column(Enum(MovementType), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reason = Column(String(200), nullable=False)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    product = relationship("Product")
    user = relationship("User")

    def __repr__(self):
        return f"<StockMovement #{self.id} - {self.type.value} {self.quantity} of product #{self.product_id}>"


# =============================================================================
# TABLES
# =============================================================================

class DiningTable(Base):
    """A numbered table in the dining room."""
    __tablename__ = "tables"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    number = Column(Integer, nullable=False, unique=True)
    capacity = Column(Integer, nullable=False, default=4)
    status = Column(Enum(TableStatus), default=TableStatus.LIVRE, nullable=False, index=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    orders = relationship("Order", back_populates="table", passive_deletes=True)

    def __repr__(self):
        return f"<Table {self.number} - {self.status.value}>"


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """
    Customer or table order.

    Lifecycle: CONFIRMADO -> PREPARANDO -> PRONTO -> ENTREGUE, closed by
    payment (FINALIZADO) or cancellation (CANCELADO).
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True, index=True)

    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.CONFIRMADO,
        nullable=False,
        index=True
    )
    delivery_type = Column(Enum(DeliveryType), default=DeliveryType.RETIRADA, nullable=False)
    delivery_address = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    total = Column(Float, nullable=False, default=0.0)

    # =========================================================================
    # PAYMENT INFO
    # =========================================================================
    payment_method = Column(String(30), nullable=True)
    payment_amount = Column(Float, nullable=True)
    is_paid = Column(Boolean, default=False, nullable=False)
    payment_processed_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    received_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")
    table = relationship("DiningTable", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def __repr__(self):
        return f"<Order #{self.id} - {self.status.value} - {self.total:.2f}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Float, nullable=False)  # unit price at order time, add-ons included
    notes = Column(Text, nullable=True)
    customizations = Column(Text, nullable=True)  # JSON: {"addon_ids": [...]}

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def subtotal(self) -> float:
        return round(self.quantity * self.price, 2)

    @property
    def addon_ids(self) -> list[int]:
        if not self.customizations:
            return []
        return json.loads(self.customizations).get("addon_ids", [])


class OrderReview(Base):
    """Customer rating of a delivered order; one per order."""
    __tablename__ = "order_reviews"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)  # 1..5
    comment = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self):
        return f"<OrderReview order #{self.order_id} - {self.rating}/5>"


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class Notification(Base):
    """In-app notification; ``user_id`` NULL means visible to everyone."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(Enum(NotificationType), nullable=False, index=True)
    priority = Column(
        Enum(NotificationPriority),
        default=NotificationPriority.NORMAL,
        nullable=False
    )
    data = Column(Text, nullable=True)  # JSON payload
    is_read = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Notification #{self.id} - {self.type.value} - {self.title}>"


# =============================================================================
# SETTINGS
# =============================================================================

class Setting(Base):
    """Admin-editable key/value configuration grouped by category."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    key = Column(String(100), nullable=False, unique=True)
    value = Column(Text, nullable=False)
    category = Column(String(50), nullable=False, default="general", index=True)
    description = Column(Text, nullable=True)

    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
