"""
Pydantic Schemas for Request/Response Validation

Every endpoint answers with the same envelope::

    {"success": true, "data": ..., "message": "..."}

Errors are produced by the global handlers in
``lanchonete.core.exceptions``.

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
from datetime import datetime
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lanchonete.core.security import UserRole, validate_name, validate_password
from lanchonete.models import (
    NotificationPriority,
    NotificationType,
    OrderStatus,
    PaymentMethod,
    TableStatus,
    DeliveryType,
    MovementType,
)

T = TypeVar("T")

EMAIL_PATTERN = r"^[\w\.\+-]+@[\w\.-]+\.\w+$"


# =============================================================================
# ENVELOPE
# =============================================================================

class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class Page(BaseModel, Generic[T]):
    items: List[T]
    pagination: Pagination


def paginate(items: list, total: int, page: int, limit: int) -> dict[str, Any]:
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if limit else 0,
        },
    }


# =============================================================================
# AUTH & USERS
# =============================================================================

def _check_name(v: str) -> str:
    error = validate_name(v)
    if error:
        raise ValueError(error)
    return v.strip()


def _check_password(v: str) -> str:
    error = validate_password(v)
    if error:
        raise ValueError(error)
    return v


class RegisterRequest(BaseModel):
    name: str
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


class RefreshRequest(BaseModel):
    refresh_token: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None


class TokenData(BaseModel):
    user: UserOut
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserCreate(RegisterRequest):
    role: UserRole = UserRole.CUSTOMER


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_name(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_password(v)


# =============================================================================
# MENU
# =============================================================================

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    is_active: bool


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100, examples=["X-Burger"])
    description: Optional[str] = Field(None, max_length=1000)
    price: float = Field(..., gt=0, examples=[22.9])
    category_id: int
    is_available: bool = True
    preparation_time: int = Field(default=15, ge=0, le=240)
    track_stock: bool = False
    stock_quantity: int = Field(default=0, ge=0)
    min_stock_level: int = Field(default=5, ge=0)
    max_stock_level: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def check_stock_levels(self):
        if self.min_stock_level > self.max_stock_level:
            raise ValueError("Estoque mínimo não pode ser maior que o máximo")
        return self


class ProductUpdate(BaseModel):
    """Stock quantity changes only through inventory movements."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[float] = Field(None, gt=0)
    category_id: Optional[int] = None
    is_available: Optional[bool] = None
    preparation_time: Optional[int] = Field(None, ge=0, le=240)
    track_stock: Optional[bool] = None
    min_stock_level: Optional[int] = Field(None, ge=0)
    max_stock_level: Optional[int] = Field(None, ge=1)


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    price: float
    category_id: int
    is_available: bool
    preparation_time: int
    track_stock: bool
    stock_quantity: int
    min_stock_level: int
    max_stock_level: int


# =============================================================================
# ADD-ONS
# =============================================================================

class AddOnCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Bacon extra"])
    description: Optional[str] = Field(None, max_length=500)
    price: float = Field(default=0.0, ge=0)
    max_quantity: int = Field(default=1, ge=1, le=20)
    is_available: bool = True


class AddOnUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    price: Optional[float] = Field(None, ge=0)
    max_quantity: Optional[int] = Field(None, ge=1, le=20)
    is_available: Optional[bool] = None


class AddOnOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    price: float
    max_quantity: int
    is_available: bool


class ProductAddOnLink(BaseModel):
    addon_id: int
    is_required: bool = False


class ProductAddOnOut(AddOnOut):
    """An add-on as offered with one product."""
    product_addon_id: int
    is_required: bool


# =============================================================================
# INVENTORY
# =============================================================================

class StockAdjustment(BaseModel):
    product_id: int
    type: MovementType
    quantity: int = Field(..., ge=0, description="Amount moved; the new count for AJUSTE")
    reason: str = Field(..., min_length=1, max_length=200)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


class StockAlert(BaseModel):
    type: str
    message: str


class InventoryItemOut(ProductOut):
    category_name: Optional[str] = None
    stock_alert: Optional[StockAlert] = None
    sales_last_30_days: int = 0


class StockMovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    reference: Optional[str]
    notes: Optional[str]
    user_id: int
    created_at: Optional[datetime]


# =============================================================================
# TABLES
# =============================================================================

class TableCreate(BaseModel):
    number: int = Field(..., ge=1)
    capacity: int = Field(default=4, ge=1)
    status: TableStatus = TableStatus.LIVRE
    assigned_to: Optional[int] = None


class TableUpdate(BaseModel):
    number: Optional[int] = Field(None, ge=1)
    capacity: Optional[int] = Field(None, ge=1)
    status: Optional[TableStatus] = None
    assigned_to: Optional[int] = None


class TableOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    number: int
    capacity: int
    status: TableStatus
    assigned_to: Optional[int]


class ActiveOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: OrderStatus
    total: float
    created_at: Optional[datetime]


class TableStatusCheck(BaseModel):
    table: TableOut
    active_orders: List[ActiveOrderOut]
    should_be_occupied: bool
    status_matches: bool


# =============================================================================
# ORDERS
# =============================================================================

class OrderItemIn(BaseModel):
    """
    Single line of a new order or of an add-products request. An add-on id
    may repeat up to its ``max_quantity``.
    """
    product_id: int
    quantity: int = Field(default=1, examples=[2])
    notes: Optional[str] = Field(None, max_length=200)
    addon_ids: List[int] = Field(default_factory=list, examples=[[1, 1]])

    @field_validator("quantity", mode="before")
    @classmethod
    def sanitize_quantity(cls, v: Any) -> int:
        """Coerce to a positive integer; anything unusable becomes 1."""
        try:
            quantity = int(float(v))
        except (TypeError, ValueError):
            return 1
        return quantity if quantity >= 1 else 1


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    table_id: Optional[int] = None
    delivery_type: DeliveryType = DeliveryType.RETIRADA
    delivery_address: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=500)
    payment_method: Optional[PaymentMethod] = None


class OrderUpdate(BaseModel):
    """Status and/or payment method; values are checked by the service."""
    status: Optional[str] = None
    payment_method: Optional[str] = Field(None, alias="paymentMethod")

    model_config = ConfigDict(populate_by_name=True)


class PaymentEntry(BaseModel):
    method: str
    amount: Optional[float] = None


class PaymentSession(BaseModel):
    payments: List[PaymentEntry] = Field(default_factory=list)


class PaymentRequest(BaseModel):
    """
    Payment body. The method comes from ``paymentSession.payments[0]``
    when present, otherwise from ``paymentMethod``, otherwise DINHEIRO.
    ``paymentAmount`` (or ``totalPaid``) defaults to the order total.
    """
    model_config = ConfigDict(populate_by_name=True)

    payment_session: Optional[PaymentSession] = Field(None, alias="paymentSession")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    payment_amount: Optional[float] = Field(None, alias="paymentAmount")
    total_paid: Optional[float] = Field(None, alias="totalPaid")

    def resolved_method(self) -> str:
        if self.payment_session and self.payment_session.payments:
            return self.payment_session.payments[0].method
        if self.payment_method:
            return self.payment_method
        return PaymentMethod.DINHEIRO.value

    def resolved_amount(self) -> Optional[float]:
        if self.payment_amount is not None:
            return self.payment_amount
        return self.total_paid


class AddProductsRequest(BaseModel):
    products: List[OrderItemIn] = Field(..., min_length=1)


class AddItemsRequest(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)


class ProductBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: float


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity: int
    price: float
    subtotal: float
    notes: Optional[str]
    addon_ids: List[int] = []
    product: Optional[ProductBrief] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    table_id: Optional[int]
    status: OrderStatus
    delivery_type: DeliveryType
    delivery_address: Optional[str]
    notes: Optional[str]
    total: float
    payment_method: Optional[str]
    payment_amount: Optional[float]
    is_paid: bool
    payment_processed_at: Optional[datetime]
    received_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    items: List[OrderItemOut] = []


class OrderSummary(BaseModel):
    pending_count: int
    first_order_at: Optional[datetime]
    last_order_at: Optional[datetime]


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    user_id: int
    rating: int
    comment: Optional[str]
    created_at: Optional[datetime]


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    type: NotificationType = NotificationType.SYSTEM
    priority: NotificationPriority = NotificationPriority.NORMAL
    user_id: Optional[int] = None
    data: Optional[dict[str, Any]] = None
    expires_at: Optional[datetime] = None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int]
    title: str
    message: str
    type: NotificationType
    priority: NotificationPriority
    data: Optional[Any]
    is_read: bool
    created_at: Optional[datetime]
    expires_at: Optional[datetime]

    @field_validator("data", mode="before")
    @classmethod
    def parse_payload(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return json.loads(v)
            except ValueError:
                return v
        return v


class NotificationPage(Page[NotificationOut]):
    unread_count: int


# =============================================================================
# SETTINGS, REPORTS & HEALTH
# =============================================================================

class SettingIn(BaseModel):
    key: str = Field(..., min_length=1, max_length=100)
    value: Any
    category: str = Field(default="general", max_length=50)
    description: Optional[str] = None


class SettingsUpsert(BaseModel):
    settings: List[SettingIn] = Field(..., min_length=1)


class PublicSettings(BaseModel):
    restaurant_name: str
    restaurant_description: str
    restaurant_phone: str
    restaurant_email: str
    restaurant_address: str
    delivery_enabled: bool
    delivery_fee: float
    min_order_value: float
    estimated_delivery_minutes: int
    payment_methods: List[str]


class ExportRequest(BaseModel):
    period: str = Field(default="day", pattern="^(day|month|year)$")
    reference: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    notification_channel: str
    environment: str
    version: str
    timestamp: datetime
