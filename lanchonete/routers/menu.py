"""
Menu endpoints: categories and products.

Reads are public and served from the response cache; writes are
restricted to admins and invalidate the menu cache groups.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.cache import CacheDuration, ResponseCache, get_cache, invalidate
from lanchonete.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from lanchonete.database import get_db
from lanchonete.deps import require_permission
from lanchonete.models import Category, OrderItem, Product, ProductAddOn, StockMovement, User
from lanchonete.schemas import (
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    Envelope,
    Page,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    paginate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Menu"])

MENU_CACHE_GROUPS = ("categories:", "products:", "addons:")


# =============================================================================
# CATEGORIES
# =============================================================================

async def _get_category(db: AsyncSession, category_id: int) -> Category:
    category = await db.get(Category, category_id)
    if not category:
        raise NotFoundError("Categoria não encontrada")
    return category


async def _ensure_category_name_free(db: AsyncSession, name: str, exclude_id: Optional[int] = None) -> None:
    query = select(Category.id).where(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.where(Category.id != exclude_id)
    if (await db.execute(query)).first():
        raise ConflictError("Já existe uma categoria com este nome")


@router.get("/categories", response_model=Envelope[list[CategoryOut]])
async def list_categories(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    key = f"categories:list:{include_inactive}"
    cached = cache.get(key, CacheDuration.LONG)
    if cached is not None:
        return Envelope(data=cached)

    query = select(Category).order_by(Category.name)
    if not include_inactive:
        query = query.where(Category.is_active.is_(True))
    categories = (await db.execute(query)).scalars().all()

    data = [CategoryOut.model_validate(c).model_dump(mode="json") for c in categories]
    cache.set(key, data)
    return Envelope(data=data)


@router.post("/categories", response_model=Envelope[CategoryOut], status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("categories:write")),
):
    await _ensure_category_name_free(db, payload.name)
    category = Category(**payload.model_dump())
    db.add(category)
    await db.commit()

    invalidate(cache, MENU_CACHE_GROUPS)
    logger.info(f"📂 Category #{category.id} '{category.name}' created")
    return Envelope(data=CategoryOut.model_validate(category), message="Categoria criada com sucesso")


@router.put("/categories/{category_id}", response_model=Envelope[CategoryOut])
async def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("categories:write")),
):
    category = await _get_category(db, category_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name"):
        await _ensure_category_name_free(db, changes["name"], exclude_id=category.id)

    for field, value in changes.items():
        if value is not None:
            setattr(category, field, value)
    await db.commit()

    invalidate(cache, MENU_CACHE_GROUPS)
    return Envelope(data=CategoryOut.model_validate(category), message="Categoria atualizada com sucesso")


@router.delete("/categories/{category_id}", response_model=Envelope[dict])
async def delete_category(
    category_id: int,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("categories:delete")),
):
    category = await _get_category(db, category_id)
    products = (await db.execute(
        select(func.count(Product.id)).where(Product.category_id == category_id)
    )).scalar() or 0
    if products:
        raise BusinessRuleError("Categoria possui produtos e não pode ser excluída")

    await db.delete(category)
    await db.commit()

    invalidate(cache, MENU_CACHE_GROUPS)
    logger.info(f"🗑️ Category #{category_id} deleted")
    return Envelope(data={"id": category_id}, message="Categoria excluída com sucesso")


# =============================================================================
# PRODUCTS
# =============================================================================

async def _get_product(db: AsyncSession, product_id: int) -> Product:
    product = await db.get(Product, product_id)
    if not product:
        raise NotFoundError("Produto não encontrado")
    return product


async def _ensure_product_name_free(db: AsyncSession, name: str, exclude_id: Optional[int] = None) -> None:
    query = select(Product.id).where(func.lower(Product.name) == name.lower())
    if exclude_id is not None:
        query = query.where(Product.id != exclude_id)
    if (await db.execute(query)).first():
        raise ConflictError("Já existe um produto com este nome")


@router.get("/products", response_model=Envelope[Page[ProductOut]])
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    available: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    key = f"products:list:{page}:{limit}:{category_id}:{search}:{available}"
    cached = cache.get(key, CacheDuration.MEDIUM)
    if cached is not None:
        return Envelope(data=cached)

    conditions = []
    if category_id is not None:
        conditions.append(Product.category_id == category_id)
    if available is not None:
        conditions.append(Product.is_available.is_(available))
    if search:
        like = f"%{search}%"
        conditions.append(or_(Product.name.ilike(like), Product.description.ilike(like)))

    total = (await db.execute(select(func.count(Product.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(Product)
        .where(*conditions)
        .order_by(Product.name)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [ProductOut.model_validate(p).model_dump(mode="json") for p in result.scalars().all()]

    data = paginate(items, total, page, limit)
    cache.set(key, data)
    return Envelope(data=data)


@router.get("/products/{product_id}", response_model=Envelope[ProductOut])
async def get_product(product_id: int, db: AsyncSession = Depends(get_db)):
    return Envelope(data=ProductOut.model_validate(await _get_product(db, product_id)))


@router.post("/products", response_model=Envelope[ProductOut], status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("products:write")),
):
    await _ensure_product_name_free(db, payload.name)
    await _get_category(db, payload.category_id)

    product = Product(**payload.model_dump())
    db.add(product)
    await db.commit()

    invalidate(cache, MENU_CACHE_GROUPS)
    logger.info(f"🍔 Product #{product.id} '{product.name}' created ({product.price:.2f})")
    return Envelope(data=ProductOut.model_validate(product), message="Produto criado com sucesso")


@router.put("/products/{product_id}", response_model=Envelope[ProductOut])
async def update_product(
    product_id: int,
    payload: ProductUpdate,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("products:write")),
):
    product = await _get_product(db, product_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name"):
        await _ensure_product_name_free(db, changes["name"], exclude_id=product.id)
    if changes.get("category_id") is not None:
        await _get_category(db, changes["category_id"])

    for field, value in changes.items():
        if value is not None:
            setattr(product, field, value)
    await db.commit()

    invalidate(cache, MENU_CACHE_GROUPS)
    return Envelope(data=ProductOut.model_validate(product), message="Produto atualizado com sucesso")


@router.delete("/products/{product_id}", response_model=Envelope[dict])
async def delete_product(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("products:delete")),
):
    """Products with order or stock history are made unavailable instead of deleted."""
    product = await _get_product(db, product_id)
    ordered = (await db.execute(
        select(func.count(OrderItem.id)).where(OrderItem.product_id == product_id)
    )).scalar() or 0
    moved = (await db.execute(
        select(func.count(StockMovement.id)).where(StockMovement.product_id == product_id)
    )).scalar() or 0

    if ordered or moved:
        product.is_available = False
        message = (
            "Produto possui pedidos e foi marcado como indisponível" if ordered
            else "Produto possui movimentações de estoque e foi marcado como indisponível"
        )
    else:
        await db.execute(delete(ProductAddOn).where(ProductAddOn.product_id == product_id))
        await db.delete(product)
        message = "Produto excluído com sucesso"
    await db.commit()

    invalidate(cache, MENU_CACHE_GROUPS)
    logger.info(f"🗑️ Product #{product_id}: {message}")
    return Envelope(data={"id": product_id}, message=message)
