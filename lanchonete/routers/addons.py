"""
Add-on (adicional) endpoints: the add-on catalogue and its links to products.

Reads are public and cached; writes need ``products:write`` and clear the
``addons:`` cache group.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lanchonete.core.cache import CacheDuration, ResponseCache, get_cache
from lanchonete.core.exceptions import ConflictError, NotFoundError
from lanchonete.database import get_db
from lanchonete.deps import require_permission
from lanchonete.models import AddOn, Product, ProductAddOn, User
from lanchonete.schemas import (
    AddOnCreate,
    AddOnOut,
    AddOnUpdate,
    Envelope,
    ProductAddOnLink,
    ProductAddOnOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Add-ons"])

ADDONS_CACHE_GROUP = "addons:"


async def _get_addon(db: AsyncSession, addon_id: int) -> AddOn:
    addon = await db.get(AddOn, addon_id)
    if not addon:
        raise NotFoundError("Adicional não encontrado")
    return addon


async def _ensure_addon_name_free(db: AsyncSession, name: str, exclude_id: Optional[int] = None) -> None:
    query = select(AddOn.id).where(func.lower(AddOn.name) == name.lower())
    if exclude_id is not None:
        query = query.where(AddOn.id != exclude_id)
    if (await db.execute(query)).first():
        raise ConflictError("Já existe um adicional com este nome")


def _link_out(link: ProductAddOn, addon: AddOn) -> ProductAddOnOut:
    return ProductAddOnOut(
        **AddOnOut.model_validate(addon).model_dump(),
        product_addon_id=link.id,
        is_required=link.is_required,
    )


# =============================================================================
# CATALOGUE
# =============================================================================

@router.get("/adicionais", response_model=Envelope[list[AddOnOut]])
async def list_addons(
    available: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    key = f"addons:list:{available}"
    cached = cache.get(key, CacheDuration.LONG)
    if cached is not None:
        return Envelope(data=cached)

    query = select(AddOn).order_by(AddOn.name)
    if available is not None:
        query = query.where(AddOn.is_available.is_(available))
    addons = (await db.execute(query)).scalars().all()

    data = [AddOnOut.model_validate(a).model_dump(mode="json") for a in addons]
    cache.set(key, data)
    return Envelope(data=data)


@router.post("/adicionais", response_model=Envelope[AddOnOut], status_code=status.HTTP_201_CREATED)
async def create_addon(
    payload: AddOnCreate,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("products:write")),
):
    await _ensure_addon_name_free(db, payload.name)
    addon = AddOn(**payload.model_dump())
    db.add(addon)
    await db.commit()

    cache.clear_pattern(ADDONS_CACHE_GROUP)
    logger.info(f"➕ Add-on #{addon.id} '{addon.name}' created ({addon.price:.2f})")
    return Envelope(data=AddOnOut.model_validate(addon), message="Adicional criado com sucesso")


@router.put("/adicionais/{addon_id}", response_model=Envelope[AddOnOut])
async def update_addon(
    addon_id: int,
    payload: AddOnUpdate,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("products:write")),
):
    addon = await _get_addon(db, addon_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name"):
        await _ensure_addon_name_free(db, changes["name"], exclude_id=addon.id)

    for field, value in changes.items():
        if value is not None:
            setattr(addon, field, value)
    await db.commit()

    cache.clear_pattern(ADDONS_CACHE_GROUP)
    return Envelope(data=AddOnOut.model_validate(addon), message="Adicional atualizado com sucesso")


@router.delete("/adicionais/{addon_id}", response_model=Envelope[dict])
async def delete_addon(
    addon_id: int,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("products:write")),
):
    addon = await _get_addon(db, addon_id)
    await db.execute(delete(ProductAddOn).where(ProductAddOn.addon_id == addon_id))
    await db.delete(addon)
    await db.commit()

    cache.clear_pattern(ADDONS_CACHE_GROUP)
    logger.info(f"🗑️ Add-on #{addon_id} deleted")
    return Envelope(data={"id": addon_id}, message="Adicional excluído com sucesso")


# =============================================================================
# PRODUCT LINKS
# =============================================================================

@router.get("/products/{product_id}/adicionais", response_model=Envelope[list[ProductAddOnOut]])
async def list_product_addons(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    key = f"addons:product:{product_id}"
    cached = cache.get(key, CacheDuration.LONG)
    if cached is not None:
        return Envelope(data=cached)

    if not await db.get(Product, product_id):
        raise NotFoundError("Produto não encontrado")

    result = await db.execute(
        select(ProductAddOn)
        .join(AddOn, AddOn.id == ProductAddOn.addon_id)
        .where(ProductAddOn.product_id == product_id)
        .order_by(AddOn.name)
    )
    data = [_link_out(link, link.addon).model_dump(mode="json") for link in result.scalars().all()]
    cache.set(key, data)
    return Envelope(data=data)


@router.post(
    "/products/{product_id}/adicionais",
    response_model=Envelope[ProductAddOnOut],
    status_code=status.HTTP_201_CREATED,
)
async def link_product_addon(
    product_id: int,
    payload: ProductAddOnLink,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("products:write")),
):
    product = await db.get(Product, product_id)
    addon = await db.get(AddOn, payload.addon_id)
    if not product or not addon:
        raise NotFoundError("Produto ou adicional não encontrado")

    existing = await db.execute(
        select(ProductAddOn.id).where(
            ProductAddOn.product_id == product_id,
            ProductAddOn.addon_id == payload.addon_id,
        )
    )
    if existing.first():
        raise ConflictError("Este adicional já está associado ao produto")

    link = ProductAddOn(product_id=product_id, addon_id=addon.id, is_required=payload.is_required)
    db.add(link)
    await db.commit()

    cache.clear_pattern(ADDONS_CACHE_GROUP)
    logger.info(f"🔗 Add-on '{addon.name}' linked to product '{product.name}'")
    return Envelope(data=_link_out(link, addon), message="Adicional associado ao produto")


@router.delete("/products/{product_id}/adicionais/{addon_id}", response_model=Envelope[dict])
async def unlink_product_addon(
    product_id: int,
    addon_id: int,
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
    _: User = Depends(require_permission("products:write")),
):
    result = await db.execute(
        delete(ProductAddOn).where(
            ProductAddOn.product_id == product_id,
            ProductAddOn.addon_id == addon_id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("Adicional não está associado a este produto")
    await db.commit()

    cache.clear_pattern(ADDONS_CACHE_GROUP)
    return Envelope(data={"product_id": product_id, "addon_id": addon_id}, message="Adicional removido do produto")
