"""
Shop — コマンド (書き込み側)

商品・カテゴリの作成／更新／削除。
アクションキーは書き込み時にレジストリで検証し、未登録なら拒否する。
"""

import json

from sqlalchemy import delete, insert, update

from . import queries
from .actions import ActionRegistry
from .database import Database
from .errors import NotFound, ValidationError
from .models import Category, CategoryInput, Product, ProductInput
from .schema import categories, now_ms, products


def _check_action(registry: ActionRegistry, action: str | None) -> None:
    if action and registry.resolve(action) is None:
        raise ValidationError(f"unknown action '{action}'")


def _product_values(data: ProductInput, fields: set[str]) -> dict:
    values = data.model_dump(include=fields)
    if "action" in values:
        values["action"] = values["action"] or None
    if "action_params" in values:
        params = values["action_params"]
        values["action_params"] = json.dumps(params) if params else None
    return values


# ── 商品 ─────────────────────────────────────────


async def create_product(db: Database, registry: ActionRegistry, data: ProductInput) -> Product:
    """
    商品作成コマンド

    name と price は必須。stock は 0、active は True が既定値。
    """
    if not data.name or data.price is None:
        raise ValidationError("name and price are required")
    _check_action(registry, data.action)

    values = _product_values(data, set(ProductInput.model_fields))
    values["stock"] = values["stock"] or 0
    values["active"] = True if values["active"] is None else values["active"]
    values["created_at"] = now_ms()

    result = await db.query_database(insert(products).values(**values))
    product = await queries.get_product(db, result.insert_id)
    if product is None:
        raise NotFound("product not found")
    return product


async def update_product(
    db: Database,
    registry: ActionRegistry,
    product_id: int,
    data: ProductInput,
) -> Product:
    """商品更新コマンド。リクエストに含まれた項目だけを更新する。"""
    _check_action(registry, data.action)

    values = _product_values(data, data.model_fields_set)
    if values:
        await db.query_database(
            update(products).where(products.c.id == product_id).values(**values)
        )

    product = await queries.get_product(db, product_id)
    if product is None:
        raise NotFound("product not found")
    return product


async def delete_product(db: Database, product_id: int) -> None:
    if await queries.get_product(db, product_id) is None:
        raise NotFound("product not found")
    await db.query_database(delete(products).where(products.c.id == product_id))


# ── カテゴリ ─────────────────────────────────────


async def create_category(db: Database, data: CategoryInput) -> Category:
    if not data.name:
        raise ValidationError("name is required")

    result = await db.query_database(
        insert(categories).values(
            name=data.name,
            description=data.description or None,
            parent_id=data.parent_id or None,
            created_at=now_ms(),
        )
    )
    category = await queries.get_category(db, result.insert_id)
    if category is None:
        raise NotFound("category not found")
    return category


async def update_category(db: Database, category_id: int, data: CategoryInput) -> Category:
    values = data.model_dump(include=data.model_fields_set)
    if values:
        await db.query_database(
            update(categories).where(categories.c.id == category_id).values(**values)
        )

    category = await queries.get_category(db, category_id)
    if category is None:
        raise NotFound("category not found")
    return category


async def delete_category(db: Database, category_id: int) -> None:
    """
    カテゴリ削除コマンド

    子カテゴリの parent_id と商品の category_id は NULL に戻す。削除は連鎖しない。
    """
    if await queries.get_category(db, category_id) is None:
        raise NotFound("category not found")

    async with db.transaction() as tx:
        await tx.query_database(
            update(categories).where(categories.c.parent_id == category_id).values(parent_id=None)
        )
        await tx.query_database(
            update(products).where(products.c.category_id == category_id).values(category_id=None)
        )
        await tx.query_database(delete(categories).where(categories.c.id == category_id))
