"""
Shop — クエリ (読み取り側)

商品・カテゴリ・注文の読み取り。
ユーザー入力は必ずバインド変数で渡し、SQL に文字列連結しない。
"""

from .database import Database
from .models import Category, Order, OrderLine, Product

_PRODUCT_SELECT = """
    SELECT p.*, c.name AS category_name
    FROM products p
    LEFT JOIN categories c ON p.category_id = c.id
"""


async def list_products(db: Database, category: str | None = None) -> list[Product]:
    """有効な商品を新しい順に返す。category を指定するとカテゴリ名で絞り込む。"""
    if category is None:
        rows = await db.query_database(
            _PRODUCT_SELECT + " WHERE p.active = :active ORDER BY p.created_at DESC, p.id DESC",
            {"active": True},
        )
    else:
        rows = await db.query_database(
            _PRODUCT_SELECT
            + " WHERE p.active = :active AND c.name = :category ORDER BY p.created_at DESC, p.id DESC",
            {"active": True, "category": category},
        )
    return [Product.model_validate(row) for row in rows]


async def get_product(db: Database, product_id: int) -> Product | None:
    rows = await db.query_database(
        _PRODUCT_SELECT + " WHERE p.id = :id",
        {"id": product_id},
    )
    if not rows:
        return None
    return Product.model_validate(rows[0])


async def list_categories(db: Database) -> list[Category]:
    rows = await db.query_database("SELECT * FROM categories ORDER BY name")
    return [Category.model_validate(row) for row in rows]


async def get_category(db: Database, category_id: int) -> Category | None:
    rows = await db.query_database(
        "SELECT * FROM categories WHERE id = :id",
        {"id": category_id},
    )
    if not rows:
        return None
    return Category.model_validate(rows[0])


async def get_order(db: Database, order_id: int) -> Order | None:
    rows = await db.query_database(
        "SELECT * FROM orders WHERE id = :id",
        {"id": order_id},
    )
    if not rows:
        return None
    return Order.model_validate(rows[0])


async def list_order_lines(db: Database, order_id: int) -> list[OrderLine]:
    rows = await db.query_database(
        "SELECT * FROM order_items WHERE order_id = :order_id ORDER BY id",
        {"order_id": order_id},
    )
    return [OrderLine.model_validate(row) for row in rows]
