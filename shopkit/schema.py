"""
Shop — テーブル定義

categories / products / orders / order_items の4テーブル。
SQLAlchemy Core の Table で定義し、起動時に checkfirst 付きで作成する。
MySQL では AUTO_INCREMENT・DECIMAL(10,2)・BIGINT ミリ秒タイムスタンプになる。
"""

import time

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)

metadata = MetaData()


def now_ms() -> int:
    """現在時刻をエポックミリ秒で返す。"""
    return int(time.time() * 1000)


categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("description", Text),
    Column("parent_id", Integer, ForeignKey("categories.id", ondelete="SET NULL"), index=True),
    Column("created_at", BigInteger, nullable=False, default=now_ms),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("price", Numeric(10, 2), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="SET NULL"), index=True),
    Column("image_url", String(512)),
    Column("stock", Integer, nullable=False, default=0),
    Column("active", Boolean, nullable=False, default=True, index=True),
    Column("action", String(100)),
    Column("action_params", Text),
    Column("created_at", BigInteger, nullable=False, default=now_ms),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("customer_email", String(255), index=True),
    Column("customer_name", String(255)),
    Column("custom_id", String(255)),
    Column("total_amount", Numeric(10, 2), nullable=False),
    Column("status", String(50), nullable=False, default="pending", index=True),
    Column("payment_method", String(50)),
    Column("payment_id", String(255), index=True),
    Column("created_at", BigInteger, nullable=False, default=now_ms),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("quantity", Integer, nullable=False),
    Column("price", Numeric(10, 2), nullable=False),
    Column("created_at", BigInteger, nullable=False, default=now_ms),
)

# 親テーブルから順に作成する
SHOP_TABLES = (categories, products, orders, order_items)
