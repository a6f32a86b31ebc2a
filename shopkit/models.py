"""
Shop — データモデル

DB の行を表すモデルと、API のリクエストモデル。
"""

import json
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ── 行モデル ─────────────────────────────────────


class Category(BaseModel):
    id: int
    name: str
    description: str | None = None
    parent_id: int | None = None
    created_at: int | None = None


class Product(BaseModel):
    id: int
    name: str
    description: str | None = None
    price: Decimal
    category_id: int | None = None
    category_name: str | None = None
    image_url: str | None = None
    stock: int = 0
    active: bool = True
    action: str | None = None
    action_params: str | None = None
    created_at: int | None = None

    def action_parameters(self) -> dict:
        """
        保存されている action_params(JSON 文字列)を dict にする。
        未設定・パース失敗・オブジェクト以外は空の dict として扱う。
        """
        if not self.action_params:
            return {}
        try:
            params = json.loads(self.action_params)
        except ValueError:
            return {}
        return params if isinstance(params, dict) else {}


class Order(BaseModel):
    id: int
    customer_email: str | None = None
    customer_name: str | None = None
    custom_id: str | None = None
    total_amount: Decimal
    status: OrderStatus
    payment_method: str | None = None
    payment_id: str | None = None
    created_at: int


class OrderLine(BaseModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal
    created_at: int


# ── リクエストモデル ─────────────────────────────


class ProductInput(BaseModel):
    name: str | None = None
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    category_id: int | None = None
    image_url: str | None = None
    stock: int | None = Field(default=None, ge=0)
    active: bool | None = None
    action: str | None = None
    action_params: dict | None = None


class CategoryInput(BaseModel):
    name: str | None = None
    description: str | None = None
    parent_id: int | None = None


class CreatePaymentRequest(BaseModel):
    product_id: int
    payment_method: str


class PayPalOrderRequest(BaseModel):
    orderId: str
