"""
Shop — イベント定義

PaymentEvent: 決済プロバイダから届いた結果通知を、プロバイダに依存しない形に
正規化したもの。永続化はされない。

OrderRecorded: 注文を記録したあとに Redis に発行する事実(イベント)。
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from pydantic import BaseModel, Field

from .models import OrderStatus

_STATUS_MAP = {
    "COMPLETED": OrderStatus.COMPLETED,
    "confirmed": OrderStatus.COMPLETED,
    "FAILED": OrderStatus.FAILED,
    "failed": OrderStatus.FAILED,
    "CANCELLED": OrderStatus.CANCELLED,
    "cancelled": OrderStatus.CANCELLED,
}


def resolve_status(raw: str | None) -> OrderStatus:
    """プロバイダの生ステータスを注文ステータスに変換する。未知の値は pending。"""
    return _STATUS_MAP.get(raw, OrderStatus.PENDING)


def _to_decimal(value: Any) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def resolve_amount(payload: Mapping[str, Any]) -> Decimal:
    """
    金額を決める。

    1. トップレベルの amount (0 や空は未指定扱い)
    2. pricing.local.amount (文字列)
    3. どちらも無ければ 0
    """
    direct = _to_decimal(payload.get("amount")) if payload.get("amount") else None
    if direct:
        return direct

    pricing = payload.get("pricing") or {}
    local = pricing.get("local") if isinstance(pricing, Mapping) else None
    if isinstance(local, Mapping) and local.get("amount"):
        parsed = _to_decimal(local["amount"])
        if parsed is not None:
            return parsed

    return Decimal("0")


def _first(payload: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if value:
            return str(value)
    return None


class PaymentEvent(BaseModel):
    """正規化された決済結果通知"""
    status: str | None = None
    amount: Decimal = Decimal("0")
    provider: str | None = None
    payment_id: str | None = None
    order_id: str | None = None
    charge_id: str | None = None
    metadata: dict = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], status: str | None = None) -> "PaymentEvent":
        """
        プロバイダごとに異なるペイロードを PaymentEvent にする。
        status を渡すとペイロード内の値より優先される。
        """
        metadata = payload.get("metadata")
        return cls(
            status=status or payload.get("status"),
            amount=resolve_amount(payload),
            provider=payload.get("provider"),
            payment_id=_first(payload, "paymentId", "payment_id"),
            order_id=_first(payload, "orderId", "order_id"),
            charge_id=_first(payload, "chargeId", "charge_id", "code"),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )

    @property
    def order_status(self) -> OrderStatus:
        return resolve_status(self.status)

    @property
    def product_id(self):
        return self.metadata.get("product_id") or None

    @property
    def correlation_id(self) -> str | None:
        """payment_id → order_id → charge_id の順で最初に見つかったもの"""
        return self.payment_id or self.order_id or self.charge_id


class OrderRecorded(BaseModel):
    """注文が記録された"""
    order_id: int
    product_id: int | str
    status: OrderStatus
    total_amount: Decimal
    payment_method: str | None = None
    payment_id: str | None = None
    custom_id: str | None = None
    created_at: int
