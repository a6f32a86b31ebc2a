"""
Shop — 注文マテリアライザ

決済結果 (PaymentEvent) から注文を記録する中核処理。

    received ─┬─▶ completed ─▶ 商品アクション実行
              ├─▶ failed
              ├─▶ cancelled
              └─▶ pending    (想定外のステータス)

1. 金額とステータスを解決する
2. metadata に product_id が無ければ破棄する (ログのみ・再試行なし)
3. orders と order_items を1トランザクションで INSERT する
4. completed の場合のみ、商品に設定されたアクションを実行する
   アクションの失敗は注文に影響しない
5. Redis が設定されていれば OrderRecorded を発行する

同じ payment_id のイベントが再送されても重複排除はしない。
"""

import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import insert

from . import queries
from .actions import ActionRegistry
from .database import Database
from .events import OrderRecorded, PaymentEvent
from .models import Order, OrderStatus
from .schema import now_ms, order_items, orders

logger = logging.getLogger(__name__)

SHOP_EVENTS_CHANNEL = "shop_events"

# orders.total_amount / order_items.price の精度 (Numeric(10, 2))
CENTS = Decimal("0.01")


def _optional_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


class OrderMaterializer:
    def __init__(
        self,
        db: Database,
        registry: ActionRegistry,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self.db = db
        self.registry = registry
        self.redis = redis

    async def materialize(self, event: PaymentEvent | Mapping[str, Any]) -> Order | None:
        """
        決済イベントを注文として記録する。

        product_id の無いイベントは None を返し、何も書き込まない。
        """
        if not isinstance(event, PaymentEvent):
            event = PaymentEvent.from_payload(event)

        amount = event.amount.quantize(CENTS, rounding=ROUND_HALF_UP)
        status = event.order_status

        product_id = event.product_id
        if not product_id:
            logger.warning("Dropped payment event without product_id: %s", event.model_dump(mode="json"))
            return None

        metadata = event.metadata
        created_at = now_ms()
        values = {
            "customer_email": _optional_str(metadata.get("customer_email")),
            "customer_name": _optional_str(metadata.get("customer_name")),
            "custom_id": _optional_str(metadata.get("userId")),
            "total_amount": amount,
            "status": status.value,
            "payment_method": event.provider,
            "payment_id": event.correlation_id,
            "created_at": created_at,
        }

        async with self.db.transaction() as tx:
            result = await tx.query_database(insert(orders).values(**values))
            await tx.query_database(
                insert(order_items).values(
                    order_id=result.insert_id,
                    product_id=product_id,
                    quantity=1,
                    price=amount,
                    created_at=created_at,
                )
            )

        order = Order(id=result.insert_id, **values)
        logger.info(
            "Recorded order %s (%s, %s) for product %s",
            order.id, order.status.value, order.total_amount, product_id,
        )

        if status is OrderStatus.COMPLETED:
            await self._run_product_action(product_id, metadata)

        await self._publish(order, product_id)
        return order

    async def _run_product_action(self, product_id, metadata: dict) -> None:
        try:
            product = await queries.get_product(self.db, product_id)
            if product is None or not product.action:
                return

            action = self.registry.resolve(product.action)
            if action is None:
                logger.warning("Action '%s' not found in product actions", product.action)
                return

            await action.run(metadata, product, product.action_parameters())
            logger.info("Executed action '%s' for product %s", action.key, product_id)
        except Exception:
            logger.exception("Error executing product action for product %s", product_id)

    async def _publish(self, order: Order, product_id) -> None:
        """OrderRecorded を Redis Pub/Sub で発行する。"""
        if self.redis is None:
            return

        event = OrderRecorded(
            order_id=order.id,
            product_id=product_id,
            status=order.status,
            total_amount=order.total_amount,
            payment_method=order.payment_method,
            payment_id=order.payment_id,
            custom_id=order.custom_id,
            created_at=order.created_at,
        )
        try:
            await self.redis.publish(
                SHOP_EVENTS_CHANNEL,
                json.dumps({
                    "event_type": "OrderRecorded",
                    "data": event.model_dump(mode="json"),
                }),
            )
        except RedisError:
            logger.exception("Failed to publish OrderRecorded for order %s", order.id)
