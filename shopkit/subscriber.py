"""
Shop — 決済イベントのサブスクライバー

プロバイダの completed / failed / cancelled 通知を購読し、
受信したペイロードを PaymentEvent に正規化して注文マテリアライザに渡す。

購読者リストの末尾に追加するだけなので、ホストアプリケーションが
先に登録した購読者はそのまま残り、先に実行される。

注意: 先に登録された購読者が例外を送出すると、そこで処理が止まり
注文は記録されない（プロバイダ側で再送されるまで失われる）。
"""

import logging

from .events import PaymentEvent
from .orders import OrderMaterializer
from .providers.base import PaymentProvider

logger = logging.getLogger(__name__)

# 通知の種類 → マテリアライザに渡すステータス
_KIND_STATUS = {
    "completed": "COMPLETED",
    "failed": "FAILED",
    "cancelled": "CANCELLED",
}


class PaymentEventSubscriber:
    def __init__(self, materializer: OrderMaterializer) -> None:
        self.materializer = materializer

    def attach(self, provider: PaymentProvider) -> None:
        for kind, status in _KIND_STATUS.items():
            provider.subscribe(kind, self._handler(kind, status))

    def _handler(self, kind: str, status: str):
        async def handle(payload: dict) -> None:
            logger.info("Received payment %s: %s", kind, payload)
            event = PaymentEvent.from_payload(payload, status=status)
            await self.materializer.materialize(event)

        return handle
