"""
Shop — 決済プロバイダ基底クラス

各プロバイダは completed / failed / cancelled の3種類の通知を持ち、
それぞれに購読者(コールバック)の順序付きリストを持つ。

    provider.subscribe("completed", host_callback)     # ホストが先に登録
    provider.subscribe("completed", shop_callback)     # ショップは後ろに追加

emit は登録順に1つずつ await する。途中の購読者が例外を送出すると
それ以降の購読者は実行されず、例外は emit の呼び出し元に伝播する。
"""

import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

EVENT_KINDS = ("completed", "failed", "cancelled")

PaymentCallback = Callable[[dict], Awaitable[None] | None]


class PaymentProvider:
    name = "provider"

    def __init__(self) -> None:
        self._subscribers: dict[str, list[PaymentCallback]] = {kind: [] for kind in EVENT_KINDS}

    def subscribe(self, kind: str, callback: PaymentCallback) -> None:
        if kind not in self._subscribers:
            raise ValueError(f"unknown payment event kind '{kind}'")
        self._subscribers[kind].append(callback)

    def subscribers(self, kind: str) -> tuple[PaymentCallback, ...]:
        return tuple(self._subscribers[kind])

    async def emit(self, kind: str, payload: dict[str, Any]) -> None:
        """kind の購読者を登録順に呼び出す。"""
        logger.info("%s payment %s: %s", self.name, kind, payload)
        for callback in self.subscribers(kind):
            result = callback(payload)
            if inspect.isawaitable(result):
                await result

    async def aclose(self) -> None:
        pass
