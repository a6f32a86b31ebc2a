"""
Shop — 開発・テスト用の偽プロバイダ

外部呼び出しはせず、呼び出し内容を calls に記録する。
configure() で成功／失敗を切り替えられる。
PayPal 型 (create_order) と Coinbase 型 (create_charge) の両方を持つ。
"""

from decimal import Decimal
from uuid import uuid4

from .base import PaymentProvider


class FakeProviderError(Exception):
    pass


class FakeProvider(PaymentProvider):
    def __init__(self, name: str = "fake") -> None:
        super().__init__()
        self.name = name
        self.should_succeed = True
        self.failure_reason = "Payment declined"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Payment declined") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def _record(self, method: str, title: str, price: Decimal, metadata: dict) -> None:
        self.calls.append({"method": method, "title": title, "price": price, "metadata": metadata})
        if not self.should_succeed:
            raise FakeProviderError(self.failure_reason)

    async def create_order(self, title: str, price: Decimal, metadata: dict) -> dict:
        self._record("create_order", title, price, metadata)
        order_id = f"fake_order_{uuid4().hex[:12]}"
        return {
            "approvalUrl": f"https://fake.example.com/approve/{order_id}",
            "orderId": order_id,
        }

    async def create_charge(self, title: str, price: Decimal, metadata: dict) -> dict:
        self._record("create_charge", title, price, metadata)
        code = uuid4().hex[:8].upper()
        return {
            "hostedUrl": f"https://fake.example.com/charges/{code}",
            "chargeCode": code,
        }
