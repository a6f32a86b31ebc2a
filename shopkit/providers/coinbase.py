"""
Shop — Coinbase Commerce プロバイダ (チャージ・ホスト型決済ページ方式)

create_charge でチャージを作成してホスト型決済ページの URL を返す。
結果は Webhook で届くので、署名 (X-CC-Webhook-Signature, HMAC-SHA256) を
検証してから completed / failed / cancelled を通知する。
"""

import hashlib
import hmac
import json
import logging
from decimal import Decimal

import httpx

from ..errors import Unauthorized, ValidationError
from .base import PaymentProvider

logger = logging.getLogger(__name__)

API_URL = "https://api.commerce.coinbase.com"
API_VERSION = "2018-03-22"

_WEBHOOK_KINDS = {
    "charge:confirmed": "completed",
    "charge:resolved": "completed",
    "charge:failed": "failed",
    "charge:cancelled": "cancelled",
}


class CoinbaseProvider(PaymentProvider):
    name = "coinbase"

    def __init__(
        self,
        api_key: str,
        webhook_secret: str | None = None,
        currency: str = "USD",
        redirect_url: str | None = None,
        cancel_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.redirect_url = redirect_url
        self.cancel_url = cancel_url
        self._client = client or httpx.AsyncClient(base_url=API_URL, timeout=30.0)

    async def create_charge(self, title: str, price: Decimal, metadata: dict) -> dict:
        body = {
            "name": title[:100],
            "description": title[:200],
            "pricing_type": "fixed_price",
            "local_price": {"amount": f"{Decimal(price):.2f}", "currency": self.currency},
            "metadata": metadata,
        }
        if self.redirect_url:
            body["redirect_url"] = self.redirect_url
        if self.cancel_url:
            body["cancel_url"] = self.cancel_url

        resp = await self._client.post(
            "/charges",
            content=json.dumps(body, default=str),
            headers={
                "Content-Type": "application/json",
                "X-CC-Api-Key": self.api_key,
                "X-CC-Version": API_VERSION,
            },
        )
        resp.raise_for_status()
        charge = resp.json()["data"]
        return {"hostedUrl": charge["hosted_url"], "chargeCode": charge["code"]}

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        if not self.webhook_secret or not signature:
            return False
        expected = hmac.new(self.webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    async def handle_webhook(self, body: bytes, signature: str | None) -> str | None:
        """
        Webhook を検証して通知する。

        通知した種類を返す。対象外のイベントタイプは何もせず None を返す。
        """
        if not self.verify_webhook_signature(body, signature):
            raise Unauthorized("invalid webhook signature")

        try:
            event = json.loads(body)["event"]
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError(f"malformed webhook payload: {e}") from e

        kind = _WEBHOOK_KINDS.get(event.get("type"))
        if kind is None:
            logger.info("Ignored coinbase webhook event %s", event.get("type"))
            return None

        charge = event.get("data") or {}
        await self.emit(kind, {
            "provider": self.name,
            "chargeId": charge.get("code"),
            "pricing": charge.get("pricing") or {},
            "metadata": charge.get("metadata") or {},
        })
        return kind

    async def aclose(self) -> None:
        await self._client.aclose()
