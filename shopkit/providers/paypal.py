"""
Shop — PayPal プロバイダ (注文・承認方式)

フロー:
  1. create_order: Orders API で注文を作成し、承認 URL を返す
     metadata は purchase_units[].custom_id に JSON で埋め込む (最大 127 文字)
  2. 購入者が PayPal 上で承認する
  3. capture_order: 注文をキャプチャし、結果に応じて completed / failed を通知
     cancel_order: 購入者がキャンセルした注文を cancelled として通知
     (キャプチャ済みの注文はキャンセルできない)
"""

import json
import time
from decimal import Decimal

import httpx

from ..errors import ValidationError
from .base import PaymentProvider

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"

CUSTOM_ID_MAX_LENGTH = 127

# 422 のうち、購入者の支払いが拒否されたことを示すもの
DECLINED_ISSUES = frozenset({"INSTRUMENT_DECLINED", "PAYER_ACTION_REQUIRED", "TRANSACTION_REFUSED"})


def _decode_custom_id(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        metadata = json.loads(raw)
    except ValueError:
        return {}
    return metadata if isinstance(metadata, dict) else {}


def _first_capture(order: dict) -> dict:
    unit = (order.get("purchase_units") or [{}])[0]
    captures = (unit.get("payments") or {}).get("captures") or []
    return captures[0] if captures else {}


def _issues(response: httpx.Response) -> set[str]:
    """PayPal のエラー応答 details[].issue を集める"""
    try:
        details = response.json().get("details") or []
    except ValueError:
        return set()
    return {detail.get("issue") for detail in details if isinstance(detail, dict)}


class PayPalProvider(PaymentProvider):
    name = "paypal"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = SANDBOX_URL,
        return_url: str | None = None,
        cancel_url: str | None = None,
        currency: str = "USD",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self.client_id = client_id
        self.client_secret = client_secret
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.currency = currency
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=30.0)
        self._token: str | None = None
        self._token_expires_at = 0.0

    async def _access_token(self) -> str:
        """client_credentials でアクセストークンを取得する。期限内はキャッシュを使う。"""
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        resp = await self._client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        resp.raise_for_status()
        body = resp.json()
        self._token = body["access_token"]
        # 期限の1分前に更新する
        self._token_expires_at = time.monotonic() + max(int(body.get("expires_in", 0)) - 60, 0)
        return self._token

    async def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        token = await self._access_token()
        resp = await self._client.request(
            method,
            path,
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        resp.raise_for_status()
        return resp.json()

    async def create_order(self, title: str, price: Decimal, metadata: dict) -> dict:
        custom_id = json.dumps(metadata, separators=(",", ":"), default=str)
        if len(custom_id) > CUSTOM_ID_MAX_LENGTH:
            raise ValidationError(
                f"checkout metadata is too long for PayPal custom_id "
                f"({len(custom_id)} > {CUSTOM_ID_MAX_LENGTH} characters)"
            )

        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "description": title[:127],
                    "custom_id": custom_id,
                    "amount": {
                        "currency_code": self.currency,
                        "value": f"{Decimal(price):.2f}",
                    },
                }
            ],
        }
        context = {
            key: url
            for key, url in (("return_url", self.return_url), ("cancel_url", self.cancel_url))
            if url
        }
        if context:
            body["application_context"] = context

        order = await self._request("POST", "/v2/checkout/orders", body)
        approval_url = next(
            (
                link["href"]
                for link in order.get("links", [])
                if link.get("rel") in ("approve", "payer-action")
            ),
            None,
        )
        return {"approvalUrl": approval_url, "orderId": order["id"]}

    async def capture_order(self, order_id: str) -> str:
        """
        承認済みの注文をキャプチャする。

        キャプチャが COMPLETED なら completed、DECLINED / FAILED なら failed を通知する。
        保留中 (PENDING など) は何も通知しない。
        422 は支払い拒否 (DECLINED_ISSUES) のときだけ failed として扱い、
        キャプチャ済み・未承認などそれ以外の 422 はそのまま送出する。
        """
        try:
            order = await self._request("POST", f"/v2/checkout/orders/{order_id}/capture", {})
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 422 or not _issues(e.response) & DECLINED_ISSUES:
                raise
            order = await self._request("GET", f"/v2/checkout/orders/{order_id}")
            await self.emit("failed", self._payload(order_id, order))
            return "FAILED"

        capture = _first_capture(order)
        status = capture.get("status") or order.get("status", "")
        if status == "COMPLETED":
            await self.emit("completed", self._payload(order_id, order))
        elif status in ("DECLINED", "FAILED"):
            await self.emit("failed", self._payload(order_id, order))
        return status

    async def cancel_order(self, order_id: str) -> None:
        order = await self._request("GET", f"/v2/checkout/orders/{order_id}")
        if order.get("status") == "COMPLETED":
            raise ValidationError(f"PayPal order {order_id} is already completed")
        await self.emit("cancelled", self._payload(order_id, order))

    def _payload(self, order_id: str, order: dict) -> dict:
        unit = (order.get("purchase_units") or [{}])[0]
        capture = _first_capture(order)
        amount = (capture.get("amount") or unit.get("amount") or {}).get("value")
        return {
            "provider": self.name,
            "orderId": order_id,
            "paymentId": capture.get("id"),
            "amount": amount,
            "metadata": _decode_custom_id(capture.get("custom_id") or unit.get("custom_id")),
        }

    async def aclose(self) -> None:
        await self._client.aclose()
