"""
Shop — スタンドアロン FastAPI エントリーポイント

ホストアプリケーションなしでショップを起動するための app ファクトリ。
設定はすべて環境変数から読む。

SHOP_ADMIN_TOKEN を設定すると、X-Admin-Token ヘッダがそれと一致する
リクエストだけが管理 API を使える。未設定なら管理 API は制限しない。

    uvicorn shopkit.app:create_app --factory
"""

import hmac
import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request

from .database import Database
from .main import Shop
from .providers.coinbase import CoinbaseProvider
from .providers.paypal import SANDBOX_URL, PayPalProvider


def _paypal_from_env(currency: str) -> PayPalProvider | None:
    client_id = os.environ.get("PAYPAL_CLIENT_ID")
    client_secret = os.environ.get("PAYPAL_CLIENT_SECRET")
    if not client_id or not client_secret:
        return None
    return PayPalProvider(
        client_id,
        client_secret,
        base_url=os.environ.get("PAYPAL_BASE_URL", SANDBOX_URL),
        return_url=os.environ.get("PAYPAL_RETURN_URL"),
        cancel_url=os.environ.get("PAYPAL_CANCEL_URL"),
        currency=currency,
    )


def _coinbase_from_env(currency: str) -> CoinbaseProvider | None:
    api_key = os.environ.get("COINBASE_API_KEY")
    if not api_key:
        return None
    return CoinbaseProvider(
        api_key,
        webhook_secret=os.environ.get("COINBASE_WEBHOOK_SECRET"),
        currency=currency,
    )


def _admin_token_check(token: str):
    async def is_admin(request: Request) -> bool:
        supplied = request.headers.get("X-Admin-Token", "")
        return hmac.compare_digest(supplied, token)

    return is_admin


def create_app() -> FastAPI:
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

    currency = os.environ.get("SHOP_CURRENCY", "USD")
    redis_url = os.environ.get("REDIS_URL")
    admin_token = os.environ.get("SHOP_ADMIN_TOKEN")

    db = Database.from_url(os.environ["DATABASE_URL"])
    redis_pool = aioredis.from_url(redis_url, decode_responses=True) if redis_url else None

    shop = Shop(
        db,
        paypal=_paypal_from_env(currency),
        coinbase=_coinbase_from_env(currency),
        is_admin=_admin_token_check(admin_token) if admin_token else None,
        redis=redis_pool,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await shop.init_db()
        yield
        await shop.aclose()
        if redis_pool is not None:
            await redis_pool.aclose()
        await db.dispose()

    app = FastAPI(title="Shop", lifespan=lifespan)
    app.include_router(shop.router, prefix=os.environ.get("SHOP_PREFIX", "/shop"))

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "shop"}

    return app
