"""
Shop — ルーター

ホストの FastAPI アプリケーションに組み込むショップモジュール。

    shop = Shop(db, paypal=paypal, coinbase=coinbase,
                is_admin=check_admin, product_actions={"grant-role": grant_role})
    app.include_router(shop.router, prefix="/shop")
    await shop.init_db()        # lifespan の中で

構築時にプロバイダの決済通知を購読する。ホストが先に登録した購読者は
そのまま残り、ショップの注文記録より先に実行される。

エラーはすべて {"error": "..."} 形式の JSON で返す。
"""

import logging
from typing import Any, Awaitable, Callable

import httpx
import redis.asyncio as aioredis
from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from . import commands, queries
from .actions import ActionRegistry
from .checkout import CheckoutInitiator
from .database import Database
from .errors import (
    Forbidden,
    NotFound,
    PersistenceError,
    ProviderError,
    ShopError,
    Unauthorized,
    ValidationError,
)
from .models import CategoryInput, CreatePaymentRequest, PayPalOrderRequest, ProductInput
from .orders import OrderMaterializer
from .providers.base import PaymentProvider
from .subscriber import PaymentEventSubscriber

logger = logging.getLogger(__name__)

AdminCheck = Callable[[Request], Awaitable[bool]]
MetadataEnricher = Callable[[Request], Awaitable[dict | None]]


def _error(exc: Exception, **empty: Any) -> JSONResponse:
    if isinstance(exc, SQLAlchemyError):
        logger.exception("Database error")
        exc = PersistenceError(str(exc))
    elif isinstance(exc, httpx.HTTPError):
        exc = ProviderError(str(exc))
    elif not isinstance(exc, ShopError):
        logger.exception("Unhandled error in shop route")
        exc = ShopError(str(exc) or type(exc).__name__)
    return JSONResponse(
        {"error": exc.message, **empty},
        status_code=exc.status_code,
    )


async def _parse_body(request: Request, model: type[BaseModel]) -> BaseModel:
    """リクエストボディをモデルに変換する。不正な入力は ValidationError (400)。"""
    try:
        raw = await request.json()
    except ValueError as e:
        raise ValidationError("request body must be a JSON object") from e
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "body"
        if first["type"] == "missing":
            raise ValidationError(f"{field} is required") from e
        raise ValidationError(f"{field}: {first['msg']}") from e


class Shop:
    def __init__(
        self,
        db: Database,
        paypal: PaymentProvider | None = None,
        coinbase: PaymentProvider | None = None,
        is_admin: AdminCheck | None = None,
        enrich_metadata: MetadataEnricher | None = None,
        product_actions: dict | None = None,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self.db = db
        self.paypal = paypal
        self.coinbase = coinbase
        self.is_admin = is_admin
        self.enrich_metadata = enrich_metadata

        self.registry = ActionRegistry(product_actions)
        self.materializer = OrderMaterializer(db, self.registry, redis)
        self.providers = {
            method: provider
            for method, provider in (("paypal", paypal), ("crypto", coinbase))
            if provider is not None
        }
        self.checkout = CheckoutInitiator(db, self.providers)

        self.subscriber = PaymentEventSubscriber(self.materializer)
        for provider in self.providers.values():
            self.subscriber.attach(provider)

        self.router = APIRouter()
        self._register_routes()

    async def init_db(self) -> None:
        await self.db.init_schema()

    async def aclose(self) -> None:
        for provider in self.providers.values():
            await provider.aclose()

    async def _require_admin(self, request: Request) -> None:
        # is_admin 未設定なら管理 API は誰でも使える
        if self.is_admin is None:
            return
        if not await self.is_admin(request):
            raise Forbidden("forbidden")

    def _register_routes(self) -> None:
        self._register_product_routes()
        self._register_category_routes()
        self._register_order_routes()
        self._register_payment_routes()
        self._register_action_routes()

        @self.router.get("/admin/check")
        async def admin_check(request: Request):
            if self.is_admin is None:
                return {"isAdmin": False}
            return {"isAdmin": bool(await self.is_admin(request))}

    # ── 商品 ─────────────────────────────────────

    def _register_product_routes(self) -> None:
        router = self.router

        @router.get("/products/list")
        async def list_products():
            try:
                products = await queries.list_products(self.db)
            except Exception as e:
                return _error(e, products=[])
            return {"error": None, "products": jsonable_encoder(products)}

        @router.get("/products/list/{category}")
        async def list_products_by_category(category: str):
            try:
                products = await queries.list_products(self.db, category)
            except Exception as e:
                return _error(e, products=[])
            return {"error": None, "products": jsonable_encoder(products)}

        @router.get("/product/{product_id}")
        async def get_product(product_id: int):
            try:
                product = await queries.get_product(self.db, product_id)
                if product is None:
                    raise NotFound("product not found")
            except Exception as e:
                return _error(e, product=None)
            return {"error": None, "product": jsonable_encoder(product)}

        @router.post("/product/create", status_code=201)
        async def create_product(request: Request):
            try:
                await self._require_admin(request)
                data = await _parse_body(request, ProductInput)
                product = await commands.create_product(self.db, self.registry, data)
            except Exception as e:
                return _error(e, product=None)
            return {"error": None, "product": jsonable_encoder(product)}

        @router.post("/product/update/{product_id}")
        async def update_product(product_id: int, request: Request):
            try:
                await self._require_admin(request)
                data = await _parse_body(request, ProductInput)
                product = await commands.update_product(self.db, self.registry, product_id, data)
            except Exception as e:
                return _error(e, product=None)
            return {"error": None, "product": jsonable_encoder(product)}

        @router.delete("/product/delete/{product_id}")
        async def delete_product(product_id: int, request: Request):
            try:
                await self._require_admin(request)
                await commands.delete_product(self.db, product_id)
            except Exception as e:
                return _error(e, success=False)
            return {"error": None, "success": True}

    # ── カテゴリ ─────────────────────────────────

    def _register_category_routes(self) -> None:
        router = self.router

        @router.get("/categories/list")
        async def list_categories():
            try:
                categories = await queries.list_categories(self.db)
            except Exception as e:
                return _error(e, categories=[])
            return {"error": None, "categories": jsonable_encoder(categories)}

        @router.post("/category/create", status_code=201)
        async def create_category(request: Request):
            try:
                await self._require_admin(request)
                data = await _parse_body(request, CategoryInput)
                category = await commands.create_category(self.db, data)
            except Exception as e:
                return _error(e, category=None)
            return {"error": None, "category": jsonable_encoder(category)}

        @router.post("/category/update/{category_id}")
        async def update_category(category_id: int, request: Request):
            try:
                await self._require_admin(request)
                data = await _parse_body(request, CategoryInput)
                category = await commands.update_category(self.db, category_id, data)
            except Exception as e:
                return _error(e, category=None)
            return {"error": None, "category": jsonable_encoder(category)}

        @router.delete("/category/delete/{category_id}")
        async def delete_category(category_id: int, request: Request):
            try:
                await self._require_admin(request)
                await commands.delete_category(self.db, category_id)
            except Exception as e:
                return _error(e, success=False)
            return {"error": None, "success": True}

    # ── 注文 (読み取りのみ) ──────────────────────

    def _register_order_routes(self) -> None:
        @self.router.get("/order/{order_id}")
        async def get_order(order_id: int, request: Request):
            try:
                await self._require_admin(request)
                order = await queries.get_order(self.db, order_id)
                if order is None:
                    raise NotFound("order not found")
                items = await queries.list_order_lines(self.db, order_id)
            except Exception as e:
                return _error(e, order=None, items=[])
            return {
                "error": None,
                "order": jsonable_encoder(order),
                "items": jsonable_encoder(items),
            }

    # ── 決済 ─────────────────────────────────────

    def _register_payment_routes(self) -> None:
        router = self.router

        @router.post("/payment/create")
        async def create_payment(request: Request):
            try:
                req = await _parse_body(request, CreatePaymentRequest)
                extra = await self.enrich_metadata(request) if self.enrich_metadata else {}
                if extra is None:
                    raise Unauthorized("unauthorized")
                result = await self.checkout.initiate(req.product_id, req.payment_method, extra)
            except Exception as e:
                return _error(e)
            return {"error": None, **result}

        @router.post("/payment/paypal/capture")
        async def capture_paypal_order(request: Request):
            try:
                req = await _parse_body(request, PayPalOrderRequest)
                status = await self._paypal_call("capture_order", req.orderId)
            except Exception as e:
                return _error(e, status=None)
            return {"error": None, "status": status}

        @router.post("/payment/paypal/cancel")
        async def cancel_paypal_order(request: Request):
            try:
                req = await _parse_body(request, PayPalOrderRequest)
                await self._paypal_call("cancel_order", req.orderId)
            except Exception as e:
                return _error(e, status=None)
            return {"error": None, "status": "CANCELLED"}

        @router.post("/payment/coinbase/webhook")
        async def coinbase_webhook(request: Request):
            handle_webhook = getattr(self.coinbase, "handle_webhook", None)
            try:
                if handle_webhook is None:
                    raise ValidationError("payment method 'crypto' is not configured")
                body = await request.body()
                kind = await handle_webhook(body, request.headers.get("X-CC-Webhook-Signature"))
            except Exception as e:
                return _error(e, received=False)
            return {"error": None, "received": kind is not None}

    async def _paypal_call(self, name: str, order_id: str):
        call = getattr(self.paypal, name, None)
        if call is None:
            raise ValidationError("payment method 'paypal' is not configured")
        return await call(order_id)

    # ── 商品アクション ───────────────────────────

    def _register_action_routes(self) -> None:
        @self.router.get("/actions/list")
        async def list_actions(request: Request):
            try:
                await self._require_admin(request)
            except Exception as e:
                return _error(e, actions=[])
            return {"error": None, "actions": self.registry.list()}
