"""
Shop — チェックアウト

商品と決済方法から、プロバイダ上に支払い待ちの注文／チャージを作成する。

metadata には {product_id, ...extra_context} を埋め込む。プロバイダは
決済結果の通知でこれをそのまま返すので、マテリアライザは何が購入されたかを
知ることができる。

プロバイダの応答 (承認 URL + 注文 ID、または決済ページ URL + チャージコード)
は変換せずに返す。
"""

import logging

from . import queries
from .database import Database
from .errors import NotFound, ProviderError, ShopError, ValidationError
from .providers.base import PaymentProvider

logger = logging.getLogger(__name__)

# 決済方法 → プロバイダの作成メソッド名
PAYMENT_METHODS = {
    "paypal": "create_order",
    "crypto": "create_charge",
}


class CheckoutInitiator:
    def __init__(self, db: Database, providers: dict[str, PaymentProvider]) -> None:
        self.db = db
        self.providers = providers

    async def initiate(self, product_id: int, method: str, extra_context: dict | None = None) -> dict:
        """
        チェックアウトを開始する。

        1. 決済方法を検証 (未対応・未設定なら ValidationError)
        2. 商品を取得 (無ければ NotFound)
        3. プロバイダに注文／チャージ作成を依頼
           (プロバイダが ShopError を送出した場合はそのまま、それ以外は ProviderError)
        """
        create_method = PAYMENT_METHODS.get(method)
        if create_method is None:
            raise ValidationError(f"unsupported payment method '{method}'")

        provider = self.providers.get(method)
        if provider is None:
            raise ValidationError(f"payment method '{method}' is not configured")

        product = await queries.get_product(self.db, product_id)
        if product is None:
            raise NotFound("product not found")

        metadata = {"product_id": product.id, **(extra_context or {})}
        try:
            result = await getattr(provider, create_method)(
                title=product.name,
                price=product.price,
                metadata=metadata,
            )
        except ShopError:
            raise
        except Exception as e:
            logger.exception("Checkout via %s failed for product %s", method, product.id)
            raise ProviderError(str(e)) from e

        logger.info("Checkout via %s started for product %s", method, product.id)
        return result
