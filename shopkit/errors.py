"""
Shop — エラー定義

操作はこれらの例外を送出し、ルーター境界で
`{"error": message}` 形式の JSON レスポンスに変換される。
"""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(ShopError):
    """商品・カテゴリ・注文が存在しない"""
    status_code = 404


class Unauthorized(ShopError):
    """メタデータ付与フックがリクエストを拒否した"""
    status_code = 401


class Forbidden(ShopError):
    """管理者チェックに失敗した"""
    status_code = 403


class ValidationError(ShopError):
    """必須項目の欠落・未登録のアクションキー・未対応の決済方法"""
    status_code = 400


class ProviderError(ShopError):
    """決済プロバイダ呼び出しの失敗（メッセージのみ保持）"""
    status_code = 502


class PersistenceError(ShopError):
    """ストアから伝播したエラー（メッセージのみ保持）"""
    status_code = 500
