"""
Shop — 商品アクションレジストリ

購入完了後に実行する副作用(商品アクション)をキーで引けるようにする。

登録は起動時に1回だけ。次の2つの形を受け付け、同じ ActionDefinition に正規化する:

    {"grant-role": grant_role}                     # ハンドラ関数のみ
    {"grant-role": {"label": "Grant role",         # 完全な定義
                    "params": [{"key": "role", "label": "Role"}],
                    "handler": grant_role}}

ハンドラは (metadata, product, params) で呼ばれる。同期・非同期どちらでもよい。
"""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from pydantic import BaseModel

from .errors import ValidationError


class ActionParam(BaseModel):
    """管理画面でフォームを組み立てるためのパラメータ宣言"""
    key: str
    label: str
    type: str = "text"


@dataclass(frozen=True)
class ActionDefinition:
    key: str
    label: str
    params: tuple[ActionParam, ...]
    handler: Callable[..., Any]

    async def run(self, metadata: dict, product, params: dict) -> None:
        result = self.handler(metadata, product, params)
        if inspect.isawaitable(result):
            await result

    def describe(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "params": [p.model_dump() for p in self.params],
        }


def _normalize(key: str, entry) -> ActionDefinition:
    if isinstance(entry, ActionDefinition):
        return entry
    if callable(entry):
        return ActionDefinition(key=key, label=key, params=(), handler=entry)
    if isinstance(entry, Mapping):
        handler = entry.get("handler")
        if not callable(handler):
            raise ValidationError(f"action '{key}' has no callable handler")
        return ActionDefinition(
            key=key,
            label=entry.get("label") or key,
            params=tuple(ActionParam.model_validate(p) for p in entry.get("params") or ()),
            handler=handler,
        )
    raise ValidationError(f"action '{key}' must be a handler or a definition")


class ActionRegistry:
    """
    キー → ActionDefinition の読み取り専用マップ。

    構築後に登録・削除する API は持たない。
    未登録キーの resolve は None を返し、例外は送出しない。
    """

    def __init__(self, actions: Mapping[str, Any] | None = None) -> None:
        self._actions: dict[str, ActionDefinition] = {
            key: _normalize(key, entry) for key, entry in (actions or {}).items()
        }

    def resolve(self, key: str | None) -> ActionDefinition | None:
        if not key:
            return None
        return self._actions.get(key)

    def list(self) -> list[dict]:
        return [action.describe() for action in self._actions.values()]

    def __contains__(self, key: object) -> bool:
        return key in self._actions

    def __len__(self) -> int:
        return len(self._actions)
