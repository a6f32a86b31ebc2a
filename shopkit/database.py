"""
Shop — データベースアクセス

ホストアプリケーションの AsyncEngine を包み、ショップが必要とする
3つの操作だけを提供する:

- query_database: パラメータ化されたクエリの実行
  (文字列 SQL は text() に包み、ユーザー入力は必ずバインド変数で渡す)
- check_and_create_table: 冪等なテーブル作成
- transaction: 複数の書き込みを1つのトランザクションにまとめる
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from sqlalchemy import Table, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .schema import SHOP_TABLES


@dataclass(frozen=True)
class QueryResult:
    """行を返さない文の実行結果"""

    insert_id: int | None
    affected_rows: int


class Database:
    def __init__(
        self,
        engine: AsyncEngine,
        connection: AsyncConnection | None = None,
    ) -> None:
        self.engine = engine
        self._connection = connection

    @classmethod
    def from_url(cls, url: str, **engine_kwargs: Any) -> "Database":
        return cls(create_async_engine(url, echo=False, **engine_kwargs))

    async def query_database(
        self,
        statement,
        params: dict | None = None,
    ) -> list[dict] | QueryResult:
        """
        文を実行する。

        SELECT などの行を返す文は dict のリストを、
        INSERT / UPDATE / DELETE は QueryResult を返す。
        トランザクション内ではそのコネクションを使い、
        それ以外は1文ごとに自動コミットする。
        """
        if isinstance(statement, str):
            statement = text(statement)

        if self._connection is not None:
            return await _execute(self._connection, statement, params)

        async with self.engine.begin() as conn:
            return await _execute(conn, statement, params)

    async def check_and_create_table(self, table: Table) -> None:
        """テーブルが存在しなければ作成する（冪等）。"""
        async with self.engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: table.create(sync_conn, checkfirst=True))

    async def init_schema(self) -> None:
        for table in SHOP_TABLES:
            await self.check_and_create_table(table)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Database"]:
        """
        BEGIN … COMMIT のスコープを開く。

        ブロック内で例外が起きると ROLLBACK される。
        既にトランザクション内なら自分自身をそのまま返す。
        """
        if self._connection is not None:
            yield self
            return

        async with self.engine.begin() as conn:
            yield Database(self.engine, conn)

    async def dispose(self) -> None:
        await self.engine.dispose()


async def _execute(conn: AsyncConnection, statement, params: dict | None):
    if params:
        result = await conn.execute(statement, params)
    else:
        result = await conn.execute(statement)

    if result.returns_rows:
        return [dict(row._mapping) for row in result.fetchall()]
    return QueryResult(insert_id=result.lastrowid, affected_rows=result.rowcount)
