import pytest

from shopkit.actions import ActionRegistry
from shopkit.database import Database
from shopkit.orders import OrderMaterializer


class FakeRedis:
    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


@pytest.fixture()
async def db(tmp_path):
    database = Database.from_url(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    await database.init_schema()
    yield database
    await database.dispose()


@pytest.fixture()
def action_calls():
    return []


@pytest.fixture()
def registry(action_calls):
    async def grant_role(metadata, product, params):
        action_calls.append({"metadata": metadata, "product": product, "params": params})

    async def explode(metadata, product, params):
        raise RuntimeError("side effect failed")

    return ActionRegistry({
        "grant-role": {
            "label": "Grant role",
            "params": [{"key": "role", "label": "Role"}],
            "handler": grant_role,
        },
        "explode": explode,
    })


@pytest.fixture()
def redis():
    return FakeRedis()


@pytest.fixture()
def materializer(db, registry, redis):
    return OrderMaterializer(db, registry, redis)


async def count_rows(db: Database, table: str) -> int:
    rows = await db.query_database(f"SELECT COUNT(*) AS n FROM {table}")
    return rows[0]["n"]


async def insert_product(db: Database, **fields) -> int:
    values = {
        "name": "VIP Pass",
        "price": 20,
        "stock": 0,
        "active": True,
        "action": None,
        "action_params": None,
        "created_at": 1_700_000_000_000,
        **fields,
    }
    result = await db.query_database(
        """
        INSERT INTO products (name, price, stock, active, action, action_params, created_at)
        VALUES (:name, :price, :stock, :active, :action, :action_params, :created_at)
        """,
        values,
    )
    return result.insert_id
