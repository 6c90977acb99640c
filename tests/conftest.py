"""Fixtures compartilhadas: bancos SQLite temporários para os dois lados do sync.

O banco "remoto" dos testes também é SQLite (aiosqlite): o SQL do
RemoteStore é portável entre SQLite e PostgreSQL.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from productsync.config.settings import Settings
from productsync.data.local_store import LocalStore
from productsync.data.product_repository import ProductRepository
from productsync.data.remote_store import RemoteStore
from productsync.models.base import utc_now
from productsync.models.product import Product, SHARED_FIELDS
from productsync.services.notifier import SyncNotifier
from productsync.services.sync_manager import SyncManager


def make_product(**overrides) -> Product:
    values = {
        "part_number": "AB-1234",
        "item_name": "Office Standard",
        "price_list_id": "PL-2024",
        "net_price": Decimal("199.90"),
    }
    values.update(overrides)
    return Product(**values)


def remote_row(**overrides) -> dict:
    """Linha pronta para RemoteStore.bulk_insert."""
    product = make_product(**{k: v for k, v in overrides.items() if k in Product.model_fields})
    row = {field: getattr(product, field) for field in SHARED_FIELDS}
    row["updated_at"] = utc_now()
    row.update(overrides)
    return row


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path,
        remote_database_url=f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}",
    )


@pytest_asyncio.fixture
async def remote_store(tmp_path):
    store = RemoteStore(f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}")
    await store.connect()
    await store.create_schema()
    yield store
    await store.disconnect()


async def _local_store(path):
    store = LocalStore.from_path(path)
    await store.create_schema()
    return store


@pytest_asyncio.fixture
async def local_store(tmp_path):
    store = await _local_store(tmp_path / "node-a" / "product-database.db")
    yield store
    await store.dispose()


@pytest_asyncio.fixture
async def other_local_store(tmp_path):
    """Banco local de um segundo nó."""
    store = await _local_store(tmp_path / "node-b" / "product-database.db")
    yield store
    await store.dispose()


@pytest.fixture
def repo(local_store):
    return ProductRepository(local_store)


@pytest.fixture
def other_repo(other_local_store):
    return ProductRepository(other_local_store)


@pytest.fixture
def notifier():
    return SyncNotifier()


@pytest.fixture
def events(notifier):
    """Lista que recebe todo evento publicado no notifier."""
    received = []
    notifier.subscribe(received.append)
    return received


@pytest.fixture
def manager(local_store, remote_store, notifier, settings):
    return SyncManager(local_store, remote_store, "node-a", notifier=notifier, settings=settings)


@pytest.fixture
def other_manager(other_local_store, remote_store, settings):
    return SyncManager(other_local_store, remote_store, "node-b", settings=settings)
