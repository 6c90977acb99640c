import logging
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError, DataError
from sqlalchemy import func
from sqlmodel import select
from productsync.models.base import utc_now
from productsync.models.product import Product
from productsync.data.local_store import LocalStore
from productsync.services.errors import RecordNotFoundError

logger = logging.getLogger("ProductRepository")

# Campos que o CRUD nunca deixa o chamador sobrescrever
PROTECTED_FIELDS = {"id", "version", "is_modified_locally", "last_synced_at", "created_at", "deleted_at"}

class ProductRepository:
    """
    CRUD local de produtos. Toda mutação sobe a versão e marca a cópia
    como modificada localmente, para o próximo push levar a alteração.
    """
    def __init__(self, store: LocalStore):
        self.store = store

    async def create(self, product: Product) -> Product:
        product.version = 1
        product.is_modified_locally = True
        product.last_synced_at = None
        async with self.store.session() as session:
            session.add(product)
            await session.commit()
            await session.refresh(product)
            return product

    async def get(self, product_id: str) -> Optional[Product]:
        async with self.store.session() as session:
            return await session.get(Product, product_id)

    async def list_active(self) -> List[Product]:
        async with self.store.session() as session:
            statement = (
                select(Product)
                .where(Product.deleted_at.is_(None))
                .order_by(Product.updated_at.desc())
            )
            result = await session.exec(statement)
            return list(result.all())

    async def update(self, product_id: str, fields: Dict[str, Any]) -> Product:
        async with self.store.session() as session:
            product = await session.get(Product, product_id)
            if not product:
                raise RecordNotFoundError(f"Product with id {product_id} not found")

            for key, value in fields.items():
                # Só atualiza se o campo existir no modelo e não for de controle
                if key in PROTECTED_FIELDS or not hasattr(product, key):
                    continue
                setattr(product, key, value)

            product.version += 1
            product.is_modified_locally = True
            product.updated_at = utc_now()
            session.add(product)
            await session.commit()
            await session.refresh(product)
            return product

    async def soft_delete(self, product_id: str) -> Product:
        """Marca o registro como deletado (tombstone) e sobe a versão."""
        async with self.store.session() as session:
            product = await session.get(Product, product_id)
            if not product:
                raise RecordNotFoundError(f"Product with id {product_id} not found")

            now = utc_now()
            product.deleted_at = now
            product.updated_at = now
            product.version += 1
            product.is_modified_locally = True
            session.add(product)
            await session.commit()
            await session.refresh(product)
            return product

    async def pending_sync_count(self) -> int:
        async with self.store.session() as session:
            statement = select(func.count()).select_from(Product).where(Product.is_modified_locally == True)
            result = await session.exec(statement)
            return int(result.one())

    async def batch_insert(self, products: List[Product]) -> Dict[str, int]:
        """
        Importação em lote. Um registro inválido não derruba os outros:
        cada falha é contada e o lote continua.
        """
        imported, failed = 0, 0
        for product in products:
            product.version = product.version or 1
            product.is_modified_locally = True
            try:
                async with self.store.session() as session:
                    session.add(product)
                    await session.commit()
                imported += 1
            except (IntegrityError, DataError) as e:
                logger.error(f"Error inserting product {product.id}: {e}")
                failed += 1
        return {"imported": imported, "failed": failed}
