from datetime import datetime
from typing import Dict, List, Optional, Tuple
from sqlalchemy import and_, bindparam, func, insert, or_, update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import SQLModel, select
from productsync.models.product import Product
from productsync.data.db_context import create_local_engine, create_session_factory

local_products = Product.__table__

class LocalStore:
    """
    Adaptador do banco embarcado (SQLite).
    Só primitivas transacionais em lote: nenhuma regra de negócio aqui.
    """
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session = create_session_factory(engine)

    @classmethod
    def from_path(cls, path, echo: bool = False) -> "LocalStore":
        return cls(create_local_engine(path, echo=echo))

    async def create_schema(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()

    # --- LEITURAS ---

    async def find_modified(self, deleted: bool) -> List[Product]:
        """Registros com edição local pendente (vivos ou tombstones)."""
        deleted_clause = Product.deleted_at.is_not(None) if deleted else Product.deleted_at.is_(None)
        async with self.session() as session:
            statement = (
                select(Product)
                .where(Product.is_modified_locally == True, deleted_clause)
                .order_by(Product.id)
            )
            result = await session.exec(statement)
            return list(result.all())

    async def find_by_ids(self, ids: List[str]) -> Dict[str, Tuple[int, bool]]:
        """Mapa id -> (version, is_modified_locally)."""
        if not ids:
            return {}
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(
                    local_products.c.id,
                    local_products.c.version,
                    local_products.c.is_modified_locally,
                ).where(local_products.c.id.in_(ids))
            )
            return {row.id: (int(row.version), bool(row.is_modified_locally)) for row in result}

    async def max_last_synced_at(self) -> Optional[datetime]:
        async with self.engine.connect() as conn:
            result = await conn.execute(select(func.max(local_products.c.last_synced_at)))
            return result.scalar()

    async def count_pending_uploads(self) -> int:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(func.count()).select_from(local_products).where(
                    local_products.c.is_modified_locally == True,
                    local_products.c.deleted_at.is_(None),
                )
            )
            return int(result.scalar() or 0)

    # --- ESCRITAS EM LOTE ---

    async def bulk_insert(self, rows: List[dict]) -> List[str]:
        if not rows:
            return []
        async with self.engine.begin() as conn:
            await conn.execute(insert(local_products), rows)
        return [row["id"] for row in rows]

    async def bulk_update_with_version_guard(self, rows: List[dict], allow_equal: bool = False) -> List[str]:
        """
        Aplica cada linha só se a cópia local ainda estiver atrás da versão
        recebida E não tiver edição local pendente. Devolve os ids aplicados.
        `allow_equal` aceita também a mesma versão (conflito perdido no push).
        """
        applied = []
        async with self.engine.begin() as conn:
            for row in rows:
                values = {k: v for k, v in row.items() if k != "id"}
                if allow_equal:
                    version_guard = local_products.c.version <= row["version"]
                else:
                    version_guard = local_products.c.version < row["version"]
                result = await conn.execute(
                    update(local_products)
                    .where(
                        local_products.c.id == row["id"],
                        version_guard,
                        local_products.c.is_modified_locally == False,
                    )
                    .values(**values)
                )
                if result.rowcount:
                    applied.append(row["id"])
        return applied

    async def bulk_soft_delete(self, ids: List[str], deleted_at: datetime,
                               version: int, synced_at: datetime) -> int:
        """
        Aplica um tombstone vindo do servidor. Não toca registros com edição
        local pendente nem registros já apagados nesta mesma versão.
        """
        if not ids:
            return 0
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(local_products)
                .where(
                    local_products.c.id.in_(ids),
                    local_products.c.is_modified_locally == False,
                    or_(
                        and_(local_products.c.deleted_at.is_(None), local_products.c.version <= version),
                        local_products.c.version < version,
                    ),
                )
                .values(
                    deleted_at=deleted_at,
                    version=version,
                    is_modified_locally=False,
                    last_synced_at=synced_at,
                )
            )
            return int(result.rowcount or 0)

    async def mark_synced(self, versions: Dict[str, int], synced_at: datetime):
        """
        Limpa a flag de edição local dos registros processados.
        Casa pela versão lida no início do lote: uma edição feita durante o
        envio (versão nova) continua pendente.
        """
        if not versions:
            return
        statement = (
            update(local_products)
            .where(
                local_products.c.id == bindparam("b_id"),
                local_products.c.version == bindparam("b_version"),
            )
            .values(is_modified_locally=False, last_synced_at=synced_at)
        )
        params = [{"b_id": pid, "b_version": version} for pid, version in versions.items()]
        async with self.engine.begin() as conn:
            await conn.execute(statement, params)
