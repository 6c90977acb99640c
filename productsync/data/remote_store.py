import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Union
from sqlalchemy import bindparam, exists, func, insert, or_, select, text, update
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from productsync.config.settings import RemoteCredentials, Settings
from productsync.models.remote import product_acknowledgments, remote_metadata, remote_products
from productsync.services.errors import RemoteUnavailableError

logger = logging.getLogger("RemoteStore")

# União idempotente no conjunto de confirmações: nunca remove membros
ACKNOWLEDGE_SQL = text("""
    INSERT INTO product_acknowledgments (product_id, node_id)
    SELECT id, CAST(:node_id AS VARCHAR(64)) FROM products
    WHERE id IN :ids
    ON CONFLICT DO NOTHING
""").bindparams(bindparam("ids", expanding=True))

class RemoteStore:
    """
    Adaptador do banco compartilhado (PostgreSQL).
    Dono do engine e das credenciais; expõe leitura/escrita em lote e
    queries parametrizadas cruas.
    """
    def __init__(self, url: Union[str, URL], echo: bool = False, ssl: bool = False):
        self.url = url
        self.echo = echo
        self.ssl = ssl
        self.engine: Optional[AsyncEngine] = None
        self._connect_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemoteStore":
        ssl = bool(settings.remote_credentials and settings.remote_credentials.ssl)
        return cls(settings.remote_url(), echo=settings.sql_echo, ssl=ssl)

    def set_credentials(self, credentials: RemoteCredentials):
        """Troca as credenciais; vale a partir da próxima reconexão."""
        self.url = credentials.to_url()
        self.ssl = credentials.ssl
        if self.is_connected:
            logger.info("Credentials updated. Reconnect for the change to take effect.")

    # --- CICLO DE VIDA DA CONEXÃO ---

    @property
    def is_connected(self) -> bool:
        return self.engine is not None

    async def connect(self) -> AsyncEngine:
        """Conecta uma única vez; chamadas concorrentes esperam a mesma tentativa."""
        if self.engine is not None:
            return self.engine
        async with self._connect_lock:
            if self.engine is not None:
                return self.engine

            connect_args = {"ssl": "require"} if self.ssl else {}
            engine = create_async_engine(
                self.url,
                echo=self.echo,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
            try:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
            except Exception as e:
                logger.error(f"Error connecting to remote database: {e}")
                await engine.dispose()
                raise

            self.engine = engine
            logger.info("Remote database connection established")
            return engine

    async def disconnect(self):
        if self.engine is not None:
            engine, self.engine = self.engine, None
            await engine.dispose()
            logger.info("Remote database connection closed")

    async def check_health(self) -> bool:
        """SELECT 1 no servidor. Qualquer falha conta como fora do ar."""
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Remote database health check failed: {e}")
            return False

    def get_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RemoteUnavailableError()
        return self.engine

    async def create_schema(self):
        async with self.get_engine().begin() as conn:
            await conn.run_sync(remote_metadata.create_all)

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None):
        """Query parametrizada crua; devolve as linhas quando houver."""
        async with self.get_engine().begin() as conn:
            result = await conn.execute(text(sql), params or {})
            return [dict(row._mapping) for row in result] if result.returns_rows else []

    # --- LEITURAS ---

    async def find_by_ids(self, ids: List[str]) -> Dict[str, int]:
        """Mapa id -> version dos registros que já existem no servidor."""
        if not ids:
            return {}
        async with self.get_engine().connect() as conn:
            result = await conn.execute(
                select(remote_products.c.id, remote_products.c.version)
                .where(remote_products.c.id.in_(ids))
            )
            return {row.id: int(row.version) for row in result}

    async def fetch_by_ids(self, ids: List[str]) -> List[Dict[str, Any]]:
        """Linhas completas, para adotar a cópia do servidor num conflito perdido."""
        if not ids:
            return []
        async with self.get_engine().connect() as conn:
            result = await conn.execute(
                select(remote_products).where(remote_products.c.id.in_(ids))
            )
            return [dict(row._mapping) for row in result]

    def _changes_filter(self, node_id: str, low_water: datetime, deleted: bool):
        acknowledged = exists().where(
            product_acknowledgments.c.product_id == remote_products.c.id,
            product_acknowledgments.c.node_id == node_id,
        ).correlate(remote_products)
        if deleted:
            state = remote_products.c.deleted_at.is_not(None)
        else:
            state = remote_products.c.deleted_at.is_(None)
        # Nunca visto por este nó, OU visto mas alterado desde o último sync.
        # updated_at é a hora da escrita no servidor (tombstones inclusive)
        return acknowledged, [state, or_(~acknowledged, remote_products.c.updated_at > low_water)]

    async def fetch_changes(self, node_id: str, low_water: datetime, after_id: Optional[str],
                            limit: int, deleted: bool = False) -> List[Dict[str, Any]]:
        """
        Página (keyset por id) de registros que este nó ainda precisa receber.
        Cada linha traz `acknowledged`: se o nó já consta no conjunto.
        """
        acknowledged, filters = self._changes_filter(node_id, low_water, deleted)
        if after_id is not None:
            filters.append(remote_products.c.id > after_id)
        statement = (
            select(remote_products, acknowledged.label("acknowledged"))
            .where(*filters)
            .order_by(remote_products.c.id)
            .limit(limit)
        )
        async with self.get_engine().connect() as conn:
            result = await conn.execute(statement)
            return [dict(row._mapping) for row in result]

    async def count_changes(self, node_id: str, low_water: datetime, deleted: bool = False) -> int:
        _, filters = self._changes_filter(node_id, low_water, deleted)
        async with self.get_engine().connect() as conn:
            result = await conn.execute(
                select(func.count()).select_from(remote_products).where(*filters)
            )
            return int(result.scalar() or 0)

    async def acknowledged_by(self, product_id: str) -> Set[str]:
        async with self.get_engine().connect() as conn:
            result = await conn.execute(
                select(product_acknowledgments.c.node_id)
                .where(product_acknowledgments.c.product_id == product_id)
            )
            return {row.node_id for row in result}

    # --- ESCRITAS EM LOTE ---

    async def bulk_insert(self, rows: List[dict]) -> List[str]:
        if not rows:
            return []
        async with self.get_engine().begin() as conn:
            await conn.execute(insert(remote_products), rows)
        return [row["id"] for row in rows]

    async def bulk_update_with_version_guard(self, rows: List[dict]) -> List[str]:
        """
        UPDATE condicional: só aplica se a versão no servidor ainda for menor
        que a recebida no momento da escrita. Devolve os ids realmente gravados.
        """
        applied = []
        async with self.get_engine().begin() as conn:
            for row in rows:
                values = {k: v for k, v in row.items() if k != "id"}
                result = await conn.execute(
                    update(remote_products)
                    .where(
                        remote_products.c.id == row["id"],
                        remote_products.c.version < row["version"],
                    )
                    .values(**values)
                )
                if result.rowcount:
                    applied.append(row["id"])
        return applied

    async def bulk_soft_delete(self, ids: List[str], deleted_at: datetime,
                               version: int, changed_at: datetime) -> List[str]:
        """Tombstone em grupo (mesmo deleted_at/version), com a mesma guarda de versão."""
        if not ids:
            return []
        async with self.get_engine().begin() as conn:
            result = await conn.execute(
                update(remote_products)
                .where(
                    remote_products.c.id.in_(ids),
                    remote_products.c.version < version,
                )
                .values(
                    deleted_at=deleted_at,
                    version=version,
                    updated_at=changed_at,
                    last_synced_at=changed_at,
                )
                .returning(remote_products.c.id)
            )
            return [row.id for row in result]

    async def acknowledge(self, ids: List[str], node_id: str, chunk_size: int = 500) -> None:
        """Adiciona `node_id` ao conjunto de confirmações de cada id (append-only)."""
        if not ids:
            return
        async with self.get_engine().begin() as conn:
            for start in range(0, len(ids), chunk_size):
                chunk = ids[start:start + chunk_size]
                await conn.execute(ACKNOWLEDGE_SQL, {"node_id": node_id, "ids": chunk})
        logger.info(f"Marked {len(ids)} products as acknowledged by node {node_id}")
