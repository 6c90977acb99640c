import os
from pathlib import Path
from typing import Union
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

def get_db_path(path: Union[str, Path]) -> str:
    """Garante que o diretório do banco local exista e devolve o caminho."""
    target = Path(path)
    if target.parent and not target.parent.exists():
        os.makedirs(target.parent, exist_ok=True)
    return str(target)

def _apply_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    # --- CRÍTICO: Otimizações de Performance ---
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA temp_store=MEMORY;")
    # Habilitar chaves estrangeiras
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()

def create_local_engine(path: Union[str, Path], echo: bool = False) -> AsyncEngine:
    """
    Cria o engine assíncrono do SQLite local com as otimizações
    para concorrência (WAL) aplicadas em cada conexão nova.
    """
    db_path = get_db_path(path)
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=echo,
        connect_args={"timeout": 10.0},
    )
    event.listen(engine.sync_engine, "connect", _apply_sqlite_pragmas)
    return engine

def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
