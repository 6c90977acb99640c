import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlmodel import Field, SQLModel

# Timestamps em UTC "naive": os dois bancos usam timestamp without time zone
def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

class SyncModel(SQLModel):
    """
    Classe Base para todas as entidades sincronizáveis.
    Implementa UUID, Soft Delete (tombstone), Versão e Metadados de Auditoria.
    """
    # Identificador UUID v4 (NUNCA usar Autoincrement)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)

    # Versão monotônica: começa em 1 e sobe a cada mutação desta cópia
    version: int = Field(default=1)

    # Metadados de Auditoria
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Última confirmação de sincronização
    last_synced_at: Optional[datetime] = Field(default=None, index=True)

    # Tombstone para Soft Delete (nunca apagamos fisicamente durante o sync)
    deleted_at: Optional[datetime] = Field(default=None, index=True)
