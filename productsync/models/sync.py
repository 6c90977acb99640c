from typing import Optional
from datetime import datetime
from enum import Enum
from sqlmodel import SQLModel

class SyncPhase(str, Enum):
    STARTED = "started"
    IN_PROGRESS = "inprogress"
    COMPLETED = "completed"
    FAILED = "failed"

class SyncDirection(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"

class ConnectionState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"

# --- Resultados das operações públicas ---

class PushResult(SQLModel):
    success: bool
    uploaded_count: int = 0
    failed_count: int = 0
    error: Optional[str] = None

class PullResult(SQLModel):
    success: bool
    downloaded_count: int = 0
    error: Optional[str] = None

class FullSyncResult(SQLModel):
    success: bool
    uploaded_count: int = 0
    downloaded_count: int = 0
    error: Optional[str] = None

class SyncStatus(SQLModel):
    pending_uploads: int = 0
    pending_downloads: int = 0
    last_synced_at: Optional[datetime] = None
    is_syncing: bool = False
    auto_sync_enabled: bool = False

class ReconnectResult(SQLModel):
    success: bool
    error: Optional[str] = None

# --- Eventos publicados no Notifier ---

class SyncProgress(SQLModel):
    """Evento de fase/contagem de um push ou pull."""
    phase: SyncPhase
    direction: SyncDirection
    count: int = 0
    error: Optional[str] = None

class ConnectionStatus(SQLModel):
    """Evento de conectividade publicado pelo ConnectionMonitor."""
    state: ConnectionState
    internet_connected: bool
    db_connected: bool
    reconnecting: bool = False
    attempt: int = 0
    max_attempts: int = 0
    error: Optional[str] = None

# --- Corpo/resposta da API ---

class AutoSyncRequest(SQLModel):
    enabled: bool

class FirstRunState(SQLModel):
    first_run: bool
