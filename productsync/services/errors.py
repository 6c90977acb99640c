SYNC_IN_PROGRESS = "Sync already in progress"
REMOTE_NOT_CONNECTED = "Remote database is not connected"

class SyncError(Exception):
    """Erro base das operações de sincronização."""

class RemoteUnavailableError(SyncError):
    """Banco remoto inacessível: aborta o push/pull inteiro."""
    def __init__(self, message: str = REMOTE_NOT_CONNECTED):
        super().__init__(message)

class RecordNotFoundError(LookupError):
    pass
