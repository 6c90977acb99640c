import logging
from typing import Callable, List, Union
from productsync.models.sync import ConnectionStatus, SyncPhase, SyncProgress

logger = logging.getLogger("SyncNotifier")

Event = Union[SyncProgress, ConnectionStatus]
Listener = Callable[[Event], None]

class SyncNotifier:
    """
    Canal de status/progresso para quem consome o motor (UI, API, logs).
    Registro explícito de observadores no lugar de um barramento global.
    """
    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registra o listener e devolve a função que cancela a inscrição."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: Event):
        # Cópia: um listener pode se desinscrever durante a notificação
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener {listener!r} failed handling {type(event).__name__}")

def log_event(event: Event):
    """Listener padrão: espelha os eventos no log."""
    if isinstance(event, SyncProgress):
        if event.phase == SyncPhase.FAILED:
            logger.error(f"Sync {event.direction.value} failed: {event.error}")
        else:
            logger.info(f"Sync {event.direction.value} {event.phase.value} ({event.count})")
    else:
        level = logging.WARNING if event.error else logging.INFO
        logger.log(
            level,
            f"Connection {event.state.value}: internet={event.internet_connected} "
            f"db={event.db_connected} attempt={event.attempt}/{event.max_attempts}"
            + (f" error={event.error}" if event.error else ""),
        )
