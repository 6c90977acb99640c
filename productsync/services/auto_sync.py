import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Optional, Set
from productsync.models.sync import ConnectionState, ConnectionStatus
from productsync.services.connection_monitor import ConnectionMonitor

logger = logging.getLogger("AutoSyncScheduler")

class AutoSyncScheduler:
    """
    Timer de intervalo fixo que dispara um push, só quando habilitado e com
    o banco remoto conectado. Pull não é automático.
    Também retoma o push assim que o monitor reporta reconexão.
    """
    def __init__(
        self,
        trigger: Callable[[], Awaitable[Any]],
        monitor: ConnectionMonitor,
        interval: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.trigger = trigger
        self.monitor = monitor
        self.interval = interval
        self._sleep = sleep
        self.enabled = False
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._was_connected = monitor.is_connected
        self._unsubscribe = monitor.subscribe(self._on_connection_change)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_enabled(self, enabled: bool):
        """Liga/desliga o timer. Chamadas repetidas com o mesmo valor não fazem nada."""
        self.enabled = enabled
        if enabled and not self.is_running:
            self._task = asyncio.create_task(self._loop())
            logger.info(f"Auto-sync enabled (every {self.interval}s)")
        elif not enabled and self._task is not None:
            # Só para o timer: um push já disparado roda até o fim
            self._task.cancel()
            self._task = None
            logger.info("Auto-sync disabled")

    async def _loop(self):
        while True:
            await self._sleep(self.interval)
            await asyncio.shield(self._spawn(self.tick()))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def tick(self) -> bool:
        """Uma rodada do timer. Devolve True se o push foi disparado."""
        if not self.enabled:
            return False
        if not await self.monitor.check_remote_health():
            logger.info("Auto-sync skipped: remote database is not connected")
            return False
        logger.info("Auto-syncing products...")
        await self.trigger()
        return True

    def _on_connection_change(self, status: ConnectionStatus):
        connected = status.state == ConnectionState.CONNECTED
        resumed = connected and not self._was_connected
        self._was_connected = connected
        if resumed and self.enabled:
            logger.info("Database connected, resuming auto-sync...")
            self._spawn(self.trigger())

    async def shutdown(self):
        self._unsubscribe()
        tasks = [t for t in [self._task, *self._pending] if t is not None]
        self._task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
