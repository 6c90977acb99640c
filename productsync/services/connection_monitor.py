import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional
import httpx
from productsync.data.remote_store import RemoteStore
from productsync.models.sync import ConnectionState, ConnectionStatus, ReconnectResult
from productsync.services.notifier import SyncNotifier

logger = logging.getLogger("ConnectionMonitor")

NO_INTERNET = "No internet connection available. Please check your network."

class ConnectionMonitor:
    """
    Vigia a internet e a saúde do banco remoto.

    Estados: CONNECTED, RECONNECTING, DISCONNECTED. Quando o banco cai com a
    internet de pé, entra num loop de reconexão com backoff exponencial
    (base * 2^(tentativa-1)), limitado a `max_attempts`. Esgotadas as
    tentativas fica DISCONNECTED até um `reconnect()` manual ou até a internet
    voltar (novo ciclo).
    """
    def __init__(
        self,
        remote: RemoteStore,
        probe_url: str,
        probe_timeout: float = 5.0,
        check_interval: float = 10.0,
        max_attempts: int = 5,
        base_delay: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.remote = remote
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self.check_interval = check_interval
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._client = client or httpx.AsyncClient(timeout=probe_timeout)
        self._owns_client = client is None
        self._sleep = sleep

        self.internet_connected = True
        self.db_connected = False
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self._exhausted = False

        self.events = SyncNotifier()
        self._monitor_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    def subscribe(self, listener):
        return self.events.subscribe(listener)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def status(self, error: Optional[str] = None) -> ConnectionStatus:
        return ConnectionStatus(
            state=self.state,
            internet_connected=self.internet_connected,
            db_connected=self.db_connected,
            reconnecting=self.is_reconnecting,
            attempt=self.reconnect_attempts,
            max_attempts=self.max_attempts,
            error=error,
        )

    def _set_state(self, state: ConnectionState, error: Optional[str] = None):
        changed = state != self.state
        self.state = state
        if changed or error:
            self.events.publish(self.status(error))

    # --- CICLO DE VIDA ---

    async def start(self):
        """Checagem inicial e início do probe periódico."""
        await self.check_internet()
        await self.check_remote_health()
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.create_task(self._monitor_loop())

    async def stop(self):
        for task in (self._monitor_task, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._monitor_task = None
        self._reconnect_task = None
        if self._owns_client:
            await self._client.aclose()

    async def _monitor_loop(self):
        while True:
            await self._sleep(self.check_interval)
            await self.check_internet()

    # --- PROBES ---

    async def check_internet(self) -> bool:
        """HEAD num endereço confiável. Erro de transporte ou 5xx = offline."""
        try:
            response = await self._client.head(self.probe_url, timeout=self.probe_timeout)
            connected = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Internet probe failed: {e}")
            connected = False

        if connected != self.internet_connected:
            self.internet_connected = connected
            self.events.publish(self.status())
            if connected:
                # Internet voltou: novo ciclo, checa o banco na hora
                self._exhausted = False
                if not self.db_connected:
                    await self.check_remote_health()
        return connected

    async def check_remote_health(self) -> bool:
        """SELECT 1 no remoto. Falha com internet de pé dispara a reconexão."""
        healthy = await self.remote.check_health()
        previous = self.db_connected
        self.db_connected = healthy

        if healthy:
            self._exhausted = False
            self._set_state(ConnectionState.CONNECTED)
            return True

        if previous:
            logger.warning("Remote database connection lost")
        if self.internet_connected and not self._exhausted:
            self.start_reconnecting()
        elif not self.is_reconnecting:
            self._set_state(ConnectionState.DISCONNECTED)
        return False

    # --- RECONEXÃO ---

    def start_reconnecting(self):
        """Inicia o loop de backoff, se ainda não houver um rodando."""
        if self.is_reconnecting:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))

    async def _reconnect_loop(self):
        self.reconnect_attempts = 0
        while self.reconnect_attempts < self.max_attempts:
            self.reconnect_attempts += 1
            delay = self.backoff_delay(self.reconnect_attempts)
            logger.info(
                f"Attempting database reconnection in {delay}s "
                f"(attempt {self.reconnect_attempts}/{self.max_attempts})"
            )
            # Publica a cada tentativa (o número da tentativa muda)
            self.state = ConnectionState.RECONNECTING
            self.events.publish(self.status())
            await self._sleep(delay)

            result = await self._attempt_reconnect()
            if result.success:
                self.reconnect_attempts = 0
                return

        # Esgotou: fica desconectado até retry manual
        self._exhausted = True
        self._reconnect_task = None
        self._set_state(
            ConnectionState.DISCONNECTED,
            error=(
                f"Failed to reconnect after {self.max_attempts} attempts. "
                "Please check your network or database configuration."
            ),
        )

    async def _attempt_reconnect(self) -> ReconnectResult:
        if await self.remote.check_health():
            self._mark_reconnected()
            return ReconnectResult(success=True)

        if not await self.check_internet():
            return ReconnectResult(success=False, error=NO_INTERNET)

        try:
            # Estado limpo antes de reconectar
            await self.remote.disconnect()
            await self.remote.connect()
        except Exception as e:
            logger.error(f"Error reconnecting to database: {e}")
            self.db_connected = False
            return ReconnectResult(success=False, error=str(e))

        if await self.remote.check_health():
            self._mark_reconnected()
            return ReconnectResult(success=True)
        self.db_connected = False
        return ReconnectResult(success=False, error="Failed to establish database connection.")

    def _mark_reconnected(self):
        self.db_connected = True
        self._exhausted = False
        self.reconnect_attempts = 0
        logger.info("Remote database reconnected")
        self._set_state(ConnectionState.CONNECTED)

    async def reconnect(self) -> ReconnectResult:
        """
        Retry manual: uma tentativa imediata. Se falhar, recomeça o ciclo
        de backoff do zero.
        """
        self._exhausted = False
        result = await self._attempt_reconnect()
        if not result.success:
            if self.internet_connected:
                self.start_reconnecting()
            else:
                self._set_state(ConnectionState.DISCONNECTED, error=result.error)
        return result
