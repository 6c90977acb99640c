import logging
from productsync.config.settings import Settings
from productsync.data.kv_store import KVStore
from productsync.data.local_store import LocalStore
from productsync.data.product_repository import ProductRepository
from productsync.data.remote_store import RemoteStore
from productsync.services.connection_monitor import ConnectionMonitor
from productsync.services.first_run import FirstRunService
from productsync.services.identity import NodeIdentity
from productsync.services.notifier import SyncNotifier, log_event
from productsync.services.sync_manager import SyncManager

logger = logging.getLogger("Bootstrap")

class Services:
    """
    Serviços de vida longa do processo, criados uma vez e injetados
    em quem precisa (API, CLI). Nada de estado global.
    """
    def __init__(self, settings: Settings):
        self.settings = settings
        self.local = LocalStore.from_path(settings.local_database_file, echo=settings.sql_echo)
        self.remote = RemoteStore.from_settings(settings)
        self.kv_store = KVStore(settings.local_database_file)
        self.identity = NodeIdentity(settings.node_identity_file)
        self.products = ProductRepository(self.local)

        self.notifier = SyncNotifier()
        self.notifier.subscribe(log_event)

        self.monitor = ConnectionMonitor(
            self.remote,
            probe_url=settings.probe_url,
            probe_timeout=settings.probe_timeout,
            check_interval=settings.health_check_interval,
            max_attempts=settings.reconnect_max_attempts,
            base_delay=settings.reconnect_base_delay,
        )
        # Eventos de conexão saem pelo mesmo canal do progresso
        self.monitor.subscribe(self.notifier.publish)

        self.sync_manager = SyncManager(
            self.local,
            self.remote,
            self.identity.node_id,
            notifier=self.notifier,
            settings=settings,
            monitor=self.monitor,
            kv_store=self.kv_store,
        )
        self.first_run = FirstRunService(self.sync_manager, self.kv_store)

    async def start(self):
        await self.local.create_schema()
        try:
            await self.remote.connect()
            await self.remote.create_schema()
        except Exception as e:
            # O monitor assume daqui: entra no loop de reconexão
            logger.error(f"Remote database unavailable at startup: {e}")
        await self.monitor.start()
        self.sync_manager.restore_auto_sync()
        logger.info(f"Services started for node {self.identity.node_id}")

    async def stop(self):
        await self.sync_manager.stop()
        await self.monitor.stop()
        await self.remote.disconnect()
        await self.local.dispose()
        logger.info("Services stopped")

def build_services(settings: Settings) -> Services:
    return Services(settings)
