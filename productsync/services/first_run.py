import logging
from productsync.data.kv_store import FIRST_RUN_COMPLETE, KVStore
from productsync.models.base import utc_now
from productsync.models.sync import PullResult
from productsync.services.sync_manager import SyncManager

logger = logging.getLogger("FirstRunService")

class FirstRunService:
    """Carga inicial: na primeira execução o nó baixa tudo do servidor."""

    def __init__(self, sync_manager: SyncManager, kv_store: KVStore):
        self.sync_manager = sync_manager
        self.kv_store = kv_store

    def is_first_run(self) -> bool:
        return self.kv_store.get(FIRST_RUN_COMPLETE) is None

    async def run_initial_sync(self) -> PullResult:
        logger.info("First run detected - performing initial data sync")
        result = await self.sync_manager.pull()
        if result.success:
            self._mark_complete()
        else:
            logger.error(f"Initial sync failed: {result.error}")
        return result

    def skip(self):
        logger.info("Initial sync skipped by user")
        self._mark_complete()

    def reset(self):
        self.kv_store.delete(FIRST_RUN_COMPLETE)

    def _mark_complete(self):
        # Valor = horário da conclusão
        self.kv_store.set(FIRST_RUN_COMPLETE, utc_now().isoformat())
        logger.info("First run completed")
