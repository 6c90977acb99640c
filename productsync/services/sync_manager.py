import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from sqlalchemy.exc import DataError, IntegrityError

from productsync.config.settings import Settings
from productsync.data.kv_store import AUTO_SYNC_ENABLED, KVStore
from productsync.data.local_store import LocalStore
from productsync.data.remote_store import RemoteStore
from productsync.models.base import utc_now
from productsync.models.product import Product, SHARED_FIELDS
from productsync.models.sync import (
    FullSyncResult, PullResult, PushResult, SyncDirection, SyncPhase,
    SyncProgress, SyncStatus,
)
from productsync.services.auto_sync import AutoSyncScheduler
from productsync.services.connection_monitor import ConnectionMonitor
from productsync.services.errors import RemoteUnavailableError, SYNC_IN_PROGRESS
from productsync.services.notifier import SyncNotifier

logger = logging.getLogger("SyncManager")

# Erros de um registro só: o lote segue, o registro conta como falha
PER_RECORD_ERRORS = (IntegrityError, DataError)

EPOCH = datetime(1970, 1, 1)

Writer = Callable[[List[dict]], Awaitable[List[str]]]

def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]

def group_by_deletion(rows: List[dict]) -> Dict[Tuple[datetime, int], List[dict]]:
    """Agrupa tombstones pelo par (deleted_at, version): um UPDATE por grupo."""
    groups: Dict[Tuple[datetime, int], List[dict]] = {}
    for row in rows:
        groups.setdefault((row["deleted_at"], row["version"]), []).append(row)
    return groups

def to_remote_row(product: Product, written_at: datetime) -> dict:
    row = {field: getattr(product, field) for field in SHARED_FIELDS}
    # Hora da escrita no servidor: é o que os outros nós comparam com o low-water mark
    row["updated_at"] = written_at
    row["last_synced_at"] = written_at
    return row

def to_local_row(remote_row: Dict[str, Any], synced_at: datetime) -> dict:
    row = {field: remote_row[field] for field in SHARED_FIELDS}
    row["is_modified_locally"] = False
    row["last_synced_at"] = synced_at
    return row

class SyncManager:
    """
    Orquestra a sincronização entre o SQLite local e o PostgreSQL compartilhado.

    Push: envia registros com `is_modified_locally`, em lotes, com escrita
    condicional por versão (last-writer-wins). Pull: baixa o que este nó ainda
    não confirmou ou o que mudou desde o último sync, sem nunca sobrescrever
    uma edição local pendente. Um único push/pull por vez (single-flight).
    """
    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        node_id: str,
        notifier: Optional[SyncNotifier] = None,
        settings: Optional[Settings] = None,
        monitor: Optional[ConnectionMonitor] = None,
        kv_store: Optional[KVStore] = None,
    ):
        self.local = local
        self.remote = remote
        self.node_id = node_id
        self.notifier = notifier or SyncNotifier()
        self.settings = settings or Settings()
        self.monitor = monitor
        self.kv_store = kv_store

        self.is_syncing = False
        self.auto_sync_enabled = False
        self.scheduler: Optional[AutoSyncScheduler] = None
        if monitor is not None:
            self.scheduler = AutoSyncScheduler(self.push, monitor, self.settings.auto_sync_interval)

    # --- API PÚBLICA ---

    async def push(self) -> PushResult:
        # Checagem e marcação sem await no meio: nada entra entre as duas
        if self.is_syncing:
            logger.warning("Push requested while another sync is running")
            return PushResult(success=False, error=SYNC_IN_PROGRESS)
        self.is_syncing = True
        try:
            uploaded, failed = await self._run_push()
            return PushResult(success=True, uploaded_count=uploaded, failed_count=failed)
        except Exception as e:
            return PushResult(success=False, error=str(e))
        finally:
            self.is_syncing = False

    async def pull(self) -> PullResult:
        if self.is_syncing:
            logger.warning("Pull requested while another sync is running")
            return PullResult(success=False, error=SYNC_IN_PROGRESS)
        self.is_syncing = True
        try:
            downloaded = await self._run_pull()
            return PullResult(success=True, downloaded_count=downloaded)
        except Exception as e:
            return PullResult(success=False, error=str(e))
        finally:
            self.is_syncing = False

    async def full_sync(self) -> FullSyncResult:
        """Push seguido de pull, segurando o single-flight durante os dois."""
        if self.is_syncing:
            logger.warning("Full sync requested while another sync is running")
            return FullSyncResult(success=False, error=SYNC_IN_PROGRESS)
        self.is_syncing = True
        uploaded = 0
        try:
            # Marca lida antes do push: o mark_synced do push avançaria last_synced_at
            low_water = self._low_water_mark(await self.local.max_last_synced_at())
            uploaded, _ = await self._run_push()
            downloaded = await self._run_pull(low_water)
            return FullSyncResult(success=True, uploaded_count=uploaded, downloaded_count=downloaded)
        except Exception as e:
            return FullSyncResult(success=False, uploaded_count=uploaded, error=str(e))
        finally:
            self.is_syncing = False

    async def get_status(self) -> SyncStatus:
        pending_uploads = await self.local.count_pending_uploads()
        last_synced_at = await self.local.max_last_synced_at()

        pending_downloads = 0
        if self.remote.is_connected:
            try:
                low_water = self._low_water_mark(last_synced_at)
                pending_downloads = await self.remote.count_changes(self.node_id, low_water)
                pending_downloads += await self.remote.count_changes(self.node_id, low_water, deleted=True)
            except Exception as e:
                logger.warning(f"Could not count pending downloads: {e}")
                pending_downloads = 0

        return SyncStatus(
            pending_uploads=pending_uploads,
            pending_downloads=pending_downloads,
            last_synced_at=last_synced_at,
            is_syncing=self.is_syncing,
            auto_sync_enabled=self.auto_sync_enabled,
        )

    def set_auto_sync(self, enabled: bool, persist: bool = True):
        """Liga/desliga o push automático. Idempotente."""
        self.auto_sync_enabled = enabled
        if self.scheduler is not None:
            self.scheduler.set_enabled(enabled)
        if persist and self.kv_store is not None:
            self.kv_store.set_flag(AUTO_SYNC_ENABLED, enabled)

    def restore_auto_sync(self):
        """Reaplica a preferência salva (chamado na inicialização)."""
        if self.kv_store is None:
            return
        enabled = self.kv_store.get_flag(AUTO_SYNC_ENABLED, default=False)
        if enabled:
            logger.info("Restoring auto-sync preference")
        self.set_auto_sync(enabled, persist=False)

    async def stop(self):
        if self.scheduler is not None:
            await self.scheduler.shutdown()

    # --- INFRA ---

    def _notify(self, phase: SyncPhase, direction: SyncDirection, count: int = 0, error: Optional[str] = None):
        self.notifier.publish(SyncProgress(phase=phase, direction=direction, count=count, error=error))

    async def _ensure_remote(self):
        if self.monitor is not None:
            healthy = await self.monitor.check_remote_health()
        else:
            healthy = await self.remote.check_health()
        if not healthy:
            raise RemoteUnavailableError()

    def _low_water_mark(self, last_synced_at: Optional[datetime]) -> datetime:
        if last_synced_at is None:
            return EPOCH
        return last_synced_at - timedelta(seconds=self.settings.safety_window_seconds)

    async def _write_with_fallback(self, write: Writer, rows: List[dict]) -> Tuple[List[str], List[str]]:
        """
        Escreve o lote inteiro; se um registro quebrar a transação, refaz
        linha a linha e devolve (ids aplicados, ids que falharam).
        """
        if not rows:
            return [], []
        try:
            return await write(rows), []
        except PER_RECORD_ERRORS as e:
            logger.warning(f"Batch write failed ({e.__class__.__name__}), retrying {len(rows)} rows one by one")

        applied, failed = [], []
        for row in rows:
            try:
                applied.extend(await write([row]))
            except PER_RECORD_ERRORS as e:
                logger.error(f"Failed to write product {row['id']}: {e.orig}")
                failed.append(row["id"])
        return applied, failed

    async def _acknowledge(self, ids: List[str]):
        await self.remote.acknowledge(ids, self.node_id, chunk_size=self.settings.ack_batch_size)

    # --- PUSH (local -> remoto) ---

    async def _run_push(self) -> Tuple[int, int]:
        direction = SyncDirection.UPLOAD
        self._notify(SyncPhase.STARTED, direction)
        try:
            await self._ensure_remote()
            uploaded, failed = await self._push_products(
                deleted=False,
                batch_size=self.settings.batch_size,
                update=self.remote.bulk_update_with_version_guard,
            )
            deleted, deleted_failed = await self._push_products(
                deleted=True,
                batch_size=self.settings.tombstone_batch_size,
                update=self._soft_delete_remote,
                progress_offset=uploaded,
            )
        except Exception as e:
            logger.error(f"Push failed: {e}")
            self._notify(SyncPhase.FAILED, direction, error=str(e))
            raise

        uploaded += deleted
        failed += deleted_failed
        logger.info(f"Push finished: {uploaded} uploaded, {failed} failed")
        self._notify(SyncPhase.COMPLETED, direction, uploaded)
        return uploaded, failed

    async def _push_products(self, deleted: bool, batch_size: int, update: Writer,
                             progress_offset: int = 0) -> Tuple[int, int]:
        products = await self.local.find_modified(deleted=deleted)
        kind = "deleted products" if deleted else "products"
        if not products:
            logger.info(f"No modified {kind} to push")
            return 0, 0

        logger.info(f"Pushing {len(products)} modified {kind} in batches of {batch_size}")
        uploaded = failed = 0
        for batch in chunked(products, batch_size):
            applied, batch_failed = await self._push_batch(batch, update)
            uploaded += applied
            failed += batch_failed
            self._notify(SyncPhase.IN_PROGRESS, SyncDirection.UPLOAD, progress_offset + uploaded)
        return uploaded, failed

    async def _push_batch(self, batch: Sequence[Product], update: Writer) -> Tuple[int, int]:
        written_at = utc_now()
        # Versões lidas agora: edições feitas durante o envio continuam pendentes
        versions = {product.id: product.version for product in batch}
        remote_versions = await self.remote.find_by_ids(list(versions))

        to_insert, to_update, dropped = [], [], []
        for product in batch:
            remote_version = remote_versions.get(product.id)
            if remote_version is None:
                to_insert.append(to_remote_row(product, written_at))
            elif product.version > remote_version:
                to_update.append(to_remote_row(product, written_at))
            else:
                dropped.append(product.id)

        inserted, insert_failed = await self._write_with_fallback(self.remote.bulk_insert, to_insert)
        updated, update_failed = await self._write_with_fallback(update, to_update)

        # A guarda de versão é quem decide: recusado na escrita = conflito perdido
        failed = set(insert_failed) | set(update_failed)
        applied = inserted + updated
        applied_set = set(applied)
        dropped += [row["id"] for row in to_update if row["id"] not in applied_set and row["id"] not in failed]

        await self._acknowledge(applied)
        await self.local.mark_synced(
            {pid: version for pid, version in versions.items() if pid not in failed},
            written_at,
        )
        if dropped:
            await self._adopt_remote(dropped, written_at)

        logger.info(
            f"Batch pushed: {len(inserted)} inserted, {len(updated)} updated, "
            f"{len(dropped)} dropped, {len(failed)} failed"
        )
        return len(applied), len(failed)

    async def _adopt_remote(self, ids: List[str], synced_at: datetime):
        """
        Conflito perdido (servidor na mesma versão ou à frente): a edição local
        é descartada e a cópia local passa a ser a do servidor.
        """
        logger.warning(f"Discarding {len(ids)} local edits superseded by the remote copy")
        remote_rows = await self.remote.fetch_by_ids(ids)
        adopted = await self.local.bulk_update_with_version_guard(
            [to_local_row(row, synced_at) for row in remote_rows],
            allow_equal=True,
        )
        await self._acknowledge(adopted)

    async def _soft_delete_remote(self, rows: List[dict]) -> List[str]:
        applied = []
        for (deleted_at, version), group in group_by_deletion(rows).items():
            applied += await self.remote.bulk_soft_delete(
                [row["id"] for row in group],
                deleted_at=deleted_at,
                version=version,
                changed_at=group[0]["updated_at"],
            )
        return applied

    # --- PULL (remoto -> local) ---

    async def _run_pull(self, low_water: Optional[datetime] = None) -> int:
        direction = SyncDirection.DOWNLOAD
        self._notify(SyncPhase.STARTED, direction)
        try:
            await self._ensure_remote()
            if low_water is None:
                low_water = self._low_water_mark(await self.local.max_last_synced_at())
            logger.info(f"Pulling remote changes since {low_water.isoformat()}")
            downloaded = await self._pull_live(low_water)
            downloaded += await self._pull_tombstones(low_water, progress_offset=downloaded)
        except Exception as e:
            logger.error(f"Pull failed: {e}")
            self._notify(SyncPhase.FAILED, direction, error=str(e))
            raise

        logger.info(f"Pull finished: {downloaded} downloaded")
        self._notify(SyncPhase.COMPLETED, direction, downloaded)
        return downloaded

    async def _remote_pages(self, low_water: datetime, deleted: bool):
        """Páginas keyset por id: confirmar linhas no meio da varredura não pula nada."""
        page_size = self.settings.batch_size
        after_id = None
        while True:
            page = await self.remote.fetch_changes(
                self.node_id, low_water, after_id, page_size, deleted=deleted
            )
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            after_id = page[-1]["id"]

    def _unacknowledged(self, page: List[Dict[str, Any]], exclude=()) -> List[str]:
        return [row["id"] for row in page if not row["acknowledged"] and row["id"] not in exclude]

    async def _pull_live(self, low_water: datetime) -> int:
        downloaded = 0
        async for page in self._remote_pages(low_water, deleted=False):
            synced_at = utc_now()
            local_state = await self.local.find_by_ids([row["id"] for row in page])

            to_insert, to_update = [], []
            for row in page:
                state = local_state.get(row["id"])
                if state is None:
                    to_insert.append(to_local_row(row, synced_at))
                    continue
                local_version, modified = state
                if modified:
                    logger.info(f"Skipping product {row['id']}: local edit pending (local wins)")
                elif row["version"] > local_version:
                    to_update.append(to_local_row(row, synced_at))

            inserted, insert_failed = await self._write_with_fallback(self.local.bulk_insert, to_insert)
            updated, update_failed = await self._write_with_fallback(
                self.local.bulk_update_with_version_guard, to_update
            )

            await self._acknowledge(self._unacknowledged(page, set(insert_failed) | set(update_failed)))
            downloaded += len(inserted) + len(updated)
            logger.info(f"Page pulled: {len(inserted)} inserted, {len(updated)} updated")
            self._notify(SyncPhase.IN_PROGRESS, SyncDirection.DOWNLOAD, downloaded)
        return downloaded

    async def _pull_tombstones(self, low_water: datetime, progress_offset: int = 0) -> int:
        deleted = 0
        async for page in self._remote_pages(low_water, deleted=True):
            synced_at = utc_now()
            local_state = await self.local.find_by_ids([row["id"] for row in page])

            # Tombstone de registro que nunca chegou aqui: só confirma
            applicable = []
            for row in page:
                state = local_state.get(row["id"])
                if state is None:
                    continue
                if state[1]:
                    logger.info(f"Skipping deletion of product {row['id']}: local edit pending (local wins)")
                else:
                    applicable.append(row)

            for chunk in chunked(applicable, self.settings.local_delete_chunk_size):
                for (deleted_at, version), group in group_by_deletion(list(chunk)).items():
                    deleted += await self.local.bulk_soft_delete(
                        [row["id"] for row in group], deleted_at, version, synced_at
                    )

            await self._acknowledge(self._unacknowledged(page))
            self._notify(SyncPhase.IN_PROGRESS, SyncDirection.DOWNLOAD, progress_offset + deleted)
        if deleted:
            logger.info(f"Applied {deleted} remote deletions")
        return deleted
