import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect

from productsync.bootstrap import Services
from productsync.models.base import utc_now
from productsync.models.sync import (
    AutoSyncRequest, ConnectionStatus, FirstRunState, FullSyncResult,
    PullResult, PushResult, ReconnectResult, SyncProgress, SyncStatus,
)

logger = logging.getLogger("API")

def get_services(request: Request) -> Services:
    """Injeção de dependência para rotas FastAPI"""
    return request.app.state.services

def create_app(services: Services) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services
        await services.start()
        yield
        await services.stop()

    app = FastAPI(title="Product Sync - Nó local", lifespan=lifespan)

    @app.get("/")
    async def root(services: Services = Depends(get_services)):
        return {
            "status": "online",
            "node_id": services.identity.node_id,
            "time": utc_now().isoformat(),
        }

    # --- SINCRONIZAÇÃO ---

    @app.post("/sync/push", response_model=PushResult)
    async def push(services: Services = Depends(get_services)):
        return await services.sync_manager.push()

    @app.post("/sync/pull", response_model=PullResult)
    async def pull(services: Services = Depends(get_services)):
        return await services.sync_manager.pull()

    @app.post("/sync/full", response_model=FullSyncResult)
    async def full_sync(services: Services = Depends(get_services)):
        return await services.sync_manager.full_sync()

    @app.get("/sync/status", response_model=SyncStatus)
    async def sync_status(services: Services = Depends(get_services)):
        return await services.sync_manager.get_status()

    @app.put("/sync/auto", response_model=SyncStatus)
    async def set_auto_sync(payload: AutoSyncRequest, services: Services = Depends(get_services)):
        services.sync_manager.set_auto_sync(payload.enabled)
        return await services.sync_manager.get_status()

    @app.websocket("/sync/events")
    async def sync_events(websocket: WebSocket):
        """Repassa progresso de sync e eventos de conexão ao cliente."""
        services: Services = websocket.app.state.services
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = services.notifier.subscribe(queue.put_nowait)

        async def forward():
            while True:
                event = await queue.get()
                kind = "sync" if isinstance(event, SyncProgress) else "connection"
                await websocket.send_json({"type": kind, **event.model_dump(mode="json")})

        await websocket.accept()
        sender = asyncio.create_task(forward())
        try:
            # Só lê para perceber quando o cliente fecha
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Event stream client disconnected")
        finally:
            sender.cancel()
            unsubscribe()

    # --- CONEXÃO ---

    @app.get("/connection/status", response_model=ConnectionStatus)
    async def connection_status(services: Services = Depends(get_services)):
        return services.monitor.status()

    @app.post("/connection/check", response_model=ConnectionStatus)
    async def connection_check(services: Services = Depends(get_services)):
        await services.monitor.check_internet()
        await services.monitor.check_remote_health()
        return services.monitor.status()

    @app.post("/connection/reconnect", response_model=ReconnectResult)
    async def reconnect(services: Services = Depends(get_services)):
        return await services.monitor.reconnect()

    # --- PRIMEIRA EXECUÇÃO ---

    @app.get("/first-run", response_model=FirstRunState)
    async def first_run(services: Services = Depends(get_services)):
        return FirstRunState(first_run=services.first_run.is_first_run())

    @app.post("/first-run/sync", response_model=PullResult)
    async def first_run_sync(services: Services = Depends(get_services)):
        return await services.first_run.run_initial_sync()

    @app.post("/first-run/skip", response_model=FirstRunState)
    async def first_run_skip(services: Services = Depends(get_services)):
        services.first_run.skip()
        return FirstRunState(first_run=services.first_run.is_first_run())

    return app
