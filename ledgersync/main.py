import uuid
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.orm import Session

from ledgersync.connections import ConnectionService
from ledgersync.db import Base, engine, get_db
from ledgersync.errors import ConnectionNotFound, InvalidInput, UpstreamAPIError
from ledgersync.fetcher import TransactionSourceFetcher
from ledgersync.logging_config import configure_logging
from ledgersync.provider_client import ProviderClient
from ledgersync.provider_mock import router as provider_router
from ledgersync.publisher import Publisher, kafka_producer
from ledgersync.scheduler import SyncScheduler
from ledgersync.settings import settings
from ledgersync.store import ConnectionStore
from ledgersync.sync import SyncOrchestrator
from ledgersync.tokens import TokenLifecycleManager

configure_logging()
logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: ConnectionStore
    connections: ConnectionService
    orchestrator: SyncOrchestrator


def build_services(producer, provider: Optional[ProviderClient] = None) -> Services:
    store = ConnectionStore()
    provider = provider or ProviderClient()
    fetcher = TransactionSourceFetcher(provider)
    orchestrator = SyncOrchestrator(
        store,
        TokenLifecycleManager(store, provider),
        fetcher,
        Publisher(producer),
    )
    return Services(store, ConnectionService(store, provider, fetcher), orchestrator)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    async with kafka_producer() as producer:
        app.state.services = build_services(producer)
        scheduler = SyncScheduler(app.state.services.orchestrator)
        if settings.SCHEDULER_ENABLED:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.shutdown()


app = FastAPI(title="Ledger Sync", lifespan=lifespan)

if settings.PROVIDER_MOCK_ENABLED:
    app.include_router(provider_router, prefix="/provider", tags=["mock-provider"])


@app.middleware("http")
async def add_request_logging(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    extra = {"request_id": request_id, "method": request.method, "path_url": request.url.path}
    logger.info("Request started", extra=extra)

    response = await call_next(request)

    response.headers["X-Request-Id"] = request_id
    logger.info(f"Request finished with status {response.status_code}", extra=extra)
    return response


@app.exception_handler(ConnectionNotFound)
async def not_found_handler(request: Request, exc: ConnectionNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    logger.warning(f"Rejected request: {exc}", extra={"request_id": getattr(request.state, "request_id", None)})
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UpstreamAPIError)
async def upstream_handler(request: Request, exc: UpstreamAPIError):
    logger.error(f"Upstream failure: {exc}", extra={"request_id": getattr(request.state, "request_id", None)})
    return JSONResponse(status_code=502, content={"detail": f"{exc.service} request failed"})


def get_services(request: Request) -> Services:
    return request.app.state.services


async def run_sync_in_background(orchestrator: SyncOrchestrator, name: Optional[str], since: Optional[datetime]):
    # Sync failures are only visible in the logs and retried next cycle.
    try:
        if name is None:
            await orchestrator.sync_all(since=since)
        else:
            await orchestrator.sync_connection(name, since=since)
    except Exception as e:
        logger.error(f"On-demand sync failed: {e!r}", extra={"connection": name, "operation": "sync"})


@app.get("/")
def health():
    return {"status": "ok"}


@app.get("/auth")
def auth(
    name: Optional[str] = None,
    url: Optional[str] = None,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    return {"authURL": services.connections.start_auth(db, name, url)}


@app.get("/redirect")
async def redirect(
    background_tasks: BackgroundTasks,
    code: Optional[str] = None,
    state: Optional[str] = None,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    name, return_url = services.connections.consume_state(db, state)
    await services.connections.create_connection(name, code)
    background_tasks.add_task(services.orchestrator.backfill_connection, name)
    if return_url:
        return RedirectResponse(return_url, status_code=307)
    return JSONResponse(status_code=201, content={"status": "connected", "name": name})


@app.get("/connections")
def list_connections(services: Services = Depends(get_services)):
    return services.connections.list_connections()


@app.delete("/connections/{name}", status_code=204)
def delete_connection(name: str, services: Services = Depends(get_services)):
    if not services.connections.delete_connection(name):
        raise ConnectionNotFound(name)
    return Response(status_code=204)


@app.post("/connections/sync/{name}", status_code=202)
def sync_connection(
    name: str,
    background_tasks: BackgroundTasks,
    since: Optional[datetime] = Query(None),
    services: Services = Depends(get_services),
):
    services.store.require(name)
    background_tasks.add_task(run_sync_in_background, services.orchestrator, name, since)
    return {"status": "queued", "name": name}


@app.post("/connections/sync", status_code=202)
def sync_all_connections(
    background_tasks: BackgroundTasks,
    since: Optional[datetime] = Query(None),
    services: Services = Depends(get_services),
):
    background_tasks.add_task(run_sync_in_background, services.orchestrator, None, since)
    return {"status": "queued"}
