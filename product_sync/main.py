import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from .codec import RecordCodec
from .config import Settings, settings as default_settings
from .etl import ImportOrchestrator
from .exceptions import StorageError
from .logging_config import configure_logging
from .products import ProductService
from .scheduler import create_scheduler
from .sources import ManifestResolver, RetryPolicy, ShardFetcher
from .store import ProductStore, create_store
from .writer import UpsertWriter


def build_orchestrator(
    settings: Settings, client: httpx.AsyncClient, store: ProductStore
) -> ImportOrchestrator:
    retry = RetryPolicy(
        attempts=settings.fetch_retry_attempts,
        backoff=settings.fetch_retry_backoff,
        max_wait=settings.fetch_retry_max_wait,
    )
    remote = dict(
        client=client,
        base_url=settings.source_base_url,
        timeout=settings.fetch_timeout_seconds,
        retry=retry,
    )
    return ImportOrchestrator(
        manifest=ManifestResolver(manifest_name=settings.manifest_name, **remote),
        fetcher=ShardFetcher(**remote),
        codec=RecordCodec(record_limit=settings.shard_record_limit),
        writer=UpsertWriter(store, bulk=settings.bulk_upsert),
        concurrency=settings.shard_concurrency,
    )


def _import_task_done(tasks: set) -> Callable[[asyncio.Task], None]:
    def done(task: asyncio.Task) -> None:
        tasks.discard(task)
        if task.cancelled():
            logger.warning("Background import was cancelled")
        elif task.exception() is not None:
            logger.opt(exception=task.exception()).error("Background import crashed")

    return done


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ProductStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or default_settings
    store = store if store is not None else create_store(
        backend=settings.store_backend, path=settings.store_path
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:
            orchestrator = build_orchestrator(settings, client, store)
            app.state.orchestrator = orchestrator
            scheduler = None
            if settings.scheduler_enabled:
                scheduler = create_scheduler(orchestrator, settings)
                scheduler.start()
            try:
                yield
            finally:
                if scheduler is not None:
                    scheduler.shutdown(wait=False)
                if app.state.import_tasks:
                    await asyncio.gather(*app.state.import_tasks, return_exceptions=True)

    app = FastAPI(
        title="Product Sync",
        version="0.1.0",
        description="Daily product import from a sharded remote dataset, with a product query API.",
        lifespan=lifespan,
    )
    app.state.products = ProductService(store)
    app.state.import_tasks = set()

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.message})

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post("/imports/run")
    async def run_import(request: Request, async_mode: bool = False) -> dict:
        orchestrator: ImportOrchestrator = request.app.state.orchestrator
        if orchestrator.is_running or request.app.state.import_tasks:
            raise HTTPException(status_code=409, detail="Import already running")
        if async_mode:
            task = asyncio.create_task(orchestrator.run())
            request.app.state.import_tasks.add(task)
            task.add_done_callback(_import_task_done(request.app.state.import_tasks))
            return {"status": "scheduled"}
        result = await orchestrator.run()
        if result is None:
            raise HTTPException(status_code=409, detail="Import already running")
        return {"status": result.status.value, "result": result}

    @app.get("/imports/status")
    async def import_status(request: Request) -> dict:
        orchestrator: ImportOrchestrator = request.app.state.orchestrator
        return {"running": orchestrator.is_running, "last_run": orchestrator.last_run}

    @app.get("/products")
    def list_products(request: Request) -> dict:
        return {"products": request.app.state.products.list_products()}

    @app.get("/products/{code}")
    def get_product(code: str, request: Request) -> dict:
        product = request.app.state.products.get_by_code(code)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product '{code}' not found")
        return {"product": product}

    @app.put("/products/{code}")
    def update_product(
        code: str, request: Request, fields: Dict[str, Any] = Body(...)
    ) -> dict:
        try:
            product = request.app.state.products.update(code, fields)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product '{code}' not found")
        return {"product": product}

    @app.delete("/products/{code}")
    def delete_product(code: str, request: Request) -> dict:
        product = request.app.state.products.soft_delete(code)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product '{code}' not found")
        return {"product": product}

    return app


app = create_app()
