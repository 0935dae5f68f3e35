from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mpesa_ingest.api.routes import classify, unmatched, webhook
from mpesa_ingest.core import settings
from mpesa_ingest.integration.memory_store import InMemoryLedgerStore
from mpesa_ingest.integration.rest_store import RestLedgerStore
from mpesa_ingest.integration.store import LedgerStore
from mpesa_ingest.logger import get_logger, setup_logging
from mpesa_ingest.services.ingestion import IngestionCoordinator
from mpesa_ingest.services.unmatched import UnmatchedMessageLog

logger = get_logger(__name__)


def build_store() -> LedgerStore:
    if settings.STORE_URL and settings.STORE_TOKEN:
        return RestLedgerStore(
            base_url=settings.STORE_URL,
            token=settings.STORE_TOKEN,
            timeout=settings.STORE_TIMEOUT,
        )
    logger.warning("STORE_URL or STORE_TOKEN not set. Using an in-memory ledger; data is not persisted.")
    return InMemoryLedgerStore()


def build_coordinator(store: LedgerStore) -> IngestionCoordinator:
    return IngestionCoordinator(
        store,
        unmatched_log=UnmatchedMessageLog(
            max_entries=settings.UNMATCHED_LOG_SIZE,
            cluster_threshold=settings.UNMATCHED_CLUSTER_THRESHOLD,
        ),
        dedup_window_seconds=settings.DEDUP_WINDOW_SECONDS,
        serialize_commits=settings.SERIALIZE_COMMITS,
    )


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        store = build_store()
        app.state.store = store
        app.state.coordinator = build_coordinator(store)

        logger.info("Services initialized.")
        yield
        await store.aclose()
        logger.info("Service shutting down.")

    app = FastAPI(title="M-PESA Ingest", lifespan=lifespan)

    app.include_router(webhook.router)
    app.include_router(classify.router)
    app.include_router(unmatched.router)

    return app


app = create_app()
