import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from statement_ingest.api.routes import catalog, upload
from statement_ingest.capabilities.llm import LLMDuplicateReviewer, LLMStatementExtractor, build_client
from statement_ingest.core import settings
from statement_ingest.integration.ledger import LedgerClient
from statement_ingest.logger import get_logger, setup_logging
from statement_ingest.stores.base import LedgerBackend
from statement_ingest.stores.local import LocalLedger

logger = get_logger(__name__)


def build_ledger() -> LedgerBackend:
    if os.getenv("LEDGER_URL") and os.getenv("LEDGER_TOKEN"):
        logger.info("Using ledger API at %s.", os.getenv("LEDGER_URL"))
        return LedgerClient(catalog_cache_ttl=settings.CATALOG_CACHE_TTL)
    logger.warning("LEDGER_URL or LEDGER_TOKEN not set. Using local ledger in %s.", settings.DATA_DIR)
    return LocalLedger(data_dir=settings.DATA_DIR)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        ledger = build_ledger()
        app.state.ledger = ledger

        if os.getenv("OPENAI_API_KEY"):
            client = build_client()
            app.state.extractor = LLMStatementExtractor(client=client, model=settings.OPENAI_MODEL)
            app.state.reviewer = LLMDuplicateReviewer(client=client, model=settings.DUPLICATE_REVIEW_MODEL)
            logger.info(
                "Extraction enabled: model=%s, duplicate review model=%s, base_url=%s",
                settings.OPENAI_MODEL,
                settings.DUPLICATE_REVIEW_MODEL,
                os.getenv("OPENAI_BASE_URL") or "default",
            )
        else:
            app.state.extractor = None
            app.state.reviewer = None
            logger.warning("OPENAI_API_KEY not found. Statement uploads are disabled.")

        logger.info("Services initialized.")
        yield
        await ledger.aclose()
        logger.info("Service shutting down.")

    app = FastAPI(title="Statement Ingest", lifespan=lifespan)

    app.include_router(upload.router)
    app.include_router(catalog.router)

    return app


app = create_app()
