import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from rules_index.api.sources import router as sources_router
from rules_index.logging_config import configure_logging
from rules_index.services.indexer import reset_indexing_service_cache
from rules_index.store import IndexStore, IndexStoreError, get_index_store

configure_logging()

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Rulebook Index API")
app.include_router(sources_router)


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck(store: IndexStore = Depends(get_index_store)) -> str:
    """Liveness probe that also checks the index store answers."""
    try:
        store.ping()
    except IndexStoreError as exc:
        LOGGER.warning("Index store ping failed: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return "ok"


@app.on_event("shutdown")
async def _shutdown_indexing_service() -> None:
    """Close the cached indexing service and its parser client."""

    reset_indexing_service_cache()
