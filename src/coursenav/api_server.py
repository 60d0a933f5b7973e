"""
FastAPI service layer for the CourseNav catalog navigator.

Exposes POST /interactions, GET /metrics and GET /health. Each interaction is
either an action token echoed back from a previous menu or a text command.

Run with:
    uvicorn coursenav.api_server:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, model_validator

from .catalog_store import SqliteCatalogStore, load_catalog_seed
from .config import API_THREAD_POOL_WORKERS, CATALOG_DB_PATH, CATALOG_SEED_PATH, METRICS_DIR
from .dispatcher import Dispatcher
from .metrics import MetricsCollector
from .observability import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class InteractionRequest(BaseModel):
    conversation_id: str = Field(..., min_length=1, description="Chat or user identifier")
    token: str | None = Field(default=None, description="Action token echoed back from a menu item")
    text: str | None = Field(default=None, description="Typed command or free text")

    @model_validator(mode="after")
    def _token_or_text(self):
        if (self.token is None) == (self.text is None):
            raise ValueError("exactly one of 'token' or 'text' is required")
        return self


class InteractionResponse(BaseModel):
    conversation_id: str
    outcome: dict[str, Any]


# ---------------------------------------------------------------------------
# Startup helpers
# ---------------------------------------------------------------------------

def open_catalog(db_path=CATALOG_DB_PATH, seed_path=CATALOG_SEED_PATH) -> SqliteCatalogStore:
    """Opens the SQLite catalog, seeding it from the JSON file when empty."""
    store = SqliteCatalogStore(db_path)
    seed_path = Path(seed_path) if seed_path else None
    if store.is_empty() and seed_path is not None and seed_path.exists():
        store.replace_snapshot(load_catalog_seed(seed_path))
    elif store.is_empty():
        logger.warning("catalog_empty", db_path=str(db_path), seed_path=str(seed_path))
    return store


def create_app(dispatcher: Dispatcher | None = None) -> FastAPI:
    """Builds the service. Without a dispatcher one is wired over the SQLite catalog at startup."""
    state: dict[str, Any] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        executor = ThreadPoolExecutor(max_workers=API_THREAD_POOL_WORKERS)
        store = None
        if dispatcher is None:
            store = open_catalog()
            state["dispatcher"] = Dispatcher(store, metrics=MetricsCollector(METRICS_DIR))
        else:
            state["dispatcher"] = dispatcher
        state["executor"] = executor
        logger.info("api_started", workers=API_THREAD_POOL_WORKERS)

        yield  # Application is running.

        executor.shutdown(wait=False)
        if store is not None:
            store.close()
        state.clear()

    app = FastAPI(
        title="CourseNav API",
        description="Guided navigation and keyword search over an academic catalog",
        version="1.0.0",
        lifespan=lifespan,
    )

    def _handle(request: InteractionRequest) -> dict[str, Any]:
        nav: Dispatcher = state["dispatcher"]
        if request.token is not None:
            outcome = nav.handle_token(request.conversation_id, request.token)
        else:
            outcome = nav.handle_text(request.conversation_id, request.text)
        return outcome.to_dict()

    @app.post("/interactions", response_model=InteractionResponse)
    async def interactions_endpoint(request: InteractionRequest):
        """Handles one token press or typed message."""
        if "dispatcher" not in state:
            raise HTTPException(status_code=503, detail="Service is not initialized.")
        try:
            loop = asyncio.get_running_loop()
            outcome = await loop.run_in_executor(state["executor"], _handle, request)
        except Exception as exc:
            logger.exception("interaction_failed", conversation_id=request.conversation_id)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return InteractionResponse(conversation_id=request.conversation_id, outcome=outcome)

    @app.get("/metrics")
    async def metrics_endpoint():
        """Return aggregated service metrics."""
        if "dispatcher" not in state:
            raise HTTPException(status_code=503, detail="Service is not initialized.")
        return state["dispatcher"].metrics.get_summary()

    @app.get("/health")
    async def health_endpoint():
        return {"status": "ok" if "dispatcher" in state else "starting"}

    return app


app = create_app()
