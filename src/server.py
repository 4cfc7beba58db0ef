"""FastAPI server for the conversational action agent.

Run with:
    uvicorn src.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from src.agent import build_pipeline
from src.api.routes import router
from src.config import (
    CORS_ORIGINS,
    PIPELINE_VARIANT,
    SERVER_HOST,
    SERVER_PORT,
    WORKER_BATCH_SIZE,
    WORKER_ENABLED,
    WORKER_INTERVAL_SECONDS,
)
from src.context import AppContext
from src.worker import ActionProcessor

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the dependency context and the pipeline once.

    With ``WORKER_ENABLED`` the background action processor runs as a task
    on the same event loop and is cancelled on shutdown.
    """
    ctx = AppContext.from_config()
    await ctx.init()
    application.state.context = ctx

    logger.info("Building %r pipeline…", PIPELINE_VARIANT)
    application.state.pipeline = build_pipeline(ctx, PIPELINE_VARIANT)
    logger.info("Agent ready.")

    worker_task = None
    if WORKER_ENABLED:
        processor = ActionProcessor(ctx.action_store, ctx.handlers, ctx.action_timeout)
        worker_task = asyncio.create_task(
            processor.run_forever(WORKER_INTERVAL_SECONDS, WORKER_BATCH_SIZE),
            name="action-worker",
        )

    yield

    if worker_task is not None:
        worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker_task
    application.state.pipeline = None
    await ctx.shutdown()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="RAG Action Agent",
    description=(
        "Conversational assistant with retrieval-augmented answers that can "
        "book appointments, take notes, set reminders and search the knowledge base."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "RAG Action Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "src.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
