"""FastAPI application setup for label-qa."""

from __future__ import annotations

from fastapi import FastAPI

from label_qa.api.dependencies import (
    get_answer_generator,
    get_app_settings,
    get_retrieval_service,
)
from label_qa.api.routes_admin import router as admin_router
from label_qa.api.routes_query import router as query_router
from label_qa.core.logging import configure_logging

configure_logging()

app = FastAPI(
    title="Label QA",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(query_router, prefix="", tags=["query"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_retrieval_service()
    get_answer_generator()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
