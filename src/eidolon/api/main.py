"""Eidolon API.

Thin FastAPI surface over CharacterRegistry:
- POST /api/sessions, POST /api/messages
- owner-checked memory routes under /api/characters/{slug}/memories
- GET /health
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..core.exceptions import EidolonError
from ..core.resilience import CircuitBreakerOpen
from ..db.database import Database
from ..memory.embedding import CachedEmbedder, HttpEmbeddingClient
from ..registry import CharacterRegistry
from ..services.llm import TextGenerationClient
from .routes import router
from .schemas import HealthResponse


def build_registry(database: Optional[Database] = None) -> CharacterRegistry:
    """Registry wired to the configured database and model services."""
    return CharacterRegistry(
        database or Database(),
        text_generator=TextGenerationClient(),
        embedder=CachedEmbedder(HttpEmbeddingClient()),
    )


async def eidolon_error_handler(request: Request, exc: EidolonError) -> JSONResponse:
    headers = None
    if isinstance(exc, CircuitBreakerOpen):
        headers = {"Retry-After": str(max(1, int(exc.retry_after)))}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "details": exc.context},
        headers=headers,
    )


def create_app(registry: Optional[CharacterRegistry] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.registry is None:
            app.state.registry = build_registry()
        await app.state.registry.db.init()
        logger.info("Eidolon API started")
        yield
        await app.state.registry.db.close()
        logger.info("Eidolon API shutting down")

    app = FastAPI(
        title="Eidolon API",
        description="Persistent AI characters: sessions, chat turns and memories",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(EidolonError, eidolon_error_handler)
    app.include_router(router)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check():
        """Health check endpoint."""
        current = app.state.registry
        if current is None:
            return HealthResponse(status="starting")
        return HealthResponse(
            database=current.db.breaker.state.value,
            active_sessions=len(current.sessions),
        )

    return app


def run():
    """Run the server."""
    import uvicorn
    uvicorn.run(
        create_app(),
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
    )


if __name__ == "__main__":
    run()
