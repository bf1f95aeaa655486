from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ...envs.ledger_env import get_settings
from ...infrastructure.scripts import register_ledger_scripts
from .dependencies import get_database_client_dependency, get_store_dependency
from .routers import accounts, channels

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await register_ledger_scripts(get_store_dependency())
    yield
    await get_database_client_dependency().close()


def create_ledger_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.app_name} Ledger",
        version=settings.app_version,
        description="Paychan ledger API for accounts and pay channels",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(accounts.router, prefix="/api/v1/ledger")
    app.include_router(channels.router, prefix="/api/v1/ledger")

    @app.get("/")
    async def root() -> dict[str, str]:
        return {
            "message": f"Welcome to {settings.app_name} Ledger API",
            "version": settings.app_version,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": f"{settings.app_name} Ledger"}

    return app


app = create_ledger_app()
