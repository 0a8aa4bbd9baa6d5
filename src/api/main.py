"""FastAPI application for the Lab-Verdict validation service.

Run with ``uvicorn src.api.main:app`` or ``python -m src.api.main``.

Architecture:
    - Routes depend on the storage adapter through ``get_storage_adapter``,
      which tests replace via ``app.dependency_overrides``
    - Domain errors escaping a route are mapped by ``DomainErrorMiddleware``
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware import REQUEST_ID_HEADER, setup_middleware
from src.api.routes import health, notifications, results, validate
from src.infrastructure.logging_config import setup_logging
from src.infrastructure.settings import APP_NAME, APP_VERSION, settings

setup_logging(use_json=settings.json_logs, log_level=settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = settings.engine
    logger.info(
        f"{APP_NAME} API {APP_VERSION} starting (db={settings.get_db_path()}, "
        f"default tenant={engine.default_tenant_id}, escalation={engine.escalation_minutes} min)"
    )
    yield
    logger.info(f"{APP_NAME} API stopped")


app = FastAPI(
    title=f"{APP_NAME} API",
    description="Result validation, critical-value notification and QC rule engine",
    version=APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["X-Process-Time", REQUEST_ID_HEADER],
)
setup_middleware(app)

for module in (health, validate, results, notifications):
    app.include_router(module.router)


@app.get("/")
async def root():
    """Service name, version and where to look next."""
    return {
        "message": f"{APP_NAME} API",
        "version": APP_VERSION,
        "docs": "/api/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.api.main:app", host=settings.api_host, port=settings.api_port, log_level="info")
