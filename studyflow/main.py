from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studyflow.api.admin import router as admin_router
from studyflow.api.audit import router as audit_router
from studyflow.api.auth import router as auth_router
from studyflow.api.consent import router as consent_router
from studyflow.api.health import router as health_router
from studyflow.api.metrics_endpoint import router as metrics_router
from studyflow.api.modules import router as modules_router
from studyflow.api.paths import router as paths_router
from studyflow.core.config import SETTINGS
from studyflow.core.logging import setup_logging
from studyflow.db.engine import lifespan_db
from studyflow.db.redis import lifespan_redis
from studyflow.middleware.metrics import MetricsMiddleware
from studyflow.middleware.request_context import RequestContextMiddleware

setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse order: Redis first, then the database
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="studyflow",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(modules_router)
app.include_router(paths_router)
app.include_router(consent_router)
app.include_router(audit_router)
app.include_router(admin_router)

logger.info(
    "studyflow started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
