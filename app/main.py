from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError

from app.api.admin import router as admin_router
from app.api.support import router as support_router
from app.core.config import settings
from app.core.database import init_db
from app.core.logging import setup_logging
from app.services.errors import SupportError, TransientConflict, is_transient_db_error

logger = structlog.get_logger(__name__)

app = FastAPI(title="Support Desk")


@app.exception_handler(SupportError)
async def support_error_handler(request: Request, exc: SupportError) -> JSONResponse:
    if isinstance(exc, TransientConflict):
        logger.warning("transient_conflict", path=request.url.path, message=str(exc))
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": exc.code, "message": str(exc)},
    )


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    if is_transient_db_error(exc):
        return await support_error_handler(request, TransientConflict())
    logger.error("errors", stage="database", path=request.url.path, error=str(exc.orig))
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Internal server error"},
    )


origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
async def on_startup() -> None:
    setup_logging()
    await init_db()


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


app.include_router(support_router)
app.include_router(admin_router)
