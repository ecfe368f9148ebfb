# app/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routers.stock import router as stock_router
from app.core.config import get_settings
from app.core.logging import setup_logging
from app.db.session import close_engines, create_all_tables
from app.http_problem_handlers import register_exception_handlers
from app.metrics import router as metrics_router
from app.obs.metrics import PrometheusMiddleware

settings = get_settings()
setup_logging(settings.LOG_LEVEL, json=settings.JSON_LOG)
logger = logging.getLogger("stockledger")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        logger.info("AUTO_CREATE_TABLES=1, creating tables from ORM metadata")
        await create_all_tables()
    yield
    await close_engines()


app = FastAPI(
    title="Stock Ledger",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(PrometheusMiddleware)
register_exception_handlers(app)

app.include_router(stock_router)
app.include_router(metrics_router)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
