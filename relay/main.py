import asyncio
import os

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from relay.config import get_settings
from relay.context import build_context
from relay.database import get_db
from relay.errors import AppError
from relay.logging_config import get_logger, setup_logging
from relay.routers import chat, webhooks
from relay.workers import start_workers, stop_workers

settings = get_settings()
setup_logging(settings.log_level, json_output=not settings.debug)

logger = get_logger("main")

app = FastAPI(
    title="Relay API",
    description="Multi-channel AI customer support backend",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhooks.router)
app.include_router(chat.router)

_worker_tasks: list[asyncio.Task] = []


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}", extra={"context": {"path": request.url.path}})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _workers_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return get_settings().workers_enabled


@app.on_event("startup")
async def startup() -> None:
    global _worker_tasks
    if getattr(app.state, "ctx", None) is None:
        app.state.ctx = build_context()
    if _workers_enabled():
        _worker_tasks = start_workers(app.state.ctx)


@app.on_event("shutdown")
async def shutdown() -> None:
    global _worker_tasks
    if _worker_tasks:
        await stop_workers(_worker_tasks)
        _worker_tasks = []
    ctx = getattr(app.state, "ctx", None)
    if ctx is not None:
        ctx.close()
        app.state.ctx = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
def db_check(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok", "database": "connected"}
