from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio.session import AsyncSession

from sched_core.api import deps
from sched_core.api.v1 import api_v1_router
from sched_core.core import settings
from sched_core.core.logger import info, error
from sched_core.core.setup_logger import api_logger
from sched_core.db import get_db
from sched_core.db.database import init_database, close_database


@asynccontextmanager
async def lifespan(_: FastAPI):
    await init_database()
    info(api_logger, "Scheduling core API started", context={
        "environment": settings.ENVIRONMENT,
        "cron_secret_set": bool(settings.CRON_SECRET),
        "webhook_secret_set": bool(settings.WEBHOOK_SECRET),
    })
    yield
    if deps.runner is not None:
        await deps.runner.close()
    await close_database()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(api_v1_router, prefix=settings.API_V1_STR)


@app.get("/")
def health_check():
    return {"status": "ok", "service": settings.PROJECT_NAME, "environment": settings.ENVIRONMENT}


@app.get("/db-health")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ok", "message": "Database running"}
    except Exception as e:
        error(api_logger, "Database health check failed", context={"error": str(e)})
        return {"status": "error", "message": str(e)}
