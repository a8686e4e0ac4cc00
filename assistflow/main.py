"""
AssistFlow — supplier follow-up & escalation engine.

App wiring only: logging, rate limiter, routers, and the background
scheduler lifecycle. All behaviour lives in services/ and orchestrator.py.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .config import settings
from .http_client import close_clients
from .logging_config import setup_logging
from .rate_limit import limiter
from .routers.access import router as access_router
from .routers.followups import router as followups_router
from .routers.workflow import router as workflow_router

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    from .scheduler import configure_scheduler, scheduler

    run_scheduler = settings.scheduler_enabled and not os.environ.get("TESTING")
    if run_scheduler:
        configure_scheduler()
        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.info("Background scheduler disabled")
    yield
    if run_scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
    await close_clients()


app = FastAPI(title="AssistFlow", version=__version__, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(followups_router)
app.include_router(access_router)
app.include_router(workflow_router)


@app.get("/health")
async def health():
    from sqlalchemy import text

    from .database import SessionLocal

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.warning("Health check: database unavailable: {}", e)
        db_ok = False
    finally:
        db.close()
    return {"status": "ok" if db_ok else "degraded", "version": __version__, "db": db_ok}
