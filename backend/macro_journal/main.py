"""
FastAPI app entrypoint.

Daily Macro Journal backend: text-generation proxy for insights, notification ledger,
push registration, and per-user insight sessions driven by the background scheduler.
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from macro_journal.agents.text_agent import get_text_agent
from macro_journal.api.routes import generate, insights, notifications, push
from macro_journal.config import settings
from macro_journal.core.constants import (
    DATE_ROLLOVER_CHECK_SECONDS,
    SESSIONS_ROLLOVER_JOB_ID,
    SESSIONS_SNACK_JOB_ID,
    SNACK_CHECK_INTERVAL_MINUTES,
)
from macro_journal.db.session import SessionLocal
from macro_journal.scheduler.insight_jobs import run_sessions_date_rollover_check, run_sessions_snack_check
from macro_journal.services.insight_runtime import InsightSessions
from macro_journal.services.push import ApnsNotificationSurface
from macro_journal.services.text_generation import AgentTextGenerator

if settings.anthropic_api_key:
    os.environ["ANTHROPIC_API_KEY"] = settings.anthropic_api_key

logger = logging.getLogger(__name__)

# Scheduler: snack checks every 30 minutes, date rollover every minute, for every active session
_scheduler = BackgroundScheduler()


def _in_process_text_generator() -> AgentTextGenerator:
    # The API is its own text-generation proxy; skip the HTTP hop.
    return AgentTextGenerator(get_text_agent())


@asynccontextmanager
async def lifespan(app: FastAPI):
    _scheduler.add_job(
        run_sessions_snack_check,
        "interval",
        minutes=SNACK_CHECK_INTERVAL_MINUTES,
        args=[app.state.sessions],
        id=SESSIONS_SNACK_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(
        run_sessions_date_rollover_check,
        "interval",
        seconds=DATE_ROLLOVER_CHECK_SECONDS,
        args=[app.state.sessions],
        id=SESSIONS_ROLLOVER_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    app.state.scheduler = _scheduler
    logger.info("Backend ready; snack check every %s min, date rollover every %ss", SNACK_CHECK_INTERVAL_MINUTES, DATE_ROLLOVER_CHECK_SECONDS)
    yield
    _scheduler.shutdown(wait=False)


app = FastAPI(title="Daily Macro Journal", version="0.1.0", lifespan=lifespan)
app.state.sessions = InsightSessions(
    SessionLocal,
    text_factory=_in_process_text_generator,
    surface=ApnsNotificationSurface(SessionLocal),
)

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for the production frontend
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
if settings.cors_origins:
    _cors_origins.extend(o.strip() for o in settings.cors_origins.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(generate.router, tags=["generate"])
app.include_router(notifications.router, tags=["notifications"])
app.include_router(push.router, tags=["push"])
app.include_router(insights.router, tags=["insights"])


@app.get("/", include_in_schema=False)
def root():
    """Root: point to API docs and health."""
    return {"message": "Daily Macro Journal API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
