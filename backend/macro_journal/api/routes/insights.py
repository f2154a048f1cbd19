"""
Insight read-out and triggers for the signed-in user: dashboard, manual evaluation,
entry/goal change notifications, and sign-out.
"""
import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from macro_journal.api.deps import current_user_id, get_runtime, get_sessions
from macro_journal.core.constants import (
    DEFAULT_CALORIE_GOAL,
    DEFAULT_CARB_PERCENT,
    DEFAULT_FAT_PERCENT,
    DEFAULT_PROTEIN_PERCENT,
)
from macro_journal.services.insight_engine import TRIGGER_ENTRIES_LOADED, TRIGGER_MANUAL, EvaluationResult
from macro_journal.services.insight_runtime import InsightRuntime, InsightSessions
from macro_journal.services.types import MacroGoals

router = APIRouter()
logger = logging.getLogger(__name__)


class EvaluateRequest(BaseModel):
    trigger: Literal["manual", "entries_loaded"] = TRIGGER_MANUAL


class MacroGoalsBody(BaseModel):
    calorieGoal: float = Field(DEFAULT_CALORIE_GOAL, gt=0)
    proteinPercent: float = Field(DEFAULT_PROTEIN_PERCENT, ge=0, le=100)
    fatPercent: float = Field(DEFAULT_FAT_PERCENT, ge=0, le=100)
    carbPercent: float = Field(DEFAULT_CARB_PERCENT, ge=0, le=100)


def _evaluation_response(runtime: InsightRuntime, result: EvaluationResult | None) -> dict[str, Any]:
    alerts = runtime.ctx.drain_alerts()
    if result is None:
        skipped = "not signed in" if runtime.user_id is None else "evaluation already running"
        return {"ok": False, "skipped": skipped, "fired": [], "alerts": alerts}
    return {"ok": result.skipped is None, **result.to_dict(), "alerts": alerts}


@router.get("/insights/dashboard")
def get_dashboard(runtime: InsightRuntime = Depends(get_runtime)) -> dict[str, Any]:
    """Today's totals vs goals, learning progress (n/5 days), quote, report, habit stats, unread count."""
    try:
        dashboard = runtime.engine.dashboard()
    except SQLAlchemyError as e:
        logger.warning("Dashboard for %s failed: %s", runtime.user_id, e)
        raise HTTPException(status_code=503, detail="Could not load your journal. Please try again later.") from e
    if dashboard is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return dashboard


@router.post("/insights/evaluate")
def evaluate_insights(
    body: EvaluateRequest | None = None,
    runtime: InsightRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Run one pass now. Call with trigger=entries_loaded after the journal saved or deleted an entry."""
    trigger = body.trigger if body else TRIGGER_MANUAL
    if trigger == TRIGGER_ENTRIES_LOADED:
        result = runtime.entries_changed()
    else:
        result = runtime.engine.evaluate(trigger)
    return _evaluation_response(runtime, result)


@router.put("/insights/goals")
def update_goals(
    body: MacroGoalsBody,
    runtime: InsightRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Save macro goals and re-run the pass (the daily report depends on them)."""
    goals = MacroGoals(
        calorie_goal=body.calorieGoal,
        protein_percent=body.proteinPercent,
        fat_percent=body.fatPercent,
        carb_percent=body.carbPercent,
    )
    result = runtime.goals_changed(goals)
    if result is None and runtime.ctx.alerts:
        return {"ok": False, "goals": goals.to_setting(), "alerts": runtime.ctx.drain_alerts()}
    return {**_evaluation_response(runtime, result), "goals": goals.to_setting()}


@router.post("/insights/sign-out")
def sign_out(
    user_id: str = Depends(current_user_id),
    sessions: InsightSessions = Depends(get_sessions),
) -> dict[str, Any]:
    """Drop the user's in-memory insight state."""
    return {"ok": sessions.sign_out(user_id)}
