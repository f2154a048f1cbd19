"""
Notification ledger API for the signed-in user: list, mark one read, mark all read, dismiss.

Goes through the user's insight session so the in-memory ledger the rules dedup against stays
in step with the table. Ids that belong to another user behave like unknown ids.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from macro_journal.api.deps import get_runtime
from macro_journal.services.insight_runtime import InsightRuntime

router = APIRouter()
logger = logging.getLogger(__name__)


# --- List ---


@router.get("/notifications")
def list_notifications(
    runtime: InsightRuntime = Depends(get_runtime),
    limit: int = Query(80, ge=1, le=200),
    unread_only: bool = Query(False),
) -> dict[str, Any]:
    """Notifications newest first, plus the unread badge count and any pending in-app alerts."""
    user_id = runtime.user_id
    rows = runtime.ledger.load(user_id) if user_id else []
    if rows is None:
        # Another load is running; serve what is already in memory.
        rows = list(runtime.ctx.notifications)
    if unread_only:
        rows = [n for n in rows if not n["read"]]
    return {
        "notifications": rows[:limit],
        "unread_count": runtime.ledger.unread_count(),
        "alerts": runtime.ctx.drain_alerts(),
    }


# --- Mark one read ---


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    runtime: InsightRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    if not runtime.ledger.mark_read(runtime.user_id, notification_id):
        return {"ok": False, "error": "not_found"}
    return {"ok": True, "id": notification_id}


# --- Mark all read ---


@router.post("/notifications/mark-all-read")
def mark_all_read(
    runtime: InsightRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Mark every notification read (e.g. 'Clear all' in UI)."""
    updated = runtime.ledger.mark_all_read(runtime.user_id)
    return {"ok": True, "marked_count": updated}


# --- Dismiss ---


@router.delete("/notifications/{notification_id}")
def dismiss_notification(
    notification_id: str,
    runtime: InsightRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    if not runtime.ledger.dismiss(runtime.user_id, notification_id):
        return {"ok": False, "error": "not_found"}
    logger.info("Dismissed notification %s for %s", notification_id, runtime.user_id)
    return {"ok": True, "id": notification_id}
