"""Push registration: device tokens and the notification permission each device reports."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from macro_journal.api.deps import current_user_id
from macro_journal.db.session import get_db
from macro_journal.services.push import PERMISSION_DEFAULT, register_device

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterPushBody(BaseModel):
    device_token: str = Field(..., min_length=1, max_length=256, description="APNs device token (hex string)")
    platform: str = Field(default="ios", pattern="^(ios|android)$")
    permission: str = Field(default=PERMISSION_DEFAULT, pattern="^(granted|denied|default)$")


@router.post("/push/register")
def register_push_token(
    body: RegisterPushBody,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """
    Register a device for insight pop-ups. Call from the app after the OS returns a device token,
    and again whenever the user changes the notification permission.
    Idempotent: same token is upserted (owner and permission refreshed).
    """
    created = register_device(db, user_id, body.device_token, body.platform, body.permission)
    if created:
        logger.info("Registered push token for platform=%s permission=%s", body.platform, body.permission)
        return {"ok": True, "message": "Token registered"}
    return {"ok": True, "message": "Token already registered"}
