"""Venue billing settings routes."""

from fastapi import APIRouter, Request

from cueclub.core.rate_limit import limiter
from cueclub.core.rbac import CurrentUser, RequireManager
from cueclub.db.session import DbSession
from cueclub.schemas.setting import BillingSettingsResponse, BillingSettingsUpdate
from cueclub.services.session_service import SessionService

router = APIRouter()


@router.get("/billing", response_model=BillingSettingsResponse)
@limiter.limit("60/minute")
def get_billing_settings(request: Request, db: DbSession, current_user: CurrentUser):
    return SessionService(db).get_active_setting()


@router.put("/billing", response_model=BillingSettingsResponse)
@limiter.limit("10/minute")
def update_billing_settings(
    request: Request,
    body: BillingSettingsUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    """Change rounding/grace. Sessions already open keep their snapshot."""
    return SessionService(db).update_billing_settings(
        rounding_step=body.rounding_step,
        rounding_mode=body.rounding_mode,
        grace_minutes=body.grace_minutes,
        updated_by=current_user.user_id,
    )
