"""Table session routes: check-in, items, preview, checkout, void, transfer."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from cueclub.core.rate_limit import limiter
from cueclub.core.rbac import CurrentUser
from cueclub.core.responses import paginated_response
from cueclub.db.session import DbSession
from cueclub.models.session import SessionStatus
from cueclub.schemas.bill import BillResponse
from cueclub.schemas.promotion import PromotionPreviewResponse
from cueclub.schemas.session import (
    CheckoutRequest,
    CheckoutResponse,
    ClosePreviewResponse,
    SessionItemAdd,
    SessionItemUpdate,
    SessionOpen,
    SessionResponse,
    TransferRequest,
    VoidRequest,
)
from cueclub.services.bill_service import BillService
from cueclub.services.session_service import SessionService

router = APIRouter()


@router.get("")
@limiter.limit("60/minute")
def list_sessions(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    status_filter: Optional[SessionStatus] = Query(None, alias="status"),
    table_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List sessions, newest first."""
    rows, total = SessionService(db).list(
        status=status_filter,
        table_id=table_id,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=limit,
    )
    items = [SessionResponse.model_validate(s).model_dump(mode="json") for s in rows]
    return paginated_response(items, total, skip, limit)


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def open_session(request: Request, body: SessionOpen, db: DbSession, current_user: CurrentUser):
    """Check a table in."""
    return SessionService(db).open_session(
        table_id=body.table_id,
        staff_id=current_user.user_id,
        start_at=body.start_at,
    )


@router.get("/{session_id}", response_model=SessionResponse)
@limiter.limit("60/minute")
def get_session(request: Request, session_id: int, db: DbSession, current_user: CurrentUser):
    return SessionService(db).get(session_id)


@router.post("/{session_id}/items", response_model=SessionResponse)
@limiter.limit("60/minute")
def add_item(
    request: Request,
    session_id: int,
    body: SessionItemAdd,
    db: DbSession,
    current_user: CurrentUser,
):
    """Add a product; an existing row for the same product is incremented."""
    return SessionService(db).add_item(session_id, body.product_id, body.qty, body.note)


@router.patch("/{session_id}/items/{item_id}", response_model=SessionResponse)
@limiter.limit("60/minute")
def update_item(
    request: Request,
    session_id: int,
    item_id: int,
    body: SessionItemUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    return SessionService(db).update_item_qty(session_id, item_id, body.qty)


@router.delete("/{session_id}/items/{item_id}", response_model=SessionResponse)
@limiter.limit("60/minute")
def remove_item(
    request: Request,
    session_id: int,
    item_id: int,
    db: DbSession,
    current_user: CurrentUser,
):
    return SessionService(db).remove_item(session_id, item_id)


@router.get("/{session_id}/preview", response_model=ClosePreviewResponse)
@limiter.limit("60/minute")
def preview_close(
    request: Request,
    session_id: int,
    db: DbSession,
    current_user: CurrentUser,
    end_at: Optional[datetime] = Query(None),
):
    """Projected charges if the session closed at ``end_at`` (default now)."""
    return SessionService(db).preview_close(session_id, end_at)


@router.get("/{session_id}/promotions", response_model=PromotionPreviewResponse)
@limiter.limit("60/minute")
def preview_promotions(
    request: Request,
    session_id: int,
    db: DbSession,
    current_user: CurrentUser,
    end_at: Optional[datetime] = Query(None),
):
    """Discounts the promotion engine would apply at checkout."""
    preview, result = SessionService(db).preview_promotions(session_id, end_at)
    return {
        "preview": preview,
        "lines": result.lines,
        "remaining": result.remaining,
        "discount_total": result.discount_total,
    }


@router.post("/{session_id}/checkout", response_model=CheckoutResponse)
@limiter.limit("30/minute")
def checkout(
    request: Request,
    session_id: int,
    body: CheckoutRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    """Close the session and issue its bill.

    Without ``discount_lines`` the effective promotions are applied; an
    explicit list (even empty) replaces them.
    """
    discount_lines = None
    if body.discount_lines is not None:
        discount_lines = [line.model_dump() for line in body.discount_lines]

    session, bill = SessionService(db).checkout(
        session_id,
        staff_id=current_user.user_id,
        end_at=body.end_at,
        discount_lines=discount_lines,
        surcharge=body.surcharge,
        payment_method=body.payment_method,
        paid=body.paid,
        code=body.code,
    )
    return {"session": session, "bill": bill}


@router.get("/{session_id}/bill", response_model=BillResponse)
@limiter.limit("60/minute")
def get_session_bill(request: Request, session_id: int, db: DbSession, current_user: CurrentUser):
    return BillService(db).get_for_session(session_id)


@router.post("/{session_id}/void", response_model=SessionResponse)
@limiter.limit("30/minute")
def void_session(
    request: Request,
    session_id: int,
    body: VoidRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    """Cancel a mistaken check-in; no bill is produced."""
    return SessionService(db).void_session(session_id, body.reason, staff_id=current_user.user_id)


@router.post("/{session_id}/transfer", response_model=SessionResponse)
@limiter.limit("30/minute")
def transfer_session(
    request: Request,
    session_id: int,
    body: TransferRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    """Move the session to another free table with the same hourly rate."""
    return SessionService(db).transfer_session(session_id, body.to_table_id, body.note)
