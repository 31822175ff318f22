"""Bill routes: read side plus the payment and note patches."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request

from cueclub.core.rate_limit import limiter
from cueclub.core.rbac import CurrentUser, RequireManager
from cueclub.core.responses import paginated_response
from cueclub.db.session import DbSession
from cueclub.schemas.bill import BillNoteUpdate, BillPay, BillResponse
from cueclub.services.bill_service import BillService

router = APIRouter()


@router.get("")
@limiter.limit("60/minute")
def list_bills(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    paid: Optional[bool] = Query(None),
    table_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    bills, total = BillService(db).list(
        paid=paid,
        date_from=date_from,
        date_to=date_to,
        table_id=table_id,
        skip=skip,
        limit=limit,
    )
    items = [BillResponse.model_validate(b).model_dump(mode="json") for b in bills]
    return paginated_response(items, total, skip, limit)


@router.get("/{bill_id}", response_model=BillResponse)
@limiter.limit("60/minute")
def get_bill(request: Request, bill_id: int, db: DbSession, current_user: CurrentUser):
    return BillService(db).get(bill_id)


@router.post("/{bill_id}/pay", response_model=BillResponse)
@limiter.limit("30/minute")
def pay_bill(
    request: Request,
    bill_id: int,
    body: BillPay,
    db: DbSession,
    current_user: CurrentUser,
):
    """Mark an unpaid bill as paid."""
    return BillService(db).pay(bill_id, body.payment_method)


@router.patch("/{bill_id}/note", response_model=BillResponse)
@limiter.limit("30/minute")
def set_bill_note(
    request: Request,
    bill_id: int,
    body: BillNoteUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    return BillService(db).set_note(bill_id, body.note)
