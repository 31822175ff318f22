"""Promotion management routes (manager role)."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from cueclub.core.rate_limit import limiter
from cueclub.core.rbac import CurrentUser, RequireManager
from cueclub.core.responses import paginated_response
from cueclub.db.session import DbSession
from cueclub.models.promotion import PromotionScope
from cueclub.schemas.promotion import (
    PromotionActiveUpdate,
    PromotionCreate,
    PromotionOrderUpdate,
    PromotionResponse,
    PromotionUpdate,
)
from cueclub.services.promotion_service import PromotionService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
@limiter.limit("60/minute")
def list_promotions(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    scope: Optional[PromotionScope] = Query(None),
    active: Optional[bool] = Query(None),
    effective_at: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List promotions in evaluation order (apply_order, then creation)."""
    rows, total = PromotionService(db).list(
        scope=scope, active=active, effective_at=effective_at, skip=skip, limit=limit
    )
    items = [PromotionResponse.model_validate(p).model_dump(mode="json") for p in rows]
    return paginated_response(items, total, skip, limit)


@router.post("", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_promotion(request: Request, body: PromotionCreate, db: DbSession, current_user: RequireManager):
    promo = PromotionService(db).create(body.model_dump())
    logger.info("User %s created promotion %s", current_user.user_id, promo.code)
    return promo


@router.get("/{promotion_id}", response_model=PromotionResponse)
@limiter.limit("60/minute")
def get_promotion(request: Request, promotion_id: int, db: DbSession, current_user: CurrentUser):
    return PromotionService(db).get(promotion_id)


@router.patch("/{promotion_id}", response_model=PromotionResponse)
@limiter.limit("30/minute")
def update_promotion(
    request: Request,
    promotion_id: int,
    body: PromotionUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    return PromotionService(db).update(promotion_id, body.model_dump(exclude_unset=True))


@router.patch("/{promotion_id}/active", response_model=PromotionResponse)
@limiter.limit("30/minute")
def set_promotion_active(
    request: Request,
    promotion_id: int,
    body: PromotionActiveUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    return PromotionService(db).set_active(promotion_id, body.active)


@router.patch("/{promotion_id}/order", response_model=PromotionResponse)
@limiter.limit("30/minute")
def set_promotion_order(
    request: Request,
    promotion_id: int,
    body: PromotionOrderUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    return PromotionService(db).set_apply_order(promotion_id, body.apply_order)


@router.delete("/{promotion_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def delete_promotion(request: Request, promotion_id: int, db: DbSession, current_user: RequireManager):
    PromotionService(db).delete(promotion_id)
