"""
Bistro — Orders API

Flow:
  1. JWT validated by middleware (request.state.user set)
  2. Rate limit applied by middleware (5 orders / 15 min)
  3. OrderManager: normalize → dedup gate → transaction
  4. New order → 201; duplicate of an earlier submission → 409 carrying the existing order
"""
import datetime as dt
import math

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from bistro.api.deps import current_account, order_manager, require_admin
from bistro.core.security import Account
from bistro.schemas.common import Pagination
from bistro.schemas.order import OrderCreate, OrderCreated, OrderDeleted, OrderEnvelope, OrderList
from bistro.services.orders import OrderManager

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderCreated, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    _: Account = Depends(current_account),
    manager: OrderManager = Depends(order_manager),
):
    """
    Place an order. Safe to retry with the same clientReferenceId: a repeat
    submission answers 409 with the order that was already stored.
    """
    outcome = await manager.create(payload)
    if outcome.duplicate:
        body = OrderCreated(
            msg="Duplicate order detected",
            order=outcome.order,
            duplicate=True,
            duplicate_type=outcome.duplicate_type,
        )
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body.model_dump(mode="json", by_alias=True))
    return OrderCreated(msg="Order created successfully", order=outcome.order)


@router.get("/mine", response_model=OrderList)
async def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    account: Account = Depends(current_account),
    manager: OrderManager = Depends(order_manager),
):
    orders, total = await manager.list_for_account(account.email, page=page, limit=limit)
    return OrderList(
        orders=orders,
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.get("", response_model=OrderList)
async def list_orders(
    user_email: str | None = Query(None, alias="userEmail"),
    start_date: dt.datetime | None = Query(None, alias="startDate"),
    end_date: dt.datetime | None = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    _: Account = Depends(require_admin),
    manager: OrderManager = Depends(order_manager),
):
    orders, total = await manager.list_all(
        user_email=user_email,
        start=start_date,
        end=end_date,
        page=page,
        limit=limit,
        sort_order=sort_order,
    )
    return OrderList(
        orders=orders,
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
        filters={
            "userEmail": user_email,
            "startDate": start_date.isoformat() if start_date else None,
            "endDate": end_date.isoformat() if end_date else None,
            "sortOrder": sort_order,
        },
    )


@router.get("/{order_id}", response_model=OrderEnvelope)
async def get_order(
    order_id: str,
    account: Account = Depends(current_account),
    manager: OrderManager = Depends(order_manager),
):
    return OrderEnvelope(order=await manager.get(order_id, account))


@router.delete("/{order_id}", response_model=OrderDeleted)
async def delete_order(
    order_id: str,
    _: Account = Depends(require_admin),
    manager: OrderManager = Depends(order_manager),
):
    deleted = await manager.delete(order_id)
    return OrderDeleted(msg="Order deleted successfully", deleted_order=deleted)
