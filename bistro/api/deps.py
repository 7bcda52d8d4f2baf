"""
Bistro — Request dependencies

The middleware stack leaves decoded JWT claims on request.state.user; the
lifecycle managers are created once at startup and kept on app.state.
"""
from fastapi import Depends, HTTPException, Request, status

from bistro.core.security import Account, account_from_claims
from bistro.services.notifier import Notifier
from bistro.services.orders import OrderManager
from bistro.services.reservations import ReservationManager


def current_account(request: Request) -> Account:
    claims = getattr(request.state, "user", None)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account_from_claims(claims)


def require_admin(account: Account = Depends(current_account)) -> Account:
    if not account.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return account


def reservation_manager(request: Request) -> ReservationManager:
    return request.app.state.reservation_manager


def order_manager(request: Request) -> OrderManager:
    return request.app.state.order_manager


def notifier(request: Request) -> Notifier:
    return request.app.state.notifier
