"""
Bistro — Order normalization and total reconciliation
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from bistro.core.errors import ValidationFailed
from bistro.schemas.order import OrderCreate

CENT = Decimal("0.01")
TOTAL_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class NormalizedItem:
    name: str
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class NormalizedOrder:
    user_email: str
    items: tuple[NormalizedItem, ...]
    total_amount: Decimal
    address: str
    client_reference_id: str
    request_id: str

    @property
    def item_names(self) -> list[str]:
        return sorted({item.name for item in self.items})

    @property
    def lock_key(self) -> str:
        return f"{self.user_email}_{self.client_reference_id}"


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def items_total(items) -> Decimal:
    return sum((Decimal(item.price) * item.quantity for item in items), Decimal("0"))


def ensure_total_matches(items, total_amount: Decimal) -> None:
    """Raise ValidationFailed when `total_amount` is off by more than one cent."""
    calculated = items_total(items)
    difference = abs(Decimal(total_amount) - calculated)
    if difference > TOTAL_TOLERANCE:
        raise ValidationFailed(
            "Total amount mismatch",
            {
                "calculated": float(calculated),
                "provided": float(total_amount),
                "difference": float(difference),
            },
        )


def normalize_order(request: OrderCreate) -> NormalizedOrder:
    ensure_total_matches(request.items, request.total_amount)
    items = tuple(
        NormalizedItem(name=item.name.strip(), quantity=int(item.quantity), price=money(item.price))
        for item in request.items
    )
    total_amount = money(request.total_amount)

    # Prices and the total are stored in cents, so a sub-cent amount rounds to nothing.
    errors = {
        f"items.{index}.price": "Price must be at least 0.01"
        for index, item in enumerate(items)
        if item.price <= 0
    }
    if total_amount <= 0:
        errors["totalAmount"] = "Total amount must be at least 0.01"
    if errors:
        raise ValidationFailed("Amounts must be at least 0.01", errors)

    return NormalizedOrder(
        user_email=request.user_email.strip().lower(),
        items=items,
        total_amount=total_amount,
        address=request.address.strip(),
        client_reference_id=request.client_reference_id.strip(),
        request_id=request.request_id.strip(),
    )
