"""
Order normalization and total reconciliation.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from bistro.core.errors import ValidationFailed
from bistro.schemas.order import OrderCreate
from bistro.services.order_rules import money, normalize_order


def _order(**overrides) -> OrderCreate:
    body = {
        "items": [
            {"name": " Margherita ", "quantity": 2, "price": "12.50"},
            {"name": "Tiramisu", "quantity": 1, "price": "6.005"},
        ],
        "totalAmount": "31.00",
        "address": "  12 Harbour Street, Springfield ",
        "userEmail": "Guest@Example.com",
        "clientReferenceId": " cart-0001 ",
        "requestId": "req-0001",
    }
    body.update(overrides)
    return OrderCreate.model_validate(body)


def test_normalize_trims_lowercases_and_rounds():
    order = normalize_order(_order())
    assert order.user_email == "guest@example.com"
    assert order.address == "12 Harbour Street, Springfield"
    assert order.client_reference_id == "cart-0001"
    assert [i.name for i in order.items] == ["Margherita", "Tiramisu"]
    assert order.items[1].price == Decimal("6.01")
    assert order.total_amount == Decimal("31.00")
    assert order.lock_key == "guest@example.com_cart-0001"
    assert order.item_names == ["Margherita", "Tiramisu"]


def test_total_within_one_cent_is_accepted():
    normalize_order(_order(totalAmount="31.01"))
    normalize_order(_order(totalAmount="30.995"))


def test_total_mismatch_reports_amounts():
    with pytest.raises(ValidationFailed) as exc:
        normalize_order(_order(totalAmount="35.00"))
    assert exc.value.message == "Total amount mismatch"
    assert exc.value.details["calculated"] == pytest.approx(31.005)
    assert exc.value.details["provided"] == 35.0
    assert exc.value.details["difference"] == pytest.approx(3.995)


def test_money_rounds_half_up():
    assert money(Decimal("2.675")) == Decimal("2.68")
    assert money(Decimal("2.674")) == Decimal("2.67")


@pytest.mark.parametrize(
    "overrides",
    [
        {"items": []},
        {"items": [{"name": "Soup", "quantity": 0, "price": 5}]},
        {"items": [{"name": "Soup", "quantity": 1, "price": -5}]},
        {"items": [{"name": "", "quantity": 1, "price": 5}]},
        {"address": "short"},
        {"userEmail": "not-an-email"},
        {"totalAmount": 0},
    ],
)
def test_schema_rejects_malformed_orders(overrides):
    with pytest.raises(ValidationError):
        _order(**overrides)


def test_sub_cent_price_is_rejected_after_rounding():
    with pytest.raises(ValidationFailed) as exc:
        normalize_order(_order(items=[{"name": "Mint", "quantity": 1, "price": "0.004"}], totalAmount="0.004"))
    assert exc.value.message == "Amounts must be at least 0.01"
    assert set(exc.value.details) == {"items.0.price", "totalAmount"}


def test_sub_cent_total_is_rejected_after_rounding():
    # 0.005 rounds up to a cent; the total is within tolerance but rounds down to zero
    with pytest.raises(ValidationFailed) as exc:
        normalize_order(_order(items=[{"name": "Mint", "quantity": 1, "price": "0.005"}], totalAmount="0.004"))
    assert set(exc.value.details) == {"totalAmount"}
