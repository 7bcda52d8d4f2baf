"""
Bistro — Order Pydantic schemas
"""
import datetime as dt
from decimal import Decimal

from pydantic import ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from bistro.schemas.common import CamelModel, Pagination


class OrderItemRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100, examples=["Margherita"])
    quantity: int = Field(..., gt=0, examples=[2])
    price: Decimal = Field(..., gt=0, examples=[12.5])


class OrderCreate(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    items: list[OrderItemRequest] = Field(..., min_length=1)
    total_amount: Decimal = Field(..., gt=0)
    address: str = Field(..., min_length=10, max_length=500)
    user_email: EmailStr
    client_reference_id: str = Field(..., min_length=1, max_length=255)
    request_id: str = Field(..., min_length=1, max_length=255)


class OrderItemOut(CamelModel):
    name: str
    quantity: int
    price: float


class OrderOut(CamelModel):
    id: str
    order_number: str
    client_reference_id: str
    user_email: str
    items: list[OrderItemOut]
    total_amount: float
    address: str
    payment_status: str
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class OrderCreated(CamelModel):
    msg: str
    order: OrderOut
    duplicate: bool = False
    duplicate_type: str | None = None


class OrderEnvelope(CamelModel):
    order: OrderOut


class OrderList(CamelModel):
    orders: list[OrderOut]
    pagination: Pagination
    filters: dict[str, str | None] | None = None


class DeletedOrder(CamelModel):
    id: str
    order_number: str
    user_email: str


class OrderDeleted(CamelModel):
    msg: str
    deleted_order: DeletedOrder
