"""Validation layer: one request schema per mutating operation.

Schemas are plain pydantic models. The ``validate_*`` helpers never raise for
bad input; they return a :class:`ValidationResult` holding either the typed
request or every violation found, so a caller sees all problems with a payload
at once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Annotated, Any, Generic, List, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .constants import MAX_ADJUST_DELTA, PHONE_PATTERN, PaymentMethod

M = TypeVar("M", bound=BaseModel)

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
OptionalText = Optional[Annotated[str, StringConstraints(strip_whitespace=True)]]
PhoneStr = Annotated[str, StringConstraints(strip_whitespace=True, pattern=PHONE_PATTERN)]
PositiveInt = Annotated[int, Field(strict=True, gt=0)]
NonNegativeInt = Annotated[int, Field(strict=True, ge=0)]


def _reject_text(value: Any) -> Any:
    # numeric strings and booleans are not amounts
    if isinstance(value, (str, bool)):
        raise ValueError("must be a number")
    return value


Number = Annotated[Decimal, BeforeValidator(_reject_text), Field(allow_inf_nan=False)]
NonNegativeMoney = Annotated[Decimal, BeforeValidator(_reject_text), Field(ge=0, allow_inf_nan=False)]
PositiveNumber = Annotated[Decimal, BeforeValidator(_reject_text), Field(gt=0, allow_inf_nan=False)]


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class SaleLineRequest(_Request):
    item_id: NonEmptyStr = Field(alias="itemId")
    quantity: PositiveInt
    price: NonNegativeMoney


class SaleCreateRequest(_Request):
    customer_id: NonEmptyStr = Field(alias="customerId")
    lines: List[SaleLineRequest] = Field(min_length=1)
    paid_amount: Optional[NonNegativeMoney] = Field(default=None, alias="paidAmount")
    notes: OptionalText = None


class SaleUpdateRequest(_Request):
    id: NonEmptyStr
    lines: List[SaleLineRequest] = Field(min_length=1)
    notes: OptionalText = None


class DeleteRequest(_Request):
    id: NonEmptyStr


class PaymentRequest(_Request):
    customer_id: NonEmptyStr = Field(alias="customerId")
    amount: PositiveNumber
    method: PaymentMethod = PaymentMethod.CASH
    note: OptionalText = None

    @field_validator("method", mode="before")
    @classmethod
    def _default_method(cls, value: Any) -> Any:
        return PaymentMethod.CASH if value is None else value


class _PricedRequest(_Request):
    """Shared rule for items carrying ``purchase_price`` and ``selling_price``.

    Checked as a field validator so it is reported alongside any other
    field errors of the same payload.
    """

    @field_validator("selling_price", check_fields=False)
    @classmethod
    def _selling_covers_purchase(cls, value: Optional[Decimal], info: ValidationInfo) -> Optional[Decimal]:
        purchase = info.data.get("purchase_price")
        if value is not None and purchase is not None and value < purchase:
            raise ValueError("must be >= purchasePrice")
        return value


class InventoryItemRequest(_PricedRequest):
    brand: NonEmptyStr
    name: NonEmptyStr
    volume_ml: PositiveNumber = Field(alias="volumeMl")
    quantity: NonNegativeInt
    purchase_price: Optional[NonNegativeMoney] = Field(default=None, alias="purchasePrice")
    selling_price: Optional[NonNegativeMoney] = Field(default=None, alias="sellingPrice")


class InventoryItemUpdateRequest(_PricedRequest):
    id: NonEmptyStr
    brand: Optional[NonEmptyStr] = None
    name: Optional[NonEmptyStr] = None
    volume_ml: Optional[PositiveNumber] = Field(default=None, alias="volumeMl")
    quantity: Optional[NonNegativeInt] = None
    purchase_price: Optional[NonNegativeMoney] = Field(default=None, alias="purchasePrice")
    selling_price: Optional[NonNegativeMoney] = Field(default=None, alias="sellingPrice")

    def changes(self) -> dict:
        """Fields the caller actually supplied, keyed by document field name."""

        return self.model_dump(exclude={"id"}, exclude_unset=True)


class CustomerRequest(_Request):
    name: NonEmptyStr
    phone: Optional[PhoneStr] = None
    alt_phone: Optional[PhoneStr] = Field(default=None, alias="altPhone")
    gst_number: OptionalText = Field(default=None, alias="gstNumber")
    email: OptionalText = None
    address: OptionalText = None
    balance: Optional[Number] = None


class CustomerUpdateRequest(_Request):
    id: NonEmptyStr
    name: Optional[NonEmptyStr] = None
    phone: Optional[PhoneStr] = None
    alt_phone: Optional[PhoneStr] = Field(default=None, alias="altPhone")
    gst_number: OptionalText = Field(default=None, alias="gstNumber")
    email: OptionalText = None
    address: OptionalText = None
    balance: Optional[Number] = None

    def changes(self) -> dict:
        return self.model_dump(exclude={"id"}, exclude_unset=True)


class AdjustQuantityRequest(_Request):
    id: NonEmptyStr
    delta: Annotated[int, Field(strict=True, ge=-MAX_ADJUST_DELTA, le=MAX_ADJUST_DELTA)]

    @field_validator("delta")
    @classmethod
    def _non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("delta must be non-zero")
        return value


@dataclass(frozen=True)
class ValidationResult(Generic[M]):
    """Outcome of validating one payload."""

    value: Optional[M] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        return "; ".join(self.errors)


def _format_location(loc: tuple) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def format_errors(error: ValidationError) -> List[str]:
    """Flatten a pydantic error into ``"<path>: <reason>"`` strings."""

    messages = []
    for item in error.errors():
        # errors not tied to a field report an empty location
        location = _format_location(tuple(item.get("loc", ())))
        reason = item.get("msg", "invalid")
        if reason.startswith("Value error, "):
            reason = reason[len("Value error, "):]
        messages.append(f"{location}: {reason}" if location else reason)
    return messages


def validate(schema: Type[M], payload: Any) -> ValidationResult[M]:
    """Validate ``payload`` against ``schema`` and collect every violation."""

    if not isinstance(payload, dict):
        return ValidationResult(errors=["payload object required"])
    try:
        return ValidationResult(value=schema.model_validate(payload))
    except ValidationError as exc:
        return ValidationResult(errors=format_errors(exc))


def validate_sale_create(payload: Any) -> ValidationResult[SaleCreateRequest]:
    return validate(SaleCreateRequest, payload)


def validate_sale_update(payload: Any) -> ValidationResult[SaleUpdateRequest]:
    return validate(SaleUpdateRequest, payload)


def validate_delete(payload: Any) -> ValidationResult[DeleteRequest]:
    return validate(DeleteRequest, payload)


def validate_payment(payload: Any) -> ValidationResult[PaymentRequest]:
    return validate(PaymentRequest, payload)


def validate_inventory_item(payload: Any) -> ValidationResult[InventoryItemRequest]:
    return validate(InventoryItemRequest, payload)


def validate_inventory_update(payload: Any) -> ValidationResult[InventoryItemUpdateRequest]:
    return validate(InventoryItemUpdateRequest, payload)


def validate_customer(payload: Any) -> ValidationResult[CustomerRequest]:
    return validate(CustomerRequest, payload)


def validate_customer_update(payload: Any) -> ValidationResult[CustomerUpdateRequest]:
    return validate(CustomerUpdateRequest, payload)


def validate_adjust_quantity(payload: Any) -> ValidationResult[AdjustQuantityRequest]:
    return validate(AdjustQuantityRequest, payload)
