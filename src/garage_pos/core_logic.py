"""Business logic layer for Garage POS.

This module holds the sale transaction engine together with the ledgers it
coordinates. Every mutating function validates its payload first, then
touches the document store through exactly one atomic primitive (a write
batch or a transaction) so inventory quantities, customer balances and sale
records never drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from . import data_manager, log, validation
from .constants import EXPECTED_SCHEMA_VERSION, LOW_STOCK_THRESHOLD, TAX_RATE, Collection, SaleStatus
from .data_manager import SERVER_TIMESTAMP, Document, Increment, Transaction, WriteBatch
from .errors import FailedPrecondition, InvalidArgument, NotFound

Writer = Union[WriteBatch, Transaction]

CENT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration plus the open document store, built once per process."""

    settings: data_manager.ConfigSettings
    store: data_manager.DocumentStore


@dataclass(frozen=True)
class SaleLine:
    """One ``(item, quantity, price)`` entry of a sale."""

    item_id: str
    quantity: int
    price: Decimal

    @property
    def amount(self) -> Decimal:
        return self.price * self.quantity

    def to_document(self) -> Dict[str, Any]:
        return {"itemId": self.item_id, "quantity": self.quantity, "price": str(self.price)}

    @classmethod
    def from_document(cls, raw: Mapping[str, Any]) -> "SaleLine":
        return cls(item_id=str(raw["itemId"]), quantity=int(raw["quantity"]), price=Decimal(str(raw["price"])))

    @classmethod
    def from_request(cls, line: validation.SaleLineRequest) -> "SaleLine":
        return cls(item_id=line.item_id, quantity=line.quantity, price=line.price)


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class SaleReceipt:
    sale_id: str
    total: Decimal
    due: Decimal

    def to_payload(self) -> Dict[str, Any]:
        return {"saleId": self.sale_id, "total": self.total, "due": self.due}


@dataclass(frozen=True)
class SaleRevision:
    id: str
    total: Decimal
    delta: Decimal

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "total": self.total, "delta": self.delta}


@dataclass(frozen=True)
class SaleDeletion:
    id: str
    already: bool = False

    def to_payload(self) -> Dict[str, Any]:
        if self.already:
            return {"id": self.id, "already": True}
        return {"id": self.id, "deleted": True}


@dataclass(frozen=True)
class QuantityAdjustment:
    id: str
    quantity: int

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "quantity": self.quantity}


@dataclass(frozen=True)
class ImportRowResult:
    index: int
    status: str
    id: Optional[str] = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"index": self.index, "status": self.status}
        if self.id is not None:
            payload["id"] = self.id
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class ImportReport:
    results: List[ImportRowResult] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.results)

    def to_payload(self) -> Dict[str, Any]:
        return {"count": self.count, "results": [row.to_payload() for row in self.results]}


@dataclass(frozen=True)
class GstSummary:
    month: str
    total_amount: Decimal
    total_tax: Decimal

    def to_payload(self) -> Dict[str, Any]:
        return {"month": self.month, "totalAmount": self.total_amount, "totalTax": self.total_tax}


@dataclass(frozen=True)
class CustomerStatement:
    customer: Document
    sales: List[Document]
    payments: List[Document]

    @property
    def sales_total(self) -> Decimal:
        return sum((sale.get("total") or ZERO for sale in self.sales), ZERO)

    @property
    def paid_total(self) -> Decimal:
        return sum((payment.get("amount") or ZERO for payment in self.payments), ZERO)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and open the document store.

    This is the single startup step for every front-end; nothing in the
    package initializes the store lazily.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Settings plus an open store.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    store = data_manager.DocumentStore.open(
        settings.data_file,
        max_transaction_attempts=settings.max_transaction_attempts,
    )
    log.info("Loaded runtime context for store '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to run against a workbook laid out for another schema version.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )


# ---------------------------------------------------------------------------
# Money helpers
# ---------------------------------------------------------------------------


def round2(value: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(lines: Iterable[SaleLine]) -> SaleTotals:
    """Derive subtotal, tax and total for a set of lines.

    ``subtotal`` is the exact sum of ``quantity * price``; tax is 18% of it
    rounded to cents, and the total is rounded again after adding the tax.
    """
    subtotal = sum((line.amount for line in lines), ZERO)
    tax = round2(subtotal * TAX_RATE)
    total = round2(subtotal + tax)
    return SaleTotals(subtotal=subtotal, tax=tax, total=total)


def _validated(result: validation.ValidationResult) -> Any:
    if not result.ok:
        log.warning("Validation failed: %s", result.message)
        raise InvalidArgument(result.message)
    return result.value


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    return value if value else None


def _require(document: Optional[Document], label: str) -> Document:
    if document is None:
        raise NotFound(f"{label} not found")
    return document


def _stock_deltas(*pairs: tuple[Sequence[SaleLine], int]) -> Dict[str, int]:
    """Net quantity change per item for lines applied with the given sign."""
    deltas: Dict[str, int] = {}
    for lines, sign in pairs:
        for line in lines:
            deltas[line.item_id] = deltas.get(line.item_id, 0) + sign * line.quantity
    return deltas


def _is_valid_quantity(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _guard_stock(transaction: Transaction, deltas: Mapping[str, int]) -> None:
    """Fail if any net decrement would drive an item's quantity below zero."""
    for item_id, delta in deltas.items():
        if delta >= 0:
            continue
        item = _require(transaction.get(Collection.INVENTORY, item_id), f"Inventory item {item_id}")
        current = item.get("quantity")
        if not _is_valid_quantity(current):
            raise FailedPrecondition(f"Stored quantity for {item_id} is not a valid integer")
        if current + delta < 0:
            raise FailedPrecondition(
                f"Insufficient stock for {item_id}: have {current}, need {-delta}"
            )


def _commit(context: RuntimeContext, write: Callable[[Writer], Any], deltas: Mapping[str, int]) -> Any:
    """Commit ``write`` as a blind batch, or as a guarded transaction.

    With ``AllowOversell`` enabled (the default) stock is decremented
    relatively with no sufficiency read, so concurrent sales always apply and
    quantities may go negative. Otherwise the affected items are read inside
    a transaction and the whole operation is rejected on insufficient stock.
    """
    store = context.store
    try:
        if context.settings.allow_oversell:
            batch = store.batch()
            result = write(batch)
            batch.commit()
            return result

        def guarded(transaction: Transaction) -> Any:
            _guard_stock(transaction, deltas)
            return write(transaction)

        return store.run_transaction(guarded)
    except data_manager.DocumentNotFoundError as exc:
        raise NotFound(str(exc)) from exc


# ---------------------------------------------------------------------------
# Sale transaction engine
# ---------------------------------------------------------------------------


def get_sale(context: RuntimeContext, sale_id: str) -> Document:
    """Fetch a sale document, deleted tombstones included.

    Raises:
        NotFound: If no sale has ``sale_id``.
    """
    return _require(context.store.get(Collection.SALES, sale_id), "Sale")


def sale_lines(sale: Document) -> List[SaleLine]:
    """Decode the stored lines of ``sale``."""
    return [SaleLine.from_document(raw) for raw in sale.get("lines") or []]


def create_sale(context: RuntimeContext, payload: Mapping[str, Any]) -> SaleReceipt:
    """Record a sale, decrement stock and charge the customer in one commit.

    The customer's balance grows by ``total - paidAmount``; each line
    decrements its item by ``quantity``. Unknown items fail the whole commit
    with :class:`NotFound`.

    Raises:
        InvalidArgument: If the payload fails validation.
        NotFound: If the customer or a referenced item does not exist.
        FailedPrecondition: If oversell is disabled and stock is short.
    """
    request = _validated(validation.validate_sale_create(payload))
    _require(context.store.get(Collection.CUSTOMERS, request.customer_id), "Customer")

    lines = [SaleLine.from_request(line) for line in request.lines]
    totals = compute_totals(lines)
    paid = request.paid_amount if request.paid_amount is not None else ZERO
    due = totals.total - paid
    sale_id = context.store.new_id(Collection.SALES)

    def write(writer: Writer) -> None:
        for line in lines:
            writer.update(Collection.INVENTORY, line.item_id, {
                "quantity": Increment(-line.quantity),
                "updated_at": SERVER_TIMESTAMP,
            })
        writer.set(Collection.SALES, sale_id, {
            "customer_id": request.customer_id,
            "lines": [line.to_document() for line in lines],
            "subtotal": totals.subtotal,
            "tax": totals.tax,
            "total": totals.total,
            "paid_amount": paid,
            "notes": _blank_to_none(request.notes),
            "status": SaleStatus.COMPLETED.value,
            "created_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        })
        writer.update(Collection.CUSTOMERS, request.customer_id, {
            "balance": Increment(due),
            "updated_at": SERVER_TIMESTAMP,
        })

    _commit(context, write, _stock_deltas((lines, -1)))
    log.info(
        "Recorded sale '%s' for customer '%s' (lines=%d, total=%s, due=%s)",
        sale_id,
        request.customer_id,
        len(lines),
        totals.total,
        due,
    )
    return SaleReceipt(sale_id=sale_id, total=totals.total, due=due)


def update_sale(context: RuntimeContext, payload: Mapping[str, Any]) -> SaleRevision:
    """Replace a sale's lines, adjusting stock and balance by the difference.

    The stored lines are restored to inventory and the new lines applied in
    the same commit, so an item present in both nets to its true change. The
    customer's balance moves by ``newTotal - oldTotal``. The sale document is
    read inside the commit, which rejects the update if the sale was deleted
    or edited concurrently.

    Raises:
        InvalidArgument: If the payload fails validation.
        NotFound: If the sale, its customer, or a referenced item is missing.
        FailedPrecondition: If the sale is deleted, or stock is short with
            oversell disabled.
    """
    request = _validated(validation.validate_sale_update(payload))
    new_lines = [SaleLine.from_request(line) for line in request.lines]
    new_totals = compute_totals(new_lines)
    notes_supplied = "notes" in request.model_fields_set

    def write(transaction: Transaction) -> SaleRevision:
        sale = _require(transaction.get(Collection.SALES, request.id), "Sale")
        if sale.get("status") == SaleStatus.DELETED.value:
            raise FailedPrecondition("Sale is deleted and cannot be edited")
        customer_id = sale.get("customer_id")
        _require(transaction.get(Collection.CUSTOMERS, customer_id), "Customer")

        old_lines = sale_lines(sale)
        old_totals = compute_totals(old_lines)
        delta = new_totals.total - old_totals.total
        if not context.settings.allow_oversell:
            _guard_stock(transaction, _stock_deltas((old_lines, 1), (new_lines, -1)))

        for line in old_lines:
            transaction.update(Collection.INVENTORY, line.item_id, {
                "quantity": Increment(line.quantity),
                "updated_at": SERVER_TIMESTAMP,
            })
        for line in new_lines:
            transaction.update(Collection.INVENTORY, line.item_id, {
                "quantity": Increment(-line.quantity),
                "updated_at": SERVER_TIMESTAMP,
            })
        transaction.update(Collection.CUSTOMERS, customer_id, {
            "balance": Increment(delta),
            "updated_at": SERVER_TIMESTAMP,
        })
        changes: Dict[str, Any] = {
            "lines": [line.to_document() for line in new_lines],
            "subtotal": new_totals.subtotal,
            "tax": new_totals.tax,
            "total": new_totals.total,
            "updated_at": SERVER_TIMESTAMP,
        }
        if notes_supplied:
            changes["notes"] = _blank_to_none(request.notes)
        transaction.update(Collection.SALES, request.id, changes)
        return SaleRevision(id=request.id, total=new_totals.total, delta=delta)

    try:
        revision = context.store.run_transaction(write)
    except data_manager.DocumentNotFoundError as exc:
        raise NotFound(str(exc)) from exc
    log.info("Updated sale '%s' (total=%s, delta=%s)", revision.id, revision.total, revision.delta)
    return revision


def delete_sale(context: RuntimeContext, payload: Mapping[str, Any]) -> SaleDeletion:
    """Tombstone a sale and reverse its stock and balance effects.

    Deleting an already deleted sale is a successful no-op reported as
    ``already``; the reversal is only ever applied once.

    Raises:
        InvalidArgument: If the payload fails validation.
        NotFound: If the sale (or, at commit, its customer or an item) is
            missing.
    """
    request = _validated(validation.validate_delete(payload))

    def write(transaction: Transaction) -> SaleDeletion:
        sale = _require(transaction.get(Collection.SALES, request.id), "Sale")
        if sale.get("status") == SaleStatus.DELETED.value:
            return SaleDeletion(id=request.id, already=True)

        for line in sale_lines(sale):
            transaction.update(Collection.INVENTORY, line.item_id, {
                "quantity": Increment(line.quantity),
                "updated_at": SERVER_TIMESTAMP,
            })
        transaction.update(Collection.CUSTOMERS, sale.get("customer_id"), {
            "balance": Increment(-(sale.get("total") or ZERO)),
            "updated_at": SERVER_TIMESTAMP,
        })
        transaction.update(Collection.SALES, request.id, {
            "status": SaleStatus.DELETED.value,
            "deleted_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        })
        return SaleDeletion(id=request.id)

    try:
        outcome = context.store.run_transaction(write)
    except data_manager.DocumentNotFoundError as exc:
        raise NotFound(str(exc)) from exc
    if outcome.already:
        log.info("Sale '%s' already deleted; nothing to do", request.id)
    else:
        log.info("Deleted sale '%s'", request.id)
    return outcome


# ---------------------------------------------------------------------------
# Payment recorder
# ---------------------------------------------------------------------------


def record_payment(context: RuntimeContext, payload: Mapping[str, Any]) -> str:
    """Append a payment under a customer and reduce their balance.

    Returns:
        str: Identifier of the new payment record.

    Raises:
        InvalidArgument: If the payload fails validation.
        NotFound: If the customer does not exist.
    """
    request = _validated(validation.validate_payment(payload))
    _require(context.store.get(Collection.CUSTOMERS, request.customer_id), "Customer")

    payment_id = context.store.new_id(Collection.PAYMENTS)
    batch = context.store.batch()
    batch.set(Collection.PAYMENTS, payment_id, {
        "customer_id": request.customer_id,
        "amount": request.amount,
        "method": request.method.value,
        "note": _blank_to_none(request.note),
        "created_at": SERVER_TIMESTAMP,
    })
    batch.update(Collection.CUSTOMERS, request.customer_id, {
        "balance": Increment(-request.amount),
        "updated_at": SERVER_TIMESTAMP,
    })
    try:
        batch.commit()
    except data_manager.DocumentNotFoundError as exc:
        raise NotFound(str(exc)) from exc
    log.info(
        "Recorded payment '%s' for customer '%s' (amount=%s, method=%s)",
        payment_id,
        request.customer_id,
        request.amount,
        request.method.value,
    )
    return payment_id


# ---------------------------------------------------------------------------
# Inventory ledger
# ---------------------------------------------------------------------------


def _item_document(request: validation.InventoryItemRequest) -> Dict[str, Any]:
    return {
        "brand": request.brand,
        "name": request.name,
        "volume_ml": request.volume_ml,
        "quantity": request.quantity,
        "purchase_price": request.purchase_price,
        "selling_price": request.selling_price,
        "created_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    }


def list_inventory(context: RuntimeContext) -> List[Document]:
    """Return every inventory item ordered by brand, then name (case-insensitive)."""
    return sorted(
        context.store.list(Collection.INVENTORY),
        key=lambda item: ((item.get("brand") or "").lower(), (item.get("name") or "").lower()),
    )


def low_stock(context: RuntimeContext, threshold: int = LOW_STOCK_THRESHOLD) -> List[Document]:
    """Return items holding fewer than ``threshold`` units, emptiest first.

    Items whose stored quantity is not a valid integer are left out; they
    surface through :func:`adjust_inventory_quantity` instead.

    Args:
        context (RuntimeContext): Loaded runtime context.
        threshold (int): Exclusive upper bound on the quantity.

    Returns:
        list[Document]: Matching items ordered by quantity, then brand and
        name. Oversold items (negative quantity) come first.

    Raises:
        InvalidArgument: If ``threshold`` is not a positive integer.
    """
    if not _is_valid_quantity(threshold) or threshold < 1:
        raise InvalidArgument("threshold: must be a positive integer")
    items = [
        item for item in list_inventory(context)
        if _is_valid_quantity(item.get("quantity")) and item.get("quantity") < threshold
    ]
    return sorted(items, key=lambda item: item.get("quantity"))


def add_inventory_item(context: RuntimeContext, payload: Mapping[str, Any]) -> str:
    """Validate and store a new inventory item.

    Returns:
        str: Identifier of the new item.

    Raises:
        InvalidArgument: If the payload fails validation.
    """
    request = _validated(validation.validate_inventory_item(payload))
    item_id = context.store.add(Collection.INVENTORY, _item_document(request))
    log.info("Added inventory item '%s' (%s %s, quantity=%s)", item_id, request.brand, request.name, request.quantity)
    return item_id


def update_inventory_item(context: RuntimeContext, payload: Mapping[str, Any]) -> str:
    """Apply a partial update to an inventory item.

    Price ordering is checked against the stored value when only one of the
    two prices is supplied.

    Raises:
        InvalidArgument: If the payload fails validation or the resulting
            prices are out of order.
        FailedPrecondition: If no field besides ``id`` was supplied.
        NotFound: If the item does not exist.
    """
    request = _validated(validation.validate_inventory_update(payload))
    changes = request.changes()
    if not changes:
        raise FailedPrecondition("No fields to update")
    cleared = [name for name in ("brand", "name", "volume_ml", "quantity") if name in changes and changes[name] is None]
    if cleared:
        raise InvalidArgument("; ".join(f"{name}: cannot be cleared" for name in cleared))
    item = _require(context.store.get(Collection.INVENTORY, request.id), "Inventory item")

    purchase = changes.get("purchase_price", item.get("purchase_price"))
    selling = changes.get("selling_price", item.get("selling_price"))
    if purchase is not None and selling is not None and selling < purchase:
        raise InvalidArgument("sellingPrice: must be >= purchasePrice")

    changes["updated_at"] = SERVER_TIMESTAMP
    try:
        context.store.update(Collection.INVENTORY, request.id, changes)
    except data_manager.DocumentNotFoundError as exc:
        raise NotFound(str(exc)) from exc
    log.info("Updated inventory item '%s' (%s)", request.id, ", ".join(sorted(changes)))
    return request.id


def delete_inventory_item(context: RuntimeContext, payload: Mapping[str, Any]) -> str:
    """Remove an inventory item. Sales referencing it keep their lines.

    Raises:
        InvalidArgument: If ``id`` is missing.
        NotFound: If the item does not exist.
    """
    request = _validated(validation.validate_delete(payload))
    _require(context.store.get(Collection.INVENTORY, request.id), "Inventory item")
    context.store.delete(Collection.INVENTORY, request.id)
    log.info("Deleted inventory item '%s'", request.id)
    return request.id


def bulk_import_inventory(context: RuntimeContext, rows: Any) -> ImportReport:
    """Validate each row independently and commit every valid one together.

    Invalid rows are reported with their error and skipped; the valid rows go
    into a single batch.

    Raises:
        InvalidArgument: If ``rows`` is not a list.
    """
    if not isinstance(rows, list):
        raise InvalidArgument("Expected array")

    batch = context.store.batch()
    results: List[ImportRowResult] = []
    for index, raw in enumerate(rows):
        outcome = validation.validate_inventory_item(raw)
        if not outcome.ok:
            results.append(ImportRowResult(index=index, status="error", error=outcome.message))
            continue
        item_id = context.store.new_id(Collection.INVENTORY)
        batch.set(Collection.INVENTORY, item_id, _item_document(outcome.value))
        results.append(ImportRowResult(index=index, status="ok", id=item_id))

    if len(batch):
        batch.commit()
    log.info(
        "Bulk import processed %d rows (%d imported)",
        len(results),
        sum(1 for row in results if row.status == "ok"),
    )
    return ImportReport(results=results)


def adjust_inventory_quantity(context: RuntimeContext, payload: Mapping[str, Any]) -> QuantityAdjustment:
    """Apply a manual stock correction that may never leave negative stock.

    The read and the conditional write happen in one transaction, so two
    concurrent corrections cannot both pass the check against a stale value.

    Raises:
        InvalidArgument: If ``delta`` is zero or beyond the allowed range
            (checked before any read).
        NotFound: If the item does not exist.
        FailedPrecondition: If the stored quantity is corrupt or the result
            would be negative.
    """
    request = _validated(validation.validate_adjust_quantity(payload))

    def adjust(transaction: Transaction) -> QuantityAdjustment:
        item = _require(transaction.get(Collection.INVENTORY, request.id), "Inventory item")
        current = item.get("quantity")
        if not _is_valid_quantity(current):
            raise FailedPrecondition("Stored quantity is not a valid integer")
        new_quantity = current + request.delta
        if new_quantity < 0:
            raise FailedPrecondition(
                f"Adjustment would make quantity negative ({current} {request.delta:+d})"
            )
        transaction.update(Collection.INVENTORY, request.id, {
            "quantity": new_quantity,
            "updated_at": SERVER_TIMESTAMP,
        })
        return QuantityAdjustment(id=request.id, quantity=new_quantity)

    adjustment = context.store.run_transaction(adjust)
    log.info("Adjusted inventory item '%s' by %+d to %d", request.id, request.delta, adjustment.quantity)
    return adjustment


# ---------------------------------------------------------------------------
# Customer ledger
# ---------------------------------------------------------------------------


def get_customer(context: RuntimeContext, customer_id: str) -> Document:
    """Fetch one customer.

    Raises:
        NotFound: If no customer has ``customer_id``.
    """
    return _require(context.store.get(Collection.CUSTOMERS, customer_id), "Customer")


def list_customers(context: RuntimeContext) -> List[Document]:
    """Return every customer ordered by name (case-insensitive)."""
    return sorted(context.store.list(Collection.CUSTOMERS), key=lambda c: (c.get("name") or "").lower())


def add_customer(context: RuntimeContext, payload: Mapping[str, Any]) -> str:
    """Validate and store a new customer.

    Blank optional fields are stored as ``None`` and a missing balance starts
    at zero.

    Args:
        context (RuntimeContext): Loaded runtime context.
        payload (Mapping[str, Any]): Customer fields using the wire names
            (``altPhone``, ``gstNumber``).

    Returns:
        str: Identifier of the new customer.

    Raises:
        InvalidArgument: If the payload fails validation.
    """
    request = _validated(validation.validate_customer(payload))
    customer_id = context.store.add(Collection.CUSTOMERS, {
        "name": request.name,
        "phone": _blank_to_none(request.phone),
        "alt_phone": _blank_to_none(request.alt_phone),
        "gst_number": _blank_to_none(request.gst_number),
        "email": _blank_to_none(request.email),
        "address": _blank_to_none(request.address),
        "balance": request.balance if request.balance is not None else ZERO,
        "created_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    })
    log.info("Added customer '%s' (%s)", customer_id, request.name)
    return customer_id


def update_customer(context: RuntimeContext, payload: Mapping[str, Any]) -> str:
    """Apply a partial update to a customer.

    Only supplied fields change. A supplied blank or ``None`` optional field is
    cleared; a ``None`` balance is ignored.

    Raises:
        InvalidArgument: If the payload fails validation or clears ``name``.
        NotFound: If the customer does not exist.
    """
    request = _validated(validation.validate_customer_update(payload))
    changes = request.changes()
    if "name" in changes and changes["name"] is None:
        raise InvalidArgument("name: cannot be cleared")
    for key in ("phone", "alt_phone", "gst_number", "email", "address"):
        if key in changes:
            changes[key] = _blank_to_none(changes[key])
    if "balance" in changes and changes["balance"] is None:
        del changes["balance"]
    _require(context.store.get(Collection.CUSTOMERS, request.id), "Customer")

    changes["updated_at"] = SERVER_TIMESTAMP
    try:
        context.store.update(Collection.CUSTOMERS, request.id, changes)
    except data_manager.DocumentNotFoundError as exc:
        raise NotFound(str(exc)) from exc
    log.info("Updated customer '%s'", request.id)
    return request.id


def delete_customer(context: RuntimeContext, payload: Mapping[str, Any]) -> str:
    """Remove a customer. Their sales and payments are left in place.

    Raises:
        NotFound: If the customer does not exist.
    """
    request = _validated(validation.validate_delete(payload))
    _require(context.store.get(Collection.CUSTOMERS, request.id), "Customer")
    context.store.delete(Collection.CUSTOMERS, request.id)
    log.info("Deleted customer '%s'", request.id)
    return request.id


def customer_statement(context: RuntimeContext, customer_id: str) -> CustomerStatement:
    """Collect a customer's completed sales and payments, newest first."""
    customer = get_customer(context, customer_id)
    sales = [
        sale for sale in context.store.list(Collection.SALES, where={"customer_id": customer_id})
        if sale.get("status") != SaleStatus.DELETED.value
    ]
    payments = context.store.list(Collection.PAYMENTS, where={"customer_id": customer_id})
    def newest_first(doc: Document) -> str:
        return doc.get("created_at") or ""

    return CustomerStatement(
        customer=customer,
        sales=sorted(sales, key=newest_first, reverse=True),
        payments=sorted(payments, key=newest_first, reverse=True),
    )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def gst_summary(context: RuntimeContext, month: Optional[str] = None) -> GstSummary:
    """Total invoiced amount and tax across every completed sale.

    ``month`` is echoed back but does not filter the aggregation.
    """
    total_amount = ZERO
    total_tax = ZERO
    for sale in context.store.list(Collection.SALES):
        if sale.get("status") == SaleStatus.DELETED.value:
            continue
        total_amount += sale.get("total") or ZERO
        total_tax += sale.get("tax") or ZERO
    return GstSummary(month=month or "ALL", total_amount=total_amount, total_tax=total_tax)
