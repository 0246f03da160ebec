"""Remote callable procedures.

Each procedure is a thin wrapper that checks the caller, hands the payload to
:mod:`garage_pos.core_logic` and shapes the result for the wire. Transports
(the HTTP app, the CLI, tests) all go through :func:`call` so authentication,
error wrapping and logging behave identically everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Mapping, Optional

from . import core_logic, data_manager, log
from .constants import LOW_STOCK_THRESHOLD
from .data_manager import Document
from .errors import Internal, InvalidArgument, NotFound, ServiceError, Unauthenticated


@dataclass(frozen=True)
class Caller:
    """Identity resolved by the transport; ``uid`` is ``None`` when anonymous."""

    uid: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.uid)


ANONYMOUS = Caller()

Handler = Callable[[core_logic.RuntimeContext, Any], Any]


@dataclass(frozen=True)
class Procedure:
    """One entry of the dispatch table.

    Attributes:
        name (str): Wire name used by transports.
        handler (Handler): Callable receiving the context and raw payload.
        requires_auth (bool): Whether anonymous callers are rejected.
    """

    name: str
    handler: Handler
    requires_auth: bool = True


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def document_payload(document: Document) -> Dict[str, Any]:
    """Render a stored document with camelCase keys for the wire."""

    payload: Dict[str, Any] = {"id": document.id}
    for key, value in document.data.items():
        payload[_camel(key)] = value
    return payload


def _id_argument(payload: Any) -> str:
    """Extract a non-blank ``id`` from a read payload.

    Raises:
        InvalidArgument: If ``id`` is missing or blank.
    """
    if not isinstance(payload, Mapping) or not isinstance(payload.get("id"), str) or not payload["id"].strip():
        raise InvalidArgument("id: required")
    return payload["id"].strip()


def _add_customer(context, payload):
    """Payload: customer fields. Returns ``{"id": ...}``."""
    return {"id": core_logic.add_customer(context, payload)}


def _update_customer(context, payload):
    return {"id": core_logic.update_customer(context, payload)}


def _delete_customer(context, payload):
    return {"id": core_logic.delete_customer(context, payload)}


def _get_customer(context, payload):
    """Payload: ``{"id": ...}``. Returns the customer document."""
    return document_payload(core_logic.get_customer(context, _id_argument(payload)))


def _list_customers(context, payload):
    return {"customers": [document_payload(doc) for doc in core_logic.list_customers(context)]}


def _customer_statement(context, payload):
    """Payload: ``{"id": ...}``.

    Returns:
        dict: The customer, completed sales and payments (newest first) and
        the two running totals.
    """
    statement = core_logic.customer_statement(context, _id_argument(payload))
    return {
        "customer": document_payload(statement.customer),
        "sales": [document_payload(doc) for doc in statement.sales],
        "payments": [document_payload(doc) for doc in statement.payments],
        "salesTotal": statement.sales_total,
        "paidTotal": statement.paid_total,
    }


def _add_inventory_item(context, payload):
    return {"id": core_logic.add_inventory_item(context, payload)}


def _update_inventory_item(context, payload):
    return {"id": core_logic.update_inventory_item(context, payload)}


def _delete_inventory_item(context, payload):
    return {"id": core_logic.delete_inventory_item(context, payload), "deleted": True}


def _list_inventory(context, payload):
    return {"items": [document_payload(doc) for doc in core_logic.list_inventory(context)]}


def _low_stock(context, payload):
    """Payload: optional ``{"threshold": int}``. Returns ``{"threshold", "items"}``.

    Raises:
        InvalidArgument: If ``threshold`` is not a positive integer.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise InvalidArgument("payload object required")
    threshold = payload.get("threshold")
    if threshold is None:
        threshold = LOW_STOCK_THRESHOLD
    items = core_logic.low_stock(context, threshold)
    return {"threshold": threshold, "items": [document_payload(doc) for doc in items]}


def _bulk_import_inventory(context, payload):
    """Payload: a list of inventory rows. Returns the per-row report."""
    return core_logic.bulk_import_inventory(context, payload).to_payload()


def _adjust_inventory_quantity(context, payload):
    return core_logic.adjust_inventory_quantity(context, payload).to_payload()


def _add_sale(context, payload):
    """Returns ``{"saleId", "total", "due"}``."""
    return core_logic.create_sale(context, payload).to_payload()


def _update_sale(context, payload):
    return core_logic.update_sale(context, payload).to_payload()


def _delete_sale(context, payload):
    return core_logic.delete_sale(context, payload).to_payload()


def _record_payment(context, payload):
    return {"paymentId": core_logic.record_payment(context, payload)}


def _gst_summary(context, payload):
    """Payload: optional ``{"month": ...}``, echoed back unfiltered."""
    month = payload.get("month") if isinstance(payload, Mapping) else None
    return core_logic.gst_summary(context, month).to_payload()


def _ping(context, payload):
    """Liveness check; the only procedure open to anonymous callers."""
    return {"status": "ok", "time": datetime.now(UTC).isoformat()}


PROCEDURES: Mapping[str, Procedure] = {
    spec.name: spec
    for spec in (
        Procedure("addCustomer", _add_customer),
        Procedure("updateCustomer", _update_customer),
        Procedure("deleteCustomer", _delete_customer),
        Procedure("getCustomer", _get_customer),
        Procedure("listCustomers", _list_customers),
        Procedure("customerStatement", _customer_statement),
        Procedure("addInventoryItem", _add_inventory_item),
        Procedure("updateInventoryItem", _update_inventory_item),
        Procedure("deleteInventoryItem", _delete_inventory_item),
        Procedure("listInventory", _list_inventory),
        Procedure("lowStock", _low_stock),
        Procedure("bulkImportInventory", _bulk_import_inventory),
        Procedure("adjustInventoryQuantity", _adjust_inventory_quantity),
        Procedure("addSale", _add_sale),
        Procedure("updateSale", _update_sale),
        Procedure("deleteSale", _delete_sale),
        Procedure("recordPayment", _record_payment),
        Procedure("gstSummaryHttp", _gst_summary),
        Procedure("ping", _ping, requires_auth=False),
    )
}


def call(
    context: core_logic.RuntimeContext,
    name: str,
    payload: Any = None,
    caller: Caller = ANONYMOUS,
) -> Any:
    """Invoke procedure ``name`` on behalf of ``caller``.

    Every failure is logged with the procedure name and re-raised as a
    :class:`~garage_pos.errors.ServiceError`; anything unexpected becomes
    :class:`~garage_pos.errors.Internal` carrying the original message.

    Raises:
        ServiceError: One of its subclasses, matching the failure kind.
    """

    procedure = PROCEDURES.get(name)
    try:
        if procedure is None:
            raise NotFound(f"Unknown procedure: {name}")
        if procedure.requires_auth and not caller.authenticated:
            raise Unauthenticated("Auth required")
        result = procedure.handler(context, payload)
        log.debug("[%s] ok (caller=%s)", name, caller.uid)
        return result
    except ServiceError as exc:
        log.error("[%s] error %s: %s", name, exc.kind.value, exc.message)
        raise
    except data_manager.DocumentNotFoundError as exc:
        log.error("[%s] error not-found: %s", name, exc)
        raise NotFound(str(exc)) from exc
    except Exception as exc:
        log.exception("[%s] error", name)
        raise Internal(str(exc) or "internal error") from exc
