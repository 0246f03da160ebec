"""Command-line entry points for Garage POS.

The CLI is one more transport over :mod:`garage_pos.procedures`: every
sub-command translates its arguments into a procedure payload and calls the
procedure as the operator named in ``config.ini``. Results are printed as
JSON so they can be piped into other tools.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

import openpyxl

from . import core_logic, log, procedures
from .constants import LOW_STOCK_THRESHOLD, ErrorKind, PaymentMethod
from .errors import ServiceError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="garage-pos",
        description="Inventory, customer ledger and point-of-sale tools for the Garage POS store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _spec(
    name: str,
    help_text: str,
    procedure: str,
    arguments: Callable[[argparse.ArgumentParser], None],
    translate: Callable[[argparse.Namespace], Any],
) -> CommandSpec:
    """Build a spec whose executor calls ``procedure`` with the translated payload."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        return run_procedure(context, procedure, translate(args))

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and payments."""
    specs = {
        "add-customer": _spec("add-customer", "Register a new customer.", "addCustomer",
                              add_customer_arguments, translate_add_customer),
        "update-customer": _spec("update-customer", "Change fields of an existing customer.", "updateCustomer",
                                 update_customer_arguments, translate_update_customer),
        "delete-customer": _spec("delete-customer", "Remove a customer.", "deleteCustomer",
                                 id_arguments, translate_id),
        "add-item": _spec("add-item", "Add an inventory item.", "addInventoryItem",
                          add_item_arguments, translate_add_item),
        "update-item": _spec("update-item", "Change fields of an inventory item.", "updateInventoryItem",
                             update_item_arguments, translate_update_item),
        "delete-item": _spec("delete-item", "Remove an inventory item.", "deleteInventoryItem",
                             id_arguments, translate_id),
        "import-items": _spec("import-items", "Bulk import inventory from a .json or .xlsx file.",
                              "bulkImportInventory", import_arguments, translate_import),
        "adjust-stock": _spec("adjust-stock", "Correct an item's stock by a signed delta.",
                              "adjustInventoryQuantity", adjust_arguments, translate_adjust),
        "sale": _spec("sale", "Record a sale.", "addSale", sale_arguments, translate_sale),
        "update-sale": _spec("update-sale", "Replace the lines of a sale.", "updateSale",
                             update_sale_arguments, translate_update_sale),
        "delete-sale": _spec("delete-sale", "Delete a sale and reverse its effects.", "deleteSale",
                             id_arguments, translate_id),
        "pay": _spec("pay", "Record a customer payment.", "recordPayment", pay_arguments, translate_pay),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": stock_spec(),
        "customers": _spec("customers", "List customers and balances.", "listCustomers",
                           no_arguments, translate_nothing),
        "statement": _spec("statement", "Show a customer's sales and payments.", "customerStatement",
                           id_arguments, translate_id),
        "gst": _spec("gst", "Summarize invoiced amount and GST.", "gstSummaryHttp",
                     gst_arguments, translate_gst),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def stock_spec() -> CommandSpec:
    """List all inventory, or only items below a threshold with ``--low``."""
    spec = _spec("stock", "List inventory items and quantities.", "listInventory",
                 stock_arguments, translate_nothing)

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        if args.low is None:
            return run_procedure(context, "listInventory", None)
        return run_procedure(context, "lowStock", {"threshold": args.low})

    return replace(spec, execute=execute)


# ---------------------------------------------------------------------------
# Argument declarations
# ---------------------------------------------------------------------------


def decimal_arg(raw: str) -> Decimal:
    """Parse an amount option; argparse reports the failure as a usage error."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: '{raw}'") from exc


def parse_line(raw: str) -> Dict[str, Any]:
    """Parse ``ITEM:QTY:PRICE`` into a sale line payload."""
    parts = raw.split(":")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected ITEM:QTY:PRICE, got '{raw}'")
    item_id, quantity, price = parts
    try:
        return {"itemId": item_id, "quantity": int(quantity), "price": decimal_arg(price)}
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"quantity must be an integer in '{raw}'") from exc


def no_arguments(parser: argparse.ArgumentParser) -> None:
    return None


def id_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--id", required=True)


def stock_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--low", type=int, nargs="?", const=LOW_STOCK_THRESHOLD, default=None, metavar="N",
                        help=f"Only items with fewer than N units (default {LOW_STOCK_THRESHOLD}).")


def _customer_fields(parser: argparse.ArgumentParser, *, name_required: bool) -> None:
    parser.add_argument("--name", required=name_required)
    parser.add_argument("--phone")
    parser.add_argument("--alt-phone")
    parser.add_argument("--gst-number")
    parser.add_argument("--email")
    parser.add_argument("--address")
    parser.add_argument("--balance", type=decimal_arg)


def add_customer_arguments(parser: argparse.ArgumentParser) -> None:
    _customer_fields(parser, name_required=True)


def update_customer_arguments(parser: argparse.ArgumentParser) -> None:
    id_arguments(parser)
    _customer_fields(parser, name_required=False)


def _item_fields(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--brand", required=required)
    parser.add_argument("--name", required=required)
    parser.add_argument("--volume-ml", type=decimal_arg, required=required)
    parser.add_argument("--quantity", type=int, required=required)
    parser.add_argument("--purchase-price", type=decimal_arg)
    parser.add_argument("--selling-price", type=decimal_arg)


def add_item_arguments(parser: argparse.ArgumentParser) -> None:
    _item_fields(parser, required=True)


def update_item_arguments(parser: argparse.ArgumentParser) -> None:
    id_arguments(parser)
    _item_fields(parser, required=False)


def import_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", type=Path, help="JSON array or workbook whose header row names the fields.")


def adjust_arguments(parser: argparse.ArgumentParser) -> None:
    id_arguments(parser)
    parser.add_argument("--delta", type=int, required=True)


def sale_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-id", required=True)
    parser.add_argument("--line", dest="lines", type=parse_line, action="append", required=True,
                        metavar="ITEM:QTY:PRICE")
    parser.add_argument("--paid-amount", type=decimal_arg)
    parser.add_argument("--notes")


def update_sale_arguments(parser: argparse.ArgumentParser) -> None:
    id_arguments(parser)
    parser.add_argument("--line", dest="lines", type=parse_line, action="append", required=True,
                        metavar="ITEM:QTY:PRICE")
    parser.add_argument("--notes")


def pay_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-id", required=True)
    parser.add_argument("--amount", type=decimal_arg, required=True)
    parser.add_argument("--method", choices=[member.value for member in PaymentMethod], default=None)
    parser.add_argument("--note")


def gst_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--month", help="YYYY-MM label echoed in the report.")


# ---------------------------------------------------------------------------
# Translation into procedure payloads
# ---------------------------------------------------------------------------


def _present(args: argparse.Namespace, mapping: Mapping[str, str]) -> Dict[str, Any]:
    """Copy attributes that were given on the command line under wire names."""
    return {
        wire: getattr(args, attr)
        for attr, wire in mapping.items()
        if getattr(args, attr, None) is not None
    }


CUSTOMER_FIELDS = {
    "name": "name",
    "phone": "phone",
    "alt_phone": "altPhone",
    "gst_number": "gstNumber",
    "email": "email",
    "address": "address",
    "balance": "balance",
}

ITEM_FIELDS = {
    "brand": "brand",
    "name": "name",
    "volume_ml": "volumeMl",
    "quantity": "quantity",
    "purchase_price": "purchasePrice",
    "selling_price": "sellingPrice",
}


def translate_nothing(args: argparse.Namespace) -> None:
    return None


def translate_id(args: argparse.Namespace) -> Mapping[str, Any]:
    return {"id": args.id}


def translate_add_customer(args: argparse.Namespace) -> Mapping[str, Any]:
    return _present(args, CUSTOMER_FIELDS)


def translate_update_customer(args: argparse.Namespace) -> Mapping[str, Any]:
    return {"id": args.id, **_present(args, CUSTOMER_FIELDS)}


def translate_add_item(args: argparse.Namespace) -> Mapping[str, Any]:
    return _present(args, ITEM_FIELDS)


def translate_update_item(args: argparse.Namespace) -> Mapping[str, Any]:
    return {"id": args.id, **_present(args, ITEM_FIELDS)}


def translate_import(args: argparse.Namespace) -> List[Any]:
    return load_import_rows(args.path)


def translate_adjust(args: argparse.Namespace) -> Mapping[str, Any]:
    return {"id": args.id, "delta": args.delta}


def translate_sale(args: argparse.Namespace) -> Mapping[str, Any]:
    payload: Dict[str, Any] = {"customerId": args.customer_id, "lines": list(args.lines)}
    payload.update(_present(args, {"paid_amount": "paidAmount", "notes": "notes"}))
    return payload


def translate_update_sale(args: argparse.Namespace) -> Mapping[str, Any]:
    payload: Dict[str, Any] = {"id": args.id, "lines": list(args.lines)}
    payload.update(_present(args, {"notes": "notes"}))
    return payload


def translate_pay(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "customerId": args.customer_id,
        "amount": args.amount,
        **_present(args, {"method": "method", "note": "note"}),
    }


def translate_gst(args: argparse.Namespace) -> Mapping[str, Any]:
    return {"month": args.month}


def load_import_rows(path: Path) -> List[Any]:
    """Read bulk-import rows from a JSON array or the first sheet of a workbook.

    Workbook rows become dictionaries keyed by the header row; empty rows are
    skipped and whole-number floats are narrowed to ``int`` so quantities
    survive Excel's numeric typing.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Import file not found: {path}")
    if path.suffix.lower() == ".json":
        return json.loads(path.read_text(encoding="utf-8"))

    workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        headers = [str(cell).strip() if cell is not None else None for cell in next(rows, ())]
        records: List[Any] = []
        for raw in rows:
            if not any(cell is not None for cell in raw):
                continue
            record = {}
            for header, value in zip(headers, raw):
                if header is None or value is None:
                    continue
                if isinstance(value, float) and value.is_integer():
                    value = int(value)
                record[header] = value
            records.append(record)
        return records
    finally:
        workbook.close()


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def operator_caller(context: core_logic.RuntimeContext) -> procedures.Caller:
    return procedures.Caller(uid=context.settings.operator_id)


def emit(result: Any, stream=None) -> None:
    """Print a procedure result as indented JSON."""
    stream = stream or sys.stdout
    print(json.dumps(result, indent=2, default=str), file=stream)


def run_procedure(context: core_logic.RuntimeContext, name: str, payload: Any) -> int:
    """Call ``name`` as the configured operator and print its result."""
    result = procedures.call(context, name, payload, operator_caller(context))
    emit(result)
    return 0


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into exit codes and a message on stderr."""
    if isinstance(error, ServiceError):
        print(f"{error.kind.value}: {error.message}", file=sys.stderr)
        if error.kind in (ErrorKind.INVALID_ARGUMENT, ErrorKind.FAILED_PRECONDITION):
            return 2
        if error.kind is ErrorKind.NOT_FOUND:
            return 3
        return 1
    log.error("%s", error)
    print(f"error: {error}", file=sys.stderr)
    if isinstance(error, FileNotFoundError):
        return 3
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
