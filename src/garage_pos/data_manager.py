"""Data access layer for Garage POS.

This module implements the document store the rest of the package talks to.
Collections live as worksheets inside a single ``openpyxl`` workbook; every
other layer only sees documents (``id`` + field mapping) and the store's
atomicity primitives.

The public API is organised around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Document access: reading, listing, creating, updating and deleting rows.
4. Atomic writes: :class:`WriteBatch` for blind multi-document commits and
   :meth:`DocumentStore.run_transaction` for serializable read-modify-write
   work with automatic retry on contention.
"""


from __future__ import annotations

import configparser
import json
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from filelock import FileLock, Timeout
from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_MAX_TRANSACTION_ATTEMPTS, Collection


CONFIG_FILE_NAME = "config.ini"
ID_COLUMN = "ID"
REVISION_COLUMN = "Revision"

# How long a commit waits for another process holding the store lock.
LOCK_TIMEOUT_SECONDS = 30.0

T = TypeVar("T")
CollectionRef = Union[Collection, str]


class StoreError(Exception):
    """Raised when the document store cannot honour a request."""


class DocumentNotFoundError(StoreError):
    """Raised when a write targets a document that does not exist."""

    def __init__(self, collection: Collection, doc_id: str) -> None:
        super().__init__(f"{collection.value} document not found: {doc_id}")
        self.collection = collection
        self.doc_id = doc_id


class TransactionContentionError(StoreError):
    """Raised when a transaction keeps losing against concurrent writers."""


class _RevisionConflict(StoreError):
    """A document read inside a transaction changed before commit."""


@dataclass(frozen=True)
class FieldSpec:
    """Column layout for one document field."""

    name: str
    header: str
    kind: str = "text"  # text | int | decimal | json


COLLECTION_FIELDS: Mapping[Collection, Sequence[FieldSpec]] = {
    Collection.INVENTORY: (
        FieldSpec("brand", "Brand"),
        FieldSpec("name", "Name"),
        FieldSpec("volume_ml", "VolumeMl", "decimal"),
        FieldSpec("quantity", "Quantity", "int"),
        FieldSpec("purchase_price", "PurchasePrice", "decimal"),
        FieldSpec("selling_price", "SellingPrice", "decimal"),
        FieldSpec("created_at", "CreatedAt"),
        FieldSpec("updated_at", "UpdatedAt"),
    ),
    Collection.CUSTOMERS: (
        FieldSpec("name", "Name"),
        FieldSpec("phone", "Phone"),
        FieldSpec("alt_phone", "AltPhone"),
        FieldSpec("gst_number", "GstNumber"),
        FieldSpec("email", "Email"),
        FieldSpec("address", "Address"),
        FieldSpec("balance", "Balance", "decimal"),
        FieldSpec("created_at", "CreatedAt"),
        FieldSpec("updated_at", "UpdatedAt"),
    ),
    Collection.SALES: (
        FieldSpec("customer_id", "CustomerID"),
        FieldSpec("lines", "Lines", "json"),
        FieldSpec("subtotal", "Subtotal", "decimal"),
        FieldSpec("tax", "Tax", "decimal"),
        FieldSpec("total", "Total", "decimal"),
        FieldSpec("paid_amount", "PaidAmount", "decimal"),
        FieldSpec("notes", "Notes"),
        FieldSpec("status", "Status"),
        FieldSpec("created_at", "CreatedAt"),
        FieldSpec("updated_at", "UpdatedAt"),
        FieldSpec("deleted_at", "DeletedAt"),
    ),
    Collection.PAYMENTS: (
        FieldSpec("customer_id", "CustomerID"),
        FieldSpec("amount", "Amount", "decimal"),
        FieldSpec("method", "Method"),
        FieldSpec("note", "Note"),
        FieldSpec("created_at", "CreatedAt"),
    ),
}

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    collection.value: [ID_COLUMN, REVISION_COLUMN, *(spec.header for spec in specs)]
    for collection, specs in COLLECTION_FIELDS.items()
}

ID_PREFIXES: Mapping[Collection, str] = {
    Collection.INVENTORY: "I",
    Collection.CUSTOMERS: "C",
    Collection.SALES: "S",
    Collection.PAYMENTS: "P",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    operator_id: str
    allow_oversell: bool = True
    max_transaction_attempts: int = DEFAULT_MAX_TRANSACTION_ATTEMPTS


@dataclass(frozen=True)
class Document:
    """Snapshot of one stored document."""

    collection: Collection
    id: str
    revision: int
    data: Dict[str, Any]

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)


@dataclass(frozen=True)
class Increment:
    """Relative delta applied to a numeric field at commit time."""

    amount: Union[int, Decimal]


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Replaced by the commit time (ISO-8601, UTC) when a write is applied.
SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class _WriteOp:
    action: str  # set | update | delete
    collection: Collection
    doc_id: str
    data: Mapping[str, Any] = field(default_factory=dict)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the store behaves.

    An explicit path wins without verification. Otherwise the search walks up
    from the current working directory and returns the first
    ``CONFIG_FILE_NAME`` found.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` entries are mandatory; ``[Sales]`` and
    ``[Store]`` fall back to the defaults of :class:`ConfigSettings`. A
    relative ``DataFile`` is anchored at ``base_path`` (or the current working
    directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional entry holds an unparseable value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
        operator_id = parser.get("Defaults", "Operator")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    allow_oversell = parser.getboolean("Sales", "AllowOversell", fallback=True)
    max_attempts = parser.getint(
        "Store", "MaxTransactionAttempts", fallback=DEFAULT_MAX_TRANSACTION_ATTEMPTS)
    if max_attempts < 1:
        raise ValueError("MaxTransactionAttempts must be at least 1")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        operator_id=operator_id,
        allow_oversell=allow_oversell,
        max_transaction_attempts=max_attempts,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook and check that every collection sheet exists.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        StoreError: If a collection sheet or its key columns are missing.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    for collection in Collection:
        if collection.value not in wb.sheetnames:
            raise StoreError(f"Workbook is missing sheet '{collection.value}'")
        headers = _header_map(wb[collection.value])
        if ID_COLUMN not in headers or REVISION_COLUMN not in headers:
            raise StoreError(f"Sheet '{collection.value}' lacks ID/Revision columns")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook by writing a sibling temp file and swapping it in.

    The rename is atomic on the same filesystem, so readers never observe a
    half-written workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(fd)
    try:
        workbook.save(tmp_name)
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def file_stamp(path: Path) -> Optional[Tuple[int, int, int]]:
    """Identify the file currently at ``path`` by inode, mtime and size."""

    try:
        stat = os.stat(path)
    except FileNotFoundError:
        return None
    return (stat.st_ino, stat.st_mtime_ns, stat.st_size)


def locate_row(sheet, doc_id: str) -> Optional[int]:
    """Return the 1-based row index holding ``doc_id``, or ``None``."""

    header_map = _header_map(sheet)
    key_col_index = header_map[ID_COLUMN]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row and row[key_col_index - 1] is not None and str(row[key_col_index - 1]) == doc_id:
            return row_idx
    return None


def _header_map(sheet) -> Dict[Any, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def _as_collection(collection: CollectionRef) -> Collection:
    return collection if isinstance(collection, Collection) else Collection(collection)


def serialize_value(spec: FieldSpec, value: Any) -> Any:
    """Convert a document value into something a worksheet cell can hold."""

    if value is None:
        return None
    if spec.kind == "json":
        return json.dumps(value, default=str)
    if spec.kind == "decimal":
        return Decimal(str(value))
    return value


def deserialize_value(spec: FieldSpec, raw: Any) -> Any:
    """Convert a raw cell value into its document representation.

    Integer columns keep unexpected content (text, fractional numbers) as-is
    so callers can detect corrupted stock counts instead of having them
    silently coerced.
    """

    if raw is None:
        return [] if spec.kind == "json" else None
    if spec.kind == "json":
        return json.loads(raw) if raw else []
    if spec.kind == "decimal":
        return Decimal(str(raw))
    if spec.kind == "int":
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
        return raw
    return str(raw)


def _apply_increment(current: Any, amount: Union[int, Decimal]) -> Any:
    if current is None:
        current = 0
    if isinstance(current, bool) or not isinstance(current, (int, Decimal)):
        raise StoreError(f"Cannot increment non-numeric value {current!r}")
    if isinstance(current, Decimal) or isinstance(amount, Decimal):
        return Decimal(str(current)) + Decimal(str(amount))
    return current + amount


class WriteBatch:
    """Set of writes committed together or not at all.

    Updates carry no read: :class:`Increment` values are applied as relative
    deltas against whatever is stored when :meth:`commit` runs, so concurrent
    batches touching the same counter accumulate. An ``update`` against a
    missing document fails the entire batch.
    """

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self._ops: List[_WriteOp] = []
        self._committed = False

    def set(self, collection: CollectionRef, doc_id: str, data: Mapping[str, Any]) -> "WriteBatch":
        self._ops.append(_WriteOp("set", _as_collection(collection), doc_id, dict(data)))
        return self

    def update(self, collection: CollectionRef, doc_id: str, data: Mapping[str, Any]) -> "WriteBatch":
        self._ops.append(_WriteOp("update", _as_collection(collection), doc_id, dict(data)))
        return self

    def delete(self, collection: CollectionRef, doc_id: str) -> "WriteBatch":
        self._ops.append(_WriteOp("delete", _as_collection(collection), doc_id))
        return self

    def __len__(self) -> int:
        return len(self._ops)

    def commit(self) -> None:
        if self._committed:
            raise StoreError("Batch already committed")
        self._store._apply(self._ops)
        self._committed = True


class Transaction:
    """Read-modify-write unit handed to :meth:`DocumentStore.run_transaction`.

    Every document read through :meth:`get` is pinned at its revision; the
    buffered writes only commit if none of those revisions moved.
    """

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self._reads: Dict[Tuple[Collection, str], Optional[int]] = {}
        self._ops: List[_WriteOp] = []

    def get(self, collection: CollectionRef, doc_id: str) -> Optional[Document]:
        collection = _as_collection(collection)
        document = self._store.get(collection, doc_id)
        self._reads.setdefault((collection, doc_id), document.revision if document else None)
        return document

    def set(self, collection: CollectionRef, doc_id: str, data: Mapping[str, Any]) -> None:
        self._ops.append(_WriteOp("set", _as_collection(collection), doc_id, dict(data)))

    def update(self, collection: CollectionRef, doc_id: str, data: Mapping[str, Any]) -> None:
        self._ops.append(_WriteOp("update", _as_collection(collection), doc_id, dict(data)))

    def delete(self, collection: CollectionRef, doc_id: str) -> None:
        self._ops.append(_WriteOp("delete", _as_collection(collection), doc_id))


class DocumentStore:
    """Workbook-backed document store with batch and transaction commits.

    The in-memory workbook is only a cache of ``data_file``. Every read and
    commit runs under an exclusive lock file next to the workbook, and the
    cache is reloaded whenever the file on disk was replaced by another
    process since it was last loaded. Commits stage, check revisions, write
    and save while still holding that lock, so several processes (CLI, API
    workers) can share one store without losing each other's writes. If
    saving fails the workbook is reloaded from disk, discarding the commit.
    """

    def __init__(
        self,
        workbook: Workbook,
        data_file: Optional[Path] = None,
        *,
        max_transaction_attempts: int = DEFAULT_MAX_TRANSACTION_ATTEMPTS,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.workbook = workbook
        self.data_file = Path(data_file).expanduser().resolve() if data_file is not None else None
        self.max_transaction_attempts = max_transaction_attempts
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.RLock()
        self._file_lock: Optional[FileLock] = None
        self._stamp: Optional[Tuple[int, int, int]] = None
        if self.data_file is not None:
            self._file_lock = FileLock(f"{self.data_file}.lock", timeout=lock_timeout)
            self._stamp = file_stamp(self.data_file)

    @classmethod
    def open(cls, data_file: Path, **kwargs: Any) -> "DocumentStore":
        stamp = file_stamp(Path(data_file).expanduser().resolve())
        store = cls(open_workbook(data_file), data_file, **kwargs)
        # a write landing between stat and load forces a reload on first use
        store._stamp = stamp
        return store

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the process lock and the lock file, with a fresh workbook."""

        with self._lock:
            if self._file_lock is None:
                yield
                return
            try:
                with self._file_lock:
                    self._refresh()
                    yield
            except Timeout as exc:
                raise StoreError(f"Timed out waiting for lock on {self.data_file}") from exc

    def _refresh(self) -> None:
        stamp = file_stamp(self.data_file)
        if stamp == self._stamp:
            return
        self.workbook = open_workbook(self.data_file)
        self._stamp = stamp
        log.debug("Workbook '%s' changed on disk; reloaded", self.data_file)

    # -- reads -------------------------------------------------------------

    def new_id(self, collection: CollectionRef) -> str:
        prefix = ID_PREFIXES[_as_collection(collection)]
        return f"{prefix}{uuid.uuid4().hex[:16].upper()}"

    def get(self, collection: CollectionRef, doc_id: str) -> Optional[Document]:
        collection = _as_collection(collection)
        with self._exclusive():
            sheet = self.workbook[collection.value]
            row_idx = locate_row(sheet, doc_id)
            if row_idx is None:
                return None
            return self._read_row(collection, sheet, row_idx)

    def list(self, collection: CollectionRef, *, where: Optional[Mapping[str, Any]] = None) -> List[Document]:
        """Return every document of ``collection`` matching all ``where`` equalities."""

        collection = _as_collection(collection)
        with self._exclusive():
            sheet = self.workbook[collection.value]
            header_map = _header_map(sheet)
            documents = [
                self._read_row(collection, sheet, row_idx, header_map)
                for row_idx in range(2, sheet.max_row + 1)
                if sheet.cell(row=row_idx, column=1).value is not None
            ]
        if where:
            documents = [
                doc for doc in documents
                if all(doc.data.get(key) == value for key, value in where.items())
            ]
        return documents

    def _read_row(self, collection: Collection, sheet, row_idx: int, header_map: Optional[Dict[Any, int]] = None) -> Document:
        header_map = header_map or _header_map(sheet)
        data: Dict[str, Any] = {}
        for spec in COLLECTION_FIELDS[collection]:
            col = header_map.get(spec.header)
            raw = sheet.cell(row=row_idx, column=col).value if col else None
            data[spec.name] = deserialize_value(spec, raw)
        revision_raw = sheet.cell(row=row_idx, column=header_map[REVISION_COLUMN]).value
        return Document(
            collection=collection,
            id=str(sheet.cell(row=row_idx, column=header_map[ID_COLUMN]).value),
            revision=int(revision_raw or 0),
            data=data,
        )

    # -- single-document writes -------------------------------------------

    def add(self, collection: CollectionRef, data: Mapping[str, Any]) -> str:
        doc_id = self.new_id(collection)
        self.batch().set(collection, doc_id, data).commit()
        return doc_id

    def update(self, collection: CollectionRef, doc_id: str, data: Mapping[str, Any]) -> None:
        self.batch().update(collection, doc_id, data).commit()

    def delete(self, collection: CollectionRef, doc_id: str) -> None:
        self.batch().delete(collection, doc_id).commit()

    # -- atomic primitives -------------------------------------------------

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` against a fresh :class:`Transaction` until it commits.

        ``fn`` may be invoked several times, so it must not have side effects
        outside the transaction. Exceptions raised by ``fn`` abort without
        retrying. Revisions are compared against the workbook as persisted,
        so writes committed by other processes also force a retry.

        Raises:
            TransactionContentionError: After ``max_transaction_attempts``
                conflicting attempts.
        """

        for attempt in range(1, self.max_transaction_attempts + 1):
            transaction = Transaction(self)
            result = fn(transaction)
            try:
                self._apply(transaction._ops, expected_revisions=transaction._reads)
            except _RevisionConflict as exc:
                log.info("Transaction attempt %d/%d aborted: %s", attempt, self.max_transaction_attempts, exc)
                continue
            return result
        raise TransactionContentionError(
            f"Transaction aborted after {self.max_transaction_attempts} attempts"
        )

    def _apply(
        self,
        ops: Sequence[_WriteOp],
        *,
        expected_revisions: Optional[Mapping[Tuple[Collection, str], Optional[int]]] = None,
    ) -> None:
        if not ops and not expected_revisions:
            return
        with self._exclusive():
            if expected_revisions:
                for (collection, doc_id), revision in expected_revisions.items():
                    current = self.get(collection, doc_id)
                    current_revision = current.revision if current else None
                    if current_revision != revision:
                        raise _RevisionConflict(
                            f"{collection.value}/{doc_id} moved from revision {revision} to {current_revision}"
                        )
            if not ops:
                return
            staged = self._stage(ops)
            try:
                self._write_staged(staged)
                self.persist()
            except Exception:
                log.error("Commit of %d writes failed; discarding in-memory changes", len(ops))
                self.reload()
                raise
            log.debug("Committed %d writes across %d documents", len(ops), len(staged))

    def _stage(self, ops: Sequence[_WriteOp]) -> Dict[Tuple[Collection, str], Optional[Tuple[int, Dict[str, Any]]]]:
        """Fold ``ops`` into final document states without touching the sheets."""

        timestamp = self._clock().isoformat()
        staged: Dict[Tuple[Collection, str], Optional[Tuple[int, Dict[str, Any]]]] = {}
        base_revisions: Dict[Tuple[Collection, str], int] = {}

        for op in ops:
            key = (op.collection, op.doc_id)
            if key not in staged:
                existing = self.get(op.collection, op.doc_id)
                staged[key] = (existing.revision, dict(existing.data)) if existing else None
                base_revisions[key] = existing.revision if existing else 0

            known = {spec.name for spec in COLLECTION_FIELDS[op.collection]}
            unknown = set(op.data) - known
            if unknown:
                raise StoreError(f"Unknown {op.collection.value} field(s): {', '.join(sorted(unknown))}")

            if op.action == "delete":
                staged[key] = None
                continue

            if op.action == "update":
                if staged[key] is None:
                    raise DocumentNotFoundError(op.collection, op.doc_id)
                data = dict(staged[key][1])
            else:
                data = {name: None for name in known}

            for name, value in op.data.items():
                if isinstance(value, Increment):
                    data[name] = _apply_increment(data.get(name), value.amount)
                elif value is SERVER_TIMESTAMP:
                    data[name] = timestamp
                else:
                    data[name] = value
            staged[key] = (base_revisions[key] + 1, data)

        return staged

    def _write_staged(self, staged: Mapping[Tuple[Collection, str], Optional[Tuple[int, Dict[str, Any]]]]) -> None:
        rows_to_delete: Dict[Collection, List[int]] = {}
        for (collection, doc_id), state in staged.items():
            sheet = self.workbook[collection.value]
            row_idx = locate_row(sheet, doc_id)
            if state is None:
                if row_idx is not None:
                    rows_to_delete.setdefault(collection, []).append(row_idx)
                continue
            revision, data = state
            header_map = _header_map(sheet)
            values = {ID_COLUMN: doc_id, REVISION_COLUMN: revision}
            for spec in COLLECTION_FIELDS[collection]:
                values[spec.header] = serialize_value(spec, data.get(spec.name))
            if row_idx is None:
                row_idx = sheet.max_row + 1
            for header, value in values.items():
                if header in header_map:
                    # Worksheet.cell(value=None) leaves the old value in place
                    sheet.cell(row=row_idx, column=header_map[header]).value = value

        for collection, rows in rows_to_delete.items():
            sheet = self.workbook[collection.value]
            for row_idx in sorted(rows, reverse=True):
                sheet.delete_rows(row_idx, 1)

    # -- persistence -------------------------------------------------------

    def persist(self) -> None:
        if self.data_file is None:
            return
        with self._exclusive():
            save_workbook(self.workbook, self.data_file)
            self._stamp = file_stamp(self.data_file)

    def reload(self) -> None:
        """Replace the in-memory workbook with the last persisted version."""

        if self.data_file is None:
            log.warning("In-memory store cannot be reloaded; keeping current workbook")
            return
        with self._lock:
            self.workbook = open_workbook(self.data_file)
            self._stamp = file_stamp(self.data_file)
        log.info("Reloaded workbook '%s'", self.data_file)
