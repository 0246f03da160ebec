"""Unit tests documenting the expected behavior of the document store."""

from __future__ import annotations

import configparser
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest
from filelock import FileLock

from garage_pos import data_manager
from garage_pos.constants import Collection
from garage_pos.data_manager import SERVER_TIMESTAMP, Increment


@pytest.fixture
def store(workbook_factory) -> data_manager.DocumentStore:
    fixed = datetime(2024, 5, 1, 9, 30, tzinfo=UTC)
    return data_manager.DocumentStore.open(workbook_factory(), clock=lambda: fixed)


def _item(quantity: int = 5) -> dict:
    return {"brand": "Shell", "name": "Helix", "volume_ml": Decimal("1000"), "quantity": quantity}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=store.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True, allow_oversell=False, max_attempts=3)
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == bundle.workbook_path.resolve()
    assert settings.shop_name == "Test Garage"
    assert settings.operator_id == bundle.operator
    assert settings.allow_oversell is False
    assert settings.max_transaction_attempts == 3


def test_parse_settings_defaults_optional_sections():
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=/tmp/store.xlsx\nShopName=G\nSchemaVersion=1.0.0\n"
        "[Defaults]\nOperator=op\n"
    )
    settings = data_manager.parse_settings(parser)

    assert settings.allow_oversell is True
    assert settings.max_transaction_attempts == 5


def test_parse_settings_requires_operator():
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=x.xlsx\nShopName=G\nSchemaVersion=1.0.0\n")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser)


def test_parse_settings_rejects_zero_attempts():
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=x.xlsx\nShopName=G\nSchemaVersion=1.0.0\n"
        "[Defaults]\nOperator=op\n[Store]\nMaxTransactionAttempts=0\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_open_workbook_rejects_missing_sheet(tmp_path):
    path = tmp_path / "partial.xlsx"
    workbook = openpyxl.Workbook()
    workbook.active.title = "Inventory"
    workbook.active.append(["ID", "Revision"])
    workbook.save(path)

    with pytest.raises(data_manager.StoreError, match="Customers"):
        data_manager.open_workbook(path)


def test_save_workbook_leaves_no_temp_files(tmp_path, workbook_factory):
    path = workbook_factory()
    workbook = data_manager.open_workbook(path)
    data_manager.save_workbook(workbook, path)

    assert sorted(p.name for p in path.parent.iterdir()) == [path.name]


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def test_add_then_get_round_trips_typed_fields(store):
    doc_id = store.add(Collection.INVENTORY, {**_item(7), "created_at": SERVER_TIMESTAMP})

    document = store.get(Collection.INVENTORY, doc_id)
    assert doc_id.startswith("I")
    assert document.revision == 1
    assert document.get("quantity") == 7
    assert document.get("volume_ml") == Decimal("1000")
    assert document.get("created_at") == "2024-05-01T09:30:00+00:00"
    assert document.get("selling_price") is None


def test_get_unknown_document_returns_none(store):
    assert store.get(Collection.CUSTOMERS, "C-NOPE") is None


def test_commits_are_persisted_to_disk(store):
    doc_id = store.add(Collection.CUSTOMERS, {"name": "Asha", "balance": Decimal("12.50")})

    reopened = data_manager.DocumentStore.open(store.data_file)
    assert reopened.get(Collection.CUSTOMERS, doc_id).get("balance") == Decimal("12.5")


def test_list_filters_with_where(store):
    store.add(Collection.PAYMENTS, {"customer_id": "C1", "amount": Decimal("10")})
    store.add(Collection.PAYMENTS, {"customer_id": "C2", "amount": Decimal("20")})
    store.add(Collection.PAYMENTS, {"customer_id": "C1", "amount": Decimal("30")})

    amounts = sorted(doc.get("amount") for doc in store.list(Collection.PAYMENTS, where={"customer_id": "C1"}))
    assert amounts == [Decimal("10"), Decimal("30")]


def test_update_bumps_revision_and_keeps_other_fields(store):
    doc_id = store.add(Collection.INVENTORY, _item())
    store.update(Collection.INVENTORY, doc_id, {"name": "Helix Ultra"})

    document = store.get(Collection.INVENTORY, doc_id)
    assert document.revision == 2
    assert document.get("name") == "Helix Ultra"
    assert document.get("brand") == "Shell"


def test_delete_removes_row(store):
    doc_id = store.add(Collection.INVENTORY, _item())
    store.delete(Collection.INVENTORY, doc_id)

    assert store.get(Collection.INVENTORY, doc_id) is None
    assert store.list(Collection.INVENTORY) == []


def test_unknown_field_is_rejected(store):
    with pytest.raises(data_manager.StoreError, match="colour"):
        store.add(Collection.INVENTORY, {"colour": "red"})


def test_update_to_none_clears_stored_cell(store):
    doc_id = store.add(Collection.CUSTOMERS, {"name": "Asha", "phone": "9845012345", "email": "a@example.com"})

    store.update(Collection.CUSTOMERS, doc_id, {"phone": None})

    reopened = data_manager.DocumentStore.open(store.data_file)
    customer = reopened.get(Collection.CUSTOMERS, doc_id)
    assert customer.get("phone") is None
    assert customer.get("email") == "a@example.com"


def test_sale_lines_are_stored_as_json(store):
    lines = [{"itemId": "I1", "quantity": 2, "price": "100"}]
    doc_id = store.add(Collection.SALES, {"lines": lines, "status": "completed"})

    sheet = store.workbook[Collection.SALES.value]
    row = data_manager.locate_row(sheet, doc_id)
    assert isinstance(sheet.cell(row=row, column=4).value, str)
    assert store.get(Collection.SALES, doc_id).get("lines") == lines


def test_corrupt_quantity_is_returned_unchanged(store):
    doc_id = store.add(Collection.INVENTORY, _item())
    sheet = store.workbook[Collection.INVENTORY.value]
    row = data_manager.locate_row(sheet, doc_id)
    column = data_manager._header_map(sheet)["Quantity"]
    sheet.cell(row=row, column=column, value="lots")

    assert store.get(Collection.INVENTORY, doc_id).get("quantity") == "lots"


# ---------------------------------------------------------------------------
# Write batches
# ---------------------------------------------------------------------------


def test_increment_applies_relative_delta(store):
    doc_id = store.add(Collection.INVENTORY, _item(5))
    store.batch().update(Collection.INVENTORY, doc_id, {"quantity": Increment(-7)}).commit()

    assert store.get(Collection.INVENTORY, doc_id).get("quantity") == -2


def test_increment_on_empty_field_starts_from_zero(store):
    doc_id = store.add(Collection.CUSTOMERS, {"name": "Asha"})
    store.update(Collection.CUSTOMERS, doc_id, {"balance": Increment(Decimal("4.25"))})

    assert store.get(Collection.CUSTOMERS, doc_id).get("balance") == Decimal("4.25")


def test_repeated_increments_in_one_batch_accumulate(store):
    doc_id = store.add(Collection.INVENTORY, _item(10))
    batch = store.batch()
    batch.update(Collection.INVENTORY, doc_id, {"quantity": Increment(-3)})
    batch.update(Collection.INVENTORY, doc_id, {"quantity": Increment(-4)})
    batch.commit()

    assert store.get(Collection.INVENTORY, doc_id).get("quantity") == 3


def test_batch_with_missing_document_changes_nothing(store):
    item_id = store.add(Collection.INVENTORY, _item(10))
    customer_id = store.add(Collection.CUSTOMERS, {"name": "Asha", "balance": Decimal("0")})

    batch = store.batch()
    batch.update(Collection.INVENTORY, item_id, {"quantity": Increment(-2)})
    batch.set(Collection.SALES, "S-NEW", {"status": "completed"})
    batch.update(Collection.INVENTORY, "I-GHOST", {"quantity": Increment(-1)})
    batch.update(Collection.CUSTOMERS, customer_id, {"balance": Increment(Decimal("50"))})

    with pytest.raises(data_manager.DocumentNotFoundError) as excinfo:
        batch.commit()

    assert excinfo.value.doc_id == "I-GHOST"
    assert store.get(Collection.INVENTORY, item_id).get("quantity") == 10
    assert store.get(Collection.CUSTOMERS, customer_id).get("balance") == Decimal("0")
    assert store.get(Collection.SALES, "S-NEW") is None


def test_batch_cannot_be_committed_twice(store):
    batch = store.batch().set(Collection.CUSTOMERS, "C1", {"name": "Asha"})
    batch.commit()
    with pytest.raises(data_manager.StoreError):
        batch.commit()


def test_failed_persist_discards_in_memory_changes(store, monkeypatch):
    doc_id = store.add(Collection.INVENTORY, _item(10))

    def failing_save(workbook, destination):
        raise OSError("disk full")

    monkeypatch.setattr(data_manager, "save_workbook", failing_save)
    with pytest.raises(OSError):
        store.update(Collection.INVENTORY, doc_id, {"quantity": 1})
    monkeypatch.undo()

    assert store.get(Collection.INVENTORY, doc_id).get("quantity") == 10


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def test_transaction_commits_read_modify_write(store):
    doc_id = store.add(Collection.INVENTORY, _item(10))

    def double(transaction):
        item = transaction.get(Collection.INVENTORY, doc_id)
        transaction.update(Collection.INVENTORY, doc_id, {"quantity": item.get("quantity") * 2})
        return "done"

    assert store.run_transaction(double) == "done"
    assert store.get(Collection.INVENTORY, doc_id).get("quantity") == 20


def test_transaction_retries_after_concurrent_write(store):
    doc_id = store.add(Collection.INVENTORY, _item(10))
    attempts = []

    def add_one(transaction):
        item = transaction.get(Collection.INVENTORY, doc_id)
        attempts.append(item.get("quantity"))
        if len(attempts) == 1:
            # a competing writer lands between our read and our commit
            store.update(Collection.INVENTORY, doc_id, {"quantity": 50})
        transaction.update(Collection.INVENTORY, doc_id, {"quantity": item.get("quantity") + 1})

    store.run_transaction(add_one)

    assert attempts == [10, 50]
    assert store.get(Collection.INVENTORY, doc_id).get("quantity") == 51


def test_transaction_gives_up_after_max_attempts(store):
    doc_id = store.add(Collection.INVENTORY, _item(10))
    store.max_transaction_attempts = 3
    calls = []

    def always_contended(transaction):
        calls.append(1)
        transaction.get(Collection.INVENTORY, doc_id)
        store.update(Collection.INVENTORY, doc_id, {"quantity": Increment(1)})
        transaction.update(Collection.INVENTORY, doc_id, {"quantity": 0})

    with pytest.raises(data_manager.TransactionContentionError):
        store.run_transaction(always_contended)

    assert len(calls) == 3
    assert store.get(Collection.INVENTORY, doc_id).get("quantity") == 13


def test_transaction_detects_document_created_after_read(store):
    calls = []

    def create_once(transaction):
        calls.append(1)
        existing = transaction.get(Collection.CUSTOMERS, "C-RACE")
        if existing is None and len(calls) == 1:
            store.batch().set(Collection.CUSTOMERS, "C-RACE", {"name": "Other"}).commit()
        if existing is None:
            transaction.set(Collection.CUSTOMERS, "C-RACE", {"name": "Mine"})

    store.run_transaction(create_once)

    assert len(calls) == 2
    assert store.get(Collection.CUSTOMERS, "C-RACE").get("name") == "Other"


def test_exception_inside_transaction_is_not_retried(store):
    calls = []

    def boom(transaction):
        calls.append(1)
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        store.run_transaction(boom)
    assert calls == [1]


# ---------------------------------------------------------------------------
# Several stores sharing one file
# ---------------------------------------------------------------------------


def _pay(store, customer_id, amount):
    store.batch().set(
        Collection.PAYMENTS, store.new_id(Collection.PAYMENTS), {"customer_id": customer_id, "amount": amount}
    ).update(Collection.CUSTOMERS, customer_id, {"balance": Increment(-amount)}).commit()


def test_stores_on_one_file_keep_each_others_commits(workbook_factory):
    path = workbook_factory()
    first = data_manager.DocumentStore.open(path)
    second = data_manager.DocumentStore.open(path)
    customer_id = first.add(Collection.CUSTOMERS, {"name": "Asha", "balance": Decimal("0")})

    _pay(first, customer_id, Decimal("100"))
    _pay(second, customer_id, Decimal("50"))

    reopened = data_manager.DocumentStore.open(path)
    assert reopened.get(Collection.CUSTOMERS, customer_id).get("balance") == Decimal("-150")
    assert len(reopened.list(Collection.PAYMENTS, where={"customer_id": customer_id})) == 2
    assert first.get(Collection.CUSTOMERS, customer_id).get("balance") == Decimal("-150")


def test_transaction_retries_after_write_from_other_store(workbook_factory):
    path = workbook_factory()
    first = data_manager.DocumentStore.open(path)
    second = data_manager.DocumentStore.open(path)
    doc_id = first.add(Collection.INVENTORY, _item(10))
    attempts = []

    def add_one(transaction):
        item = transaction.get(Collection.INVENTORY, doc_id)
        attempts.append(item.get("quantity"))
        if len(attempts) == 1:
            second.update(Collection.INVENTORY, doc_id, {"quantity": 50})
        transaction.update(Collection.INVENTORY, doc_id, {"quantity": item.get("quantity") + 1})

    first.run_transaction(add_one)

    assert attempts == [10, 50]
    assert data_manager.DocumentStore.open(path).get(Collection.INVENTORY, doc_id).get("quantity") == 51


def test_lock_held_elsewhere_times_out(workbook_factory):
    path = workbook_factory()
    store = data_manager.DocumentStore.open(path, lock_timeout=0.05)

    with FileLock(f"{path.resolve()}.lock"):
        with pytest.raises(data_manager.StoreError, match="Timed out"):
            store.get(Collection.CUSTOMERS, "C1")
