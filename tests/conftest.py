"""Shared pytest fixtures and utilities for Garage POS tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from garage_pos import constants, core_logic, procedures  # noqa: E402
from garage_pos.setup_workbook import create_store_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_OPERATOR = "counter-1"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "Operator = {operator}\n\n"
    "[Sales]\n"
    "AllowOversell = {allow_oversell}\n\n"
    "[Store]\n"
    "MaxTransactionAttempts = {max_attempts}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    operator: str
    schema_version: str
    shop_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an empty store workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "store.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_store_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Garage",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        operator: str = DEFAULT_OPERATOR,
        allow_oversell: bool = True,
        max_attempts: int = 5,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        bundle_dir = workbook_path.parent
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=workbook_path.name if make_relative else str(workbook_path),
                shop_name=shop_name,
                schema_version=schema_version,
                operator=operator,
                allow_oversell="true" if allow_oversell else "false",
                max_attempts=max_attempts,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            operator=operator,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def strict_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Same store, with oversell disabled."""

    return replace(runtime_context, settings=replace(runtime_context.settings, allow_oversell=False))


@pytest.fixture
def operator() -> procedures.Caller:
    return procedures.Caller(uid=DEFAULT_OPERATOR)


@pytest.fixture
def make_customer(runtime_context: core_logic.RuntimeContext) -> Callable[..., str]:
    def _make(name: str = "Ravi Motors", balance: int = 0, **extra) -> str:
        return core_logic.add_customer(runtime_context, {"name": name, "balance": balance, **extra})

    return _make


@pytest.fixture
def make_item(runtime_context: core_logic.RuntimeContext) -> Callable[..., str]:
    def _make(quantity: int = 10, *, brand: str = "Castrol", name: str = "GTX 20W-50", **extra) -> str:
        payload = {"brand": brand, "name": name, "volumeMl": 1000, "quantity": quantity}
        payload.update(extra)
        return core_logic.add_inventory_item(runtime_context, payload)

    return _make


def quantity_of(context: core_logic.RuntimeContext, item_id: str) -> int:
    return context.store.get(constants.Collection.INVENTORY, item_id).get("quantity")


def balance_of(context: core_logic.RuntimeContext, customer_id: str) -> Decimal:
    return context.store.get(constants.Collection.CUSTOMERS, customer_id).get("balance")
