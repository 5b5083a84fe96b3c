from typing import Dict, List

import pyarrow as pa
import pytest

from substrait_acero import (
    ConversionOptions,
    Declaration,
    ExtensionSet,
    configure_logging,
)


def pytest_configure(config):
    configure_logging()


@pytest.fixture
def orders_table() -> pa.Table:
    return pa.table(
        {
            "order_id": pa.array([1, 2, 3, 4], type=pa.int32()),
            "customer_id": pa.array([10, 20, 10, 30], type=pa.int32()),
            "amount": pa.array([5, 15, 25, 35], type=pa.int64()),
            "shipped": pa.array([True, False, True, None], type=pa.bool_()),
        }
    )


@pytest.fixture
def customers_table() -> pa.Table:
    return pa.table(
        {
            "id": pa.array([10, 20, 40], type=pa.int32()),
            "name": pa.array(["ada", "grace", "edsger"], type=pa.utf8()),
        }
    )


@pytest.fixture
def tables(orders_table, customers_table) -> Dict[str, pa.Table]:
    return {"orders": orders_table, "customers": customers_table}


@pytest.fixture
def named_table_provider(tables):
    """Resolves single-segment table names against the ``tables`` fixture."""

    def provider(names: List[str]) -> Declaration:
        return Declaration.table_source(tables[names[0]])

    return provider


@pytest.fixture
def options(named_table_provider) -> ConversionOptions:
    return ConversionOptions(named_table_provider=named_table_provider)


@pytest.fixture
def extension_set() -> ExtensionSet:
    return ExtensionSet()
