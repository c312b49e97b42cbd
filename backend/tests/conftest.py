"""Pytest configuration and shared fixtures."""
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add backend root to path for imports
backend_root = Path(__file__).parent.parent
sys.path.insert(0, str(backend_root))

from vkg.core.prometheus_metrics import registry  # noqa: E402
from vkg.models.ontology import MappingTable, OntologySchema  # noqa: E402
from vkg.models.pipeline import ColumnMeta, ExecutionResult  # noqa: E402

ONTO = "http://example.org/shop#"

ORDERS_SQL = (
    "SELECT c.customer_id, c.name, o.order_id, o.total_amount "
    "FROM mysql.sales.customers c "
    "JOIN postgres.shop.orders o ON o.customer_id = c.customer_id "
    "LIMIT 100"
)


@pytest.fixture
def ontology_schema() -> OntologySchema:
    return OntologySchema.model_validate({
        "classes": [
            {"name": "Customer", "iri": f"{ONTO}Customer"},
            {"name": "Order", "iri": f"{ONTO}Order"},
            {"name": "Supplier", "iri": f"{ONTO}Supplier"},
        ],
        "objectProperties": [
            {"name": "placedBy", "domain": f"{ONTO}Order", "range": f"{ONTO}Customer"},
        ],
        "dataProperties": [
            {"name": "name", "domain": f"{ONTO}Customer", "range": "http://www.w3.org/2001/XMLSchema#string"},
            {"name": "orderTotal", "domain": f"{ONTO}Order", "range": "http://www.w3.org/2001/XMLSchema#decimal"},
            {"name": "supplierRating", "domain": f"{ONTO}Supplier", "range": "http://www.w3.org/2001/XMLSchema#integer"},
        ],
    })


@pytest.fixture
def mapping_table() -> MappingTable:
    return MappingTable.model_validate({
        "classes": {
            "Customer": {"sourceTable": "mysql.sales.customers", "sourceIdColumn": "customer_id"},
            "Order": {"sourceTable": "postgres.shop.orders", "sourceIdColumn": "order_id"},
        },
        "properties": {
            "name": {"sourceColumn": "name", "sourceTable": "mysql.sales.customers", "domain": "Customer"},
            "orderTotal": {"sourceColumn": "total_amount", "sourceTable": "postgres.shop.orders", "domain": "Order"},
            "orderCustomer": {"sourceColumn": "customer_id", "sourceTable": "postgres.shop.orders", "domain": "Order"},
        },
        "relationships": {
            "placedBy": {
                "joinSQL": "postgres.shop.orders.customer_id = mysql.sales.customers.customer_id",
                "domain": "Order",
                "range": "Customer",
            },
        },
    })


@pytest.fixture
def orders_result() -> ExecutionResult:
    return ExecutionResult(
        columns=[
            ColumnMeta(name="customer_id", type="integer"),
            ColumnMeta(name="name", type="varchar"),
            ColumnMeta(name="order_id", type="integer"),
            ColumnMeta(name="total_amount", type="decimal(10,2)"),
        ],
        rows=[
            [1, "Alice", 100, 250.0],
            [1, "Alice", 101, 75.5],
            [2, "Bob", 102, 12.0],
        ],
        row_count=3,
        duration_ms=42,
    )


def generation_response(sql: str, entities=("Customer",), reasoning: str = "lookup") -> str:
    """Oracle output in the plan+SQL JSON contract"""
    return json.dumps({
        "plan": {"entities": list(entities), "singleHop": True, "aggregation": None, "reasoning": reasoning},
        "sql": sql,
    })


@pytest.fixture
def oracle() -> AsyncMock:
    """Scripted reasoning oracle; set side_effect / return_value per test"""
    mock = AsyncMock()
    mock.complete = AsyncMock(return_value=generation_response(ORDERS_SQL))
    return mock


@pytest.fixture
def engine(orders_result) -> AsyncMock:
    """Federated engine double returning the orders result"""
    mock = AsyncMock()
    mock.execute_sql = AsyncMock(return_value=orders_result)
    return mock


@pytest.fixture
def metric_value():
    """Read a sample from the private metrics registry"""
    def _read(name, labels=None):
        return registry.get_sample_value(name, labels or {}) or 0.0
    return _read


@pytest.fixture
def make_generation():
    return generation_response


@pytest.fixture
def orders_sql() -> str:
    return ORDERS_SQL
