"""Pytest configuration and fixtures for query_engine tests."""

from __future__ import annotations

from datetime import datetime

import pytest
from prometheus_client import CollectorRegistry

from query_engine.adapters.outbound import InMemoryCatalog
from query_engine.domain.value_objects import Column, Schema, SqlType
from query_engine.infrastructure.config import Config, ExecutionConfig, ObservabilityConfig
from query_engine.infrastructure.metrics import MetricsRegistry

EMPLOYEES_SCHEMA = Schema.of(
    Column("id", SqlType.INTEGER, nullable=False),
    Column("name", SqlType.TEXT, nullable=False),
    Column("department_id", SqlType.INTEGER),
    Column("salary", SqlType.INTEGER),
    Column("hire_date", SqlType.TIMESTAMP),
    Column("manager_id", SqlType.INTEGER),
)

EMPLOYEES = [
    (1, "Alice", 1, 120000, datetime(2019, 3, 1), None),
    (2, "Bob", 1, 95000, datetime(2021, 6, 15), 1),
    (3, "Carol", 2, 70000, datetime(2020, 11, 1), None),
    (4, "Dave", 2, 65000, datetime(2022, 1, 10), 3),
    (5, "Eve", 3, 80000, datetime(2023, 2, 20), None),
    (6, "Frank", None, 50000, datetime(2021, 9, 9), None),
    (7, "Grace", 1, 105000, datetime(2022, 5, 5), 1),
    (8, "Heidi", 2, None, datetime(2021, 3, 3), 3),
]

DEPARTMENTS_SCHEMA = Schema.of(
    Column("id", SqlType.INTEGER, nullable=False),
    Column("department_name", SqlType.TEXT, nullable=False),
)

DEPARTMENTS = [
    (1, "Engineering"),
    (2, "Sales"),
    (3, "Marketing"),
    (4, "Support"),
]


@pytest.fixture
def catalog() -> InMemoryCatalog:
    """Provide a catalog with employees and departments."""
    catalog = InMemoryCatalog()
    catalog.register("employees", EMPLOYEES_SCHEMA, EMPLOYEES)
    catalog.register("departments", DEPARTMENTS_SCHEMA, DEPARTMENTS)
    return catalog


@pytest.fixture
def test_config() -> Config:
    """Provide a test configuration with metrics and tracing off."""
    return Config(
        execution=ExecutionConfig(),
        observability=ObservabilityConfig(
            log_level="WARNING",
            metrics_enabled=False,
            tracing_enabled=False,
        ),
    )


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "property: Property-based tests")
    config.addinivalue_line("markers", "slow: Slow tests")
