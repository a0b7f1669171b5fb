"""
Pytest Configuration and Shared Fixtures for DashForge Backend Tests.

This module provides fixtures and configuration for all backend tests, supporting:
- Async test execution with pytest-asyncio
- Sample dashboard documents with KPIs, charts, a funnel, tabs and sensitive
  sections (tenant/data source identity)
- Path policy configuration matching the settings defaults
- In-memory version registry and a FastAPI TestClient wired to it
- Daily metric rows for the aggregation, integrity and insight tests
- Mock asyncpg pool for the PostgreSQL version store

Dependency References:
- dashforge/core/config.py: Settings
- dashforge/core/dependencies.py: dependency overrides for the TestClient
- dashforge/services/version_store.py: InMemorySpecVersionRegistry
"""

import copy
from datetime import date, timedelta
from typing import Any, Dict, Generator, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from dashforge.core.config import Settings
from dashforge.core.dependencies import get_settings_dependency
from dashforge.core.rate_limit import FixedWindowRateLimiter
from dashforge.services.path_policy import PathPolicyConfig
from dashforge.services.version_store import InMemorySpecVersionRegistry


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Configure custom pytest markers for test organization.

    Custom markers defined:
    - slow: Marks tests as slow (deselect with -m "not slow")
    - integration: Marks tests that exercise the full HTTP stack

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'integration: marks tests that exercise the full HTTP stack'
    )


# ============================================================
# DASHBOARD DOCUMENT FIXTURES
# ============================================================

SAMPLE_DOCUMENT: Dict[str, Any] = {
    "title": "Sales Funnel",
    "tenant_id": "tenant-001",
    "data_source_id": "ds-42",
    "kpis": [
        {"key": "spend", "label": "Spend", "format": "currency"},
        {"key": "leads", "label": "Leads", "format": "number"},
    ],
    "charts": [
        {"type": "line", "title": "Daily leads", "metrics": ["leads"]},
    ],
    "funnel": {
        "stages": [
            {"label": "Leads", "column": "leads"},
            {"label": "Entries", "column": "entries"},
            {"label": "Sales", "column": "sales"},
        ]
    },
    "filters": [{"field": "campaign", "type": "select"}],
    "ui": {"tabs": ["Overview", "Funnel", "Details"]},
}


@pytest.fixture
def sample_document() -> Dict[str, Any]:
    """
    A valid dashboard document.

    Contains 2 KPIs, 1 chart, 3 funnel stages, 1 filter and the tabs
    Overview / Funnel / Details (Details is protected by default). The
    tenant_id and data_source_id sections are blocked by the default policy.
    """
    return copy.deepcopy(SAMPLE_DOCUMENT)


@pytest.fixture
def full_kpi_document(sample_document: Dict[str, Any]) -> Dict[str, Any]:
    """Dashboard whose KPI list already holds the default maximum of 8."""
    sample_document["kpis"] = [{"key": f"metric_{i}"} for i in range(8)]
    return sample_document


@pytest.fixture
def policy_config() -> PathPolicyConfig:
    """Path policy with the default allow/block lists and ceilings."""
    return PathPolicyConfig()


# ============================================================
# APPLICATION FIXTURES
# ============================================================

@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url=None,
        ai_api_url=None,
        require_identity=False,
    )


@pytest.fixture
def registry() -> InMemorySpecVersionRegistry:
    """Empty in-memory version registry."""
    return InMemorySpecVersionRegistry()


@pytest.fixture
def app(test_settings: Settings, registry: InMemorySpecVersionRegistry):
    """
    FastAPI application wired to the in-memory registry.

    The lifespan is not entered; the registry and a generous rate limiter are
    placed on app.state directly.
    """
    from dashforge.main import create_app

    application = create_app()
    application.state.registry = registry
    application.state.rate_limiter = FixedWindowRateLimiter(max_requests=1000, window_seconds=60)
    application.dependency_overrides[get_settings_dependency] = lambda: test_settings
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """TestClient for the application."""
    yield TestClient(app)


# ============================================================
# METRIC DATA FIXTURES
# ============================================================

def make_daily_rows(
    days: int,
    start: date = date(2024, 6, 1),
    spend: float = 100.0,
    leads: int = 10,
    **extra: Any,
) -> List[Dict[str, Any]]:
    """
    Generate `days` daily rows with constant metrics.

    Args:
        days: Number of rows.
        start: Date of the first row.
        spend: Daily spend.
        leads: Daily leads.
        **extra: Additional constant columns.
    """
    return [
        {
            "date": (start + timedelta(days=i)).isoformat(),
            "spend": spend,
            "leads": leads,
            **extra,
        }
        for i in range(days)
    ]


@pytest.fixture
def daily_rows() -> List[Dict[str, Any]]:
    """Seven valid daily rows (spend 100, leads 10, sales 1 per day)."""
    return make_daily_rows(7, sales=1)


# ============================================================
# DATABASE MOCK FIXTURES
# ============================================================

@pytest.fixture
def mock_db_pool() -> MagicMock:
    """
    Mock asyncpg pool.

    `pool.acquire()` is an async context manager yielding `mock_db_pool.conn`,
    whose fetch/fetchrow/fetchval/execute are AsyncMocks. `conn.transaction()`
    is an async context manager as well.
    """
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="OK")

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=None)
    transaction.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=transaction)

    acquire = MagicMock()
    acquire.__aenter__ = AsyncMock(return_value=conn)
    acquire.__aexit__ = AsyncMock(return_value=False)

    pool = MagicMock()
    pool.acquire = MagicMock(return_value=acquire)
    pool.conn = conn
    return pool
