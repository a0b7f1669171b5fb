"""
SQL Query Module for DashForge.

Provides parameterized SQL queries for dashboard spec version persistence.
Follows the Repository Pattern: services build queries here and execute them
through the asyncpg pool in dashforge.core.database.

Example usage:
    from dashforge.sql import get_latest_version_query

    row = await conn.fetchrow(get_latest_version_query(), dashboard_id)
"""

from dashforge.sql.version_queries import (
    VERSIONS_TABLE,
    get_create_versions_table_query,
    get_dashboard_exists_query,
    get_history_query,
    get_insert_version_query,
    get_latest_version_query,
    get_max_version_query,
    get_version_query,
)

__all__ = [
    'VERSIONS_TABLE',
    'get_create_versions_table_query',
    'get_dashboard_exists_query',
    'get_history_query',
    'get_insert_version_query',
    'get_latest_version_query',
    'get_max_version_query',
    'get_version_query',
]
