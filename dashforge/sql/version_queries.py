"""
SQL queries for dashboard spec version persistence.

Table layout (created by get_create_versions_table_query):

    dashboard_spec_versions
        dashboard_id    TEXT        NOT NULL
        version         INTEGER     NOT NULL
        dashboard_spec  JSONB       NOT NULL
        created_by      TEXT
        notes           TEXT
        created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        UNIQUE (dashboard_id, version)

The unique constraint is what makes compare-and-swap safe across processes: of
two writers inserting the same next version only one INSERT succeeds.

All queries use asyncpg positional parameters ($1, $2, ...).
"""

VERSIONS_TABLE: str = 'dashboard_spec_versions'


def get_create_versions_table_query() -> str:
    """DDL for the versions table (idempotent)."""
    return f"""
    CREATE TABLE IF NOT EXISTS {VERSIONS_TABLE} (
        dashboard_id    TEXT        NOT NULL,
        version         INTEGER     NOT NULL CHECK (version >= 1),
        dashboard_spec  JSONB       NOT NULL,
        created_by      TEXT,
        notes           TEXT,
        created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT {VERSIONS_TABLE}_uniq UNIQUE (dashboard_id, version)
    )
    """


def get_latest_version_query(for_update: bool = False) -> str:
    """
    Latest snapshot of one dashboard.

    Parameters:
        $1: dashboard_id

    With `for_update` the row is locked for the rest of the transaction.
    """
    lock = "FOR UPDATE" if for_update else ""
    return f"""
    SELECT dashboard_id, version, dashboard_spec, created_by, notes, created_at
    FROM {VERSIONS_TABLE}
    WHERE dashboard_id = $1
    ORDER BY version DESC
    LIMIT 1
    {lock}
    """


def get_version_query() -> str:
    """
    One specific snapshot.

    Parameters:
        $1: dashboard_id
        $2: version
    """
    return f"""
    SELECT dashboard_id, version, dashboard_spec, created_by, notes, created_at
    FROM {VERSIONS_TABLE}
    WHERE dashboard_id = $1 AND version = $2
    """


def get_insert_version_query() -> str:
    """
    Append a snapshot.

    Parameters:
        $1: dashboard_id
        $2: version
        $3: dashboard_spec (JSON text)
        $4: created_by
        $5: notes
    """
    return f"""
    INSERT INTO {VERSIONS_TABLE} (dashboard_id, version, dashboard_spec, created_by, notes)
    VALUES ($1, $2, $3::jsonb, $4, $5)
    RETURNING dashboard_id, version, dashboard_spec, created_by, notes, created_at
    """


def get_history_query() -> str:
    """
    Newest-first history of one dashboard.

    Parameters:
        $1: dashboard_id
        $2: limit
    """
    return f"""
    SELECT dashboard_id, version, dashboard_spec, created_by, notes, created_at
    FROM {VERSIONS_TABLE}
    WHERE dashboard_id = $1
    ORDER BY version DESC
    LIMIT $2
    """


def get_dashboard_exists_query() -> str:
    """
    Whether a dashboard has any snapshot.

    Parameters:
        $1: dashboard_id
    """
    return f"""
    SELECT EXISTS (SELECT 1 FROM {VERSIONS_TABLE} WHERE dashboard_id = $1)
    """


def get_max_version_query() -> str:
    """
    Highest committed version of one dashboard.

    Parameters:
        $1: dashboard_id
    """
    return f"""
    SELECT max(version) FROM {VERSIONS_TABLE} WHERE dashboard_id = $1
    """
