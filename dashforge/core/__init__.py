"""
Core infrastructure package for the FastAPI backend.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connectivity via asyncpg
- Service errors and response envelopes
- Per-process rate limiting

FastAPI dependencies live in dashforge.core.dependencies and are imported from
there directly, since they depend on the service layer.

Usage Examples:
    from dashforge.core import get_settings, ServiceError
    settings = get_settings()
    print(settings.max_kpis)

    # Database pool lifecycle (in FastAPI lifespan)
    from dashforge.core import init_db, close_db

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db()
        yield
        await close_db()
"""

# =============================================================================
# Re-exports from dashforge.core.config
# =============================================================================
from dashforge.core.config import Settings, get_settings

# =============================================================================
# Re-exports from dashforge.core.database
# =============================================================================
from dashforge.core.database import close_db, init_db, is_db_configured

# =============================================================================
# Re-exports from dashforge.core.errors
# =============================================================================
from dashforge.core.errors import (
    NotFoundError,
    ProposalParseError,
    ServiceError,
    VersionConflictError,
    error_envelope,
    status_for,
    success_envelope,
)

# =============================================================================
# Re-exports from dashforge.core.rate_limit
# =============================================================================
from dashforge.core.rate_limit import FixedWindowRateLimiter

# =============================================================================
# Public API Definition
# =============================================================================
__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Database
    "init_db",
    "close_db",
    "is_db_configured",
    # Errors
    "ServiceError",
    "NotFoundError",
    "VersionConflictError",
    "ProposalParseError",
    "status_for",
    "error_envelope",
    "success_envelope",
    # Rate limiting
    "FixedWindowRateLimiter",
]
