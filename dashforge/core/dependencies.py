"""
FastAPI dependency injection module for the DashForge backend.

Provides reusable dependencies for configuration, the dashboard version
registry, request trace ids, caller identity and rate limiting. Endpoints
declare what they need through the type aliases below, and tests replace any
of them via `app.dependency_overrides`.

Key Dependencies Provided:
- SettingsDep: cached Settings singleton
- RegistryDep: dashboard version registry (in-memory or PostgreSQL)
- TraceIdDep: X-Trace-Id header value or a generated 8-char id
- CallerDep: caller identity from the gateway headers (X-User-Id, X-User-Role)
- EditorDep: caller allowed to commit, roll back and request proposals
- RateLimitDep: per-caller request budget (best effort, per process)
- ProposalClientDep: AI collaborator client

Identity is delegated: an upstream gateway authenticates users and forwards
their id and role as headers. This service only checks presence and role.

Usage Examples:
    @router.post("/{dashboard_id}/commit")
    async def commit_patch(
        dashboard_id: str,
        body: CommitPatchRequest,
        registry: RegistryDep,
        caller: EditorDep,
        trace_id: TraceIdDep,
    ):
        ...
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, Request

from dashforge.core.config import Settings, get_settings
from dashforge.core.errors import ServiceError
from dashforge.core.rate_limit import FixedWindowRateLimiter
from dashforge.models.enums import ErrorCode
from dashforge.services.path_policy import PathPolicyConfig
from dashforge.services.proposal import ProposalClient
from dashforge.services.version_store import SpecVersionRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can override it:

        app.dependency_overrides[get_settings_dependency] = lambda: test_settings
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


def get_policy_config(settings: SettingsDep) -> PathPolicyConfig:
    """Path policy configuration derived from settings."""
    return PathPolicyConfig.from_settings(settings)


PolicyDep = Annotated[PathPolicyConfig, Depends(get_policy_config)]


# =============================================================================
# Trace Id
# =============================================================================

def new_trace_id() -> str:
    return uuid.uuid4().hex[:8]


def get_trace_id(request: Request) -> str:
    """
    Trace id of the current request.

    Taken from the X-Trace-Id header when present, otherwise generated. The
    id is stored on request.state so exception handlers can echo it.
    """
    trace_id = getattr(request.state, 'trace_id', None)
    if trace_id is None:
        trace_id = request.headers.get('x-trace-id') or new_trace_id()
        request.state.trace_id = trace_id
    return trace_id


TraceIdDep = Annotated[str, Depends(get_trace_id)]


# =============================================================================
# Version Registry
# =============================================================================

def get_registry(request: Request) -> SpecVersionRegistry:
    """
    Dashboard version registry created in the application lifespan.

    Raises:
        ServiceError: CONFIG_ERROR when the application has no registry.
    """
    registry = getattr(request.app.state, 'registry', None)
    if registry is None:
        raise ServiceError(ErrorCode.CONFIG_ERROR, "Version registry is not initialized")
    return registry


RegistryDep = Annotated[SpecVersionRegistry, Depends(get_registry)]


# =============================================================================
# Caller Identity
# =============================================================================

@dataclass(frozen=True)
class Caller:
    """Identity forwarded by the gateway."""
    user_id: Optional[str]
    role: Optional[str]

    @property
    def key(self) -> str:
        return self.user_id or 'anonymous'


def get_caller(
    settings: SettingsDep,
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_role: Annotated[Optional[str], Header()] = None,
) -> Caller:
    """
    Caller identity from the gateway headers.

    Raises:
        ServiceError: AUTH_FAILED when identity is required but missing.
    """
    if settings.require_identity and not x_user_id:
        raise ServiceError(ErrorCode.AUTH_FAILED, "Missing caller identity")
    return Caller(user_id=x_user_id, role=x_user_role)


CallerDep = Annotated[Caller, Depends(get_caller)]


def require_editor(caller: CallerDep, settings: SettingsDep) -> Caller:
    """
    Caller allowed to change dashboards.

    Raises:
        ServiceError: FORBIDDEN when identity is enforced and the role is not
            one of the editor roles.
    """
    if settings.require_identity and caller.role not in settings.editor_roles:
        logger.warning(f"Caller {caller.key} with role {caller.role!r} denied edit access")
        raise ServiceError(ErrorCode.FORBIDDEN, "Insufficient permissions to edit dashboards")
    return caller


EditorDep = Annotated[Caller, Depends(require_editor)]


# =============================================================================
# Rate Limiting
# =============================================================================

def get_rate_limiter(request: Request) -> Optional[FixedWindowRateLimiter]:
    return getattr(request.app.state, 'rate_limiter', None)


def enforce_rate_limit(
    caller: CallerDep,
    limiter: Annotated[Optional[FixedWindowRateLimiter], Depends(get_rate_limiter)],
) -> None:
    """
    Raises:
        ServiceError: RATE_LIMITED when the caller exhausted its budget.
    """
    if limiter is None:
        return
    if not limiter.hit(caller.key):
        raise ServiceError(
            ErrorCode.RATE_LIMITED,
            "Too many requests, try again later",
            {"retryAfterSeconds": round(limiter.retry_after(caller.key), 1)},
        )


RateLimitDep = Annotated[None, Depends(enforce_rate_limit)]


# =============================================================================
# AI Collaborator
# =============================================================================

def get_proposal_client(settings: SettingsDep) -> ProposalClient:
    """
    Raises:
        ServiceError: CONFIG_ERROR when no AI endpoint is configured.
    """
    return ProposalClient.from_settings(settings)


ProposalClientDep = Annotated[ProposalClient, Depends(get_proposal_client)]
