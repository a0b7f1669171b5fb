"""
FastAPI router for versioned dashboard specifications.

Endpoints:
- POST /dashboards: create a dashboard at version 1
- GET  /dashboards/{id}: current document and version
- GET  /dashboards/{id}/history: newest-first version list
- GET  /dashboards/{id}/versions/{version}: one historical snapshot
- POST /dashboards/{id}/simulate: dry-run a patch (always HTTP 200)
- POST /dashboards/{id}/commit: apply a patch with optimistic concurrency
- POST /dashboards/{id}/rollback: commit a copy of an earlier version
- POST /dashboards/{id}/propose: ask the AI collaborator for a patch and
  simulate it (never commits)

All responses use the envelope {"ok": ..., "traceId": ...}. Failures raised as
ServiceError are rendered by the exception handlers registered in main.py.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query

from dashforge.core.dependencies import (
    CallerDep,
    EditorDep,
    PolicyDep,
    ProposalClientDep,
    RateLimitDep,
    RegistryDep,
    SettingsDep,
    TraceIdDep,
)
from dashforge.core.errors import ServiceError, success_envelope
from dashforge.models.enums import ErrorCode
from dashforge.models.schemas import (
    CommitPatchRequest,
    CreateDashboardRequest,
    ProposeEditRequest,
    RollbackRequest,
    SimulatePatchRequest,
    SimulationResult,
)
from dashforge.services.simulation import SimulationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboards", tags=["dashboards"])


def _simulation_payload(result: SimulationResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "valid": result.valid,
        "errors": [e.model_dump(exclude_none=True, mode='json') for e in result.errors],
        "warnings": result.warnings,
        "previewDocument": result.newDocument,
        "diffSummary": result.diffSummary,
        "previewMetrics": result.previewMetrics.model_dump() if result.previewMetrics else None,
        "currentVersion": result.currentVersion,
        "willBeVersion": result.willBeVersion,
    }
    return payload


def _simulation_envelope(result: SimulationResult, trace_id: str) -> Dict[str, Any]:
    envelope = {"ok": result.valid, "traceId": trace_id, **_simulation_payload(result)}
    if not result.valid and result.errors:
        first = result.errors[0]
        envelope["error"] = {
            "code": first.code.value,
            "message": first.message,
            "details": {"errors": envelope["errors"]},
        }
    return envelope


# =============================================================================
# Dashboard Endpoints
# =============================================================================

@router.post("", response_model=dict, status_code=201)
async def create_dashboard(
    body: CreateDashboardRequest,
    registry: RegistryDep,
    caller: EditorDep,
    trace_id: TraceIdDep,
    _: RateLimitDep,
) -> Dict[str, Any]:
    """
    Create a dashboard at version 1.

    Returns:
        {ok, traceId, dashboardId, version, document}
    """
    store = await registry.create(
        body.document,
        dashboard_id=body.dashboardId,
        created_by=caller.user_id,
        note=body.note,
    )
    record = await store.current()
    logger.info(f"[{trace_id}] Dashboard {store.dashboard_id} created by {caller.key}")
    return success_envelope(
        trace_id,
        dashboardId=store.dashboard_id,
        version=record.version,
        document=record.document,
    )


@router.get("/{dashboard_id}", response_model=dict)
async def get_dashboard(
    dashboard_id: str,
    registry: RegistryDep,
    caller: CallerDep,
    trace_id: TraceIdDep,
) -> Dict[str, Any]:
    """
    Current document of a dashboard.

    Returns:
        {ok, traceId, dashboardId, version, document, updatedAt}
    """
    store = await registry.get(dashboard_id)
    record = await store.current()
    return success_envelope(
        trace_id,
        dashboardId=dashboard_id,
        version=record.version,
        document=record.document,
        updatedAt=record.createdAt.isoformat(),
    )


@router.get("/{dashboard_id}/history", response_model=dict)
async def get_history(
    dashboard_id: str,
    registry: RegistryDep,
    settings: SettingsDep,
    caller: CallerDep,
    trace_id: TraceIdDep,
    limit: Optional[int] = Query(default=None, ge=1, description="Maximum number of versions"),
) -> Dict[str, Any]:
    """
    Version history, newest first.

    Returns:
        {ok, traceId, dashboardId, versions: [{version, createdAt, createdBy, note}]}
    """
    limit = min(limit or settings.history_default_limit, settings.history_max_limit)
    store = await registry.get(dashboard_id)
    records = await store.history(limit)
    return success_envelope(
        trace_id,
        dashboardId=dashboard_id,
        versions=[r.summary() for r in records],
    )


@router.get("/{dashboard_id}/versions/{version}", response_model=dict)
async def get_version(
    dashboard_id: str,
    version: int,
    registry: RegistryDep,
    caller: CallerDep,
    trace_id: TraceIdDep,
) -> Dict[str, Any]:
    """One historical snapshot."""
    store = await registry.get(dashboard_id)
    record = await store.get(version)
    return success_envelope(trace_id, dashboardId=dashboard_id, **record.summary(), document=record.document)


# =============================================================================
# Patch Endpoints
# =============================================================================

@router.post("/{dashboard_id}/simulate", response_model=dict)
async def simulate_patch(
    dashboard_id: str,
    body: SimulatePatchRequest,
    registry: RegistryDep,
    policy: PolicyDep,
    settings: SettingsDep,
    caller: CallerDep,
    trace_id: TraceIdDep,
    _: RateLimitDep,
) -> Dict[str, Any]:
    """
    Dry-run a patch against the current version.

    Always answers HTTP 200; `ok` is False when the patch would be rejected.

    Returns:
        {ok, traceId, valid, errors, warnings, previewDocument, diffSummary,
         previewMetrics, currentVersion, willBeVersion, error?}
    """
    try:
        store = await registry.get(dashboard_id)
        service = SimulationService(store, policy, settings.diff_summary_max_operations)
        result = await service.simulate(body.currentVersion, body.operations)
        logger.info(
            f"[{trace_id}] Simulated {len(body.operations)} op(s) on {dashboard_id}: valid={result.valid}"
        )
        return _simulation_envelope(result, trace_id)
    except ServiceError as e:
        return {"ok": False, "traceId": trace_id, "valid": False, "error": e.to_error()}
    except Exception as e:
        logger.error(f"[{trace_id}] Error simulating patch: {str(e)}", exc_info=True)
        return {
            "ok": False,
            "traceId": trace_id,
            "valid": False,
            "error": {"code": ErrorCode.INTERNAL_ERROR.value, "message": "Simulation failed"},
        }


@router.post("/{dashboard_id}/commit", response_model=dict)
async def commit_patch(
    dashboard_id: str,
    body: CommitPatchRequest,
    registry: RegistryDep,
    policy: PolicyDep,
    settings: SettingsDep,
    caller: EditorDep,
    trace_id: TraceIdDep,
    _: RateLimitDep,
) -> Dict[str, Any]:
    """
    Re-validate a patch against the current version and commit it.

    Returns:
        {ok, traceId, committedVersion, previousVersion, diffSummary, warnings}

    Errors:
        VERSION_CONFLICT (409) with details.currentVersion, policy and
        guardrail codes (400), NOT_FOUND (404).
    """
    store = await registry.get(dashboard_id)
    service = SimulationService(store, policy, settings.diff_summary_max_operations)
    record, result = await service.commit(
        body.expectedVersion,
        body.operations,
        note=body.note,
        created_by=caller.user_id,
    )
    logger.info(
        f"[{trace_id}] Dashboard {dashboard_id} committed v{record.version} by {caller.key}"
    )
    return success_envelope(
        trace_id,
        committedVersion=record.version,
        previousVersion=result.currentVersion,
        diffSummary=result.diffSummary,
        warnings=result.warnings,
    )


@router.post("/{dashboard_id}/rollback", response_model=dict)
async def rollback_dashboard(
    dashboard_id: str,
    body: RollbackRequest,
    registry: RegistryDep,
    policy: PolicyDep,
    caller: EditorDep,
    trace_id: TraceIdDep,
    _: RateLimitDep,
) -> Dict[str, Any]:
    """
    Commit a copy of an earlier version as the new current version.

    Returns:
        {ok, traceId, committedVersion, rolledBackTo, note}
    """
    store = await registry.get(dashboard_id)
    record = await SimulationService(store, policy).rollback(body.targetVersion, created_by=caller.user_id)
    logger.info(
        f"[{trace_id}] Dashboard {dashboard_id} rolled back to v{body.targetVersion} as v{record.version}"
    )
    return success_envelope(
        trace_id,
        committedVersion=record.version,
        rolledBackTo=body.targetVersion,
        note=record.note,
    )


@router.post("/{dashboard_id}/propose", response_model=dict)
async def propose_edit(
    dashboard_id: str,
    body: ProposeEditRequest,
    registry: RegistryDep,
    policy: PolicyDep,
    settings: SettingsDep,
    client: ProposalClientDep,
    caller: EditorDep,
    trace_id: TraceIdDep,
    _: RateLimitDep,
) -> Dict[str, Any]:
    """
    Ask the AI collaborator for a patch and simulate it.

    The proposal is never committed here; the caller reviews the preview and
    commits explicitly.

    Returns:
        {ok, traceId, proposal: {patch, summary, warnings, confidence},
         simulation: {...simulate payload}}
    """
    store = await registry.get(dashboard_id)
    record = await store.current()
    proposal = await client.propose(record.document, body.availableFields, body.userRequest, policy)

    service = SimulationService(store, policy, settings.diff_summary_max_operations)
    if proposal.patch:
        simulation = _simulation_payload(await service.simulate(record.version, proposal.patch))
    else:
        simulation = None

    logger.info(
        f"[{trace_id}] Proposal for {dashboard_id}: {len(proposal.patch)} op(s), "
        f"valid={simulation['valid'] if simulation else None}"
    )
    return success_envelope(
        trace_id,
        proposal={
            "patch": [op.to_wire() for op in proposal.patch],
            "summary": proposal.summary,
            "warnings": proposal.warnings,
            "confidence": proposal.confidence,
        },
        simulation=simulation,
    )
