"""
Patch simulation and commit orchestration.

simulate_patch() is a dry run: it never persists anything. Pipeline:

    1. Version check: expected version must equal the current version
       (VERSION_CONFLICT otherwise).
    2. Path policy and guardrails on every operation, collecting all issues.
    3. Stop if step 2 found anything.
    4. Atomic patch application.
    5. Structural validation of the resulting document.
    6. Diff summary and preview metrics.

SimulationService wraps a version store: commit() re-runs the same simulation
against the then-current stored version and, only if valid, commits through
the store's compare-and-swap.

Usage:
    service = SimulationService(store, PathPolicyConfig.from_settings(settings))
    preview = await service.simulate(expected_version=3, operations=ops)
    record, result = await service.commit(3, ops, note="Add CPL", created_by="u1")
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from dashforge.core.errors import ServiceError, VersionConflictError
from dashforge.models.enums import ErrorCode
from dashforge.models.schemas import (
    PatchIssue,
    PatchOperation,
    PreviewMetrics,
    SimulationResult,
    VersionRecord,
)
from dashforge.services.patch_interpreter import advance_scratch, apply_patch
from dashforge.services.path_policy import PathPolicyConfig, check_patch, tab_names
from dashforge.services.spec_validation import validate_spec_structure
from dashforge.services.version_store import SpecVersionStore

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MAX_SUMMARY_OPERATIONS: int = 5

# (label, path keys) of the collections tracked by the diff summary
SUMMARY_COLLECTIONS: List[Tuple[str, Tuple[str, ...]]] = [
    ('KPIs', ('kpis',)),
    ('Charts', ('charts',)),
    ('Funnel stages', ('funnel', 'stages')),
    ('Funnel steps', ('funnel', 'steps')),
    ('Filters', ('filters',)),
]


# =============================================================================
# Preview Helpers
# =============================================================================

def _length(document: Any, keys: Tuple[str, ...]) -> int:
    current = document
    for key in keys:
        if not isinstance(current, dict):
            return 0
        current = current.get(key)
    return len(current) if isinstance(current, list) else 0


def preview_metrics(document: Any) -> PreviewMetrics:
    """
    Collection sizes of a document.

    Funnel steps count `/funnel/stages`, falling back to `/funnel/steps`.
    """
    funnel = _length(document, ('funnel', 'stages')) or _length(document, ('funnel', 'steps'))
    return PreviewMetrics(
        kpisCount=_length(document, ('kpis',)),
        chartsCount=_length(document, ('charts',)),
        tabs=tab_names(document),
        funnelSteps=funnel,
        filtersCount=_length(document, ('filters',)),
    )


def summarize_diff(
    before: Any,
    after: Any,
    operations: Sequence[PatchOperation],
    max_operations: int = DEFAULT_MAX_SUMMARY_OPERATIONS,
) -> List[str]:
    """
    Human-readable summary of what a patch changes.

    Reports collection-size deltas and added/removed tabs by name. When no
    collection changed, lists the first `max_operations` raw operations.

    Example:
        >>> summarize_diff({"kpis": []}, {"kpis": [{"key": "cpl"}]}, ops)
        ['KPIs: 0 -> 1 (+1)']
    """
    lines: List[str] = []

    for label, keys in SUMMARY_COLLECTIONS:
        old, new = _length(before, keys), _length(after, keys)
        if old != new:
            lines.append(f"{label}: {old} -> {new} ({new - old:+d})")

    old_tabs, new_tabs = tab_names(before), tab_names(after)
    added = [t for t in new_tabs if t not in old_tabs]
    removed = [t for t in old_tabs if t not in new_tabs]
    if added:
        lines.append(f"Tabs added: {', '.join(added)}")
    if removed:
        lines.append(f"Tabs removed: {', '.join(removed)}")

    if isinstance(before, dict) and isinstance(after, dict) and before.get('title') != after.get('title'):
        lines.append(f"Title: {before.get('title')!r} -> {after.get('title')!r}")

    if not lines:
        for operation in operations[:max_operations]:
            lines.append(f"{operation.op.value} {operation.path or '/'}")
        if len(operations) > max_operations:
            lines.append(f"... and {len(operations) - max_operations} more")
    return lines


# =============================================================================
# Simulation
# =============================================================================

def _coerce(operations: Sequence[Union[PatchOperation, Dict[str, Any]]]) -> List[PatchOperation]:
    return [
        op if isinstance(op, PatchOperation) else PatchOperation.model_validate(op)
        for op in operations
    ]


def simulate_patch(
    current_document: Dict[str, Any],
    current_version: int,
    expected_version: int,
    operations: Sequence[Union[PatchOperation, Dict[str, Any]]],
    policy: PathPolicyConfig,
    max_summary_operations: int = DEFAULT_MAX_SUMMARY_OPERATIONS,
) -> SimulationResult:
    """
    Dry-run a patch against the current document.

    Args:
        current_document: Latest stored document.
        current_version: Its version.
        expected_version: Version the caller computed the patch against.
        operations: Patch operations.
        policy: Path policy and guardrail configuration.
        max_summary_operations: Raw operations listed in the fallback summary.

    Returns:
        SimulationResult: `valid` is True only when the patch passed every
        check; `newDocument` holds the preview whenever the patch applied.
    """
    operations = _coerce(operations)
    base = SimulationResult(
        valid=False,
        currentDocument=current_document,
        currentVersion=current_version,
        willBeVersion=current_version + 1,
    )

    if expected_version != current_version:
        conflict = VersionConflictError(expected_version, current_version)
        base.errors.append(PatchIssue(
            code=ErrorCode.VERSION_CONFLICT,
            message=conflict.message,
            details=conflict.details,
        ))
        return base

    policy_errors = check_patch(operations, current_document, policy, advance=advance_scratch)
    if policy_errors:
        logger.info(f"Simulation rejected by path policy: {[e.code.value for e in policy_errors]}")
        base.errors.extend(policy_errors)
        return base

    result = apply_patch(current_document, operations, policy)
    if not result.applied:
        base.errors.extend(result.errors)
        return base

    new_document = result.document
    structural_errors, warnings = validate_spec_structure(
        new_document,
        details_tab=policy.protected_tabs[0] if policy.protected_tabs else 'Details',
    )
    errors = [
        PatchIssue(code=ErrorCode.VALIDATION_ERROR, message=message)
        for message in structural_errors
    ]
    if not isinstance(new_document, dict):
        # No preview for a root replaced by a non-object
        base.errors.extend(errors)
        base.warnings.extend(warnings)
        return base

    return SimulationResult(
        valid=not errors,
        newDocument=new_document,
        currentDocument=current_document,
        diffSummary=summarize_diff(current_document, new_document, operations, max_summary_operations),
        errors=errors,
        warnings=warnings,
        previewMetrics=preview_metrics(new_document),
        currentVersion=current_version,
        willBeVersion=current_version + 1,
    )


def _rejection(result: SimulationResult) -> ServiceError:
    first = result.errors[0]
    return ServiceError(
        first.code,
        first.message if len(result.errors) == 1 else f"{first.message} (+{len(result.errors) - 1} more)",
        {"errors": [e.model_dump(exclude_none=True, mode='json') for e in result.errors]},
    )


# =============================================================================
# Service
# =============================================================================

class SimulationService:
    """
    Simulation, commit and rollback for one dashboard.

    Attributes:
        store: Version store of the dashboard.
        policy: Path policy configuration.
    """

    def __init__(
        self,
        store: SpecVersionStore,
        policy: PathPolicyConfig,
        max_summary_operations: int = DEFAULT_MAX_SUMMARY_OPERATIONS,
    ) -> None:
        self.store = store
        self.policy = policy
        self.max_summary_operations = max_summary_operations

    async def simulate(
        self,
        expected_version: int,
        operations: Sequence[Union[PatchOperation, Dict[str, Any]]],
    ) -> SimulationResult:
        record = await self.store.current()
        return simulate_patch(
            record.document,
            record.version,
            expected_version,
            operations,
            self.policy,
            self.max_summary_operations,
        )

    async def commit(
        self,
        expected_version: int,
        operations: Sequence[Union[PatchOperation, Dict[str, Any]]],
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Tuple[VersionRecord, SimulationResult]:
        """
        Re-validate a patch against the current version and commit it.

        Returns:
            (record, simulation): the committed snapshot and the simulation
            that approved it.

        Raises:
            VersionConflictError: Stale expected version, or a concurrent
                commit won the race.
            ServiceError: Any policy, guardrail, patch or structural issue
                (code of the first issue; all issues in details["errors"]).
        """
        record = await self.store.current()
        result = simulate_patch(
            record.document,
            record.version,
            expected_version,
            operations,
            self.policy,
            self.max_summary_operations,
        )
        if not result.valid:
            if any(e.code == ErrorCode.VERSION_CONFLICT for e in result.errors):
                raise VersionConflictError(expected_version, record.version)
            raise _rejection(result)

        committed = await self.store.commit(
            record.version,
            result.newDocument,
            note=note,
            created_by=created_by,
        )
        return committed, result

    async def rollback(
        self,
        target_version: int,
        created_by: Optional[str] = None,
    ) -> VersionRecord:
        return await self.store.rollback(target_version, created_by=created_by)
