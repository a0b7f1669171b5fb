"""
DashForge data models.

Re-exports the enumerations and pydantic models so callers can write:

    from dashforge.models import PatchOperation, ErrorCode
"""

from dashforge.models.enums import (
    PRIORITY_RANK,
    Confidence,
    ErrorCode,
    InsightType,
    OperationStatus,
    PatchOpType,
    Priority,
    Severity,
    Unit,
)
from dashforge.models.schemas import (
    CalculationTrace,
    ChartSpec,
    CommitPatchRequest,
    CreateDashboardRequest,
    DashboardSpec,
    DateRange,
    FilterSpec,
    FunnelSpec,
    FunnelStage,
    InsightsRequest,
    InsightTrace,
    KpiSpec,
    PatchIssue,
    PatchOperation,
    PatchProposal,
    PreviewMetrics,
    ProposeEditRequest,
    RollbackRequest,
    RuleResult,
    SimulatePatchRequest,
    SimulationResult,
    TabSpec,
    UiSpec,
    ValidationIssue,
    ValidationResult,
    ValidatorConfig,
    VersionRecord,
)

__all__ = [
    # Enums
    'PRIORITY_RANK',
    'Confidence',
    'ErrorCode',
    'InsightType',
    'OperationStatus',
    'PatchOpType',
    'Priority',
    'Severity',
    'Unit',
    # Patch engine
    'PatchIssue',
    'PatchOperation',
    'PreviewMetrics',
    'SimulationResult',
    # Versioning
    'VersionRecord',
    # Typed dashboard view
    'ChartSpec',
    'DashboardSpec',
    'FilterSpec',
    'FunnelSpec',
    'FunnelStage',
    'KpiSpec',
    'TabSpec',
    'UiSpec',
    # Insight engine
    'CalculationTrace',
    'DateRange',
    'InsightTrace',
    'RuleResult',
    # Data integrity
    'ValidationIssue',
    'ValidationResult',
    'ValidatorConfig',
    # AI collaborator
    'PatchProposal',
    # Requests
    'CommitPatchRequest',
    'CreateDashboardRequest',
    'InsightsRequest',
    'ProposeEditRequest',
    'RollbackRequest',
    'SimulatePatchRequest',
]
