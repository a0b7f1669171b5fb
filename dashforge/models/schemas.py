"""
Pydantic request/response models for the DashForge backend.

This module provides type-safe data validation and serialization for all API contracts:
- Patch engine: PatchOperation, PatchIssue, SimulationResult, PreviewMetrics
- Versioning: VersionRecord
- Typed dashboard view: DashboardSpec and its KPI/chart/funnel/filter/tab entries
- Insight engine: CalculationTrace, RuleResult, InsightTrace, DateRange
- Data integrity: ValidatorConfig, ValidationIssue, ValidationResult
- AI collaborator: PatchProposal
- Request bodies for the dashboard and insight routers

Wire models use camelCase field names. The dashboard document itself is stored and
patched as a plain JSON tree; DashboardSpec is only a typed view over it used for
structural validation, with extra="allow" so unknown sections pass through.

All models use Pydantic v2 syntax.
"""

from datetime import date as DateType, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dashforge.models.enums import (
    Confidence,
    ErrorCode,
    InsightType,
    PatchOpType,
    Priority,
    Severity,
    Unit,
)


# =============================================================================
# Patch Engine Models
# =============================================================================

class PatchOperation(BaseModel):
    """
    A single structured edit against the dashboard document.

    `path` and `from` are JSON pointers ("/kpis/0/label", "/charts/-").
    `from` is required for move and copy; `value` for add, replace and test.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "op": "add",
                "path": "/kpis/-",
                "value": {"key": "cpl", "label": "CPL", "format": "currency"}
            }
        }
    )

    op: PatchOpType = Field(
        ...,
        description="Operation verb (add, remove, replace, move, copy, test)"
    )
    path: str = Field(
        ...,
        description="JSON pointer to the target location"
    )
    value: Any = Field(
        default=None,
        description="Value for add, replace and test"
    )
    from_: Optional[str] = Field(
        default=None,
        alias="from",
        description="Source JSON pointer for move and copy"
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with the `from` alias, dropping absent keys."""
        data: Dict[str, Any] = {"op": self.op.value, "path": self.path}
        if self.op in (PatchOpType.ADD, PatchOpType.REPLACE, PatchOpType.TEST):
            data["value"] = self.value
        if self.from_ is not None:
            data["from"] = self.from_
        return data


class PatchIssue(BaseModel):
    """
    A policy, guardrail, version or structural problem found in a patch.

    `operationIndex` points at the offending operation when the issue is
    attributable to one.
    """
    code: ErrorCode = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable explanation")
    path: Optional[str] = Field(default=None, description="Offending path")
    operationIndex: Optional[int] = Field(
        default=None,
        description="Index of the offending operation in the patch"
    )
    details: Optional[Dict[str, Any]] = Field(default=None)


class PreviewMetrics(BaseModel):
    """Collection sizes of a (preview) dashboard document."""
    kpisCount: int = 0
    chartsCount: int = 0
    tabs: List[str] = Field(default_factory=list)
    funnelSteps: int = 0
    filtersCount: int = 0


class SimulationResult(BaseModel):
    """
    Outcome of a dry-run patch application.

    `newDocument` is the preview (None when the patch is rejected before or
    during application). `willBeVersion` is the version a commit would create.
    """
    valid: bool
    newDocument: Optional[Dict[str, Any]] = None
    currentDocument: Dict[str, Any] = Field(default_factory=dict)
    diffSummary: List[str] = Field(default_factory=list)
    errors: List[PatchIssue] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    previewMetrics: Optional[PreviewMetrics] = None
    currentVersion: int
    willBeVersion: int


# =============================================================================
# Versioning Models
# =============================================================================

class VersionRecord(BaseModel):
    """
    Immutable snapshot in a dashboard's append-only history.
    """
    model_config = ConfigDict(frozen=True)

    version: int = Field(..., ge=1)
    document: Dict[str, Any]
    createdAt: datetime
    createdBy: Optional[str] = None
    note: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        """History listing entry (no document body)."""
        return {
            "version": self.version,
            "createdAt": self.createdAt.isoformat(),
            "createdBy": self.createdBy,
            "note": self.note,
        }


# =============================================================================
# Typed Dashboard View
# =============================================================================

class KpiSpec(BaseModel):
    """KPI card. One of `key`, `column` or `id` must identify the metric."""
    model_config = ConfigDict(extra='allow')

    key: Optional[str] = None
    id: Optional[str] = None
    column: Optional[str] = None
    label: Optional[str] = None
    format: Optional[str] = None

    @model_validator(mode='after')
    def _require_identifier(self) -> 'KpiSpec':
        if not (self.key or self.column or self.id):
            raise ValueError("KPI requires 'key', 'column' or 'id'")
        return self


class ChartSpec(BaseModel):
    """Chart entry."""
    model_config = ConfigDict(extra='allow')

    type: Optional[str] = None
    title: Optional[str] = None


class FunnelStage(BaseModel):
    """Funnel stage entry."""
    model_config = ConfigDict(extra='allow')

    label: Optional[str] = None
    column: Optional[str] = None


class FunnelSpec(BaseModel):
    """Funnel block; stages live under `stages` or `steps`."""
    model_config = ConfigDict(extra='allow')

    stages: Optional[List[Union[str, FunnelStage]]] = None
    steps: Optional[List[Union[str, FunnelStage]]] = None


class FilterSpec(BaseModel):
    """Filter entry."""
    model_config = ConfigDict(extra='allow')

    field: Optional[str] = None
    type: Optional[str] = None


class TabSpec(BaseModel):
    """Tab given as an object; `name` or `label` carries its title."""
    model_config = ConfigDict(extra='allow')

    name: Optional[str] = None
    label: Optional[str] = None


class UiSpec(BaseModel):
    """UI block; tabs may live here instead of at the document root."""
    model_config = ConfigDict(extra='allow')

    tabs: Optional[List[Union[str, TabSpec]]] = None


class DashboardSpec(BaseModel):
    """
    Typed view over a dashboard document.

    Unknown top-level sections are kept (extra="allow") and act as the open
    metadata bag. Used only for structural validation.
    """
    model_config = ConfigDict(extra='allow')

    version: Optional[int] = None
    title: Optional[str] = None
    kpis: Optional[List[KpiSpec]] = None
    charts: Optional[List[ChartSpec]] = None
    funnel: Optional[FunnelSpec] = None
    filters: Optional[List[FilterSpec]] = None
    tabs: Optional[List[Union[str, TabSpec]]] = None
    ui: Optional[UiSpec] = None


# =============================================================================
# Insight Engine Models
# =============================================================================

class DateRange(BaseModel):
    """Inclusive reporting window."""
    start: DateType
    end: DateType


class CalculationTrace(BaseModel):
    """
    Audit trail for a finding: the formula, the named inputs it used and the
    value it produced.
    """
    formula: str
    inputs: Dict[str, float] = Field(default_factory=dict)
    output: float
    unit: Unit


class RuleResult(BaseModel):
    """
    A single explainable finding produced by the insight rule engine.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "ruleId": "cpl_increase",
                "type": "problem",
                "priority": "high",
                "title": "CPL increased 40.0%",
                "description": "Cost per lead went from 10.00 to 14.00.",
                "calculation": {
                    "formula": "((current_cpl - previous_cpl) / |previous_cpl|) * 100",
                    "inputs": {"current_cpl": 14.0, "previous_cpl": 10.0},
                    "output": 40.0,
                    "unit": "percent"
                },
                "metricKey": "cpl",
                "currentValue": 14.0,
                "previousValue": 10.0,
                "changePercent": 40.0,
                "confidence": "high"
            }
        }
    )

    ruleId: str
    type: InsightType
    priority: Priority
    title: str
    description: str
    calculation: CalculationTrace
    metricKey: Optional[str] = None
    currentValue: Optional[float] = None
    previousValue: Optional[float] = None
    changePercent: Optional[float] = None
    suggestedAction: Optional[str] = None
    confidence: Confidence = Confidence.MEDIUM


class InsightTrace(BaseModel):
    """Flattened calculation trace suitable for an audit log or UI tooltip."""
    label: str
    formula: str
    inputs: Dict[str, float]
    output: float
    unit: Unit
    source: str
    dateRange: DateRange


# =============================================================================
# Data Integrity Models
# =============================================================================

class ValidatorConfig(BaseModel):
    """
    Options for the data integrity validator.

    `numericFields` of None means every numeric-valued field found in the rows.
    `disabledChecks` holds check names (e.g. "unit_consistency") to skip.
    """
    minRowsForInsights: int = Field(default=3, ge=0)
    requiredFields: List[str] = Field(default_factory=list)
    numericFields: Optional[List[str]] = None
    dateField: str = "date"
    requireDateField: bool = False
    rateFields: Optional[List[str]] = None
    currencyFields: Optional[List[str]] = None
    totalsTolerance: float = Field(default=0.01, ge=0)
    disabledChecks: List[str] = Field(default_factory=list)


class ValidationIssue(BaseModel):
    """A single data integrity finding."""
    code: str
    message: str
    severity: Severity
    affectedFields: Optional[List[str]] = None
    details: Optional[Dict[str, Any]] = None


class ValidationResult(BaseModel):
    """
    Outcome of the data integrity validator.

    `isValid` is True iff there is no critical and no error finding.
    """
    isValid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    checksPerformed: List[str] = Field(default_factory=list)
    summary: str = ""


# =============================================================================
# AI Collaborator Models
# =============================================================================

class PatchProposal(BaseModel):
    """
    Patch proposed by the AI collaborator. It is never applied directly; the
    router always runs it through simulation first.
    """
    patch: List[PatchOperation]
    summary: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)


# =============================================================================
# Request Bodies
# =============================================================================

class CreateDashboardRequest(BaseModel):
    """Body for POST /dashboards."""
    dashboardId: Optional[str] = Field(default=None, min_length=1)
    document: Dict[str, Any] = Field(default_factory=dict)
    note: Optional[str] = None


class SimulatePatchRequest(BaseModel):
    """Body for POST /dashboards/{id}/simulate."""
    currentVersion: int = Field(..., ge=0)
    operations: List[PatchOperation] = Field(..., min_length=1)


class CommitPatchRequest(BaseModel):
    """Body for POST /dashboards/{id}/commit."""
    expectedVersion: int = Field(..., ge=0)
    operations: List[PatchOperation] = Field(..., min_length=1)
    note: Optional[str] = None


class RollbackRequest(BaseModel):
    """Body for POST /dashboards/{id}/rollback."""
    targetVersion: int = Field(..., ge=1)


class ProposeEditRequest(BaseModel):
    """Body for POST /dashboards/{id}/propose."""
    userRequest: str = Field(..., min_length=1, max_length=4000)
    availableFields: List[str] = Field(default_factory=list)


class InsightsRequest(BaseModel):
    """
    Body for POST /insights.

    `aggregates` / `previousAggregates` are computed from the rows when omitted.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "rows": [
                    {"date": "2024-06-01", "spend": 100.0, "leads": 10},
                    {"date": "2024-06-02", "spend": 120.0, "leads": 11},
                    {"date": "2024-06-03", "spend": 90.0, "leads": 9}
                ],
                "dateRange": {"start": "2024-06-01", "end": "2024-06-03"}
            }
        }
    )

    rows: List[Dict[str, Any]] = Field(default_factory=list)
    previousRows: Optional[List[Dict[str, Any]]] = None
    aggregates: Optional[Dict[str, float]] = None
    previousAggregates: Optional[Dict[str, float]] = None
    dateRange: DateRange
    validatorConfig: Optional[ValidatorConfig] = None
    source: str = "dashboard-data"
