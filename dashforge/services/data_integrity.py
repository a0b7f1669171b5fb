"""
Data integrity validation gating the insight engine.

Runs an ordered set of independent checks over the raw daily rows and the
period aggregates. Each check that runs is named in `checksPerformed`.

Checks:
    data_sufficiency   INSUFFICIENT_DATA           critical
    nan_infinity       NAN_INFINITY_VALUES         error
    aggregated_nan     INVALID_AGGREGATED_VALUES   critical
    unit_consistency   UNIT_INCONSISTENCY          warning
    required_fields    MISSING_REQUIRED_FIELDS     warning
    date_field         MISSING_DATE_FIELD          warning (error when required)
    totals_match       TOTALS_MISMATCH             warning

`isValid` is True iff there is no critical and no error finding. Insights are
only produced for valid data.

Unit rules:
- A rate-like metric above 100 is suspicious. Values in (1, 100] are taken
  to be percentages already and values in [0, 1] fractions; both are fine.
- A currency-like metric below zero is suspicious.

Usage:
    result = validate_data_integrity(rows, aggregates, ValidatorConfig())
    if not result.isValid:
        logger.warning(format_validation_for_log(result))
"""

import logging
import math
from typing import Any, Dict, List, Optional

from dashforge.models.enums import Severity
from dashforge.models.schemas import ValidationIssue, ValidationResult, ValidatorConfig
from dashforge.services.aggregation import (
    is_number,
    is_rate_field,
    numeric_columns,
    sum_columns,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_RATE_FIELDS: List[str] = [
    'entry_rate',
    'meeting_scheduled_rate',
    'attendance_rate',
    'sale_after_meeting_rate',
    'sale_rate',
    'conversion_rate',
]

DEFAULT_CURRENCY_FIELDS: List[str] = [
    'cpl',
    'cac',
    'spend',
    'cost_total',
    'cost_per_entry',
]

# Metrics that are never plain column sums and so are skipped by totals_match
DERIVED_METRICS = {'cpl', 'cac', 'cost_per_lead', 'cost_per_acquisition', 'cost_per_entry'}

MAX_SAMPLE_ISSUES: int = 5

CHECK_DATA_SUFFICIENCY = 'data_sufficiency'
CHECK_NAN_INFINITY = 'nan_infinity'
CHECK_AGGREGATED_NAN = 'aggregated_nan'
CHECK_UNIT_CONSISTENCY = 'unit_consistency'
CHECK_REQUIRED_FIELDS = 'required_fields'
CHECK_DATE_FIELD = 'date_field'
CHECK_TOTALS_MATCH = 'totals_match'


def _is_finite_number(value: Any) -> bool:
    return is_number(value) and math.isfinite(value)


def _describe(value: Any) -> str:
    # JSON cannot carry NaN/Infinity, so sample values are rendered as text
    return str(value)


# =============================================================================
# Individual Checks
# =============================================================================

def check_data_sufficiency(rows: Optional[List[Dict[str, Any]]], min_rows: int = 3) -> Optional[ValidationIssue]:
    """INSUFFICIENT_DATA when fewer than `min_rows` rows are available."""
    count = len(rows) if rows else 0
    if count >= min_rows:
        return None
    message = "Dataset is empty" if count == 0 else f"Insufficient data: {count} row(s), minimum {min_rows}"
    return ValidationIssue(
        code='INSUFFICIENT_DATA',
        message=message,
        severity=Severity.CRITICAL,
        details={"rowCount": count, "minRows": min_rows},
    )


def find_non_finite_values(
    rows: List[Dict[str, Any]],
    numeric_fields: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """
    Locate NaN/Infinity values in the rows.

    Args:
        rows: Daily rows.
        numeric_fields: Fields to inspect; every number-valued field when None.

    Returns:
        One {field, rowIndex, value} entry per offending cell.
    """
    issues: List[Dict[str, Any]] = []
    for row_index, row in enumerate(rows):
        fields = numeric_fields if numeric_fields else [k for k, v in row.items() if is_number(v)]
        for field in fields:
            value = row.get(field)
            if is_number(value) and not math.isfinite(value):
                issues.append({"field": field, "rowIndex": row_index, "value": _describe(value)})
    return issues


def check_nan_infinity(
    rows: List[Dict[str, Any]],
    numeric_fields: Optional[List[str]] = None,
) -> Optional[ValidationIssue]:
    """NAN_INFINITY_VALUES when any row carries a non-finite number."""
    issues = find_non_finite_values(rows, numeric_fields)
    if not issues:
        return None
    fields = list(dict.fromkeys(issue["field"] for issue in issues))
    return ValidationIssue(
        code='NAN_INFINITY_VALUES',
        message=f"{len(issues)} invalid value(s) in {len(fields)} field(s)",
        severity=Severity.ERROR,
        affectedFields=fields,
        details={"sampleIssues": issues[:MAX_SAMPLE_ISSUES]},
    )


def check_aggregated_values(aggregates: Dict[str, float]) -> Optional[ValidationIssue]:
    """INVALID_AGGREGATED_VALUES when any aggregate is not a finite number."""
    invalid = [key for key, value in aggregates.items() if not _is_finite_number(value)]
    if not invalid:
        return None
    return ValidationIssue(
        code='INVALID_AGGREGATED_VALUES',
        message=f"Invalid aggregated values: {', '.join(invalid)}",
        severity=Severity.CRITICAL,
        affectedFields=invalid,
    )


def check_unit_consistency(
    aggregates: Dict[str, float],
    rate_fields: Optional[List[str]] = None,
    currency_fields: Optional[List[str]] = None,
) -> List[ValidationIssue]:
    """UNIT_INCONSISTENCY warnings for out-of-range rates and negative money."""
    rate_fields = DEFAULT_RATE_FIELDS if rate_fields is None else rate_fields
    currency_fields = DEFAULT_CURRENCY_FIELDS if currency_fields is None else currency_fields
    issues: List[ValidationIssue] = []

    for field in rate_fields:
        value = aggregates.get(field)
        if _is_finite_number(value) and value > 100:
            issues.append(ValidationIssue(
                code='UNIT_INCONSISTENCY',
                message=f"Value {value} is outside the expected range for a rate",
                severity=Severity.WARNING,
                affectedFields=[field],
                details={"expectedUnit": "rate (0-1) or percent (0-100)"},
            ))

    for field in currency_fields:
        value = aggregates.get(field)
        if _is_finite_number(value) and value < 0:
            issues.append(ValidationIssue(
                code='UNIT_INCONSISTENCY',
                message=f"Negative value {value} for a currency field",
                severity=Severity.WARNING,
                affectedFields=[field],
                details={"expectedUnit": "currency"},
            ))
    return issues


def check_required_fields(rows: List[Dict[str, Any]], required: List[str]) -> Optional[ValidationIssue]:
    """MISSING_REQUIRED_FIELDS when the first row lacks required fields."""
    missing = [field for field in required if field not in rows[0]]
    if not missing:
        return None
    return ValidationIssue(
        code='MISSING_REQUIRED_FIELDS',
        message=f"Missing required fields: {', '.join(missing)}",
        severity=Severity.WARNING,
        affectedFields=missing,
    )


def check_date_field(
    rows: List[Dict[str, Any]],
    date_field: str = 'date',
    required: bool = False,
) -> Optional[ValidationIssue]:
    """MISSING_DATE_FIELD when no row carries a usable date value."""
    candidates = [date_field, 'date', 'day']
    if any(row.get(name) for row in rows for name in candidates):
        return None
    return ValidationIssue(
        code='MISSING_DATE_FIELD',
        message=f'Date field "{date_field}" not found',
        severity=Severity.ERROR if required else Severity.WARNING,
        affectedFields=[date_field],
    )


def validate_totals_match(
    source1: Dict[str, float],
    source2: Dict[str, float],
    tolerance: float = 0.01,
) -> Dict[str, Any]:
    """
    Compare two metric maps within a relative tolerance.

    A field missing on one side counts as 0. The relative difference is
    |a - b| / max(|a|, |b|, 1).

    Returns:
        {"matches": bool, "discrepancies": [{field, val1, val2, diff}]}
    """
    discrepancies: List[Dict[str, Any]] = []
    for key in dict.fromkeys(list(source1) + list(source2)):
        val1 = source1.get(key, 0)
        val2 = source2.get(key, 0)
        if not _is_finite_number(val1) or not _is_finite_number(val2):
            discrepancies.append({"field": key, "val1": _describe(val1), "val2": _describe(val2), "diff": None})
            continue
        diff = abs(val1 - val2)
        if diff / max(abs(val1), abs(val2), 1) > tolerance:
            discrepancies.append({"field": key, "val1": val1, "val2": val2, "diff": diff})
    return {"matches": not discrepancies, "discrepancies": discrepancies}


def check_totals_match(
    rows: List[Dict[str, Any]],
    aggregates: Dict[str, float],
    tolerance: float = 0.01,
) -> Optional[ValidationIssue]:
    """
    TOTALS_MISMATCH when additive aggregates disagree with the row sums.

    Only fields that are plain numeric row columns (not rates, not derived
    ratios) and that appear in the aggregates are compared.
    """
    additive = [
        column for column in numeric_columns(rows)
        if column in aggregates and not is_rate_field(column) and column not in DERIVED_METRICS
    ]
    if not additive:
        return None
    recomputed = sum_columns(rows, additive)
    supplied = {column: aggregates[column] for column in additive}
    comparison = validate_totals_match(recomputed, supplied, tolerance)
    if comparison["matches"]:
        return None
    fields = [d["field"] for d in comparison["discrepancies"]]
    return ValidationIssue(
        code='TOTALS_MISMATCH',
        message=f"Aggregates do not match row totals: {', '.join(fields)}",
        severity=Severity.WARNING,
        affectedFields=fields,
        details={"discrepancies": comparison["discrepancies"][:MAX_SAMPLE_ISSUES]},
    )


# =============================================================================
# Orchestration
# =============================================================================

def summarize(errors: List[ValidationIssue], warnings: List[ValidationIssue]) -> str:
    critical = sum(1 for e in errors if e.severity == Severity.CRITICAL)
    if critical:
        return f"Inconsistent data: {critical} critical error(s). Insights disabled."
    if errors:
        return f"{len(errors)} integrity error(s) detected. Insights disabled."
    if warnings:
        return f"{len(warnings)} quality warning(s). Data validated with caveats."
    return "Data validated successfully. No issues detected."


def validate_data_integrity(
    rows: Optional[List[Dict[str, Any]]],
    aggregates: Optional[Dict[str, float]],
    config: Optional[ValidatorConfig] = None,
) -> ValidationResult:
    """
    Run every enabled integrity check.

    Args:
        rows: Raw daily rows of the period.
        aggregates: Period aggregates (name -> value).
        config: Validator options; defaults when None.

    Returns:
        ValidationResult: findings split into errors (critical/error) and
        warnings, the names of the checks run and a one-line summary.

    Example:
        >>> validate_data_integrity([], {}).errors[0].code
        'INSUFFICIENT_DATA'
    """
    cfg = config or ValidatorConfig()
    rows = rows or []
    aggregates = aggregates or {}
    disabled = set(cfg.disabledChecks)

    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    checks: List[str] = []

    def record(issue: Optional[ValidationIssue]) -> None:
        if issue is None:
            return
        if issue.severity in (Severity.CRITICAL, Severity.ERROR):
            errors.append(issue)
        else:
            warnings.append(issue)

    if CHECK_DATA_SUFFICIENCY not in disabled:
        checks.append(CHECK_DATA_SUFFICIENCY)
        record(check_data_sufficiency(rows, cfg.minRowsForInsights))

    if CHECK_NAN_INFINITY not in disabled:
        checks.append(CHECK_NAN_INFINITY)
        record(check_nan_infinity(rows, cfg.numericFields))

    if CHECK_AGGREGATED_NAN not in disabled:
        checks.append(CHECK_AGGREGATED_NAN)
        record(check_aggregated_values(aggregates))

    if CHECK_UNIT_CONSISTENCY not in disabled:
        checks.append(CHECK_UNIT_CONSISTENCY)
        for issue in check_unit_consistency(aggregates, cfg.rateFields, cfg.currencyFields):
            record(issue)

    if CHECK_REQUIRED_FIELDS not in disabled and cfg.requiredFields and rows:
        checks.append(CHECK_REQUIRED_FIELDS)
        record(check_required_fields(rows, cfg.requiredFields))

    if CHECK_DATE_FIELD not in disabled and rows:
        checks.append(CHECK_DATE_FIELD)
        record(check_date_field(rows, cfg.dateField, cfg.requireDateField))

    if CHECK_TOTALS_MATCH not in disabled and rows and aggregates:
        checks.append(CHECK_TOTALS_MATCH)
        record(check_totals_match(rows, aggregates, cfg.totalsTolerance))

    is_valid = not errors
    result = ValidationResult(
        isValid=is_valid,
        errors=errors,
        warnings=warnings,
        checksPerformed=checks,
        summary=summarize(errors, warnings),
    )
    if not is_valid:
        logger.info(f"Data integrity validation failed: {[e.code for e in errors]}")
    return result


def format_validation_for_log(result: ValidationResult) -> Dict[str, Any]:
    """Compact representation of a validation result for the audit log."""
    return {
        "isValid": result.isValid,
        "errorCount": len(result.errors),
        "warningCount": len(result.warnings),
        "checksPerformed": result.checksPerformed,
        "summary": result.summary,
        "errors": [
            {"code": e.code, "message": e.message, "severity": e.severity.value}
            for e in result.errors
        ],
    }
