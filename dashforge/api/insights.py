"""
FastAPI router for validated, rule-based dashboard insights.

Endpoint:
- POST /insights: aggregate the rows (when aggregates are not supplied), run
  the data integrity validator and, only when the data is valid, evaluate the
  insight rule catalog.

The endpoint always answers HTTP 200. Invalid data yields `ok: false`, the
validation result and an empty insight list; the rule engine is never run on
data that failed validation.

Response:
    {
        "ok": bool,
        "traceId": str,
        "validation": ValidationResult,
        "insights": [InsightTrace-backed RuleResult, ...],
        "aggregates": {name: value | null},
        "previousAggregates": {name: value | null} | null
    }

Non-finite aggregates are returned as null; NaN and Infinity never reach the
JSON response.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter

from dashforge.core.config import Settings
from dashforge.core.dependencies import CallerDep, RateLimitDep, SettingsDep, TraceIdDep
from dashforge.models.enums import ErrorCode
from dashforge.models.schemas import InsightsRequest, ValidatorConfig
from dashforge.services.aggregation import compute_aggregates
from dashforge.services.data_integrity import format_validation_for_log, validate_data_integrity
from dashforge.services.insight_rules import RuleCheckParams, rule_result_to_trace, run_insight_rules

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/insights", tags=["insights"])


def sanitize_metrics(metrics: Optional[Dict[str, float]]) -> Optional[Dict[str, Optional[float]]]:
    """Replace NaN and Infinity with None."""
    if metrics is None:
        return None
    return {
        key: value if isinstance(value, (int, float)) and math.isfinite(value) else None
        for key, value in metrics.items()
    }


def default_validator_config(settings: Settings) -> ValidatorConfig:
    """Validator options used when the request carries none."""
    return ValidatorConfig(
        minRowsForInsights=settings.min_rows_for_insights,
        requireDateField=settings.require_date_field,
        totalsTolerance=settings.totals_match_tolerance,
    )


@router.post("", response_model=dict)
async def generate_insights(
    body: InsightsRequest,
    settings: SettingsDep,
    caller: CallerDep,
    trace_id: TraceIdDep,
    _: RateLimitDep,
) -> Dict[str, Any]:
    """
    Validate dashboard data and generate rule-based insights.

    Returns:
        {ok, traceId, validation, insights, aggregates, previousAggregates}
    """
    aggregates = body.aggregates if body.aggregates is not None else compute_aggregates(body.rows)
    previous = body.previousAggregates
    if previous is None and body.previousRows:
        previous = compute_aggregates(body.previousRows)

    validator_config = body.validatorConfig or default_validator_config(settings)
    validation = validate_data_integrity(body.rows, aggregates, validator_config)
    logger.info(f"[{trace_id}] Insights validation: {format_validation_for_log(validation)['summary']}")

    response: Dict[str, Any] = {
        "ok": validation.isValid,
        "traceId": trace_id,
        "validation": validation.model_dump(mode='json', exclude_none=True),
        "insights": [],
        "aggregates": sanitize_metrics(aggregates),
        "previousAggregates": sanitize_metrics(previous),
    }
    if not validation.isValid:
        response["error"] = {
            "code": ErrorCode.VALIDATION_ERROR.value,
            "message": validation.summary,
        }
        return response

    try:
        params = RuleCheckParams(
            current=aggregates,
            previous=previous,
            daily_data=body.rows,
            previous_daily_data=body.previousRows,
            date_range=body.dateRange,
        )
        results = run_insight_rules(params)
    except Exception as e:
        logger.error(f"[{trace_id}] Error generating insights: {str(e)}", exc_info=True)
        response["ok"] = False
        response["error"] = {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": "Failed to generate insights",
        }
        return response

    insights: List[Dict[str, Any]] = []
    for result in results:
        item = result.model_dump(mode='json', exclude_none=True)
        item["trace"] = rule_result_to_trace(result, body.dateRange, body.source).model_dump(mode='json')
        insights.append(item)
    response["insights"] = insights

    logger.info(f"[{trace_id}] Generated {len(insights)} insight(s) for caller {caller.key}")
    return response
