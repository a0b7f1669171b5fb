"""
Rule-based insight engine.

Evaluates a fixed, ordered catalog of declarative rules against the current
and previous period aggregates and the raw daily rows, producing explainable
findings (RuleResult), each with the formula, inputs and output behind it.

The engine must only be called for data that passed the data integrity
validator; that is enforced by the caller.

Rule Catalog (in evaluation order):
    cpl_increase       problem      CPL change > 20%      >50 critical, >35 high, else medium
    cpl_decrease       opportunity  CPL change < -15%     < -30 high, else medium
    cac_increase       problem      CAC change > 25%      >50 critical, else high
    leads_drop         problem      leads change < -20%   < -40 critical, else high
    leads_growth       opportunity  leads change > 20%    >50 high, else medium
    funnel_bottleneck  bottleneck   first stage with 0 < rate < 50%   loss >70 critical, else high
    daily_anomaly      anomaly      1-2 daily values beyond 2 sigma   medium

Percent change:
    change = (current - previous) / |previous| * 100
    previous == 0 -> 100 if current > 0 else 0
    Thresholds are strict: exactly 20% does not fire a 20% rule.

Anomaly detection uses the population standard deviation. Three or more
outliers mean the baseline shifted rather than a single day being abnormal,
so the rule does not fire.

Each rule runs in its own failure boundary: an exception is logged and the
remaining rules still run. Results are sorted critical -> high -> medium ->
low, ties kept in catalog order.

Dependencies:
    - numpy: mean / standard deviation / finite checks for anomaly detection

Usage:
    params = RuleCheckParams(current=agg, previous=prev_agg, daily_data=rows)
    insights = run_insight_rules(params)
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, Field

from dashforge.models.enums import PRIORITY_RANK, Confidence, InsightType, Priority, Unit
from dashforge.models.schemas import CalculationTrace, DateRange, InsightTrace, RuleResult
from dashforge.services.aggregation import FUNNEL_STAGES, is_number, lookup_metric

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

class InsightRulesConfig(BaseModel):
    """
    Thresholds of the insight rules (percent values unless noted).
    """
    min_variation_percent: float = 15.0
    min_sample_days: int = 3
    cpl_warning_threshold: float = 20.0
    cpl_decrease_threshold: float = 15.0
    cac_warning_threshold: float = 25.0
    leads_drop_threshold: float = 20.0
    leads_growth_threshold: float = 20.0
    conversion_drop_threshold: float = 15.0
    bottleneck_threshold: float = 50.0
    # Standard deviations from the mean
    anomaly_std_dev_multiplier: float = 2.0
    # Outlier counts above this indicate a shifted baseline
    anomaly_max_outliers: int = 2
    anomaly_min_observations: int = 7
    disabled_rules: List[str] = Field(default_factory=list)


DEFAULT_CONFIG = InsightRulesConfig()

# Days of data from which a finding is reported with high confidence
HIGH_CONFIDENCE_DAYS: int = 7
HIGH_CONFIDENCE_DAYS_EXTENDED: int = 14

ANOMALY_METRICS: Tuple[str, ...] = (
    'spend',
    'cost_total',
    'leads',
    'leads_new',
    'leads_total',
    'sales',
    'sales_total',
)


@dataclass
class RuleCheckParams:
    """
    Inputs of one engine run.

    Attributes:
        current: Current period aggregates.
        previous: Previous period aggregates (None disables comparison rules).
        daily_data: Current period daily rows.
        previous_daily_data: Previous period daily rows.
        date_range: Current reporting window.
    """
    current: Dict[str, float]
    previous: Optional[Dict[str, float]] = None
    daily_data: List[Dict[str, Any]] = field(default_factory=list)
    previous_daily_data: Optional[List[Dict[str, Any]]] = None
    date_range: Optional[DateRange] = None


# =============================================================================
# Helpers
# =============================================================================

def safe_percent_change(current: float, previous: float) -> float:
    """
    Percent change from `previous` to `current`.

    Example:
        >>> safe_percent_change(121, 100)
        21.0
        >>> safe_percent_change(5, 0)
        100
        >>> safe_percent_change(0, 0)
        0
    """
    if not math.isfinite(current) or not math.isfinite(previous):
        return 0
    if previous == 0:
        return 100 if current > 0 else 0
    return (current - previous) * 100 / abs(previous)


def format_currency(value: float) -> str:
    return f"{value:,.2f}"


def format_percent(value: float) -> str:
    return f"{value:.1f}%"


def _confidence(rows: int, threshold: int = HIGH_CONFIDENCE_DAYS) -> Confidence:
    return Confidence.HIGH if rows >= threshold else Confidence.MEDIUM


def _finite(value: Optional[float]) -> bool:
    return value is not None and is_number(value) and math.isfinite(value)


# =============================================================================
# Rule Interface
# =============================================================================

class InsightRule(ABC):
    """
    A single declarative rule.

    Attributes:
        id: Stable rule identifier (e.g. "cpl_increase").
        name: Human-readable name.
        category: Finding type the rule produces.
        threshold: Default threshold, for display.
        min_sample_size: Minimum daily rows for the rule to run.
        enabled: Disabled rules are skipped.
    """
    id: str = ''
    name: str = ''
    category: InsightType = InsightType.PROBLEM
    threshold: float = 0.0
    min_sample_size: int = 0
    enabled: bool = True

    @abstractmethod
    def check(self, params: RuleCheckParams, config: InsightRulesConfig) -> Optional[RuleResult]:
        """Return a finding, or None when the rule does not fire."""


class PercentChangeRule(InsightRule):
    """
    Fires when a metric moves beyond a threshold between two periods.

    Args:
        rule_id: Rule identifier.
        name: Human-readable name.
        category: Finding type.
        metric: Canonical metric (resolved through aliases).
        direction: "increase" (change > t) or "decrease" (change < -t).
        threshold_attr: InsightRulesConfig attribute holding t.
        tiers: (bound, priority) pairs checked in order against |change|.
        default_priority: Priority when no tier bound is exceeded.
        label: Metric label used in titles.
        formula: Formula shown in the calculation trace.
        unit: Trace unit; currency traces report the current value, percent
            traces report the change.
        context_metrics: Extra current-period metrics added to the trace.
        suggested_action: Recommended next step.
    """

    def __init__(
        self,
        rule_id: str,
        name: str,
        category: InsightType,
        metric: str,
        direction: str,
        threshold_attr: str,
        tiers: Sequence[Tuple[float, Priority]],
        default_priority: Priority,
        label: str,
        formula: str,
        unit: Unit,
        suggested_action: str,
        context_metrics: Sequence[str] = (),
        min_sample_size: int = 3,
    ) -> None:
        self.id = rule_id
        self.name = name
        self.category = category
        self.metric = metric
        self.direction = direction
        self.threshold_attr = threshold_attr
        self.threshold = getattr(DEFAULT_CONFIG, threshold_attr)
        self.tiers = list(tiers)
        self.default_priority = default_priority
        self.label = label
        self.formula = formula
        self.unit = unit
        self.suggested_action = suggested_action
        self.context_metrics = tuple(context_metrics)
        self.min_sample_size = min_sample_size

    def priority_for(self, change: float) -> Priority:
        magnitude = abs(change)
        for bound, priority in self.tiers:
            if magnitude > bound:
                return priority
        return self.default_priority

    def check(self, params: RuleCheckParams, config: InsightRulesConfig) -> Optional[RuleResult]:
        if params.previous is None:
            return None
        current = lookup_metric(params.current, self.metric)
        previous = lookup_metric(params.previous, self.metric)
        if not _finite(current) or not _finite(previous):
            return None

        change = safe_percent_change(current, previous)
        threshold = getattr(config, self.threshold_attr)
        fired = change > threshold if self.direction == 'increase' else change < -threshold
        if not fired:
            return None

        inputs: Dict[str, float] = {}
        for name in self.context_metrics:
            value = lookup_metric(params.current, name)
            inputs[name] = float(value) if _finite(value) else 0.0
        inputs[f"previous_{self.metric}"] = float(previous)
        inputs[f"current_{self.metric}"] = float(current)

        verb = "increased" if change > 0 else "decreased"
        if self.unit == Unit.CURRENCY:
            output = float(current)
            description = (
                f"{self.label} went from {format_currency(previous)} to {format_currency(current)}."
            )
        else:
            output = float(change)
            description = (
                f"{self.label} went from {previous:,.0f} to {current:,.0f} "
                f"({format_percent(change)})."
            )

        return RuleResult(
            ruleId=self.id,
            type=self.category,
            priority=self.priority_for(change),
            title=f"{self.label} {verb} {format_percent(abs(change))}",
            description=description,
            calculation=CalculationTrace(
                formula=self.formula,
                inputs=inputs,
                output=output,
                unit=self.unit,
            ),
            metricKey=self.metric,
            currentValue=float(current),
            previousValue=float(previous),
            changePercent=float(change),
            suggestedAction=self.suggested_action,
            confidence=_confidence(len(params.daily_data)),
        )


class FunnelBottleneckRule(InsightRule):
    """
    Flags the first funnel stage whose conversion rate is below the threshold.

    Rates of at most 1 are fractions and are scaled to percent. A rate of
    exactly 0 is ignored (no samples at that stage).
    """
    id = 'funnel_bottleneck'
    name = 'Funnel bottleneck'
    category = InsightType.BOTTLENECK
    threshold = 50.0
    min_sample_size = 5

    def _stage_rate(self, current: Dict[str, float], from_stage: str, to_stage: str, rate: str) -> Optional[float]:
        value = current.get(rate)
        if _finite(value):
            return float(value)
        numerator = lookup_metric(current, to_stage)
        denominator = lookup_metric(current, from_stage)
        if _finite(numerator) and _finite(denominator) and denominator > 0:
            return numerator / denominator
        return None

    def check(self, params: RuleCheckParams, config: InsightRulesConfig) -> Optional[RuleResult]:
        for from_stage, to_stage, rate in FUNNEL_STAGES:
            value = self._stage_rate(params.current, from_stage, to_stage, rate)
            if value is None:
                continue
            rate_percent = value * 100 if value <= 1 else value
            if not 0 < rate_percent < config.bottleneck_threshold:
                continue

            dropoff = 100 - rate_percent
            from_value = lookup_metric(params.current, from_stage)
            to_value = lookup_metric(params.current, to_stage)
            return RuleResult(
                ruleId=self.id,
                type=self.category,
                priority=Priority.CRITICAL if dropoff > 70 else Priority.HIGH,
                title=f"Bottleneck: {format_percent(dropoff)} lost at {to_stage}",
                description=(
                    f"Conversion from {from_stage} to {to_stage} is only "
                    f"{format_percent(rate_percent)}."
                ),
                calculation=CalculationTrace(
                    formula=f"rate = {to_stage} / {from_stage} * 100",
                    inputs={
                        from_stage: float(from_value) if _finite(from_value) else 0.0,
                        to_stage: float(to_value) if _finite(to_value) else 0.0,
                    },
                    output=rate_percent,
                    unit=Unit.PERCENT,
                ),
                metricKey=to_stage,
                currentValue=rate_percent,
                suggestedAction=(
                    f"Investigate why {format_percent(dropoff)} do not advance "
                    f"from {from_stage} to {to_stage}."
                ),
                confidence=_confidence(len(params.daily_data), HIGH_CONFIDENCE_DAYS_EXTENDED),
            )
        return None


class DailyAnomalyRule(InsightRule):
    """
    Flags a day whose value lies more than k standard deviations from the
    period mean, for the first candidate metric where 1 to
    `anomaly_max_outliers` such days exist.
    """
    id = 'daily_anomaly'
    name = 'Daily anomaly'
    category = InsightType.ANOMALY
    threshold = 2.0
    min_sample_size = 7

    def __init__(self, metrics: Sequence[str] = ANOMALY_METRICS) -> None:
        self.metrics = tuple(metrics)

    @staticmethod
    def series(rows: List[Dict[str, Any]], metric: str) -> np.ndarray:
        values = [row.get(metric) for row in rows]
        return np.array([v for v in values if _finite(v)], dtype=float)

    def check(self, params: RuleCheckParams, config: InsightRulesConfig) -> Optional[RuleResult]:
        rows = params.daily_data
        for metric in self.metrics:
            values = self.series(rows, metric)
            if len(values) < config.anomaly_min_observations:
                continue

            avg = float(np.mean(values))
            sd = float(np.std(values))
            if sd == 0:
                continue

            outliers = values[np.abs(values - avg) > config.anomaly_std_dev_multiplier * sd]
            if not 0 < len(outliers) <= config.anomaly_max_outliers:
                continue

            value = float(outliers[0])
            z = (value - avg) / sd
            return RuleResult(
                ruleId=self.id,
                type=self.category,
                priority=Priority.MEDIUM,
                title=f"Anomaly detected in {metric}",
                description=(
                    f"Value {value:,.2f} is {abs(z):.1f} standard deviations "
                    f"from the mean."
                ),
                calculation=CalculationTrace(
                    formula="z = (value - mean) / standard_deviation",
                    inputs={"value": value, "mean": avg, "standard_deviation": sd},
                    output=z,
                    unit=Unit.COUNT,
                ),
                metricKey=metric,
                currentValue=value,
                suggestedAction="Check for a data error or an exceptional event on this day.",
                confidence=_confidence(len(rows), HIGH_CONFIDENCE_DAYS_EXTENDED),
            )
        return None


# =============================================================================
# Catalog
# =============================================================================

INSIGHT_RULES: List[InsightRule] = [
    PercentChangeRule(
        rule_id='cpl_increase',
        name='CPL increase',
        category=InsightType.PROBLEM,
        metric='cpl',
        direction='increase',
        threshold_attr='cpl_warning_threshold',
        tiers=[(50, Priority.CRITICAL), (35, Priority.HIGH)],
        default_priority=Priority.MEDIUM,
        label='CPL',
        formula='cpl = spend / leads',
        unit=Unit.CURRENCY,
        context_metrics=('spend', 'leads'),
        suggested_action='Review the worst performing ads and reallocate budget to the most efficient ones.',
    ),
    PercentChangeRule(
        rule_id='cpl_decrease',
        name='CPL decrease',
        category=InsightType.OPPORTUNITY,
        metric='cpl',
        direction='decrease',
        threshold_attr='cpl_decrease_threshold',
        tiers=[(30, Priority.HIGH)],
        default_priority=Priority.MEDIUM,
        label='CPL',
        formula='cpl = spend / leads',
        unit=Unit.CURRENCY,
        context_metrics=('spend', 'leads'),
        suggested_action='Identify what changed and consider scaling that strategy.',
    ),
    PercentChangeRule(
        rule_id='cac_increase',
        name='CAC increase',
        category=InsightType.PROBLEM,
        metric='cac',
        direction='increase',
        threshold_attr='cac_warning_threshold',
        tiers=[(50, Priority.CRITICAL)],
        default_priority=Priority.HIGH,
        label='CAC',
        formula='cac = spend / sales',
        unit=Unit.CURRENCY,
        context_metrics=('spend', 'sales'),
        suggested_action='Analyze lead-to-sale conversion and look for funnel bottlenecks.',
    ),
    PercentChangeRule(
        rule_id='leads_drop',
        name='Lead volume drop',
        category=InsightType.PROBLEM,
        metric='leads',
        direction='decrease',
        threshold_attr='leads_drop_threshold',
        tiers=[(40, Priority.CRITICAL)],
        default_priority=Priority.HIGH,
        label='Leads',
        formula='change = (current - previous) / |previous| * 100',
        unit=Unit.PERCENT,
        suggested_action='Check for campaign or budget changes, or a technical problem with lead forms.',
    ),
    PercentChangeRule(
        rule_id='leads_growth',
        name='Lead volume growth',
        category=InsightType.OPPORTUNITY,
        metric='leads',
        direction='increase',
        threshold_attr='leads_growth_threshold',
        tiers=[(50, Priority.HIGH)],
        default_priority=Priority.MEDIUM,
        label='Leads',
        formula='change = (current - previous) / |previous| * 100',
        unit=Unit.PERCENT,
        suggested_action='Identify the source of the growth and consider increasing investment.',
    ),
    FunnelBottleneckRule(),
    DailyAnomalyRule(),
]


# =============================================================================
# Engine
# =============================================================================

def run_insight_rules(
    params: RuleCheckParams,
    config: Optional[InsightRulesConfig] = None,
    rules: Optional[Sequence[InsightRule]] = None,
) -> List[RuleResult]:
    """
    Evaluate the rule catalog.

    Args:
        params: Aggregates and daily rows.
        config: Thresholds; defaults when None.
        rules: Rule catalog; INSIGHT_RULES when None.

    Returns:
        Findings sorted by priority (critical first), ties in catalog order.
    """
    cfg = config or DEFAULT_CONFIG
    catalog = INSIGHT_RULES if rules is None else rules
    disabled = set(cfg.disabled_rules)
    sample_size = len(params.daily_data)
    results: List[RuleResult] = []

    for rule in catalog:
        if not rule.enabled or rule.id in disabled:
            continue
        if sample_size < rule.min_sample_size:
            logger.debug(f"Skipping rule {rule.id}: {sample_size} rows < {rule.min_sample_size}")
            continue
        try:
            result = rule.check(params, cfg)
        except Exception as e:
            logger.warning(f"Rule {rule.id} failed: {e}", exc_info=True)
            continue
        if result is not None:
            results.append(result)

    # sorted() is stable, so ties keep catalog order
    return sorted(results, key=lambda r: PRIORITY_RANK[r.priority])


def rule_result_to_trace(result: RuleResult, date_range: DateRange, source: str) -> InsightTrace:
    """Flatten a finding into an audit trace entry."""
    return InsightTrace(
        label=result.title,
        formula=result.calculation.formula,
        inputs=result.calculation.inputs,
        output=result.calculation.output,
        unit=result.calculation.unit,
        source=source,
        dateRange=date_range,
    )
