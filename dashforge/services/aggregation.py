"""
Aggregation of daily metric rows into flat period metrics.

Turns the raw rows of a reporting period into the `name -> float` map consumed
by the data integrity validator and the insight rules:

- Every numeric column (other than rate columns) is summed.
- Canonical totals are resolved from known aliases (spend, leads, sales,
  entries, meetings_scheduled, meetings_held).
- Derived ratios are added when their denominator is non-zero:
    cpl = spend / leads
    cac = spend / sales
    <stage>_rate = to_stage / from_stage * 100 for each funnel stage pair

Rate columns are not summed because a sum of daily rates is meaningless; the
period rate is re-derived from the summed counts instead.

Dependencies:
    - pandas: column-wise numeric coercion and sums
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)


# =============================================================================
# Metric Vocabulary
# =============================================================================

# canonical metric -> accepted column names, in lookup order
METRIC_ALIASES: Dict[str, Tuple[str, ...]] = {
    'spend': ('spend', 'cost_total', 'cost'),
    'leads': ('leads', 'leads_new', 'leads_total'),
    'sales': ('sales', 'sales_total'),
    'entries': ('entries',),
    'meetings_scheduled': ('meetings_scheduled',),
    'meetings_held': ('meetings_held',),
    'cpl': ('cpl', 'cost_per_lead'),
    'cac': ('cac', 'cost_per_acquisition'),
}

# (from stage, to stage, rate metric) in funnel order
FUNNEL_STAGES: List[Tuple[str, str, str]] = [
    ('leads', 'entries', 'entry_rate'),
    ('entries', 'meetings_scheduled', 'meeting_scheduled_rate'),
    ('meetings_scheduled', 'meetings_held', 'attendance_rate'),
    ('meetings_held', 'sales', 'sale_after_meeting_rate'),
]

DATE_FIELDS: Tuple[str, ...] = ('date', 'day')

RATE_FIELDS: Tuple[str, ...] = tuple(rate for _, _, rate in FUNNEL_STAGES) + (
    'conversion_rate',
    'sale_rate',
    'ctr',
)


def is_number(value: Any) -> bool:
    """True for int/float values that are not booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_rate_field(name: str) -> bool:
    return name in RATE_FIELDS or name.endswith('_rate')


def lookup_metric(metrics: Dict[str, float], name: str) -> Optional[float]:
    """
    Resolve a canonical metric through its aliases.

    Example:
        >>> lookup_metric({"cost_total": 120.0}, "spend")
        120.0
    """
    for alias in METRIC_ALIASES.get(name, (name,)):
        value = metrics.get(alias)
        if value is not None:
            return value
    return None


def numeric_columns(rows: Iterable[Dict[str, Any]]) -> List[str]:
    """
    Columns whose present (non-None) values are all numbers.

    Date columns are never numeric.
    """
    seen: Dict[str, bool] = {}
    for row in rows:
        for key, value in row.items():
            if key in DATE_FIELDS or value is None:
                continue
            seen[key] = seen.get(key, True) and is_number(value)
    return [key for key, numeric in seen.items() if numeric]


# =============================================================================
# Aggregation
# =============================================================================

def sum_columns(rows: List[Dict[str, Any]], columns: Optional[List[str]] = None) -> Dict[str, float]:
    """
    Sum numeric columns across rows.

    Non-finite values propagate (NaN in a column yields NaN) so that the
    aggregate integrity check can see them.

    Args:
        rows: Daily rows.
        columns: Columns to sum; defaults to every numeric non-rate column.

    Returns:
        Column name -> total.
    """
    if not rows:
        return {}
    if columns is None:
        columns = [c for c in numeric_columns(rows) if not is_rate_field(c)]
    if not columns:
        return {}

    df = pd.DataFrame(rows)
    totals: Dict[str, float] = {}
    for column in columns:
        if column not in df.columns:
            continue
        series = pd.to_numeric(df[column], errors='coerce')
        # None is absent data; NaN from the source is kept visible
        present = [row[column] for row in rows if row.get(column) is not None]
        if any(is_number(v) and v != v for v in present):
            totals[column] = float('nan')
        else:
            totals[column] = float(series.sum(skipna=True))
    return totals


def compute_aggregates(rows: List[Dict[str, Any]]) -> Dict[str, float]:
    """
    Compute period metrics from daily rows.

    Args:
        rows: Daily rows (dicts with a date field and numeric metrics).

    Returns:
        Totals of numeric columns plus derived cpl, cac and funnel rates.

    Example:
        >>> compute_aggregates([
        ...     {"date": "2024-06-01", "spend": 100.0, "leads": 10},
        ...     {"date": "2024-06-02", "spend": 50.0, "leads": 5},
        ... ])
        {'spend': 150.0, 'leads': 15.0, 'cpl': 10.0}
    """
    aggregates = sum_columns(rows)
    if not aggregates:
        return aggregates

    for canonical in ('spend', 'leads', 'sales', 'entries', 'meetings_scheduled', 'meetings_held'):
        if canonical not in aggregates:
            value = lookup_metric(aggregates, canonical)
            if value is not None:
                aggregates[canonical] = value

    spend = aggregates.get('spend')
    leads = aggregates.get('leads')
    sales = aggregates.get('sales')
    if spend is not None and leads:
        aggregates['cpl'] = spend / leads
    if spend is not None and sales:
        aggregates['cac'] = spend / sales

    for from_stage, to_stage, rate in FUNNEL_STAGES:
        denominator = aggregates.get(from_stage)
        numerator = aggregates.get(to_stage)
        if numerator is not None and denominator:
            aggregates[rate] = numerator / denominator * 100

    logger.debug(f"Aggregated {len(rows)} rows into {len(aggregates)} metrics")
    return aggregates
