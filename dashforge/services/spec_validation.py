"""
Structural validation of dashboard documents.

Runs on every patched preview before it can be committed.

Errors (block a commit):
- Any non-finite number (NaN, +/-Infinity) anywhere in the tree, reported
  with its dotted path.
- Malformed typed sections, found by validating the document against the
  DashboardSpec view (e.g. `kpis` not a list, a KPI without `key`, `column` or `id`).

Warnings (informational):
- Missing `version`.
- No content: no KPIs, no charts and no funnel stages.
- Missing reserved details tab.
"""

import math
from typing import Any, List, Tuple

from pydantic import ValidationError

from dashforge.models.schemas import DashboardSpec
from dashforge.services.path_policy import tab_names


def find_non_finite(value: Any, path: str = '') -> List[str]:
    """
    Return the dotted paths of every non-finite float in a JSON tree.

    Example:
        >>> find_non_finite({"kpis": [{"target": float("nan")}]})
        ['kpis.0.target']
    """
    found: List[str] = []
    if isinstance(value, bool):
        return found
    if isinstance(value, float):
        if not math.isfinite(value):
            found.append(path or '<root>')
    elif isinstance(value, dict):
        for key, item in value.items():
            found.extend(find_non_finite(item, f"{path}.{key}" if path else str(key)))
    elif isinstance(value, list):
        for i, item in enumerate(value):
            found.extend(find_non_finite(item, f"{path}.{i}" if path else str(i)))
    return found


def _format_pydantic_error(error: dict) -> str:
    location = '.'.join(str(part) for part in error.get('loc', ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get('msg'))


def _count(document: Any, *keys: str) -> int:
    current = document
    for key in keys:
        if not isinstance(current, dict):
            return 0
        current = current.get(key)
    return len(current) if isinstance(current, list) else 0


def validate_spec_structure(
    document: Any,
    details_tab: str = 'Details',
) -> Tuple[List[str], List[str]]:
    """
    Validate a dashboard document.

    Args:
        document: Dashboard document (JSON tree).
        details_tab: Name of the reserved details tab.

    Returns:
        (errors, warnings): Human-readable messages. The document is valid when
        `errors` is empty.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(document, dict):
        return [f"Dashboard document must be an object, got {type(document).__name__}"], warnings

    for path in find_non_finite(document):
        errors.append(f"Invalid number (NaN/Infinity) at {path}")

    try:
        DashboardSpec.model_validate(document)
    except ValidationError as e:
        errors.extend(_format_pydantic_error(err) for err in e.errors())

    if 'version' not in document:
        warnings.append("Dashboard has no version")

    content = (
        _count(document, 'kpis')
        + _count(document, 'charts')
        + _count(document, 'funnel', 'stages')
        + _count(document, 'funnel', 'steps')
    )
    if content == 0:
        warnings.append("Dashboard has no KPIs, charts or funnel stages")

    if details_tab not in tab_names(document):
        warnings.append(f"Dashboard has no '{details_tab}' tab")

    return errors, warnings
