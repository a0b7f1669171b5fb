"""
Path policy and guardrails for dashboard patches.

Decides, for every patch operation, whether its target path may be edited and
whether the edit respects the dashboard guardrails. All functions are pure:
they depend only on (path, current document, configuration).

Rules:
- Block-list always wins: a path equal to or nested under a blocked prefix is
  PATCH_PATH_FORBIDDEN, even if an allow-list prefix also matches.
- A path outside every allow-list prefix is PATCH_PATH_NOT_ALLOWED. The
  document root is always allowed.
- Prefix matching is segment-wise on parsed pointers.
- Adding to a bounded collection (KPIs, charts, filters, tabs, funnel stages)
  whose current length already reached its ceiling is GUARDRAIL_EXCEEDED;
  setting a whole collection to an over-long list is GUARDRAIL_EXCEEDED too.
- Removing, overwriting or moving away a protected tab is GUARDRAIL_BLOCKED,
  as is removing an ancestor container that holds one. Tab creation/removal
  can be disabled altogether (GUARDRAIL_BLOCKED).

Tabs live at /tabs or /ui/tabs and may be plain strings or objects carrying
a `name` or `label`. Funnel stages live at /funnel/stages or /funnel/steps.

Usage:
    config = PathPolicyConfig.from_settings(get_settings())
    issues = check_patch(operations, document, config)
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dashforge.core.config import (
    DEFAULT_ALLOWED_PATHS,
    DEFAULT_BLOCKED_PATHS,
    Settings,
)
from dashforge.models.enums import ErrorCode, PatchOpType
from dashforge.models.schemas import PatchIssue, PatchOperation
from dashforge.services.json_pointer import InvalidPointerError, JsonPointer, resolve

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

TAB_COLLECTIONS: Tuple[Tuple[str, ...], ...] = (('tabs',), ('ui', 'tabs'))

# collection path -> (config attribute holding the ceiling, label used in messages)
BOUNDED_COLLECTIONS: Dict[Tuple[str, ...], Tuple[str, str]] = {
    ('kpis',): ('max_kpis', 'KPIs'),
    ('charts',): ('max_charts', 'charts'),
    ('filters',): ('max_filters', 'filters'),
    ('tabs',): ('max_tabs', 'tabs'),
    ('ui', 'tabs'): ('max_tabs', 'tabs'),
    ('funnel', 'stages'): ('max_funnel_steps', 'funnel steps'),
    ('funnel', 'steps'): ('max_funnel_steps', 'funnel steps'),
}


@dataclass
class PathPolicyConfig:
    """
    Allow/block lists and guardrail limits.

    Defaults match the application settings defaults.
    """
    allowed_paths: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_PATHS))
    blocked_paths: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_PATHS))
    max_kpis: int = 8
    max_charts: int = 4
    max_funnel_steps: int = 7
    max_filters: int = 10
    max_tabs: int = 6
    allow_create_new_tabs: bool = True
    allow_remove_tabs: bool = True
    protected_tabs: List[str] = field(default_factory=lambda: ['Details'])

    @classmethod
    def from_settings(cls, settings: Settings) -> 'PathPolicyConfig':
        return cls(
            allowed_paths=list(settings.allowed_paths),
            blocked_paths=list(settings.blocked_paths),
            max_kpis=settings.max_kpis,
            max_charts=settings.max_charts,
            max_funnel_steps=settings.max_funnel_steps,
            max_filters=settings.max_filters,
            max_tabs=settings.max_tabs,
            allow_create_new_tabs=settings.allow_create_new_tabs,
            allow_remove_tabs=settings.allow_remove_tabs,
            protected_tabs=list(settings.protected_tabs),
        )

    def limit_for(self, collection: Tuple[str, ...]) -> Tuple[int, str]:
        attr, label = BOUNDED_COLLECTIONS[collection]
        return getattr(self, attr), label


@dataclass(frozen=True)
class PathDecision:
    """Result of classifying a single path."""
    allowed: bool
    code: Optional[ErrorCode] = None
    reason: Optional[str] = None


# =============================================================================
# Helpers
# =============================================================================

def _parse_prefixes(prefixes: Sequence[str]) -> List[JsonPointer]:
    parsed = []
    for prefix in prefixes:
        try:
            parsed.append(JsonPointer.parse(prefix))
        except InvalidPointerError:
            logger.warning(f"Ignoring invalid policy prefix {prefix!r}")
    return parsed


def tab_name(tab: Any) -> Optional[str]:
    """Display name of a tab entry (string, or object with name/label)."""
    if isinstance(tab, str):
        return tab
    if isinstance(tab, dict):
        name = tab.get('name', tab.get('label'))
        return name if isinstance(name, str) else None
    return None


def tab_names(document: Any) -> List[str]:
    """Names of the tabs of a document, from /ui/tabs or else /tabs."""
    for collection in (('ui', 'tabs'), ('tabs',)):
        found, tabs = resolve(document, JsonPointer.from_keys(collection))
        if found and isinstance(tabs, list):
            return [name for name in (tab_name(t) for t in tabs) if name is not None]
    return []


def _collection_tabs(document: Any, collection: Tuple[str, ...]) -> List[Any]:
    found, tabs = resolve(document, JsonPointer.from_keys(collection))
    return tabs if found and isinstance(tabs, list) else []


def _collection_length(document: Any, collection: Tuple[str, ...]) -> int:
    found, value = resolve(document, JsonPointer.from_keys(collection))
    return len(value) if found and isinstance(value, list) else 0


def _blocked(message: str, path: str, index: Optional[int]) -> PatchIssue:
    return PatchIssue(
        code=ErrorCode.GUARDRAIL_BLOCKED,
        message=message,
        path=path,
        operationIndex=index,
    )


# =============================================================================
# Path Classification
# =============================================================================

def classify(path: str, config: PathPolicyConfig) -> PathDecision:
    """
    Classify a path against the block-list and allow-list.

    Args:
        path: JSON pointer string.
        config: Policy configuration.

    Returns:
        PathDecision: allowed, or the rejection code and reason.

    Example:
        >>> classify('/tenant_id', PathPolicyConfig()).code
        <ErrorCode.PATCH_PATH_FORBIDDEN: 'PATCH_PATH_FORBIDDEN'>
    """
    try:
        pointer = JsonPointer.parse(path)
    except InvalidPointerError as e:
        return PathDecision(False, ErrorCode.VALIDATION_ERROR, str(e))

    for prefix in _parse_prefixes(config.blocked_paths):
        if pointer.startswith(prefix):
            return PathDecision(
                False,
                ErrorCode.PATCH_PATH_FORBIDDEN,
                f"Path {path} is forbidden (blocked prefix {prefix})",
            )

    if pointer.is_root:
        return PathDecision(True)

    for prefix in _parse_prefixes(config.allowed_paths):
        if pointer.startswith(prefix):
            return PathDecision(True)

    return PathDecision(
        False,
        ErrorCode.PATCH_PATH_NOT_ALLOWED,
        f"Path {path} is outside the editable sections",
    )


# =============================================================================
# Guardrails
# =============================================================================

def check_add_guardrail(
    path: str,
    document: Any,
    config: PathPolicyConfig,
    value: Any = None,
    index: Optional[int] = None,
) -> Optional[PatchIssue]:
    """
    Check an insertion (or whole-collection write) against collection ceilings.

    Args:
        path: Destination pointer of an add/copy/move, or target of a replace.
        document: Current document (before the operation).
        config: Policy configuration.
        value: Value being written; used when the path is a whole collection.
        index: Operation index for the returned issue.

    Returns:
        PatchIssue when the guardrail trips, else None.
    """
    try:
        pointer = JsonPointer.parse(path)
    except InvalidPointerError:
        return None
    keys = pointer.keys()

    # Element insertion into a bounded collection
    if len(keys) >= 1 and keys[:-1] in BOUNDED_COLLECTIONS:
        collection = keys[:-1]
        if collection in TAB_COLLECTIONS and not config.allow_create_new_tabs:
            return _blocked("Creating new tabs is disabled", path, index)
        limit, label = config.limit_for(collection)
        if _collection_length(document, collection) >= limit:
            return PatchIssue(
                code=ErrorCode.GUARDRAIL_EXCEEDED,
                message=f"GUARDRAIL_EXCEEDED: max {limit} {label}",
                path=path,
                operationIndex=index,
                details={"limit": limit},
            )
        return None

    # Whole-collection write
    if keys in BOUNDED_COLLECTIONS and isinstance(value, list):
        limit, label = config.limit_for(keys)
        if len(value) > limit:
            return PatchIssue(
                code=ErrorCode.GUARDRAIL_EXCEEDED,
                message=f"GUARDRAIL_EXCEEDED: max {limit} {label}",
                path=path,
                operationIndex=index,
                details={"limit": limit, "requested": len(value)},
            )
    return None


def check_remove_guardrail(
    path: str,
    document: Any,
    config: PathPolicyConfig,
    index: Optional[int] = None,
) -> Optional[PatchIssue]:
    """
    Check a removal (remove, or the `from` side of a move) against tab rules.

    A removal is blocked when it targets a protected tab, when it removes an
    ancestor container holding a protected tab, or when it removes any tab
    while tab removal is disabled.
    """
    try:
        pointer = JsonPointer.parse(path)
    except InvalidPointerError:
        return None
    keys = pointer.keys()
    protected = set(config.protected_tabs)

    for collection in TAB_COLLECTIONS:
        tabs = _collection_tabs(document, collection)
        depth = len(collection)

        if len(keys) == depth + 1 and keys[:depth] == collection:
            found, tab = resolve(document, pointer)
            if not found:
                continue
            if not config.allow_remove_tabs:
                return _blocked("Removing tabs is disabled", path, index)
            name = tab_name(tab)
            if name in protected:
                return _blocked(f"Tab '{name}' is protected and cannot be removed", path, index)

        elif collection[:len(keys)] == keys:
            names = {tab_name(t) for t in tabs}
            hit = sorted(n for n in names & protected if n is not None)
            if hit:
                return _blocked(
                    f"Removing {path or '/'} would remove protected tab '{hit[0]}'",
                    path,
                    index,
                )
            if tabs and not config.allow_remove_tabs:
                return _blocked("Removing tabs is disabled", path, index)
    return None


def check_overwrite_guardrail(
    path: str,
    document: Any,
    value: Any,
    config: PathPolicyConfig,
    index: Optional[int] = None,
    inserting: bool = False,
) -> Optional[PatchIssue]:
    """
    Check a replace (or an add that overwrites an existing member) so that it
    does not drop or rename a protected tab.

    With `inserting` set, a write to a tab element position is an insertion
    (add into an array) and never drops the tab currently at that index.
    """
    try:
        pointer = JsonPointer.parse(path)
    except InvalidPointerError:
        return None
    keys = pointer.keys()
    protected = set(config.protected_tabs)

    for collection in TAB_COLLECTIONS:
        depth = len(collection)
        before = {tab_name(t) for t in _collection_tabs(document, collection)} & protected
        if not before:
            continue

        if collection[:len(keys)] == keys:
            # Path is the collection itself or one of its ancestors
            relative = JsonPointer.from_keys(collection[len(keys):])
            found, new_tabs = resolve(value, relative)
            after = {tab_name(t) for t in new_tabs} if found and isinstance(new_tabs, list) else set()
            lost = sorted(n for n in before - after if n is not None)
        elif keys[:depth] == collection and len(keys) > depth:
            found, tab = resolve(document, JsonPointer.from_keys(keys[:depth + 1]))
            old_name = tab_name(tab) if found else None
            if old_name not in protected:
                continue
            if len(keys) == depth + 1:
                if inserting:
                    continue
                lost = [old_name] if tab_name(value) != old_name else []
            else:
                lost = [old_name] if keys[depth + 1] in ('name', 'label') and value != old_name else []
        else:
            continue

        if lost:
            return _blocked(f"Tab '{lost[0]}' is protected and cannot be removed", path, index)
    return None


def check_document_limits(
    before: Any,
    after: Any,
    config: PathPolicyConfig,
) -> List[PatchIssue]:
    """
    Compare a document before and after a whole patch.

    Catches multi-operation patches that individually pass the per-operation
    guardrails but together grow a collection past its ceiling or drop a
    protected tab, and root-level writes that alter a blocked section.
    """
    issues: List[PatchIssue] = []
    for prefix in _parse_prefixes(config.blocked_paths):
        if resolve(before, prefix) != resolve(after, prefix):
            issues.append(PatchIssue(
                code=ErrorCode.PATCH_PATH_FORBIDDEN,
                message=f"Patch modifies forbidden section {prefix}",
                path=str(prefix),
            ))

    for collection in BOUNDED_COLLECTIONS:
        limit, label = config.limit_for(collection)
        old_len = _collection_length(before, collection)
        new_len = _collection_length(after, collection)
        if new_len > limit and new_len > old_len:
            issues.append(PatchIssue(
                code=ErrorCode.GUARDRAIL_EXCEEDED,
                message=f"GUARDRAIL_EXCEEDED: max {limit} {label}",
                path=str(JsonPointer.from_keys(collection)),
                details={"limit": limit, "resulting": new_len},
            ))

    lost = sorted(set(tab_names(before)) & set(config.protected_tabs) - set(tab_names(after)))
    for name in lost:
        issues.append(_blocked(f"Tab '{name}' is protected and cannot be removed", None, None))
    return issues


# =============================================================================
# Operation / Patch Checks
# =============================================================================

def check_operation(
    operation: PatchOperation,
    document: Any,
    config: PathPolicyConfig,
    index: Optional[int] = None,
) -> List[PatchIssue]:
    """
    Run every policy and guardrail check for one operation.

    Args:
        operation: The patch operation.
        document: Current document the patch targets.
        config: Policy configuration.
        index: Position of the operation in its patch.

    Returns:
        All issues found (empty when the operation passes).
    """
    issues: List[PatchIssue] = []
    op = operation.op

    paths = [operation.path]
    if op in (PatchOpType.MOVE, PatchOpType.COPY):
        if operation.from_ is None:
            issues.append(PatchIssue(
                code=ErrorCode.VALIDATION_ERROR,
                message=f"'{op.value}' requires a 'from' path",
                path=operation.path,
                operationIndex=index,
            ))
        else:
            paths.append(operation.from_)

    for path in paths:
        decision = classify(path, config)
        if not decision.allowed:
            issues.append(PatchIssue(
                code=decision.code,
                message=decision.reason or decision.code.value,
                path=path,
                operationIndex=index,
            ))
    if issues:
        return issues

    guard: List[Optional[PatchIssue]] = []
    if op == PatchOpType.ADD:
        guard.append(check_add_guardrail(operation.path, document, config, operation.value, index))
        guard.append(check_overwrite_guardrail(operation.path, document, operation.value, config, index, inserting=True))
    elif op == PatchOpType.REPLACE:
        # Replacing an element does not grow its collection
        if JsonPointer.parse(operation.path).keys() in BOUNDED_COLLECTIONS:
            guard.append(check_add_guardrail(operation.path, document, config, operation.value, index))
        guard.append(check_overwrite_guardrail(operation.path, document, operation.value, config, index))
    elif op == PatchOpType.REMOVE:
        guard.append(check_remove_guardrail(operation.path, document, config, index))
    elif op == PatchOpType.MOVE:
        source_parent = JsonPointer.parse(operation.from_).parent
        target_parent = JsonPointer.parse(operation.path).parent
        # Reordering within one collection neither removes nor adds an entry
        if source_parent != target_parent:
            guard.append(check_remove_guardrail(operation.from_, document, config, index))
            _, moved = resolve(document, JsonPointer.parse(operation.from_))
            guard.append(check_add_guardrail(operation.path, document, config, moved, index))
    elif op == PatchOpType.COPY:
        _, copied = resolve(document, JsonPointer.parse(operation.from_))
        guard.append(check_add_guardrail(operation.path, document, config, copied, index))

    issues.extend(issue for issue in guard if issue is not None)
    return issues


def check_patch(
    operations: Sequence[PatchOperation],
    document: Any,
    config: PathPolicyConfig,
    advance: Optional[Callable[[Any, PatchOperation], Any]] = None,
) -> List[PatchIssue]:
    """
    Check every operation of a patch, collecting all issues without
    short-circuiting.

    Args:
        operations: Patch operations in order.
        document: Document the patch targets. Never mutated.
        config: Policy configuration.
        advance: Applies one operation to a scratch document and returns the
            new root. When given, each operation is checked against the
            document as the preceding operations left it; otherwise every
            operation is checked against `document`.
    """
    issues: List[PatchIssue] = []
    working = copy.deepcopy(document) if advance is not None else document
    for i, operation in enumerate(operations):
        issues.extend(check_operation(operation, working, config, i))
        if advance is not None:
            working = advance(working, operation)
    return issues
