"""
Atomic JSON patch interpreter for dashboard documents.

Applies an ordered list of RFC 6902 style operations (add, remove, replace,
move, copy, test) to a deep copy of a document. Application is atomic: the
first failing operation aborts the patch, the remaining operations are marked
skipped, and the returned document is the unmodified original.

Semantics:
- add: "" replaces the root; "-" appends; an array index inserts (index may
  equal the array length); an object key is set. Missing intermediate
  containers are created, as an array when the next token is an index or "-",
  otherwise as an object.
- remove: deletes a key or splices an element; a missing target is a no-op.
  Removing the root is an error.
- replace: overwrites the target; an array index must exist. Missing object
  intermediates are created as for add.
- move: reads `from`, removes it, then adds at `path`. Moving a location into
  one of its own descendants is an error.
- copy: adds a deep copy of the value at `from`.
- test: deep structural equality; a mismatch aborts the patch. Booleans never
  compare equal to numbers.

An optional PathPolicyConfig runs the path policy over every operation before
anything is applied, each operation seeing the document as the operations
before it leave it, and the patched document is checked against the
collection ceilings and protected tabs before it is returned.

Usage:
    result = apply_patch(document, operations, policy=PathPolicyConfig())
    if result.applied:
        new_document = result.document
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from dashforge.models.enums import ErrorCode, OperationStatus, PatchOpType
from dashforge.models.schemas import PatchIssue, PatchOperation
from dashforge.services.json_pointer import (
    InvalidPointerError,
    JsonPointer,
    Segment,
    resolve,
)
from dashforge.services.path_policy import (
    PathPolicyConfig,
    check_document_limits,
    check_patch,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Result Types
# =============================================================================

@dataclass
class OperationOutcome:
    """Status of one operation within a patch."""
    index: int
    op: str
    path: str
    status: OperationStatus
    error: Optional[str] = None


@dataclass
class PatchResult:
    """
    Result of applying a patch.

    Attributes:
        document: Patched document, or the original when not applied.
        applied: True when every operation succeeded.
        outcomes: Per-operation status, in patch order.
        errors: Issues that caused the rejection.
    """
    document: Any
    applied: bool
    outcomes: List[OperationOutcome] = field(default_factory=list)
    errors: List[PatchIssue] = field(default_factory=list)


class PatchApplyError(Exception):
    """Structural failure of a single operation."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.PATCH_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


# =============================================================================
# Equality
# =============================================================================

def json_equal(left: Any, right: Any) -> bool:
    """
    Deep structural equality over JSON values.

    Unlike ==, booleans are never equal to numbers (True != 1).
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, dict) and isinstance(right, dict):
        if left.keys() != right.keys():
            return False
        return all(json_equal(left[k], right[k]) for k in left)
    if isinstance(left, list) and isinstance(right, list):
        if len(left) != len(right):
            return False
        return all(json_equal(a, b) for a, b in zip(left, right))
    if type(left) is not type(right):
        return False
    return left == right


# =============================================================================
# Primitive Mutations
# =============================================================================

def _new_container(next_segment: Segment) -> Union[Dict[str, Any], List[Any]]:
    if next_segment.is_append or next_segment.index is not None:
        return []
    return {}


def _walk_to_parent(document: Any, pointer: JsonPointer, create: bool) -> Any:
    """
    Return the container holding the last segment of `pointer`.

    With `create`, missing object members along the way are created.
    """
    current = document
    segments = pointer.segments
    for position, segment in enumerate(segments[:-1]):
        next_segment = segments[position + 1]
        if isinstance(current, dict):
            if segment.key not in current or current[segment.key] is None:
                if not create:
                    raise PatchApplyError(f"Path {pointer} does not exist")
                current[segment.key] = _new_container(next_segment)
            current = current[segment.key]
        elif isinstance(current, list):
            index = segment.index
            if index is None:
                raise PatchApplyError(f"Invalid array index '{segment.key}' in {pointer}")
            if index >= len(current):
                raise PatchApplyError(f"Array index {index} out of bounds in {pointer}")
            current = current[index]
        else:
            raise PatchApplyError(f"Cannot traverse into scalar value at {pointer}")
    return current


def _add(document: Any, pointer: JsonPointer, value: Any) -> Any:
    if pointer.is_root:
        return value
    parent = _walk_to_parent(document, pointer, create=True)
    last = pointer.last
    if isinstance(parent, dict):
        parent[last.key] = value
    elif isinstance(parent, list):
        if last.is_append:
            parent.append(value)
        elif last.index is None:
            raise PatchApplyError(f"Invalid array index '{last.key}' in {pointer}")
        elif last.index > len(parent):
            raise PatchApplyError(f"Array index {last.index} out of bounds in {pointer}")
        else:
            parent.insert(last.index, value)
    else:
        raise PatchApplyError(f"Cannot add into scalar value at {pointer}")
    return document


def _replace(document: Any, pointer: JsonPointer, value: Any) -> Any:
    if pointer.is_root:
        return value
    parent = _walk_to_parent(document, pointer, create=True)
    last = pointer.last
    if isinstance(parent, dict):
        parent[last.key] = value
    elif isinstance(parent, list):
        if last.index is None:
            raise PatchApplyError(f"Invalid array index '{last.key}' in {pointer}")
        if last.index >= len(parent):
            raise PatchApplyError(f"Array index {last.index} out of bounds in {pointer}")
        parent[last.index] = value
    else:
        raise PatchApplyError(f"Cannot replace inside scalar value at {pointer}")
    return document


def _remove(document: Any, pointer: JsonPointer) -> Any:
    if pointer.is_root:
        raise PatchApplyError("Cannot remove the document root")
    found, parent = resolve(document, pointer.parent)
    if not found:
        return document
    last = pointer.last
    if isinstance(parent, dict):
        parent.pop(last.key, None)
    elif isinstance(parent, list):
        index = last.index
        if index is not None and index < len(parent):
            del parent[index]
    return document


def _get(document: Any, pointer: JsonPointer, role: str) -> Any:
    found, value = resolve(document, pointer)
    if not found:
        raise PatchApplyError(f"'{role}' path {pointer} does not exist")
    return value


def _parse(path: Optional[str], role: str) -> JsonPointer:
    if path is None:
        raise PatchApplyError(f"Missing '{role}' path", ErrorCode.VALIDATION_ERROR)
    try:
        return JsonPointer.parse(path)
    except InvalidPointerError as e:
        raise PatchApplyError(str(e), ErrorCode.VALIDATION_ERROR)


def apply_operation(document: Any, operation: PatchOperation) -> Any:
    """
    Apply a single operation in place and return the (possibly new) root.

    Raises:
        PatchApplyError: On any structural failure.
    """
    target = _parse(operation.path, 'path')
    op = operation.op

    if op == PatchOpType.ADD:
        return _add(document, target, copy.deepcopy(operation.value))

    if op == PatchOpType.REMOVE:
        return _remove(document, target)

    if op == PatchOpType.REPLACE:
        return _replace(document, target, copy.deepcopy(operation.value))

    if op == PatchOpType.MOVE:
        source = _parse(operation.from_, 'from')
        value = _get(document, source, 'from')
        if source == target:
            return document
        if target.startswith(source):
            raise PatchApplyError(f"Cannot move {source} into its own descendant {target}")
        document = _remove(document, source)
        return _add(document, target, value)

    if op == PatchOpType.COPY:
        source = _parse(operation.from_, 'from')
        value = _get(document, source, 'from')
        return _add(document, target, copy.deepcopy(value))

    if op == PatchOpType.TEST:
        found, actual = resolve(document, target)
        if not found:
            raise PatchApplyError(f"Test failed: {target} does not exist")
        if not json_equal(actual, operation.value):
            raise PatchApplyError(f"Test failed: value at {target} does not match")
        return document

    raise PatchApplyError(f"Unsupported operation '{op}'", ErrorCode.VALIDATION_ERROR)


def advance_scratch(document: Any, operation: PatchOperation) -> Any:
    """
    Apply one operation to a scratch document for policy checking.

    An operation that cannot be applied leaves the document as it was; the
    patch itself reports that failure when it is applied.
    """
    try:
        return apply_operation(document, operation)
    except PatchApplyError:
        return document


# =============================================================================
# Patch Application
# =============================================================================

def _coerce(operations: Sequence[Union[PatchOperation, Dict[str, Any]]]) -> List[PatchOperation]:
    return [
        op if isinstance(op, PatchOperation) else PatchOperation.model_validate(op)
        for op in operations
    ]


def _rejected(
    document: Any,
    operations: List[PatchOperation],
    errors: List[PatchIssue],
) -> PatchResult:
    outcomes = [
        OperationOutcome(i, op.op.value, op.path, OperationStatus.SKIPPED)
        for i, op in enumerate(operations)
    ]
    return PatchResult(document=document, applied=False, outcomes=outcomes, errors=errors)


def apply_patch(
    document: Any,
    operations: Sequence[Union[PatchOperation, Dict[str, Any]]],
    policy: Optional[PathPolicyConfig] = None,
) -> PatchResult:
    """
    Apply a patch atomically to a deep copy of `document`.

    Args:
        document: Source document. Never mutated.
        operations: Patch operations (models or raw dicts).
        policy: When given, every operation is checked against the path
            policy first and the result against the collection ceilings;
            any issue rejects the whole patch.

    Returns:
        PatchResult: applied document, or the original with the errors.

    Example:
        >>> result = apply_patch({"kpis": []}, [{"op": "add", "path": "/kpis/-", "value": {"key": "cpl"}}])
        >>> result.document
        {'kpis': [{'key': 'cpl'}]}
    """
    operations = _coerce(operations)

    if policy is not None:
        policy_errors = check_patch(operations, document, policy, advance=advance_scratch)
        if policy_errors:
            logger.debug(f"Patch rejected by path policy: {len(policy_errors)} issue(s)")
            return _rejected(document, operations, policy_errors)

    working = copy.deepcopy(document)
    outcomes: List[OperationOutcome] = []

    for i, operation in enumerate(operations):
        try:
            working = apply_operation(working, operation)
        except PatchApplyError as e:
            logger.debug(f"Operation {i} ({operation.op.value} {operation.path}) failed: {e.message}")
            outcomes.append(OperationOutcome(
                i, operation.op.value, operation.path, OperationStatus.FAILED, e.message
            ))
            outcomes.extend(
                OperationOutcome(j, op.op.value, op.path, OperationStatus.SKIPPED)
                for j, op in enumerate(operations[i + 1:], start=i + 1)
            )
            error = PatchIssue(
                code=e.code,
                message=e.message,
                path=operation.path,
                operationIndex=i,
            )
            return PatchResult(document=document, applied=False, outcomes=outcomes, errors=[error])
        outcomes.append(OperationOutcome(i, operation.op.value, operation.path, OperationStatus.APPLIED))

    if policy is not None:
        limit_errors = check_document_limits(document, working, policy)
        if limit_errors:
            return _rejected(document, operations, limit_errors)

    return PatchResult(document=working, applied=True, outcomes=outcomes)
