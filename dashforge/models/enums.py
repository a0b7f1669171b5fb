"""
Enumeration definitions for the DashForge backend.

All enums inherit from both `str` and `Enum` to ensure JSON serialization compatibility
with Pydantic models, enabling automatic serialization/deserialization in API responses.

Groups:
- Patch engine: PatchOpType, OperationStatus
- Error taxonomy: ErrorCode
- Insight engine: InsightType, Priority, Confidence, Unit
- Data integrity: Severity
"""

from enum import Enum


# =============================================================================
# Patch Engine
# =============================================================================

class PatchOpType(str, Enum):
    """
    Patch operation verbs (RFC 6902 subset).

    - ADD: insert a value (append with the "-" index marker)
    - REMOVE: delete a value; no-op when the path does not exist
    - REPLACE: overwrite a value
    - MOVE: remove from `from`, then add at `path`
    - COPY: add a deep copy of the value at `from`
    - TEST: assert deep equality, aborting the patch otherwise
    """
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"
    MOVE = "move"
    COPY = "copy"
    TEST = "test"


class OperationStatus(str, Enum):
    """Per-operation outcome recorded by the patch interpreter."""
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Error Taxonomy
# =============================================================================

class ErrorCode(str, Enum):
    """
    Machine-readable error codes carried in failure envelopes.

    Patch policy:
    - PATCH_PATH_FORBIDDEN: path is on the block-list (always wins)
    - PATCH_PATH_NOT_ALLOWED: path is outside every allow-list prefix
    - GUARDRAIL_EXCEEDED: a bounded collection would exceed its ceiling
    - GUARDRAIL_BLOCKED: protected tab removal or disabled tab creation/removal
    - PATCH_ERROR: structural failure while applying an operation

    Versioning:
    - VERSION_CONFLICT: expected version does not match the stored one
    - NOT_FOUND: unknown dashboard or version

    Request / collaborator:
    - VALIDATION_ERROR, PARSE_ERROR, AUTH_FAILED, FORBIDDEN, RATE_LIMITED,
      AI_ERROR, CONFIG_ERROR, INTERNAL_ERROR
    """
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PATCH_PATH_FORBIDDEN = "PATCH_PATH_FORBIDDEN"
    PATCH_PATH_NOT_ALLOWED = "PATCH_PATH_NOT_ALLOWED"
    GUARDRAIL_EXCEEDED = "GUARDRAIL_EXCEEDED"
    GUARDRAIL_BLOCKED = "GUARDRAIL_BLOCKED"
    PATCH_ERROR = "PATCH_ERROR"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    PARSE_ERROR = "PARSE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    AUTH_FAILED = "AUTH_FAILED"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMITED = "RATE_LIMITED"
    AI_ERROR = "AI_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# Insight Engine
# =============================================================================

class InsightType(str, Enum):
    """Category of a rule finding."""
    PROBLEM = "problem"
    OPPORTUNITY = "opportunity"
    BOTTLENECK = "bottleneck"
    ANOMALY = "anomaly"


class Priority(str, Enum):
    """
    Insight priority. Results are sorted critical -> high -> medium -> low.
    """
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Sort rank per priority (lower sorts first)
PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class Confidence(str, Enum):
    """Confidence attached to a finding, driven by sample size."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Unit(str, Enum):
    """Unit of a calculation trace output."""
    CURRENCY = "currency"
    PERCENT = "percent"
    COUNT = "count"
    RATIO = "ratio"


# =============================================================================
# Data Integrity
# =============================================================================

class Severity(str, Enum):
    """
    Severity of a data integrity finding.

    A dataset is valid only when it has no CRITICAL and no ERROR findings.
    """
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
