"""
Backend Services Module

This module contains the business logic services of DashForge. Services are
stateless functions and small classes; persistence is reached only through
the version store abstraction.

Services:
- json_pointer: JSON Pointer parsing and resolution
- path_policy: Allow/block path policy and collection guardrails
- patch_interpreter: Atomic JSON patch application
- spec_validation: Structural validation of dashboard documents
- version_store: Versioned snapshots with compare-and-swap commits
- simulation: Dry-run, commit and rollback pipeline with diff summaries
- aggregation: Period aggregates and derived metrics (pandas)
- data_integrity: Integrity checks gating the insight engine
- insight_rules: Declarative insight rule catalog (numpy)
- proposal: AI collaborator client for patch proposals (httpx)

All services are designed to be consumed by the API layer (dashforge/api/).
"""

# =============================================================================
# Patch Engine Exports
# JSON Pointer handling, path policy and guardrails, atomic patch application
# and structural validation of the resulting document
# =============================================================================

from dashforge.services.json_pointer import (
    APPEND_MARKER,
    InvalidPointerError,
    JsonPointer,
    Segment,
    resolve,
)
from dashforge.services.path_policy import (
    BOUNDED_COLLECTIONS,
    TAB_COLLECTIONS,
    PathDecision,
    PathPolicyConfig,
    check_add_guardrail,
    check_document_limits,
    check_operation,
    check_overwrite_guardrail,
    check_patch,
    check_remove_guardrail,
    classify,
    tab_names,
)
from dashforge.services.patch_interpreter import (
    OperationOutcome,
    PatchApplyError,
    PatchResult,
    advance_scratch,
    apply_operation,
    apply_patch,
    json_equal,
)
from dashforge.services.spec_validation import (
    find_non_finite,
    validate_spec_structure,
)

# =============================================================================
# Versioning Exports
# Version store implementations (in-memory and PostgreSQL) and the
# simulation / commit / rollback pipeline
# =============================================================================

from dashforge.services.version_store import (
    InMemorySpecVersionRegistry,
    InMemorySpecVersionStore,
    PostgresSpecVersionRegistry,
    PostgresSpecVersionStore,
    SpecVersionRegistry,
    SpecVersionStore,
    rollback_note,
    stamp_version,
)
from dashforge.services.simulation import (
    DEFAULT_MAX_SUMMARY_OPERATIONS,
    SimulationService,
    preview_metrics,
    simulate_patch,
    summarize_diff,
)

# =============================================================================
# Insight Exports
# Aggregation, data integrity validation and the insight rule engine
# =============================================================================

from dashforge.services.aggregation import (
    FUNNEL_STAGES,
    METRIC_ALIASES,
    compute_aggregates,
    lookup_metric,
    sum_columns,
)
from dashforge.services.data_integrity import (
    check_totals_match,
    format_validation_for_log,
    validate_data_integrity,
    validate_totals_match,
)
from dashforge.services.insight_rules import (
    INSIGHT_RULES,
    DailyAnomalyRule,
    FunnelBottleneckRule,
    InsightRule,
    InsightRulesConfig,
    PercentChangeRule,
    RuleCheckParams,
    rule_result_to_trace,
    run_insight_rules,
    safe_percent_change,
)

# =============================================================================
# AI Collaborator Exports
# =============================================================================

from dashforge.services.proposal import (
    ProposalClient,
    build_edit_prompt,
    parse_proposal,
)

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Patch engine
    "APPEND_MARKER",
    "InvalidPointerError",
    "JsonPointer",
    "Segment",
    "resolve",
    "BOUNDED_COLLECTIONS",
    "TAB_COLLECTIONS",
    "PathDecision",
    "PathPolicyConfig",
    "check_add_guardrail",
    "check_document_limits",
    "check_operation",
    "check_overwrite_guardrail",
    "check_patch",
    "check_remove_guardrail",
    "classify",
    "tab_names",
    "OperationOutcome",
    "PatchApplyError",
    "PatchResult",
    "advance_scratch",
    "apply_operation",
    "apply_patch",
    "json_equal",
    "find_non_finite",
    "validate_spec_structure",
    # Versioning
    "InMemorySpecVersionRegistry",
    "InMemorySpecVersionStore",
    "PostgresSpecVersionRegistry",
    "PostgresSpecVersionStore",
    "SpecVersionRegistry",
    "SpecVersionStore",
    "rollback_note",
    "stamp_version",
    "DEFAULT_MAX_SUMMARY_OPERATIONS",
    "SimulationService",
    "preview_metrics",
    "simulate_patch",
    "summarize_diff",
    # Insights
    "FUNNEL_STAGES",
    "METRIC_ALIASES",
    "compute_aggregates",
    "lookup_metric",
    "sum_columns",
    "check_totals_match",
    "format_validation_for_log",
    "validate_data_integrity",
    "validate_totals_match",
    "INSIGHT_RULES",
    "DailyAnomalyRule",
    "FunnelBottleneckRule",
    "InsightRule",
    "InsightRulesConfig",
    "PercentChangeRule",
    "RuleCheckParams",
    "rule_result_to_trace",
    "run_insight_rules",
    "safe_percent_change",
    # AI collaborator
    "ProposalClient",
    "build_edit_prompt",
    "parse_proposal",
]
