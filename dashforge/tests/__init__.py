'''
DashForge Backend Test Suite

Test Modules:
-------------
- test_json_pointer.py: pointer parsing, escaping and resolution
- test_path_policy.py: allow/block lists, tab guardrails, collection ceilings
- test_patch_interpreter.py: atomic patch application and per-op outcomes
- test_spec_validation.py: structural checks of dashboard documents
- test_version_store.py: in-memory and PostgreSQL version stores
  - Compare-and-swap under concurrent commits
  - Rollback as a new version
- test_simulation.py: dry runs, diff summaries, commit and rollback flow
- test_aggregation.py: period totals and derived ratios
- test_data_integrity.py: integrity checks gating the insight engine
- test_insight_rules.py: rule catalog thresholds, tiers and ordering
- test_proposal.py: AI collaborator parsing, retries and error mapping
- test_rate_limit.py: fixed-window request budgets
- test_api.py: HTTP contract (envelopes, status codes, trace ids)

Running Tests:
--------------
    pip install -e ".[test]"
    pytest dashforge/tests -v

Test Dependencies:
------------------
- pytest
- pytest-asyncio
- httpx (TestClient and MockTransport)

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
