"""
Pytest test module for patch simulation, commit and rollback orchestration.

Test Categories:
- TestPreview: preview metrics and diff summaries
- TestSimulatePatch: the dry-run pipeline
- TestSimulationService: commit / rollback through a version store
"""

import asyncio
import copy

import pytest

from dashforge.core.errors import ServiceError, VersionConflictError
from dashforge.models.enums import ErrorCode
from dashforge.models.schemas import PatchOperation
from dashforge.services.path_policy import PathPolicyConfig
from dashforge.services.simulation import (
    SimulationService,
    preview_metrics,
    simulate_patch,
    summarize_diff,
)
from dashforge.services.version_store import InMemorySpecVersionStore


class TestPreview:
    """Tests for preview_metrics() and summarize_diff()."""

    def test_preview_metrics(self, sample_document) -> None:
        metrics = preview_metrics(sample_document)
        assert metrics.kpisCount == 2
        assert metrics.chartsCount == 1
        assert metrics.funnelSteps == 3
        assert metrics.filtersCount == 1
        assert metrics.tabs == ["Overview", "Funnel", "Details"]

    def test_preview_metrics_funnel_steps_fallback(self) -> None:
        assert preview_metrics({"funnel": {"steps": ["a", "b"]}}).funnelSteps == 2

    def test_collection_deltas(self, sample_document) -> None:
        after = copy.deepcopy(sample_document)
        after["kpis"].append({"key": "cpl"})
        after["charts"] = []
        lines = summarize_diff(sample_document, after, [])
        assert "KPIs: 2 -> 3 (+1)" in lines
        assert "Charts: 1 -> 0 (-1)" in lines

    def test_tabs_and_title(self, sample_document) -> None:
        after = copy.deepcopy(sample_document)
        after["ui"]["tabs"] = ["Overview", "Costs", "Details"]
        after["title"] = "Costs"
        lines = summarize_diff(sample_document, after, [])
        assert "Tabs added: Costs" in lines
        assert "Tabs removed: Funnel" in lines
        assert "Title: 'Sales Funnel' -> 'Costs'" in lines

    def test_fallback_lists_operations(self, sample_document) -> None:
        operations = [
            PatchOperation(op="replace", path=f"/labels/l{i}", value="x") for i in range(7)
        ]
        lines = summarize_diff(sample_document, sample_document, operations, max_operations=5)
        assert lines[0] == "replace /labels/l0"
        assert len(lines) == 6
        assert lines[-1] == "... and 2 more"


class TestSimulatePatch:
    """Tests for simulate_patch()."""

    def test_valid_patch(self, sample_document, policy_config) -> None:
        sample_document["version"] = 3
        result = simulate_patch(
            sample_document, 3, 3,
            [{"op": "add", "path": "/kpis/-", "value": {"key": "cpl", "label": "CPL"}}],
            policy_config,
        )
        assert result.valid
        assert result.errors == []
        assert result.currentVersion == 3
        assert result.willBeVersion == 4
        assert result.newDocument["kpis"][-1]["key"] == "cpl"
        assert result.diffSummary == ["KPIs: 2 -> 3 (+1)"]
        assert result.previewMetrics.kpisCount == 3
        assert len(sample_document["kpis"]) == 2, "Simulation must not mutate its input"

    def test_version_conflict(self, sample_document, policy_config) -> None:
        result = simulate_patch(
            sample_document, 5, 4,
            [{"op": "replace", "path": "/title", "value": "x"}],
            policy_config,
        )
        assert not result.valid
        assert result.errors[0].code == ErrorCode.VERSION_CONFLICT
        assert result.errors[0].details["currentVersion"] == 5
        assert result.newDocument is None

    def test_policy_errors_collected(self, sample_document, policy_config) -> None:
        result = simulate_patch(
            sample_document, 1, 1,
            [
                {"op": "replace", "path": "/data_source_id", "value": "other"},
                {"op": "remove", "path": "/ui/tabs/2"},
            ],
            policy_config,
        )
        assert not result.valid
        assert [e.code for e in result.errors] == [
            ErrorCode.PATCH_PATH_FORBIDDEN,
            ErrorCode.GUARDRAIL_BLOCKED,
        ]
        assert result.newDocument is None

    def test_guardrail_exceeded(self, full_kpi_document, policy_config) -> None:
        result = simulate_patch(
            full_kpi_document, 1, 1,
            [{"op": "add", "path": "/kpis/-", "value": {"key": "one_more"}}],
            policy_config,
        )
        assert not result.valid
        assert result.errors[0].message == "GUARDRAIL_EXCEEDED: max 8 KPIs"

    def test_patch_failure(self, sample_document, policy_config) -> None:
        result = simulate_patch(
            sample_document, 1, 1,
            [{"op": "test", "path": "/title", "value": "Other"}],
            policy_config,
        )
        assert not result.valid
        assert result.errors[0].code == ErrorCode.PATCH_ERROR

    def test_structural_errors(self, sample_document, policy_config) -> None:
        result = simulate_patch(
            sample_document, 1, 1,
            [{"op": "add", "path": "/kpis/-", "value": {"label": "No key"}}],
            policy_config,
        )
        assert not result.valid
        assert result.errors[0].code == ErrorCode.VALIDATION_ERROR
        assert result.newDocument is not None, "Preview is kept for structural errors"

    @pytest.mark.parametrize("value", [[1, 2], "dashboard", 42])
    def test_non_object_root(self, policy_config, value) -> None:
        result = simulate_patch(
            {"version": 1, "kpis": [{"key": "leads"}]}, 1, 1,
            [{"op": "add", "path": "", "value": value}],
            policy_config,
        )
        assert not result.valid
        assert result.errors[0].code == ErrorCode.VALIDATION_ERROR
        assert "must be an object" in result.errors[0].message
        assert result.newDocument is None
        assert result.willBeVersion == 2

    def test_warnings_do_not_invalidate(self, sample_document, policy_config) -> None:
        result = simulate_patch(
            sample_document, 1, 1,
            [{"op": "replace", "path": "/title", "value": "Renamed"}],
            policy_config,
        )
        assert result.valid
        assert any("no version" in w for w in result.warnings)


class TestSimulationService:
    """Tests for SimulationService."""

    @pytest.fixture
    def service(self, sample_document, policy_config) -> SimulationService:
        store = InMemorySpecVersionStore("sales", sample_document)
        return SimulationService(store, policy_config)

    @pytest.mark.asyncio
    async def test_simulate_does_not_persist(self, service) -> None:
        result = await service.simulate(1, [{"op": "replace", "path": "/title", "value": "X"}])
        assert result.valid
        current = await service.store.current()
        assert current.version == 1
        assert current.document["title"] == "Sales Funnel"

    @pytest.mark.asyncio
    async def test_commit(self, service) -> None:
        record, result = await service.commit(
            1,
            [{"op": "add", "path": "/kpis/-", "value": {"key": "cpl"}}],
            note="Add CPL",
            created_by="alice",
        )
        assert record.version == 2
        assert record.note == "Add CPL"
        assert record.document["kpis"][-1] == {"key": "cpl"}
        assert record.document["version"] == 2
        assert result.diffSummary == ["KPIs: 2 -> 3 (+1)"]

    @pytest.mark.asyncio
    async def test_commit_stale_version(self, service) -> None:
        await service.commit(1, [{"op": "replace", "path": "/title", "value": "A"}])
        with pytest.raises(VersionConflictError):
            await service.commit(1, [{"op": "replace", "path": "/title", "value": "B"}])

    @pytest.mark.asyncio
    async def test_commit_rejected_patch(self, service) -> None:
        with pytest.raises(ServiceError) as exc_info:
            await service.commit(1, [
                {"op": "remove", "path": "/ui/tabs/2"},
                {"op": "replace", "path": "/tenant_id", "value": "x"},
            ])
        error = exc_info.value
        assert error.code == ErrorCode.GUARDRAIL_BLOCKED
        assert len(error.details["errors"]) == 2
        assert (await service.store.current()).version == 1

    @pytest.mark.asyncio
    async def test_concurrent_service_commits(self, service) -> None:
        results = await asyncio.gather(
            service.commit(1, [{"op": "replace", "path": "/title", "value": "A"}]),
            service.commit(1, [{"op": "replace", "path": "/title", "value": "B"}]),
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, VersionConflictError)) == 1
        assert (await service.store.current()).version == 2

    @pytest.mark.asyncio
    async def test_rollback(self, service) -> None:
        await service.commit(1, [{"op": "replace", "path": "/title", "value": "A"}])
        await service.commit(2, [{"op": "replace", "path": "/title", "value": "B"}])
        record = await service.rollback(1, created_by="alice")
        assert record.version == 4
        assert record.document["title"] == "Sales Funnel"
        assert record.note == "Rollback to version 1"

    @pytest.mark.asyncio
    async def test_custom_policy(self, sample_document) -> None:
        store = InMemorySpecVersionStore("sales", sample_document)
        service = SimulationService(store, PathPolicyConfig(max_kpis=2))
        result = await service.simulate(1, [{"op": "add", "path": "/kpis/-", "value": {"key": "cpl"}}])
        assert not result.valid
        assert result.errors[0].code == ErrorCode.GUARDRAIL_EXCEEDED
