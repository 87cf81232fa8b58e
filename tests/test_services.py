"""Tests for core business logic services.

Tests ProfilingService, MonitoringService, ControlGenerationService,
AssessmentService and LearningService. Uses mock repositories and
collaborators; the pure scoring, rating and generation helpers run for real.
"""

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any
from unittest.mock import ANY, AsyncMock, MagicMock

import pytest

from aumos_compliance_learning.adapters.source_fetcher import HttpSourceFetcher
from aumos_compliance_learning.core.domain import AssessmentConfig, ChangeAnalysis, LearningMetrics, RequirementTraits
from aumos_compliance_learning.core.services import (
    AssessmentService,
    ControlGenerationService,
    LearningService,
    MonitoringService,
    ProfilingService,
)
from aumos_compliance_learning.core.tenancy import TenantContext
from aumos_compliance_learning.errors import (
    ConflictError,
    ExternalDependencyError,
    NotFoundError,
    ValidationError,
)
from aumos_compliance_learning.generation.classifier import KeywordTextClassifier
from aumos_compliance_learning.generation.similarity import TokenOverlapSimilarityScorer
from aumos_compliance_learning.learning.feedback import SPECIFICITY_CLAUSE
from aumos_compliance_learning.monitoring.change_detection import content_hash
from tests.conftest import (
    make_fake_catalog_control,
    make_fake_discovered,
    make_fake_evidence,
    make_fake_feedback,
    make_fake_framework,
    make_fake_generated_control,
    make_fake_profile,
    make_fake_result,
    make_fake_schedule,
    make_fake_source,
    make_fake_update,
    make_savepoint_repo,
)


def _lookup(items: list[Any]) -> Any:
    """side_effect returning the item whose id matches the first argument."""
    by_id = {item.id: item for item in items}
    return lambda item_id, *args, **kwargs: by_id.get(item_id)


# ---------------------------------------------------------------------------
# ProfilingService tests
# ---------------------------------------------------------------------------


class TestProfilingService:
    """Tests for ProfilingService — profiles, discovery and suggestions."""

    def _make_service(
        self,
        profile_repo: AsyncMock | None = None,
        catalog_repo: AsyncMock | None = None,
        discovered_repo: AsyncMock | None = None,
    ) -> ProfilingService:
        return ProfilingService(
            profile_repo=profile_repo or AsyncMock(),
            catalog_repo=catalog_repo or AsyncMock(),
            discovered_repo=discovered_repo or AsyncMock(),
        )

    @pytest.mark.asyncio()
    async def test_create_profile_stamps_update_time(self, mock_tenant: TenantContext) -> None:
        """A new profile is created with last_profile_update set."""
        profile_repo = AsyncMock()
        profile_repo.get_by_tenant.return_value = None
        profile_repo.create.return_value = make_fake_profile(mock_tenant.tenant_id)
        service = self._make_service(profile_repo=profile_repo)

        await service.create_profile(mock_tenant, {"entity_name": "Acme", "industry": "technology"})

        tenant_id, fields = profile_repo.create.call_args.args
        assert tenant_id == mock_tenant.tenant_id
        assert fields["entity_name"] == "Acme"
        assert isinstance(fields["last_profile_update"], datetime)

    @pytest.mark.asyncio()
    async def test_create_profile_twice_raises_conflict(self, mock_tenant: TenantContext) -> None:
        profile_repo = AsyncMock()
        profile_repo.get_by_tenant.return_value = make_fake_profile(mock_tenant.tenant_id)
        service = self._make_service(profile_repo=profile_repo)

        with pytest.raises(ConflictError):
            await service.create_profile(mock_tenant, {"entity_name": "Acme"})
        profile_repo.create.assert_not_called()

    @pytest.mark.asyncio()
    async def test_get_missing_profile_raises_not_found(self, mock_tenant: TenantContext) -> None:
        profile_repo = AsyncMock()
        profile_repo.get_by_tenant.return_value = None
        service = self._make_service(profile_repo=profile_repo)

        with pytest.raises(NotFoundError):
            await service.get_profile(mock_tenant)

    @pytest.mark.asyncio()
    async def test_offboard_without_profile_raises_not_found(self, mock_tenant: TenantContext) -> None:
        profile_repo = AsyncMock()
        profile_repo.delete.return_value = False
        service = self._make_service(profile_repo=profile_repo)

        with pytest.raises(NotFoundError):
            await service.offboard_tenant(mock_tenant)

    @pytest.mark.asyncio()
    async def test_discover_frameworks_ranks_catalog_and_discovered(self, mock_tenant: TenantContext) -> None:
        """Catalog frameworks above 0.5 and open candidates are suggested, highest first."""
        profile = make_fake_profile(mock_tenant.tenant_id)
        discovered = make_fake_discovered()
        profile_repo = AsyncMock()
        profile_repo.get_by_tenant.return_value = profile
        catalog_repo = AsyncMock()
        catalog_repo.list_active_frameworks.return_value = [
            make_fake_framework("gdpr", "GDPR"),
            make_fake_framework("eu-ai-act", "EU AI Act", category="ai_governance"),
            make_fake_framework("hipaa", "HIPAA", jurisdiction="us", category="healthcare"),
            make_fake_framework("custom", "Custom framework without a rule"),
        ]
        discovered_repo = AsyncMock()
        discovered_repo.list_open_candidates.return_value = [discovered]
        service = self._make_service(profile_repo, catalog_repo, discovered_repo)

        suggestions = await service.discover_frameworks(mock_tenant)

        assert [suggestion.framework_id for suggestion in suggestions] == ["gdpr", "eu-ai-act", str(discovered.id)]
        assert suggestions[0].priority == "critical"
        assert suggestions[0].is_new is False
        assert suggestions[2].is_new is True
        assert suggestions[2].estimated_controls == 40
        assert "Processes personal data" in suggestions[2].reasons
        profile_repo.set_applicable_frameworks.assert_awaited_once_with(
            profile, ["gdpr", "eu-ai-act", str(discovered.id)], ANY
        )

    @pytest.mark.asyncio()
    async def test_analyze_relevance_unknown_framework_raises(self, mock_tenant: TenantContext) -> None:
        profile_repo = AsyncMock()
        profile_repo.get_by_tenant.return_value = make_fake_profile(mock_tenant.tenant_id)
        catalog_repo = AsyncMock()
        catalog_repo.get_framework.return_value = None
        service = self._make_service(profile_repo, catalog_repo)

        with pytest.raises(NotFoundError):
            await service.analyze_relevance(mock_tenant, "not-a-framework")

    @pytest.mark.asyncio()
    async def test_analyze_relevance_uses_catalog_rule(self, mock_tenant: TenantContext) -> None:
        profile_repo = AsyncMock()
        profile_repo.get_by_tenant.return_value = make_fake_profile(mock_tenant.tenant_id)
        catalog_repo = AsyncMock()
        catalog_repo.get_framework.return_value = make_fake_framework("nis2", "NIS2 Directive")
        service = self._make_service(profile_repo, catalog_repo)

        assessment = await service.analyze_relevance(mock_tenant, "nis2")

        assert assessment.framework_name == "NIS2 Directive"
        assert assessment.relevance_score == pytest.approx(0.6)

    @pytest.mark.asyncio()
    async def test_accept_catalog_suggestion_adds_framework(self, mock_tenant: TenantContext) -> None:
        profile = make_fake_profile(mock_tenant.tenant_id, applicable_frameworks=["soc2"])
        profile_repo = AsyncMock()
        profile_repo.get_by_tenant.return_value = profile
        catalog_repo = AsyncMock()
        catalog_repo.get_framework.return_value = make_fake_framework("gdpr", "GDPR")
        service = self._make_service(profile_repo, catalog_repo)

        outcome = await service.accept_suggestion(mock_tenant, "gdpr")

        assert outcome.success is True
        assert outcome.framework_id == "gdpr"
        profile_repo.update.assert_awaited_once_with(profile, {"applicable_frameworks": ["soc2", "gdpr"]})

    @pytest.mark.asyncio()
    async def test_accept_discovered_suggestion_queues_generation(self, mock_tenant: TenantContext) -> None:
        discovered = make_fake_discovered()
        catalog_repo = AsyncMock()
        catalog_repo.get_framework.return_value = None
        discovered_repo = AsyncMock()
        discovered_repo.get.return_value = discovered
        discovered_repo.update_status.return_value = discovered
        service = self._make_service(catalog_repo=catalog_repo, discovered_repo=discovered_repo)

        outcome = await service.accept_suggestion(mock_tenant, str(discovered.id))

        assert outcome.success is True
        assert "queued for control generation" in outcome.message
        discovered_repo.update_status.assert_awaited_once_with(discovered, "generating", generated_framework_id=None)

    @pytest.mark.asyncio()
    async def test_accept_unknown_suggestion_is_unsuccessful(self, mock_tenant: TenantContext) -> None:
        catalog_repo = AsyncMock()
        catalog_repo.get_framework.return_value = None
        service = self._make_service(catalog_repo=catalog_repo)

        outcome = await service.accept_suggestion(mock_tenant, "nothing-here")

        assert outcome.success is False
        assert outcome.framework_id is None

    @pytest.mark.asyncio()
    async def test_reject_discovered_records_reason(self, mock_tenant: TenantContext) -> None:
        discovered = make_fake_discovered()
        discovered_repo = AsyncMock()
        discovered_repo.get.return_value = discovered
        service = self._make_service(discovered_repo=discovered_repo)

        outcome = await service.reject_suggestion(mock_tenant, str(discovered.id), reason="Out of scope")

        assert outcome.success is True
        args, kwargs = discovered_repo.update_status.call_args
        assert args == (discovered, "rejected")
        assert kwargs["metadata"]["rejection_reason"] == "Out of scope"
        assert kwargs["metadata"]["rejected_by"] == str(mock_tenant.tenant_id)

    @pytest.mark.asyncio()
    async def test_reject_catalog_suggestion_removes_framework(self, mock_tenant: TenantContext) -> None:
        profile = make_fake_profile(mock_tenant.tenant_id, applicable_frameworks=["gdpr", "soc2"])
        profile_repo = AsyncMock()
        profile_repo.get_by_tenant.return_value = profile
        service = self._make_service(profile_repo=profile_repo)

        await service.reject_suggestion(mock_tenant, "gdpr")

        profile_repo.update.assert_awaited_once_with(profile, {"applicable_frameworks": ["soc2"]})

    @pytest.mark.asyncio()
    async def test_rejected_framework_cannot_be_reactivated(self) -> None:
        discovered_repo = AsyncMock()
        discovered_repo.get.return_value = make_fake_discovered(status="rejected")
        service = self._make_service(discovered_repo=discovered_repo)

        with pytest.raises(ConflictError):
            await service.update_discovered_framework_status(uuid.uuid4(), "active")
        discovered_repo.update_status.assert_not_called()


# ---------------------------------------------------------------------------
# MonitoringService tests
# ---------------------------------------------------------------------------


class TestMonitoringService:
    """Tests for MonitoringService — source checks and regulatory updates."""

    def _make_service(
        self,
        source_repo: AsyncMock | None = None,
        update_repo: AsyncMock | None = None,
        profile_repo: AsyncMock | None = None,
        fetcher: AsyncMock | None = None,
        analyzer: AsyncMock | None = None,
    ) -> MonitoringService:
        return MonitoringService(
            source_repo=source_repo or AsyncMock(),
            update_repo=update_repo or make_savepoint_repo(),
            profile_repo=profile_repo or AsyncMock(),
            fetcher=fetcher or AsyncMock(),
            analyzer=analyzer,
        )

    @pytest.mark.asyncio()
    async def test_add_source_rejects_unknown_frequency(self) -> None:
        service = self._make_service()

        with pytest.raises(ValidationError):
            await service.add_source({"name": "x", "url": "https://x.example", "check_frequency": "monthly"})

    @pytest.mark.asyncio()
    async def test_first_check_establishes_baseline(self) -> None:
        source = make_fake_source(last_content_hash=None)
        source_repo = AsyncMock()
        source_repo.get.return_value = source
        fetcher = AsyncMock()
        fetcher.fetch.return_value = "Guidance text"
        service = self._make_service(source_repo=source_repo, fetcher=fetcher)

        changes = await service.check_for_updates(source.id)

        assert changes == []
        source_repo.record_success.assert_awaited_once_with(
            source.id, content_hash("Guidance text"), ANY, changed=False
        )

    @pytest.mark.asyncio()
    async def test_changed_content_is_detected(self) -> None:
        source = make_fake_source(last_content_hash=content_hash("old"))
        source_repo = AsyncMock()
        source_repo.get.return_value = source
        fetcher = AsyncMock()
        fetcher.fetch.return_value = "new"
        service = self._make_service(source_repo=source_repo, fetcher=fetcher)

        changes = await service.check_for_updates(source.id)

        assert len(changes) == 1
        assert changes[0].previous_hash == content_hash("old")
        assert source_repo.record_success.call_args.kwargs["changed"] is True

    @pytest.mark.asyncio()
    async def test_fetch_failure_is_recorded_then_raised(self) -> None:
        source = make_fake_source()
        source_repo = AsyncMock()
        source_repo.get.return_value = source
        source_repo.record_failure.return_value = (1, "active")
        fetcher = AsyncMock()
        fetcher.fetch.side_effect = ExternalDependencyError("HTTP 503", dependency="source_fetcher")
        service = self._make_service(source_repo=source_repo, fetcher=fetcher)

        with pytest.raises(ExternalDependencyError):
            await service.check_for_updates(source.id)
        source_repo.record_failure.assert_awaited_once_with(source.id, ANY, 5)
        source_repo.record_success.assert_not_called()

    @pytest.mark.asyncio()
    async def test_malformed_source_url_counts_as_failure(self) -> None:
        source = make_fake_source(url="http://[::1", consecutive_failures=4)
        source_repo = AsyncMock()
        source_repo.get.return_value = source
        source_repo.record_failure.return_value = (5, "error")
        service = self._make_service(source_repo=source_repo, fetcher=HttpSourceFetcher())

        with pytest.raises(ExternalDependencyError):
            await service.check_for_updates(source.id)
        source_repo.record_failure.assert_awaited_once_with(source.id, ANY, 5)

    @pytest.mark.asyncio()
    async def test_change_without_analyzer_creates_pending_update(self) -> None:
        source = make_fake_source()
        update_repo = make_savepoint_repo()
        update_repo.create.return_value = make_fake_update()
        service = self._make_service(update_repo=update_repo)
        change = SimpleNamespace(
            source_id=source.id,
            source_name=source.name,
            url=source.url,
            detected_at=datetime.now(UTC),
            snippet="Controllers shall document transfers.",
        )

        await service.process_detected_change(change, source)

        fields = update_repo.create.call_args.args[0]
        assert fields["status"] == "pending"
        assert fields["update_type"] == "guidance"
        assert fields["impact_level"] == "medium"
        assert fields["framework_id"] == "gdpr"
        assert fields["title"] == "Content change detected at EDPB Guidelines"
        assert fields["summary"] == "Controllers shall document transfers."
        assert fields["analysis"] is None

    @pytest.mark.asyncio()
    async def test_change_with_analyzer_creates_analyzed_update(self) -> None:
        source = make_fake_source()
        update_repo = make_savepoint_repo()
        update_repo.create.return_value = make_fake_update(status="analyzed")
        analyzer = AsyncMock()
        analyzer.analyze_change.return_value = ChangeAnalysis(
            update_type="amendment",
            impact_level="high",
            title="GDPR transfer guidance amended",
            framework_id="gdpr",
            recommended_actions=["Review transfer register"],
        )
        service = self._make_service(update_repo=update_repo, analyzer=analyzer)
        change = SimpleNamespace(
            source_id=source.id,
            source_name=source.name,
            url=source.url,
            detected_at=datetime.now(UTC),
            snippet="snippet",
        )

        await service.process_detected_change(change, source)

        fields = update_repo.create.call_args.args[0]
        assert fields["status"] == "analyzed"
        assert fields["update_type"] == "amendment"
        assert fields["impact_level"] == "high"
        assert fields["title"] == "GDPR transfer guidance amended"
        assert fields["recommended_actions"] == ["Review transfer register"]
        assert fields["analysis"]["impact_level"] == "high"

    @pytest.mark.asyncio()
    async def test_analyzer_failure_falls_back_to_pending(self) -> None:
        source = make_fake_source()
        update_repo = make_savepoint_repo()
        update_repo.create.return_value = make_fake_update()
        analyzer = AsyncMock()
        analyzer.analyze_change.side_effect = ExternalDependencyError("timeout", dependency="change_analysis")
        service = self._make_service(update_repo=update_repo, analyzer=analyzer)
        change = SimpleNamespace(
            source_id=source.id, source_name=source.name, url=source.url, detected_at=datetime.now(UTC), snippet="s"
        )

        await service.process_detected_change(change, source)

        assert update_repo.create.call_args.args[0]["status"] == "pending"

    @pytest.mark.asyncio()
    async def test_scheduled_checks_isolate_failing_sources(self) -> None:
        """One failing fetch does not stop the next source; every attempt counts as checked."""
        failing = make_fake_source(name="Flaky regulator")
        changing = make_fake_source(last_content_hash=content_hash("old"))
        source_repo = AsyncMock()
        source_repo.list_due.return_value = [failing, changing]
        source_repo.get.side_effect = _lookup([failing, changing])
        source_repo.record_failure.return_value = (2, "active")
        fetcher = AsyncMock()
        fetcher.fetch.side_effect = [ExternalDependencyError("HTTP 500", dependency="source_fetcher"), "new"]
        update_repo = make_savepoint_repo()
        update_repo.create.return_value = make_fake_update()
        service = self._make_service(source_repo=source_repo, update_repo=update_repo, fetcher=fetcher)

        summary = await service.run_scheduled_checks()

        assert summary == {"checked": 2, "changes_detected": 1, "errors": 1}
        update_repo.savepoint.assert_called_once()

    @pytest.mark.asyncio()
    async def test_scheduled_checks_count_processing_failures(self) -> None:
        source = make_fake_source(last_content_hash=content_hash("old"))
        source_repo = AsyncMock()
        source_repo.list_due.return_value = [source]
        source_repo.get.return_value = source
        fetcher = AsyncMock()
        fetcher.fetch.return_value = "new"
        update_repo = make_savepoint_repo()
        update_repo.create.side_effect = RuntimeError("insert failed")
        service = self._make_service(source_repo=source_repo, update_repo=update_repo, fetcher=fetcher)

        summary = await service.run_scheduled_checks()

        assert summary == {"checked": 1, "changes_detected": 0, "errors": 1}

    @pytest.mark.asyncio()
    async def test_analyze_update_requires_analyzer(self) -> None:
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = make_fake_update()
        service = self._make_service(update_repo=update_repo)

        with pytest.raises(ExternalDependencyError):
            await service.analyze_update(uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_archived_update_cannot_reopen(self) -> None:
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = make_fake_update(status="archived")
        service = self._make_service(update_repo=update_repo)

        with pytest.raises(ConflictError):
            await service.update_update_status(uuid.uuid4(), "pending")
        update_repo.save.assert_not_called()

    @pytest.mark.asyncio()
    async def test_update_status_records_reviewer(self, actor_id: uuid.UUID) -> None:
        regulatory_update = make_fake_update(status="analyzed")
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = regulatory_update
        update_repo.save.side_effect = lambda item: item
        service = self._make_service(update_repo=update_repo)

        result = await service.update_update_status(uuid.uuid4(), "rejected", reviewed_by=actor_id, review_notes="n/a")

        assert result.status == "rejected"
        assert result.reviewed_by == actor_id
        assert result.review_notes == "n/a"

    @pytest.mark.asyncio()
    async def test_mark_implemented_links_controls_once(self) -> None:
        regulatory_update = make_fake_update(generated_controls=["ctrl-a"])
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = regulatory_update
        update_repo.save.side_effect = lambda item: item
        service = self._make_service(update_repo=update_repo)

        result = await service.mark_implemented(uuid.uuid4(), ["ctrl-a", "ctrl-b"])

        assert result.generated_controls == ["ctrl-a", "ctrl-b"]
        assert result.controls_implemented is True
        assert result.status == "implemented"

    @pytest.mark.asyncio()
    async def test_archiving_implemented_update_clears_implemented_flag(self) -> None:
        regulatory_update = make_fake_update(status="implemented", controls_implemented=True)
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = regulatory_update
        update_repo.save.side_effect = lambda item: item
        service = self._make_service(update_repo=update_repo)

        result = await service.update_update_status(uuid.uuid4(), "archived")

        assert result.status == "archived"
        assert result.controls_implemented is False

    @pytest.mark.asyncio()
    async def test_status_change_to_implemented_sets_implemented_flag(self) -> None:
        regulatory_update = make_fake_update(status="implementing")
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = regulatory_update
        update_repo.save.side_effect = lambda item: item
        service = self._make_service(update_repo=update_repo)

        result = await service.update_update_status(uuid.uuid4(), "implemented")

        assert result.controls_implemented is True

    @pytest.mark.asyncio()
    async def test_notify_affected_tenants_uses_source_and_update_frameworks(self, tenant_id: uuid.UUID) -> None:
        source = make_fake_source(related_frameworks=["gdpr"])
        regulatory_update = make_fake_update(source_id=source.id, framework_id="nis2")
        source_repo = AsyncMock()
        source_repo.get.return_value = source
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = regulatory_update
        profile_repo = AsyncMock()
        profile_repo.list_tenants_with_frameworks.return_value = [tenant_id]
        service = self._make_service(source_repo=source_repo, update_repo=update_repo, profile_repo=profile_repo)

        tenants = await service.notify_affected_tenants(regulatory_update.id)

        assert tenants == [tenant_id]
        profile_repo.list_tenants_with_frameworks.assert_awaited_once_with(["gdpr", "nis2"])
        assert regulatory_update.notified_tenants == [str(tenant_id)]
        update_repo.save.assert_awaited_once_with(regulatory_update)


# ---------------------------------------------------------------------------
# ControlGenerationService tests
# ---------------------------------------------------------------------------

REGULATION_TEXT = (
    "Article 5 Data access\n"
    "Data holders shall make product data available to users without undue delay.\n"
    "Article 6 Third parties\n"
    "Users must be informed of every third party receiving their data.\n"
)


class TestControlGenerationService:
    """Tests for ControlGenerationService — synthesis, review and implementation."""

    def _make_service(
        self,
        generated_repo: AsyncMock | None = None,
        catalog_repo: AsyncMock | None = None,
        cross_ref_repo: AsyncMock | None = None,
        run_repo: AsyncMock | None = None,
        update_repo: AsyncMock | None = None,
        fetcher: AsyncMock | None = None,
        classifier: Any | None = None,
    ) -> ControlGenerationService:
        if generated_repo is None:
            generated_repo = AsyncMock()
            generated_repo.create_many.side_effect = lambda candidates: candidates
        return ControlGenerationService(
            generated_repo=generated_repo,
            catalog_repo=catalog_repo or AsyncMock(),
            cross_ref_repo=cross_ref_repo or AsyncMock(),
            run_repo=run_repo or AsyncMock(),
            update_repo=update_repo or make_savepoint_repo(),
            fetcher=fetcher or AsyncMock(),
            classifier=classifier or KeywordTextClassifier(),
            scorer=TokenOverlapSimilarityScorer(),
        )

    @pytest.mark.asyncio()
    async def test_generate_from_text_creates_one_control_per_obligation(self) -> None:
        run_repo = AsyncMock()
        service = self._make_service(run_repo=run_repo)

        result = await service.generate_controls_from_text("eu-data-act", "EU Data Act", REGULATION_TEXT)

        assert result.status == "success"
        assert [control.control_id for control in result.controls] == ["EU-DATA-ACT-5-1", "EU-DATA-ACT-6-1"]
        assert result.errors == []
        kwargs = run_repo.log.call_args.kwargs
        assert kwargs["status"] == "success"
        assert kwargs["controls_generated"] == 2
        assert kwargs["source_type"] == "text"

    @pytest.mark.asyncio()
    async def test_empty_document_fails(self) -> None:
        service = self._make_service()

        result = await service.generate_controls_from_text("eu-data-act", "EU Data Act", "   ")

        assert result.status == "failed"
        assert result.controls == []
        assert result.errors[0].recoverable is False

    @pytest.mark.asyncio()
    async def test_failing_section_yields_partial_result(self) -> None:
        classifier = MagicMock()
        classifier.extract_requirements.side_effect = [
            RuntimeError("tokenizer crashed"),
            ["Providers shall keep records of processing."],
        ]
        classifier.classify.return_value = RequirementTraits(
            category="organizational", control_type="detective", difficulty="medium", evidence_types=("audit_log",)
        )
        service = self._make_service(classifier=classifier)
        text = "# Scope\nApplies to all providers.\n# Records\nProviders shall keep records of processing.\n"

        result = await service.generate_controls_from_text("nis2", "NIS2", text)

        assert result.status == "partial"
        assert len(result.controls) == 1
        assert len(result.errors) == 1
        assert result.errors[0].section == "Scope"
        assert result.errors[0].recoverable is True

    @pytest.mark.asyncio()
    async def test_unreachable_url_degrades_to_partial(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch.side_effect = ExternalDependencyError("HTTP 404", dependency="source_fetcher")
        run_repo = AsyncMock()
        service = self._make_service(run_repo=run_repo, fetcher=fetcher)

        result = await service.generate_controls_from_url("eu-data-act", "EU Data Act", "https://x.example/act")

        assert result.status == "partial"
        assert result.controls == []
        assert "Failed to fetch document" in result.errors[0].message
        assert run_repo.log.call_args.kwargs["source_reference"] == "https://x.example/act"

    @pytest.mark.asyncio()
    async def test_malformed_document_url_degrades_to_partial(self) -> None:
        service = self._make_service(fetcher=HttpSourceFetcher())

        result = await service.generate_controls_from_url("gdpr", "GDPR", "http://[::1")

        assert result.status == "partial"
        assert result.controls == []
        assert "Failed to fetch document" in result.errors[0].message

    @pytest.mark.asyncio()
    async def test_generate_from_url_records_source_url(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch.return_value = REGULATION_TEXT
        service = self._make_service(fetcher=fetcher)

        result = await service.generate_controls_from_url("eu-data-act", "EU Data Act", "https://x.example/act")

        assert result.status == "success"
        assert result.controls[0].generation_context["source_url"] == "https://x.example/act"

    @pytest.mark.asyncio()
    async def test_generate_from_update_without_framework_raises(self) -> None:
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = make_fake_update(framework_id=None, analysis=None)
        service = self._make_service(update_repo=update_repo)

        with pytest.raises(ValidationError):
            await service.generate_controls_from_update(uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_generate_from_update_links_controls(self) -> None:
        regulatory_update = make_fake_update(
            framework_id=None,
            analysis={
                "framework_id": "gdpr",
                "extracted_requirements": [
                    {
                        "id": "GDPR-UPD-1",
                        "title": "Transfer register",
                        "text": "Controllers shall keep a register of transfers.",
                    },
                    {"id": "", "title": "", "text": ""},
                ],
            },
        )
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = regulatory_update
        service = self._make_service(update_repo=update_repo)

        result = await service.generate_controls_from_update(regulatory_update.id)

        assert result.status == "partial"
        assert result.framework_id == "gdpr"
        assert [control.control_id for control in result.controls] == ["GDPR-UPD-1"]
        assert regulatory_update.generated_controls == [str(result.controls[0].id)]
        assert regulatory_update.status == "analyzed"
        update_repo.save.assert_awaited_once_with(regulatory_update)

    @pytest.mark.asyncio()
    async def test_update_without_requirements_fails(self) -> None:
        update_repo = make_savepoint_repo()
        update_repo.get.return_value = make_fake_update(analysis=None)
        service = self._make_service(update_repo=update_repo)

        result = await service.generate_controls_from_update(uuid.uuid4())

        assert result.status == "failed"
        update_repo.save.assert_not_called()

    @pytest.mark.asyncio()
    async def test_implement_controls_handles_each_id_independently(self, actor_id: uuid.UUID) -> None:
        approved = make_fake_generated_control(status="approved")
        unapproved = make_fake_generated_control(status="generated", control_id="EU-DATA-ACT-6-1")
        missing_id = uuid.uuid4()
        generated_repo = AsyncMock()
        generated_repo.get.side_effect = _lookup([approved, unapproved])
        catalog_repo = AsyncMock()
        catalog_repo.existing_control_ids.return_value = set()
        service = self._make_service(generated_repo=generated_repo, catalog_repo=catalog_repo)

        outcome = await service.implement_controls([missing_id, unapproved.id, approved.id], reviewed_by=actor_id)

        assert outcome.implemented == [str(approved.id)]
        assert outcome.failed == [str(missing_id), str(unapproved.id)]
        assert "must be approved" in outcome.errors[1]
        catalog_repo.add_control_from_generated.assert_awaited_once_with(approved)
        assert approved.status == "implemented"
        assert approved.reviewed_by == actor_id

    @pytest.mark.asyncio()
    async def test_implementing_same_control_twice_reports_second_attempt(self) -> None:
        approved = make_fake_generated_control(status="approved")
        generated_repo = AsyncMock()
        generated_repo.get.return_value = approved
        catalog_repo = AsyncMock()
        catalog_repo.existing_control_ids.return_value = set()
        service = self._make_service(generated_repo=generated_repo, catalog_repo=catalog_repo)

        first = await service.implement_controls([approved.id])
        second = await service.implement_controls([approved.id])

        assert first.implemented == [str(approved.id)]
        assert second.implemented == []
        assert second.failed == [str(approved.id)]
        assert "already implemented" in second.errors[0]
        catalog_repo.add_control_from_generated.assert_awaited_once_with(approved)

    @pytest.mark.asyncio()
    async def test_implement_rejects_duplicate_catalog_id(self) -> None:
        approved = make_fake_generated_control(status="approved")
        generated_repo = AsyncMock()
        generated_repo.get.return_value = approved
        catalog_repo = AsyncMock()
        catalog_repo.existing_control_ids.return_value = {approved.control_id}
        service = self._make_service(generated_repo=generated_repo, catalog_repo=catalog_repo)

        outcome = await service.implement_controls([approved.id])

        assert outcome.implemented == []
        assert "already exists" in outcome.errors[0]
        catalog_repo.add_control_from_generated.assert_not_called()

    @pytest.mark.asyncio()
    async def test_approve_sets_review_fields(self, actor_id: uuid.UUID) -> None:
        control = make_fake_generated_control(status="pending_review")
        generated_repo = AsyncMock()
        generated_repo.get.return_value = control
        generated_repo.save.side_effect = lambda item: item
        service = self._make_service(generated_repo=generated_repo)

        result = await service.approve_control(control.id, reviewed_by=actor_id, review_notes="LGTM")

        assert result.status == "approved"
        assert result.reviewed_by == actor_id
        assert result.review_notes == "LGTM"
        assert result.reviewed_at is not None

    @pytest.mark.asyncio()
    async def test_rejected_control_cannot_be_approved(self) -> None:
        generated_repo = AsyncMock()
        generated_repo.get.return_value = make_fake_generated_control(status="rejected")
        service = self._make_service(generated_repo=generated_repo)

        with pytest.raises(ConflictError):
            await service.approve_control(uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_refine_controls_lowers_difficulty(self) -> None:
        control = make_fake_generated_control(implementation_difficulty="high")
        generated_repo = AsyncMock()
        generated_repo.get_many.return_value = [control]
        service = self._make_service(generated_repo=generated_repo)

        refinements = await service.refine_controls([control.id], "Can these be simpler?")

        assert len(refinements) == 1
        assert control.implementation_difficulty == "medium"
        generated_repo.save.assert_awaited_once_with(control)

    @pytest.mark.asyncio()
    async def test_map_to_existing_controls_persists_close_matches(self) -> None:
        control = make_fake_generated_control()
        twin = make_fake_catalog_control(
            control_id="DGA-7-1",
            framework_id="dga",
            title=control.title,
            description=control.description,
            category=control.category,
            domain=control.domain,
        )
        unrelated = make_fake_catalog_control()
        generated_repo = AsyncMock()
        generated_repo.get.return_value = control
        catalog_repo = AsyncMock()
        catalog_repo.list_active_controls_outside.return_value = [unrelated, twin]
        cross_ref_repo = AsyncMock()
        service = self._make_service(
            generated_repo=generated_repo, catalog_repo=catalog_repo, cross_ref_repo=cross_ref_repo
        )

        mappings = await service.map_to_existing_controls(control.id)

        assert [mapping.target_control_id for mapping in mappings] == ["DGA-7-1"]
        assert mappings[0].mapping_type == "equivalent"
        cross_ref_repo.upsert.assert_awaited_once_with(control.control_id, "DGA-7-1", "dga", "equivalent", ANY)
        assert control.related_controls == ["DGA-7-1"]
        catalog_repo.list_active_controls_outside.assert_awaited_once_with("eu-data-act")

    @pytest.mark.asyncio()
    async def test_validate_controls_checks_catalog(self) -> None:
        control = make_fake_generated_control()
        generated_repo = AsyncMock()
        generated_repo.get_many.return_value = [control]
        catalog_repo = AsyncMock()
        catalog_repo.existing_control_ids.return_value = {control.control_id}
        service = self._make_service(generated_repo=generated_repo, catalog_repo=catalog_repo)

        result = await service.validate_controls([control.id])

        assert result.is_valid is False
        catalog_repo.existing_control_ids.assert_awaited_once_with([control.control_id])


# ---------------------------------------------------------------------------
# AssessmentService tests
# ---------------------------------------------------------------------------


class TestAssessmentService:
    """Tests for AssessmentService — schedules and evidence-based execution."""

    def _make_service(
        self,
        schedule_repo: AsyncMock | None = None,
        result_repo: AsyncMock | None = None,
        catalog_repo: AsyncMock | None = None,
        evidence_repo: AsyncMock | None = None,
        control_assessment_repo: AsyncMock | None = None,
        improvement_repo: AsyncMock | None = None,
    ) -> AssessmentService:
        if result_repo is None:
            result_repo = AsyncMock()
            result_repo.create.side_effect = lambda tenant_id, fields: make_fake_result(tenant_id, **fields)
        if control_assessment_repo is None:
            control_assessment_repo = AsyncMock()
            control_assessment_repo.latest.return_value = None
        if improvement_repo is None:
            improvement_repo = AsyncMock()
            improvement_repo.count_for_control.return_value = 0
        return AssessmentService(
            schedule_repo=schedule_repo or make_savepoint_repo(),
            result_repo=result_repo,
            catalog_repo=catalog_repo or AsyncMock(),
            evidence_repo=evidence_repo or AsyncMock(),
            control_assessment_repo=control_assessment_repo,
            improvement_repo=improvement_repo,
        )

    def _catalog(self, controls: list[Any]) -> AsyncMock:
        catalog_repo = AsyncMock()
        catalog_repo.get_framework.side_effect = lambda framework_id: (
            make_fake_framework(framework_id) if framework_id == "gdpr" else None
        )
        catalog_repo.list_active_controls.return_value = controls
        return catalog_repo

    @pytest.mark.asyncio()
    async def test_create_schedule_for_unknown_framework_raises(self, mock_tenant: TenantContext) -> None:
        service = self._make_service(catalog_repo=self._catalog([]))

        with pytest.raises(NotFoundError):
            await service.create_schedule(mock_tenant, "unknown", "weekly")

    @pytest.mark.asyncio()
    async def test_create_schedule_computes_next_run(self, mock_tenant: TenantContext) -> None:
        schedule_repo = make_savepoint_repo()
        schedule_repo.create.return_value = make_fake_schedule(mock_tenant.tenant_id)
        service = self._make_service(schedule_repo=schedule_repo, catalog_repo=self._catalog([]))
        start = datetime(2026, 3, 4, 15, 0, tzinfo=UTC)

        await service.create_schedule(mock_tenant, "gdpr", "weekly", start_at=start)

        tenant_id, fields = schedule_repo.create.call_args.args
        assert tenant_id == mock_tenant.tenant_id
        assert fields["next_run_at"] == datetime(2026, 3, 11, 2, 0, tzinfo=UTC)
        assert fields["assessment_config"]["include_evidence"] is True
        assert fields["created_by"] == mock_tenant.user_id

    @pytest.mark.asyncio()
    async def test_run_assessment_rates_controls_from_evidence(self, tenant_id: uuid.UUID) -> None:
        documented = make_fake_catalog_control(control_id="GDPR-5-1")
        undocumented = make_fake_catalog_control(control_id="GDPR-30-1")
        evidence_repo = AsyncMock()
        evidence_repo.list_recent_by_types.side_effect = [
            [make_fake_evidence(file_name="ropa.xlsx"), make_fake_evidence(file_name="dpia.pdf")],
            [],
        ]
        control_assessment_repo = AsyncMock()
        control_assessment_repo.latest.return_value = None
        service = self._make_service(
            catalog_repo=self._catalog([documented, undocumented]),
            evidence_repo=evidence_repo,
            control_assessment_repo=control_assessment_repo,
        )

        result = await service.run_assessment(tenant_id, "gdpr")

        assert result.status == "completed"
        assert result.total_controls == 2
        assert result.assessed_controls == 2
        assert result.compliant_count == 1
        assert result.non_compliant_count == 1
        assert result.overall_score == 50.0
        assert result.findings[0]["evidence_reviewed"] == ["ropa.xlsx", "dpia.pdf"]
        assert result.findings[1]["rationale"] == "No evidence found for this control."
        rows = control_assessment_repo.create_many.call_args.args[1]
        assert [row["rating"] for row in rows] == ["compliant", "non_compliant"]
        assert all(row["assessment_result_id"] == result.id for row in rows)

    @pytest.mark.asyncio()
    async def test_learning_improvements_boost_confidence(self, tenant_id: uuid.UUID) -> None:
        evidence_repo = AsyncMock()
        evidence_repo.list_recent_by_types.return_value = [make_fake_evidence(verified=False)]
        improvement_repo = AsyncMock()
        improvement_repo.count_for_control.return_value = 2
        service = self._make_service(
            catalog_repo=self._catalog([make_fake_catalog_control()]),
            evidence_repo=evidence_repo,
            improvement_repo=improvement_repo,
        )

        result = await service.run_assessment(tenant_id, "gdpr")

        finding = result.findings[0]
        assert finding["rating"] == "non_compliant"
        assert finding["confidence"] == pytest.approx(0.8)
        assert finding["requires_review"] is False

    @pytest.mark.asyncio()
    async def test_changed_rating_requires_review(self, tenant_id: uuid.UUID) -> None:
        evidence_repo = AsyncMock()
        evidence_repo.list_recent_by_types.return_value = [make_fake_evidence()]
        control_assessment_repo = AsyncMock()
        control_assessment_repo.latest.return_value = SimpleNamespace(rating="non_compliant", rationale="none")
        service = self._make_service(
            catalog_repo=self._catalog([make_fake_catalog_control()]),
            evidence_repo=evidence_repo,
            control_assessment_repo=control_assessment_repo,
        )

        result = await service.run_assessment(tenant_id, "gdpr")

        assert result.findings[0]["rating"] == "compliant"
        assert result.findings[0]["requires_review"] is True

    @pytest.mark.asyncio()
    async def test_evidence_review_disabled_marks_not_applicable(self, tenant_id: uuid.UUID) -> None:
        evidence_repo = AsyncMock()
        service = self._make_service(
            catalog_repo=self._catalog([make_fake_catalog_control(), make_fake_catalog_control()]),
            evidence_repo=evidence_repo,
        )

        result = await service.run_assessment(tenant_id, "gdpr", config=AssessmentConfig(include_evidence=False))

        assert result.not_applicable_count == 2
        assert result.assessed_controls == 0
        assert result.overall_score == 0.0
        evidence_repo.list_recent_by_types.assert_not_called()

    @pytest.mark.asyncio()
    async def test_run_assessment_unknown_framework_raises(self, tenant_id: uuid.UUID) -> None:
        service = self._make_service(catalog_repo=self._catalog([]))

        with pytest.raises(NotFoundError):
            await service.run_assessment(tenant_id, "unknown")

    @pytest.mark.asyncio()
    async def test_scheduled_run_records_failures_and_advances_schedules(self, tenant_id: uuid.UUID) -> None:
        """A failing schedule stores a failed result and still gets its next run."""
        healthy = make_fake_schedule(tenant_id)
        broken = make_fake_schedule(tenant_id, framework_id="retired-framework")
        schedule_repo = make_savepoint_repo()
        schedule_repo.list_due.return_value = [healthy, broken]
        result_repo = AsyncMock()
        result_repo.create.side_effect = lambda tenant, fields: make_fake_result(tenant, **fields)
        service = self._make_service(
            schedule_repo=schedule_repo, result_repo=result_repo, catalog_repo=self._catalog([])
        )
        now = datetime(2026, 3, 2, 2, 0, tzinfo=UTC)

        summary = await service.run_scheduled_assessments(now)

        assert summary == {"executed": 2, "succeeded": 1, "failed": 1}
        failed_fields = result_repo.create.call_args_list[1].args[1]
        assert failed_fields["status"] == "failed"
        assert "retired-framework" in failed_fields["error_message"]
        statuses = [call.args[2] for call in schedule_repo.record_run.call_args_list]
        assert statuses == ["completed", "failed"]
        next_runs = {call.args[3] for call in schedule_repo.record_run.call_args_list}
        assert next_runs == {datetime(2026, 3, 9, 2, 0, tzinfo=UTC)}

    @pytest.mark.asyncio()
    async def test_scheduled_run_never_raises(self, tenant_id: uuid.UUID) -> None:
        schedule_repo = make_savepoint_repo()
        schedule_repo.list_due.return_value = [make_fake_schedule(tenant_id)]
        schedule_repo.record_run.side_effect = RuntimeError("database gone")
        service = self._make_service(schedule_repo=schedule_repo, catalog_repo=self._catalog([]))

        summary = await service.run_scheduled_assessments()

        assert summary == {"executed": 1, "succeeded": 0, "failed": 1}

    @pytest.mark.asyncio()
    async def test_resuming_schedule_moves_stale_next_run(self, mock_tenant: TenantContext) -> None:
        stale = datetime.now(UTC) - timedelta(days=30)
        schedule = make_fake_schedule(mock_tenant.tenant_id, is_active=False, next_run_at=stale)
        schedule_repo = make_savepoint_repo()
        schedule_repo.get.return_value = schedule
        schedule_repo.save.side_effect = lambda item: item
        service = self._make_service(schedule_repo=schedule_repo)

        result = await service.set_schedule_active(mock_tenant, schedule.id, True)

        assert result.is_active is True
        assert result.next_run_at > datetime.now(UTC)

    @pytest.mark.asyncio()
    async def test_update_frequency_rejects_unknown_value(self, mock_tenant: TenantContext) -> None:
        schedule_repo = make_savepoint_repo()
        schedule_repo.get.return_value = make_fake_schedule(mock_tenant.tenant_id)
        service = self._make_service(schedule_repo=schedule_repo)

        with pytest.raises(ValidationError):
            await service.update_schedule_frequency(mock_tenant, uuid.uuid4(), "hourly")
        schedule_repo.save.assert_not_called()

    @pytest.mark.asyncio()
    async def test_get_result_is_tenant_scoped(self, mock_tenant: TenantContext) -> None:
        result_repo = AsyncMock()
        result_repo.get.return_value = None
        service = self._make_service(result_repo=result_repo)
        result_id = uuid.uuid4()

        with pytest.raises(NotFoundError):
            await service.get_result(mock_tenant, result_id)
        result_repo.get.assert_awaited_once_with(result_id, mock_tenant.tenant_id)


# ---------------------------------------------------------------------------
# LearningService tests
# ---------------------------------------------------------------------------


class TestLearningService:
    """Tests for LearningService — feedback capture and the improvement loop."""

    def _make_service(
        self,
        feedback_repo: AsyncMock | None = None,
        improvement_repo: AsyncMock | None = None,
        pattern_repo: AsyncMock | None = None,
        control_assessment_repo: AsyncMock | None = None,
        result_repo: AsyncMock | None = None,
        catalog_repo: AsyncMock | None = None,
    ) -> LearningService:
        if improvement_repo is None:
            improvement_repo = AsyncMock()
            improvement_repo.exists_for_feedback.return_value = False
        return LearningService(
            feedback_repo=feedback_repo or make_savepoint_repo(),
            improvement_repo=improvement_repo,
            pattern_repo=pattern_repo or AsyncMock(),
            control_assessment_repo=control_assessment_repo or AsyncMock(),
            result_repo=result_repo or AsyncMock(),
            catalog_repo=catalog_repo or AsyncMock(),
        )

    @pytest.mark.asyncio()
    async def test_record_feedback_snapshots_latest_assessment(self, mock_tenant: TenantContext) -> None:
        control_assessment_repo = AsyncMock()
        control_assessment_repo.latest.return_value = SimpleNamespace(rating="compliant", rationale="2 of 2 verified.")
        feedback_repo = make_savepoint_repo()
        service = self._make_service(feedback_repo=feedback_repo, control_assessment_repo=control_assessment_repo)

        await service.record_feedback(mock_tenant, "GDPR-32-1", "false_positive", corrected_rating="non_compliant")

        tenant_id, fields = feedback_repo.create.call_args.args
        assert tenant_id == mock_tenant.tenant_id
        assert fields["original_rating"] == "compliant"
        assert fields["original_rationale"] == "2 of 2 verified."
        assert fields["corrected_rating"] == "non_compliant"
        assert fields["submitted_by"] == mock_tenant.user_id

    @pytest.mark.asyncio()
    async def test_false_positive_rewrites_prompt(self, tenant_id: uuid.UUID) -> None:
        feedback = make_fake_feedback(tenant_id)
        control = make_fake_catalog_control()
        feedback_repo = make_savepoint_repo()
        feedback_repo.list_unprocessed.return_value = [feedback]
        catalog_repo = AsyncMock()
        catalog_repo.get_control.return_value = control
        improvement_repo = AsyncMock()
        improvement_repo.exists_for_feedback.return_value = False
        service = self._make_service(
            feedback_repo=feedback_repo, improvement_repo=improvement_repo, catalog_repo=catalog_repo
        )

        summary = await service.process_feedback()

        assert summary == {"processed": 1, "applied": 1}
        prompt = catalog_repo.update_control_prompt.call_args.args[1]
        assert prompt.startswith("Assess security of processing.")
        assert prompt.endswith(SPECIFICITY_CLAUSE)
        fields = improvement_repo.create.call_args.args[0]
        assert fields["feedback_id"] == feedback.id
        assert fields["reason"] == "False positive identified"
        assert fields["improved_prompt"] == prompt
        feedback_repo.mark_processed.assert_awaited_once_with(feedback, ANY, applied=True)

    @pytest.mark.asyncio()
    async def test_already_applied_feedback_is_not_reapplied(self, tenant_id: uuid.UUID) -> None:
        feedback = make_fake_feedback(tenant_id)
        feedback_repo = make_savepoint_repo()
        feedback_repo.list_unprocessed.return_value = [feedback]
        improvement_repo = AsyncMock()
        improvement_repo.exists_for_feedback.return_value = True
        catalog_repo = AsyncMock()
        service = self._make_service(
            feedback_repo=feedback_repo, improvement_repo=improvement_repo, catalog_repo=catalog_repo
        )

        summary = await service.process_feedback()

        assert summary == {"processed": 1, "applied": 0}
        improvement_repo.create.assert_not_called()
        catalog_repo.update_control_prompt.assert_not_called()
        feedback_repo.mark_processed.assert_awaited_once_with(feedback, ANY, applied=True)

    @pytest.mark.asyncio()
    async def test_unknown_event_is_processed_without_applying(self, tenant_id: uuid.UUID) -> None:
        feedback = make_fake_feedback(tenant_id, event_type="mystery")
        feedback_repo = make_savepoint_repo()
        feedback_repo.list_unprocessed.return_value = [feedback]
        improvement_repo = AsyncMock()
        improvement_repo.exists_for_feedback.return_value = False
        service = self._make_service(feedback_repo=feedback_repo, improvement_repo=improvement_repo)

        summary = await service.process_feedback()

        assert summary == {"processed": 1, "applied": 0}
        improvement_repo.create.assert_not_called()
        feedback_repo.mark_processed.assert_awaited_once_with(feedback, ANY, applied=False)

    @pytest.mark.asyncio()
    async def test_evidence_pattern_feedback_records_pattern(self, tenant_id: uuid.UUID) -> None:
        feedback = make_fake_feedback(
            tenant_id, event_type="evidence_pattern", feedback="SOC report covers this control"
        )
        feedback_repo = make_savepoint_repo()
        feedback_repo.list_unprocessed.return_value = [feedback]
        pattern_repo = AsyncMock()
        catalog_repo = AsyncMock()
        service = self._make_service(feedback_repo=feedback_repo, pattern_repo=pattern_repo, catalog_repo=catalog_repo)

        await service.process_feedback()

        pattern_repo.record.assert_awaited_once_with(
            tenant_id, "GDPR-32-1", "SOC report covers this control", "non_compliant", ANY
        )
        catalog_repo.get_control.assert_not_called()

    @pytest.mark.asyncio()
    async def test_failing_row_is_left_for_retry(self, tenant_id: uuid.UUID) -> None:
        broken = make_fake_feedback(tenant_id)
        healthy = make_fake_feedback(tenant_id, event_type="rating_override")
        feedback_repo = make_savepoint_repo()
        feedback_repo.list_unprocessed.return_value = [broken, healthy]
        improvement_repo = AsyncMock()
        improvement_repo.exists_for_feedback.side_effect = [RuntimeError("lock timeout"), False]
        service = self._make_service(feedback_repo=feedback_repo, improvement_repo=improvement_repo)

        summary = await service.process_feedback()

        assert summary == {"processed": 1, "applied": 1}
        feedback_repo.mark_processed.assert_awaited_once_with(healthy, ANY, applied=True)

    @pytest.mark.asyncio()
    async def test_learn_from_assessment_queues_prompt_suggestions(self, mock_tenant: TenantContext) -> None:
        result = make_fake_result(
            mock_tenant.tenant_id,
            findings=[
                {
                    "control_id": "GDPR-32-1",
                    "rating": "partially_compliant",
                    "rationale": "Only 1 of 2 evidence items verified.",
                    "requires_review": True,
                    "evidence_reviewed": ["b.pdf", "a.pdf"],
                },
                {"control_id": "GDPR-30-1", "rating": "non_compliant", "requires_review": True},
                {"control_id": "GDPR-5-1", "rating": "compliant", "requires_review": False},
            ],
        )
        result_repo = AsyncMock()
        result_repo.get.return_value = result
        control_assessment_repo = AsyncMock()
        control_assessment_repo.count_review_flags.side_effect = lambda tenant_id, control_id: (
            3 if control_id == "GDPR-32-1" else 1
        )
        feedback_repo = make_savepoint_repo()
        feedback_repo.has_pending_suggestion.return_value = False
        pattern_repo = AsyncMock()
        service = self._make_service(
            feedback_repo=feedback_repo,
            pattern_repo=pattern_repo,
            control_assessment_repo=control_assessment_repo,
            result_repo=result_repo,
        )

        summary = await service.learn_from_assessment(mock_tenant, result.id)

        assert summary == {"patterns": 1, "improvements": 1}
        pattern_repo.record.assert_awaited_once_with(
            mock_tenant.tenant_id, "GDPR-32-1", "a.pdf,b.pdf", "partially_compliant", ANY
        )
        fields = feedback_repo.create.call_args.args[1]
        assert fields["event_type"] == "prompt_improvement"
        assert fields["improvement_suggestion"] == (
            "Consider revising prompt to address: Only 1 of 2 evidence items verified."
        )

    @pytest.mark.asyncio()
    async def test_learn_from_missing_result_raises(self, mock_tenant: TenantContext) -> None:
        result_repo = AsyncMock()
        result_repo.get.return_value = None
        service = self._make_service(result_repo=result_repo)

        with pytest.raises(NotFoundError):
            await service.learn_from_assessment(mock_tenant, uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_metrics_without_feedback_are_zero(self) -> None:
        feedback_repo = make_savepoint_repo()
        feedback_repo.count.return_value = 0
        service = self._make_service(feedback_repo=feedback_repo)

        assert await service.get_learning_metrics() == LearningMetrics()

    @pytest.mark.asyncio()
    async def test_metrics_aggregate_feedback(self, tenant_id: uuid.UUID) -> None:
        def fake_count(
            tenant_id: uuid.UUID | None = None,
            event_type: str | None = None,
            applied: bool | None = None,
            unprocessed: bool | None = None,
        ) -> int:
            if applied:
                return 4
            if event_type == "false_positive":
                return 2
            if event_type == "false_negative":
                return 1
            if unprocessed:
                return 3
            return 10

        feedback_repo = make_savepoint_repo()
        feedback_repo.count.side_effect = fake_count
        feedback_repo.top_applied_controls.return_value = [("GDPR-32-1", 4)]
        catalog_repo = AsyncMock()
        catalog_repo.control_titles.return_value = {"GDPR-32-1": "Security of processing"}
        service = self._make_service(feedback_repo=feedback_repo, catalog_repo=catalog_repo)

        metrics = await service.get_learning_metrics(tenant_id)

        assert metrics.total_feedback == 10
        assert metrics.applied_improvements == 4
        assert metrics.false_positive_rate == pytest.approx(0.2)
        assert metrics.false_negative_rate == pytest.approx(0.1)
        assert metrics.pending_review == 3
        assert metrics.average_confidence_gain == 0.05
        assert metrics.top_improved_controls[0].control_title == "Security of processing"
        assert metrics.top_improved_controls[0].confidence_change == pytest.approx(0.2)

    @pytest.mark.asyncio()
    async def test_improve_control_prompt(self) -> None:
        control = make_fake_catalog_control()
        catalog_repo = AsyncMock()
        catalog_repo.get_control.return_value = control
        service = self._make_service(catalog_repo=catalog_repo)

        prompt = await service.improve_control_prompt("GDPR-32-1", "Too lenient", suggestion="Require a signed policy")

        assert prompt == "Assess security of processing.\n\nAdditional consideration: Require a signed policy"
        catalog_repo.update_control_prompt.assert_awaited_once_with(control, prompt)

    @pytest.mark.asyncio()
    async def test_improve_unknown_control_raises(self) -> None:
        catalog_repo = AsyncMock()
        catalog_repo.get_control.return_value = None
        service = self._make_service(catalog_repo=catalog_repo)

        with pytest.raises(NotFoundError):
            await service.improve_control_prompt("NOPE-1", "feedback")
