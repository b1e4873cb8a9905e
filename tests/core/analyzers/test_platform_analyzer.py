"""Tests for the platform protection (Defender for Cloud) analyzer."""

from unittest.mock import patch

import pytest

from cloudposture.core.analyzers.platform import PlatformProtectionAnalyzer
from cloudposture.core.cancellation import CancellationToken
from cloudposture.core.findings import FindingCategory, Severity

VM = "Microsoft.Compute/virtualMachines"
SQL_SERVER = "Microsoft.Sql/servers"


@pytest.fixture
def analyzer() -> PlatformProtectionAnalyzer:
    return PlatformProtectionAnalyzer()


@pytest.fixture
def configured_tenant(make_resource, defender_pricing) -> list:
    """A production VM with Defender for Servers and every tenant setting in place."""
    return [
        make_resource(VM, "vm-web", {}, tags={"Environment": "Production"}),
        defender_pricing("VirtualMachines"),
        make_resource("Microsoft.Security/securityContacts", "default", {"email": "soc@example.com"}),
        make_resource("Microsoft.Security/autoProvisioningSettings", "default", {"autoProvision": "On"}),
        make_resource("Microsoft.Authorization/policyAssignments", "asb", {}),
        make_resource(
            "Microsoft.Security/automations",
            "alerts-to-soc",
            {"actions": [{"actionType": "LogicApp"}, {"actionType": "LogAnalytics"}]},
        ),
        make_resource("Microsoft.Security/locations/jitNetworkAccessPolicies", "jit-default", {}),
    ]


class TestPlatformProtectionAnalyzer:
    """Tests for PlatformProtectionAnalyzer."""

    @pytest.mark.asyncio
    async def test_empty_snapshot(self, analyzer) -> None:
        result = await analyzer.analyze([])

        assert result.score == 100.0
        assert result.findings == ()
        assert not result.is_enabled
        assert result.enabled_plans == 0
        assert result.plans["Servers"] == "Not enabled (0 resources)"
        assert result.secure_score_estimate == 100.0

    @pytest.mark.asyncio
    async def test_fully_configured(self, analyzer, configured_tenant) -> None:
        result = await analyzer.analyze(configured_tenant)

        assert result.findings == ()
        assert result.score == 100.0
        assert result.is_enabled
        assert result.enabled_plans == 1
        assert result.plans["Servers"] == "Enabled"
        assert result.security_contacts_configured
        assert result.protectable_resources == 1

    @pytest.mark.asyncio
    async def test_unprotected_production_vm(self, analyzer, make_resource) -> None:
        vm = make_resource(VM, "vm-web", {}, tags={"Environment": "Production"})

        result = await analyzer.analyze([vm])
        by_id = {f.resource_id: f for f in result.findings}

        plan = by_id["defender.servers"]
        assert plan.severity == Severity.HIGH
        assert plan.issue == "Found 1 virtual machines that require Defender for Servers protection"
        assert by_id[vm.id].control == "Production Security"
        for tenant_check in (
            "security.contacts",
            "auto.provisioning",
            "security.policies",
            "workflow.automation",
            "continuous.export",
            "jit.access",
            "adaptive.application.controls",
            "file.integrity.monitoring",
        ):
            assert tenant_check in by_id
        assert by_id["file.integrity.monitoring"].framework == "PCI DSS"
        assert by_id["security.score.optimization"].severity == Severity.MEDIUM

        assert not result.is_enabled
        assert result.high_severity_recommendations == 2
        assert result.medium_severity_recommendations == 6
        assert result.secure_score_estimate == 52.0
        assert result.score == 0.0

    @pytest.mark.asyncio
    async def test_vm_without_environment(self, analyzer, configured_tenant, make_resource) -> None:
        snapshot = configured_tenant + [make_resource(VM, "vm1", {})]

        result = await analyzer.analyze(snapshot)

        assert [f.control for f in result.findings] == ["Asset Management"]
        assert result.findings[0].severity == Severity.LOW

    @pytest.mark.asyncio
    async def test_sql_server_without_plan(self, analyzer, configured_tenant, make_resource) -> None:
        server = make_resource(SQL_SERVER, "sql-orders", {})

        result = await analyzer.analyze(configured_tenant + [server])
        ids = [f.resource_id for f in result.findings]

        assert ids[:2] == ["defender.sql", server.id]
        assert "security.score.optimization" in ids

    @pytest.mark.asyncio
    async def test_failure_becomes_finding(self, analyzer, configured_tenant) -> None:
        with patch.object(PlatformProtectionAnalyzer, "_check_plans", side_effect=RuntimeError("api down")):
            result = await analyzer.analyze(configured_tenant)

        assert len(result.findings) == 1
        assert result.findings[0].control == "Analysis Error"
        assert result.findings[0].category == FindingCategory.PLATFORM_PROTECTION
        assert "api down" in result.findings[0].issue

    @pytest.mark.asyncio
    async def test_cancelled_run_is_incomplete(self, analyzer, make_resource) -> None:
        token = CancellationToken()
        token.cancel()

        result = await analyzer.analyze([make_resource(VM, "vm-web", {})], cancellation=token)

        assert not result.complete
        assert result.findings == ()
