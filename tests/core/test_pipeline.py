"""Tests for posture aggregation and the pipeline entry points."""

from typing import List, Optional, Sequence

import pytest

from cloudposture.core.analyzers.network import NetworkPostureAnalyzer
from cloudposture.core.cancellation import CancellationToken
from cloudposture.core.exceptions import PipelineCancelledError, SnapshotUnavailableError
from cloudposture.core.findings import Finding, FindingCategory, Severity
from cloudposture.core.inventory import ResourceInventory, SnapshotInventory
from cloudposture.core.pipeline import (
    DelegatedIdentity,
    PostureAggregator,
    cross_domain_findings,
    run_posture_pipeline,
    run_posture_pipeline_with_delegated_identity,
)
from cloudposture.core.resources import Resource
from cloudposture.core.results import NetworkPostureResult, PlatformProtectionResult
from cloudposture.core.scoring import clamp_score

from conftest import SUBSCRIPTION

VNET = "Microsoft.Network/virtualNetworks"


def _finding(resource_id: str, issue: str, category: FindingCategory, severity=Severity.MEDIUM) -> Finding:
    return Finding(
        category=category,
        resource_id=resource_id,
        resource_name=resource_id,
        control="Control",
        issue=issue,
        recommendation="Fix it",
        severity=severity,
    )


class StubAnalyzer:
    """Returns a canned domain result."""

    def __init__(self, result):
        self.result = result

    async def analyze(self, resources, identity=None, cancellation=None):
        return self.result


class RaisingLeaf:
    """Encryption leaf analyzer that always fails."""

    name = "Data Encryption"
    category = FindingCategory.DATA_ENCRYPTION

    async def analyze(self, resources, identity=None, cancellation=None):
        raise RuntimeError("key vault unreachable")


class FailingInventory(ResourceInventory):
    """Inventory whose fetches raise the given exceptions."""

    def __init__(self, resources: List[Resource], ambient_error=None, delegated_error=None):
        self.resources = resources
        self.ambient_error = ambient_error
        self.delegated_error = delegated_error

    async def fetch_resources(
        self, subscription_ids: Sequence[str], cancellation: Optional[CancellationToken] = None
    ) -> List[Resource]:
        if self.ambient_error is not None:
            raise self.ambient_error
        return list(self.resources)

    async def fetch_resources_with_delegated_identity(
        self, subscription_ids, client_id, organization_id, cancellation=None
    ) -> List[Resource]:
        raise self.delegated_error


@pytest.fixture
def snapshot(open_ssh_nsg, make_resource, defender_pricing) -> List[Resource]:
    return [
        open_ssh_nsg,
        make_resource("Microsoft.Compute/virtualMachines", "vm-api-prod", {}),
        make_resource("Microsoft.Storage/storageAccounts", "stdata", {"supportsHttpsTrafficOnly": False}),
        defender_pricing("StorageAccounts"),
    ]


class TestPostureAggregator:
    """Tests for PostureAggregator.assess."""

    @pytest.mark.asyncio
    async def test_empty_snapshot(self) -> None:
        result = await PostureAggregator().assess([])

        assert result.network.score == 100.0
        assert result.platform.score == 100.0
        assert result.score == 100.0
        assert result.cross_domain_penalty == 0.0
        assert result.findings == ()
        assert result.resources_assessed == 0

    @pytest.mark.asyncio
    async def test_score_combination(self, snapshot) -> None:
        result = await PostureAggregator().assess(snapshot)

        assert result.base_score == round(result.network.score * 0.4 + result.platform.score * 0.6, 2)
        assert 0 <= result.cross_domain_penalty <= 25
        assert result.score == clamp_score(result.base_score - result.cross_domain_penalty)
        assert not result.delegated

    @pytest.mark.asyncio
    async def test_network_findings_come_first_and_duplicates_dropped(self) -> None:
        shared = _finding("res-1", "Shared issue", FindingCategory.NETWORK)
        duplicate = _finding("res-1", "Shared issue", FindingCategory.PLATFORM_PROTECTION)
        platform_only = _finding("res-2", "Platform issue", FindingCategory.PLATFORM_PROTECTION)
        network = NetworkPostureResult(score=80.0, findings=(shared,), resources_assessed=2, network_security_groups=3)
        platform = PlatformProtectionResult(
            score=60.0,
            findings=(duplicate, platform_only),
            resources_assessed=2,
            is_enabled=True,
            enabled_plans=1,
        )
        aggregator = PostureAggregator(network_analyzer=StubAnalyzer(network), platform_analyzer=StubAnalyzer(platform))

        result = await aggregator.assess([])

        assert list(result.findings) == [shared, platform_only]
        assert result.findings[0].category == FindingCategory.NETWORK
        assert result.base_score == 68.0
        assert result.score == 68.0

    @pytest.mark.asyncio
    async def test_cross_domain_penalty_applied(self) -> None:
        critical = _finding("nsg-1", "Open to internet", FindingCategory.NETWORK, Severity.CRITICAL)
        network = NetworkPostureResult(score=50.0, findings=(critical,), resources_assessed=1, network_security_groups=1)
        platform = PlatformProtectionResult(score=50.0, resources_assessed=1, is_enabled=False)
        aggregator = PostureAggregator(network_analyzer=StubAnalyzer(network), platform_analyzer=StubAnalyzer(platform))

        result = await aggregator.assess([])

        assert result.base_score == 50.0
        assert result.cross_domain_penalty == 10.0
        assert result.score == 40.0

    @pytest.mark.asyncio
    async def test_synthetic_findings_do_not_change_score(self, make_resource) -> None:
        result = await PostureAggregator().assess([make_resource(VNET, "vnet-hub", {})])
        by_id = {f.resource_id: f for f in result.findings}

        assert by_id["monitoring.coverage"].severity == Severity.CRITICAL
        assert by_id["threat.detection"].severity == Severity.HIGH
        assert by_id["governance.alignment"].category == FindingCategory.GOVERNANCE
        assert result.cross_domain_penalty == 0.0
        assert result.score == result.base_score

    @pytest.mark.asyncio
    async def test_leaf_failure_is_carried_into_combined_result(self, snapshot) -> None:
        aggregator = PostureAggregator(network_analyzer=NetworkPostureAnalyzer(encryption=RaisingLeaf()))

        result = await aggregator.assess(snapshot)
        failures = [f for f in result.findings if f.control == "Analysis Error"]

        assert len(failures) == 1
        assert failures[0].category == FindingCategory.DATA_ENCRYPTION
        assert "key vault unreachable" in failures[0].issue
        assert result.network.open_to_internet_rules == 1
        assert 0 <= result.score <= 100

    @pytest.mark.asyncio
    async def test_cancelled_assessment_raises(self, snapshot) -> None:
        token = CancellationToken()
        token.cancel("shutdown")

        with pytest.raises(PipelineCancelledError):
            await PostureAggregator().assess(snapshot, cancellation=token)


class TestCrossDomainFindings:
    """Tests for the pure cross-domain finding builder."""

    def test_nothing_for_empty_snapshot(self) -> None:
        identity = DelegatedIdentity(client_id="c", organization_id="o")

        assert cross_domain_findings(NetworkPostureResult(), PlatformProtectionResult(), identity) == []

    def test_incident_response_and_cost(self) -> None:
        network = NetworkPostureResult(resources_assessed=10, network_security_groups=0, threat_intelligence_sources=1)
        platform = PlatformProtectionResult(
            resources_assessed=10, is_enabled=True, enabled_plans=6, security_contacts_configured=True
        )

        ids = [f.resource_id for f in cross_domain_findings(network, platform)]

        assert ids == ["incident.response.readiness", "cost.optimization"]

    def test_delegated_identity_finding(self) -> None:
        network = NetworkPostureResult(resources_assessed=1, network_security_groups=4, threat_intelligence_sources=1)
        platform = PlatformProtectionResult(resources_assessed=1, is_enabled=True, enabled_plans=1)

        findings = cross_domain_findings(network, platform, DelegatedIdentity("app-123", "org-9"))

        assert [f.resource_id for f in findings] == ["oauth.security.app-123"]
        assert findings[0].category == FindingCategory.DELEGATED_ACCESS
        assert findings[0].severity == Severity.MEDIUM


class TestPipelineEntryPoints:
    """Tests for run, the delegated variant and its fallback."""

    @pytest.mark.asyncio
    async def test_run_empty_inventory(self) -> None:
        result = await run_posture_pipeline(SnapshotInventory([]), [SUBSCRIPTION])

        assert result.score == 100.0
        assert result.findings == ()

    @pytest.mark.asyncio
    async def test_run_without_inventory(self) -> None:
        with pytest.raises(SnapshotUnavailableError):
            await PostureAggregator().run([SUBSCRIPTION])

    @pytest.mark.asyncio
    async def test_fetch_errors_are_wrapped(self, snapshot) -> None:
        inventory = FailingInventory(snapshot, ambient_error=ConnectionError("graph timeout"))

        with pytest.raises(SnapshotUnavailableError, match="graph timeout"):
            await run_posture_pipeline(inventory, [SUBSCRIPTION])

    @pytest.mark.asyncio
    async def test_run_cancelled_before_fetch(self, snapshot) -> None:
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PipelineCancelledError):
            await run_posture_pipeline(SnapshotInventory(snapshot), [], token)

    @pytest.mark.asyncio
    async def test_delegated_success(self, snapshot) -> None:
        inventory = SnapshotInventory(snapshot, allow_delegated=True)

        result = await run_posture_pipeline_with_delegated_identity(inventory, [], "client-1", "org-1")

        assert result.delegated
        assert "oauth.security.client-1" in [f.resource_id for f in result.findings]

    @pytest.mark.asyncio
    async def test_delegated_falls_back_to_ambient(self, snapshot) -> None:
        inventory = SnapshotInventory(snapshot, allow_delegated=False)

        delegated = await run_posture_pipeline_with_delegated_identity(inventory, [], "client-1", "org-1")
        ambient = await run_posture_pipeline(inventory, [])

        assert delegated == ambient
        assert not delegated.delegated
        assert not [f for f in delegated.findings if f.category == FindingCategory.DELEGATED_ACCESS]

    @pytest.mark.asyncio
    async def test_delegated_runtime_error_falls_back(self, snapshot) -> None:
        inventory = FailingInventory(snapshot, delegated_error=RuntimeError("token expired"))

        result = await run_posture_pipeline_with_delegated_identity(inventory, [], "client-1", "org-1")

        assert not result.delegated
        assert result.resources_assessed == len(snapshot)

    @pytest.mark.asyncio
    async def test_delegated_cancellation_is_not_retried(self, snapshot) -> None:
        inventory = FailingInventory(snapshot, delegated_error=PipelineCancelledError("stop"))

        with pytest.raises(PipelineCancelledError):
            await run_posture_pipeline_with_delegated_identity(inventory, [], "client-1", "org-1")

    @pytest.mark.asyncio
    async def test_fallback_failure_reaches_caller(self, snapshot) -> None:
        inventory = FailingInventory(
            snapshot,
            ambient_error=ConnectionError("graph down"),
            delegated_error=RuntimeError("token expired"),
        )

        with pytest.raises(SnapshotUnavailableError):
            await run_posture_pipeline_with_delegated_identity(inventory, [], "client-1", "org-1")
