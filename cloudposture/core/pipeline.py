"""Posture aggregation: fetch, analyze both domains, combine and score.

The aggregator is all-or-nothing. It either returns a complete
CombinedResult or raises; it never hands back a partially combined one.
"""

import asyncio
from typing import Iterable, Optional, Sequence

import structlog

from cloudposture.core.analyzers.network import NetworkPostureAnalyzer
from cloudposture.core.analyzers.platform import PlatformProtectionAnalyzer
from cloudposture.core.cancellation import CancellationToken, is_cancelled
from cloudposture.core.exceptions import PipelineCancelledError, PostureError, SnapshotUnavailableError
from cloudposture.core.findings import Finding, FindingCategory, Severity, dedupe_findings
from cloudposture.core.inventory import DelegatedIdentity, ResourceInventory
from cloudposture.core.resources import Resource
from cloudposture.core.results import CombinedResult, NetworkPostureResult, PlatformProtectionResult
from cloudposture.core.scoring import (
    DEFAULT_POLICY,
    ScoringPolicy,
    combine_scores,
    cross_domain_penalty,
    final_score,
)

logger = structlog.get_logger(__name__)

__all__ = [
    "DelegatedIdentity",
    "PostureAggregator",
    "cross_domain_findings",
    "run_posture_pipeline",
    "run_posture_pipeline_with_delegated_identity",
]


def cross_domain_findings(
    network: NetworkPostureResult,
    platform: PlatformProtectionResult,
    identity: Optional[DelegatedIdentity] = None,
) -> list[Finding]:
    """Findings that only make sense with both domain results in hand.

    Pure function of the two results. Nothing is produced for an empty
    snapshot.
    """
    if max(network.resources_assessed, platform.resources_assessed) == 0:
        return []

    findings: list[Finding] = []
    nsgs = network.network_security_groups

    if network.count(Severity.HIGH) > 0 and not platform.is_enabled:
        findings.append(
            Finding(
                category=FindingCategory.GOVERNANCE,
                resource_id="governance.alignment",
                resource_name="Security Governance Alignment",
                control="Holistic Security Management",
                issue=(
                    "High-severity network security issues detected but Microsoft Defender "
                    "for Cloud is not fully enabled"
                ),
                recommendation=(
                    "Enable comprehensive Defender for Cloud protection to complement network "
                    "security controls and provide unified security monitoring"
                ),
                severity=Severity.HIGH,
                framework="Security Integration Best Practice",
            )
        )

    if nsgs == 0 and not platform.is_enabled:
        findings.append(
            Finding(
                category=FindingCategory.MONITORING,
                resource_id="monitoring.coverage",
                resource_name="Security Monitoring Coverage",
                control="Security Observability",
                issue="Insufficient security monitoring coverage across network and endpoint protection",
                recommendation=(
                    "Enable Network Watcher, NSG flow logs and Defender for Cloud for "
                    "comprehensive security monitoring"
                ),
                severity=Severity.CRITICAL,
                framework="Security Monitoring Best Practice",
            )
        )

    if network.threat_intelligence_sources == 0 and platform.enabled_plans == 0:
        findings.append(
            Finding(
                category=FindingCategory.THREAT_DETECTION,
                resource_id="threat.detection",
                resource_name="Threat Detection Capabilities",
                control="Advanced Threat Protection",
                issue="Limited threat detection capabilities across network and endpoint layers",
                recommendation=(
                    "Deploy Azure Firewall with threat intelligence or a WAF, and enable "
                    "Defender plans for workload threat detection"
                ),
                severity=Severity.HIGH,
                framework="NIST Cybersecurity Framework",
            )
        )

    if platform.security_contacts_configured and nsgs == 0:
        findings.append(
            Finding(
                category=FindingCategory.INCIDENT_RESPONSE,
                resource_id="incident.response.readiness",
                resource_name="Incident Response Readiness",
                control="Incident Containment",
                issue=(
                    "Security contacts configured but network segmentation capabilities are "
                    "limited for incident containment"
                ),
                recommendation="Implement network segmentation with NSGs so incidents can be contained",
                severity=Severity.MEDIUM,
                framework="Incident Response Best Practice",
            )
        )

    if platform.enabled_plans > 5 and nsgs < 3:
        findings.append(
            Finding(
                category=FindingCategory.COST_OPTIMIZATION,
                resource_id="cost.optimization",
                resource_name="Security Cost Optimization",
                control="Cost-Effective Security",
                issue="Multiple Defender plans may be enabled but basic network security controls are limited",
                recommendation="Balance spending by strengthening basic network controls before adding premium plans",
                severity=Severity.LOW,
                framework="Cost Optimization Best Practice",
            )
        )

    if identity is not None:
        findings.append(
            Finding(
                category=FindingCategory.DELEGATED_ACCESS,
                resource_id=f"oauth.security.{identity.client_id}",
                resource_name="OAuth Security Context",
                control="Delegated Access Security",
                issue=(
                    "OAuth-delegated security analysis provides enhanced visibility but requires "
                    "ongoing token security monitoring"
                ),
                recommendation=(
                    "Rotate delegated credentials regularly, scope them to least privilege and "
                    "monitor token usage"
                ),
                severity=Severity.MEDIUM,
                framework="OAuth Security Best Practice",
            )
        )

    return findings


class PostureAggregator:
    """Runs both domain analyzers over one snapshot and combines their results."""

    def __init__(
        self,
        inventory: Optional[ResourceInventory] = None,
        network_analyzer: Optional[NetworkPostureAnalyzer] = None,
        platform_analyzer: Optional[PlatformProtectionAnalyzer] = None,
        policy: Optional[ScoringPolicy] = None,
    ):
        """Initialize the aggregator.

        Args:
            inventory: Source of snapshots for ``run`` and the delegated variant
            network_analyzer: Network domain analyzer (default built from ``policy``)
            platform_analyzer: Platform domain analyzer (default built from ``policy``)
            policy: Scoring policy shared by the analyzers and the combination step
        """
        self.inventory = inventory
        self.policy = policy or DEFAULT_POLICY
        self.network_analyzer = network_analyzer or NetworkPostureAnalyzer(policy=self.policy)
        self.platform_analyzer = platform_analyzer or PlatformProtectionAnalyzer(policy=self.policy)

    async def assess(
        self,
        resources: Iterable[Resource],
        identity: Optional[DelegatedIdentity] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> CombinedResult:
        """Assess a snapshot the caller already holds."""
        snapshot = tuple(resources)
        logger.info("posture_assessment_started", resources=len(snapshot), delegated=identity is not None)

        network, platform = await asyncio.gather(
            self.network_analyzer.analyze(snapshot, identity=identity, cancellation=cancellation),
            self.platform_analyzer.analyze(snapshot, identity=identity, cancellation=cancellation),
        )

        if is_cancelled(cancellation):
            logger.warning("posture_assessment_cancelled", reason=cancellation.reason)
            raise PipelineCancelledError(cancellation.reason or "cancelled")

        merged = dedupe_findings(list(network.findings) + list(platform.findings))
        base = combine_scores(network.score, platform.score, self.policy)
        penalty = cross_domain_penalty(
            network_critical=network.count(Severity.CRITICAL),
            platform_critical=platform.count(Severity.CRITICAL),
            total_critical=sum(1 for f in merged if f.severity == Severity.CRITICAL),
            protection_enabled=platform.is_enabled,
            network_security_groups=network.network_security_groups,
            policy=self.policy,
        )
        score = final_score(base, penalty)

        findings = dedupe_findings(merged + cross_domain_findings(network, platform, identity))

        result = CombinedResult(
            network=network,
            platform=platform,
            findings=tuple(findings),
            base_score=base,
            cross_domain_penalty=penalty,
            score=score,
            delegated=identity is not None,
        )
        logger.info(
            "posture_assessment_completed",
            score=score,
            base_score=base,
            penalty=penalty,
            findings=len(findings),
            delegated=result.delegated,
        )
        return result

    def _require_inventory(self) -> ResourceInventory:
        if self.inventory is None:
            raise SnapshotUnavailableError("No resource inventory configured")
        return self.inventory

    async def run(
        self,
        subscription_ids: Sequence[str],
        cancellation: Optional[CancellationToken] = None,
    ) -> CombinedResult:
        """Fetch with the ambient identity and assess."""
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        inventory = self._require_inventory()

        try:
            resources = await inventory.fetch_resources(subscription_ids, cancellation)
        except PostureError:
            raise
        except Exception as e:
            logger.error("snapshot_fetch_failed", error=str(e), exc_info=True)
            raise SnapshotUnavailableError(f"Failed to fetch resources: {e}") from e

        return await self.assess(resources, cancellation=cancellation)

    async def run_with_delegated_identity(
        self,
        subscription_ids: Sequence[str],
        client_id: str,
        organization_id: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> CombinedResult:
        """Fetch and assess under a delegated identity, falling back to ambient identity.

        Any failure on the delegated path is logged and the whole assessment is
        repeated on the ambient path; only an ambient failure reaches the
        caller. Cancellation is never retried.
        """
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        inventory = self._require_inventory()
        identity = DelegatedIdentity(client_id=client_id, organization_id=organization_id)

        try:
            resources = await inventory.fetch_resources_with_delegated_identity(
                subscription_ids, client_id, organization_id, cancellation
            )
            return await self.assess(resources, identity=identity, cancellation=cancellation)
        except PipelineCancelledError:
            raise
        except Exception as e:
            logger.warning(
                "delegated_assessment_failed_falling_back",
                client_id=client_id,
                organization_id=organization_id,
                error=str(e),
            )

        return await self.run(subscription_ids, cancellation)


async def run_posture_pipeline(
    inventory: ResourceInventory,
    subscription_ids: Sequence[str],
    cancellation: Optional[CancellationToken] = None,
    policy: Optional[ScoringPolicy] = None,
) -> CombinedResult:
    """Assess the subscriptions' snapshot with the ambient identity."""
    return await PostureAggregator(inventory, policy=policy).run(subscription_ids, cancellation)


async def run_posture_pipeline_with_delegated_identity(
    inventory: ResourceInventory,
    subscription_ids: Sequence[str],
    client_id: str,
    organization_id: str,
    cancellation: Optional[CancellationToken] = None,
    policy: Optional[ScoringPolicy] = None,
) -> CombinedResult:
    """Assess under a delegated identity, falling back to ambient identity on failure."""
    return await PostureAggregator(inventory, policy=policy).run_with_delegated_identity(
        subscription_ids, client_id, organization_id, cancellation
    )
