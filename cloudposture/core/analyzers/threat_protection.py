"""Advanced threat protection coverage for individual workloads."""

from typing import Optional

from cloudposture.core.analyzers.base import Check, LeafAnalyzer, Snapshot
from cloudposture.core.cancellation import CancellationToken
from cloudposture.core.findings import Finding, FindingCategory, Severity
from cloudposture.core.protection import ProtectionCoverage, ProtectionPlan, derive_coverage
from cloudposture.core.resources import PropertiesDocument, Resource, ResourceKind, count, select
from cloudposture.core.rules import Predicate, Rule, Tri, document_predicate

BENCHMARK = "Azure Security Benchmark"

ATP_CAPABLE_KINDS = (
    ResourceKind.STORAGE_ACCOUNT,
    ResourceKind.SQL_SERVER,
    ResourceKind.COSMOS_DB,
    ResourceKind.KEY_VAULT,
    ResourceKind.APP_SERVICE,
    ResourceKind.CONTAINER_REGISTRY,
    ResourceKind.VIRTUAL_MACHINE,
    ResourceKind.KUBERNETES_CLUSTER,
)

SECURITY_CAPABLE_KINDS = ATP_CAPABLE_KINDS + (
    ResourceKind.NETWORK_SECURITY_GROUP,
    ResourceKind.AZURE_FIREWALL,
    ResourceKind.APPLICATION_GATEWAY,
)


def plan_enabled(coverage: ProtectionCoverage, plan: ProtectionPlan) -> Predicate:
    """Predicate that holds when the plan covering the resource is on."""

    def predicate(resource: Resource) -> Tri:
        return Tri.of(coverage.is_enabled(plan))

    return predicate


@document_predicate()
def cluster_has_policies(resource: Resource, document: PropertiesDocument) -> bool:
    """Azure Policy add-on or a network policy engine is configured."""
    policy_addon = document.get("addonProfiles", "azurepolicy", "enabled") is True
    network_policy = document.get("networkProfile", "networkPolicy")
    return policy_addon or bool(network_policy)


_PLAN_CHECKS = (
    (
        ResourceKind.STORAGE_ACCOUNT, ProtectionPlan.STORAGE, "Storage Threat Detection",
        "Microsoft Defender for Storage should be enabled to protect against malicious activities",
        "Enable Defender for Storage to detect unusual access patterns, malware uploads and suspicious anonymous access",
        Severity.MEDIUM, 15,
    ),
    (
        ResourceKind.SQL_SERVER, ProtectionPlan.SQL, "Database Threat Detection",
        "Microsoft Defender for SQL should be enabled for comprehensive database threat protection",
        "Enable Defender for SQL to detect SQL injection, access anomalies and data exfiltration attempts",
        Severity.HIGH, 10,
    ),
    (
        ResourceKind.COSMOS_DB, ProtectionPlan.COSMOS_DB, "NoSQL Threat Detection",
        "Microsoft Defender for Cosmos DB should be configured for NoSQL database protection",
        "Enable Defender for Cosmos DB to detect access from unusual locations and anomalous query patterns",
        Severity.MEDIUM, 10,
    ),
    (
        ResourceKind.KEY_VAULT, ProtectionPlan.KEY_VAULT, "Secrets Threat Detection",
        "Microsoft Defender for Key Vault should be enabled for secrets and key protection",
        "Enable Defender for Key Vault to detect suspicious access to secrets, keys and certificates",
        Severity.MEDIUM, 10,
    ),
    (
        ResourceKind.APP_SERVICE, ProtectionPlan.APP_SERVICE, "Application Threat Detection",
        "Microsoft Defender for App Service should be enabled for web application protection",
        "Enable Defender for App Service to detect web attacks, malicious uploads and command injection",
        Severity.MEDIUM, 15,
    ),
    (
        ResourceKind.CONTAINER_REGISTRY, ProtectionPlan.CONTAINER_REGISTRY, "Container Security Scanning",
        "Microsoft Defender for Container Registry should be enabled for image vulnerability scanning",
        "Enable Defender for container registries to scan images for vulnerabilities and malware",
        Severity.MEDIUM, 10,
    ),
    (
        ResourceKind.KUBERNETES_CLUSTER, ProtectionPlan.KUBERNETES, "Kubernetes Threat Detection",
        "Microsoft Defender for Kubernetes should be enabled for container orchestration security",
        "Enable Defender for Containers to monitor cluster activity and detect runtime threats",
        Severity.HIGH, 5,
    ),
)


def build_plan_rules(coverage: ProtectionCoverage) -> list[Rule]:
    rules = [
        Rule(
            kinds=(kind,),
            predicate=plan_enabled(coverage, plan),
            control=control,
            issue=issue,
            recommendation=recommendation,
            baseline=baseline,
            category=FindingCategory.THREAT_PROTECTION,
            framework=BENCHMARK,
            limit=limit,
        )
        for kind, plan, control, issue, recommendation, baseline, limit in _PLAN_CHECKS
    ]
    rules.append(
        Rule(
            kinds=(ResourceKind.KUBERNETES_CLUSTER,),
            predicate=cluster_has_policies,
            control="Kubernetes Security Policies",
            issue="Kubernetes cluster should implement pod security standards and network policies",
            recommendation="Enable the Azure Policy add-on and a network policy engine for the cluster",
            baseline=Severity.MEDIUM,
            category=FindingCategory.THREAT_PROTECTION,
            framework=BENCHMARK,
            escalate=False,
            limit=5,
        )
    )
    return rules


class ThreatProtectionAnalyzer(LeafAnalyzer):
    """Checks that threat detection covers each protectable workload."""

    name = "Advanced Threat Protection"
    category = FindingCategory.THREAT_PROTECTION

    def checks(self) -> list[Check]:
        return [
            self._check_workloads,
            self._check_virtual_machines,
            self._check_governance,
            self._check_siem,
        ]

    def _check_workloads(self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]) -> None:
        coverage = derive_coverage(snapshot)
        self.apply_rules(build_plan_rules(coverage), snapshot, findings, cancellation)

    def _check_virtual_machines(
        self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]
    ) -> None:
        vms = select(snapshot, ResourceKind.VIRTUAL_MACHINE)
        if not vms or derive_coverage(snapshot).is_enabled(ProtectionPlan.SERVERS):
            return

        production = sum(1 for vm in vms if vm.is_production)
        findings.append(
            Finding(
                category=self.category,
                resource_id="vm.threat.protection",
                resource_name="Virtual Machine Threat Protection",
                control="Endpoint Threat Detection",
                issue=(
                    f"Microsoft Defender for Servers should be enabled for {len(vms)} virtual machines "
                    f"({production} production VMs)"
                ),
                recommendation="Enable Defender for Servers for behavioral analytics, vulnerability assessment and just-in-time access",
                severity=Severity.HIGH if production else Severity.MEDIUM,
                framework=BENCHMARK,
            )
        )

    def _check_governance(self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]) -> None:
        capable = count(snapshot, *ATP_CAPABLE_KINDS)
        if capable <= 10 or not derive_coverage(snapshot).missing():
            return

        findings.append(
            Finding(
                category=self.category,
                resource_id="atp.coverage.governance",
                resource_name="Threat Protection Governance",
                control="Comprehensive Threat Detection",
                issue=(
                    f"Large number of ATP-capable resources ({capable}) requires centralized "
                    "threat protection governance"
                ),
                recommendation="Manage threat protection centrally through Defender for Cloud for consistent coverage",
                severity=Severity.MEDIUM,
                framework=BENCHMARK,
            )
        )

    def _check_siem(self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]) -> None:
        security_resources = count(snapshot, *SECURITY_CAPABLE_KINDS)
        workspaces = count(snapshot, ResourceKind.LOG_ANALYTICS_WORKSPACE)

        if security_resources > 5 and workspaces == 0:
            findings.append(
                Finding(
                    category=self.category,
                    resource_id="siem.integration",
                    resource_name="SIEM Integration",
                    control="Security Information Management",
                    issue="No Log Analytics workspace found for centralized security event aggregation and analysis",
                    recommendation="Deploy a Log Analytics workspace and route diagnostic settings to it",
                    severity=Severity.MEDIUM,
                    framework=BENCHMARK,
                )
            )

        sentinel = [
            s for s in select(snapshot, ResourceKind.OPERATIONS_SOLUTION)
            if "securityinsights" in s.name.lower()
        ]
        if security_resources > 15 and not sentinel:
            findings.append(
                Finding(
                    category=self.category,
                    resource_id="microsoft.sentinel.deployment",
                    resource_name="Microsoft Sentinel",
                    control="Security Operations Center",
                    issue=(
                        f"Large environment ({security_resources} security-relevant resources) lacks "
                        "a dedicated SIEM solution for threat hunting"
                    ),
                    recommendation="Consider deploying Microsoft Sentinel for SIEM and automated incident response",
                    severity=Severity.LOW,
                    framework=BENCHMARK,
                )
            )
