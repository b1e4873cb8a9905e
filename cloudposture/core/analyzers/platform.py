"""Managed-protection (Defender for Cloud) coverage analyzer."""

from typing import Iterable, Optional

import structlog

from cloudposture.core.cancellation import CancellationToken, is_cancelled
from cloudposture.core.findings import (
    Finding,
    FindingCategory,
    Severity,
    analysis_failed_finding,
    count_by_severity,
)
from cloudposture.core.inventory import DelegatedIdentity
from cloudposture.core.protection import (
    CRITICAL_PLANS,
    PLAN_RESOURCE_KINDS,
    ProtectionCoverage,
    ProtectionPlan,
    derive_coverage,
)
from cloudposture.core.resources import Resource, ResourceKind, select
from cloudposture.core.results import PlatformProtectionResult
from cloudposture.core.rules import SHAPE_ERRORS
from cloudposture.core.scoring import (
    DEFAULT_POLICY,
    PlatformTally,
    ScoringPolicy,
    platform_score,
    secure_score_estimate,
)

logger = structlog.get_logger(__name__)

BENCHMARK = "Azure Security Benchmark"

# resource_id, control, severity, recommendation per plan
_PLAN_FINDINGS = {
    ProtectionPlan.SERVERS: (
        "defender.servers", "Endpoint Protection", Severity.HIGH,
        "Enable Defender for Servers for vulnerability assessment, just-in-time access and endpoint detection",
    ),
    ProtectionPlan.SQL: (
        "defender.sql", "Database Security", Severity.HIGH,
        "Enable Defender for SQL for vulnerability assessment and advanced threat protection",
    ),
    ProtectionPlan.STORAGE: (
        "defender.storage", "Data Protection", Severity.MEDIUM,
        "Enable Defender for Storage to detect malicious uploads and unusual access",
    ),
    ProtectionPlan.KEY_VAULT: (
        "defender.keyvault", "Secrets Management", Severity.MEDIUM,
        "Enable Defender for Key Vault to detect unusual access to secrets",
    ),
    ProtectionPlan.APP_SERVICE: (
        "defender.appservice", "Application Security", Severity.MEDIUM,
        "Enable Defender for App Service to detect attacks against web applications",
    ),
    ProtectionPlan.CONTAINER_REGISTRY: (
        "defender.containerregistry", "Container Security", Severity.MEDIUM,
        "Enable Defender for Containers to scan registry images for vulnerabilities",
    ),
    ProtectionPlan.KUBERNETES: (
        "defender.kubernetes", "Container Orchestration Security", Severity.HIGH,
        "Enable Defender for Containers for runtime protection of Kubernetes clusters",
    ),
    ProtectionPlan.COSMOS_DB: (
        "defender.cosmosdb", "NoSQL Database Security", Severity.MEDIUM,
        "Enable Defender for Azure Cosmos DB to detect injection and anomalous access",
    ),
}

_PLAN_NOUNS = {
    ProtectionPlan.SERVERS: "virtual machines",
    ProtectionPlan.SQL: "SQL servers",
    ProtectionPlan.STORAGE: "storage accounts",
    ProtectionPlan.KEY_VAULT: "key vaults",
    ProtectionPlan.APP_SERVICE: "app services",
    ProtectionPlan.CONTAINER_REGISTRY: "container registries",
    ProtectionPlan.KUBERNETES: "Kubernetes clusters",
    ProtectionPlan.COSMOS_DB: "Cosmos DB accounts",
}

WORKFLOW_ACTIONS = ("logicapp",)
EXPORT_ACTIONS = ("loganalytics", "eventhub")


def contact_configured(contact: Resource) -> bool:
    document = contact.properties
    if not document.is_parsed:
        return False
    return bool(document.get("email") or document.get("emails"))


def auto_provisioning_on(setting: Resource) -> bool:
    document = setting.properties
    return document.is_parsed and str(document.get("autoProvision", "")).lower() == "on"


def automation_action_types(automation: Resource) -> list[str]:
    """Lowercased action types of a workflow automation, empty when unreadable."""
    document = automation.properties
    if not document.is_parsed:
        return []
    try:
        return [str(action.get("actionType", "")).lower() for action in document.get("actions") or ()]
    except SHAPE_ERRORS as e:
        logger.warning("automation_actions_unreadable", resource_id=automation.id, error=str(e))
        return []


class PlatformProtectionAnalyzer:
    """Produces the platform domain result for a snapshot."""

    name = "Defender for Cloud"
    category = FindingCategory.PLATFORM_PROTECTION

    def __init__(self, policy: Optional[ScoringPolicy] = None):
        self.policy = policy or DEFAULT_POLICY

    async def analyze(
        self,
        resources: Iterable[Resource],
        identity: Optional[DelegatedIdentity] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> PlatformProtectionResult:
        snapshot = tuple(resources)
        findings: list[Finding] = []
        logger.info("platform_analysis_started", resources=len(snapshot), delegated=identity is not None)

        coverage = ProtectionCoverage()
        contacts = False
        score_estimate = 100.0
        high = medium = 0

        try:
            coverage = derive_coverage(snapshot)
            contacts = any(contact_configured(c) for c in select(snapshot, ResourceKind.SECURITY_CONTACT))
            for check in (self._check_plans, self._check_virtual_machines, self._check_sql_servers):
                if is_cancelled(cancellation):
                    break
                check(snapshot, coverage, findings)

            if coverage.protectable_resources and not is_cancelled(cancellation):
                self._check_tenant_settings(snapshot, coverage, contacts, findings)

            counts = count_by_severity(f for f in findings if f.category == self.category)
            high, medium = counts[Severity.HIGH], counts[Severity.MEDIUM]
            score_estimate = secure_score_estimate(high, medium, self.policy)
            if high > 0 or medium > 5:
                findings.append(self._score_optimization_finding(high, medium))
        except Exception as e:
            logger.error("platform_analysis_failed", error=str(e), exc_info=True)
            findings.append(analysis_failed_finding(self.category, self.name, e, framework=BENCHMARK))

        result = self._build_result(snapshot, coverage, findings, contacts, high, medium, score_estimate,
                                    complete=not is_cancelled(cancellation))
        logger.info(
            "platform_analysis_completed",
            score=result.score,
            findings=len(result.findings),
            enabled_plans=result.enabled_plans,
            complete=result.complete,
        )
        return result

    def _finding(self, resource_id, resource_name, control, issue, recommendation, severity, framework=BENCHMARK):
        return Finding(
            category=self.category,
            resource_id=resource_id,
            resource_name=resource_name,
            control=control,
            issue=issue,
            recommendation=recommendation,
            severity=severity,
            framework=framework,
        )

    def _check_plans(self, snapshot, coverage: ProtectionCoverage, findings: list[Finding]) -> None:
        for plan in coverage.missing():
            resource_id, control, severity, recommendation = _PLAN_FINDINGS[plan]
            findings.append(
                self._finding(
                    resource_id,
                    f"Defender for {plan.value}",
                    control,
                    f"Found {coverage.protectable[plan]} {_PLAN_NOUNS[plan]} that require "
                    f"Defender for {plan.value} protection",
                    recommendation,
                    severity,
                )
            )

    def _check_virtual_machines(self, snapshot, coverage: ProtectionCoverage, findings: list[Finding]) -> None:
        servers_enabled = coverage.is_enabled(ProtectionPlan.SERVERS)
        for vm in select(snapshot, ResourceKind.VIRTUAL_MACHINE):
            if not vm.environment:
                findings.append(
                    self._finding(
                        vm.id, vm.name, "Asset Management",
                        "Virtual machine lacks environment classification for security policy application",
                        "Tag the VM with an Environment value so protection policies can be scoped",
                        Severity.LOW,
                    )
                )
            if vm.is_production and not servers_enabled:
                findings.append(
                    self._finding(
                        vm.id, vm.name, "Production Security",
                        "Production virtual machine is not covered by Defender for Servers",
                        "Enable Defender for Servers for production workloads",
                        Severity.HIGH,
                    )
                )

    def _check_sql_servers(self, snapshot, coverage: ProtectionCoverage, findings: list[Finding]) -> None:
        if coverage.is_enabled(ProtectionPlan.SQL):
            return
        for server in select(snapshot, ResourceKind.SQL_SERVER):
            findings.append(
                self._finding(
                    server.id, server.name, "Database Security",
                    "SQL server is not covered by Defender for SQL vulnerability assessment and threat detection",
                    "Enable Defender for SQL on the server",
                    Severity.HIGH,
                )
            )

    def _check_tenant_settings(
        self, snapshot, coverage: ProtectionCoverage, contacts: bool, findings: list[Finding]
    ) -> None:
        vms = select(snapshot, ResourceKind.VIRTUAL_MACHINE)
        automations = select(snapshot, ResourceKind.SECURITY_AUTOMATION)
        action_types = [t for a in automations for t in automation_action_types(a)]
        servers_enabled = coverage.is_enabled(ProtectionPlan.SERVERS)

        if not contacts:
            findings.append(
                self._finding(
                    "security.contacts", "Security Contacts", "Incident Response",
                    "No security contact is configured to receive security alerts",
                    "Configure security contact email addresses and alert notifications in Defender for Cloud",
                    Severity.MEDIUM,
                )
            )

        provisioning = select(snapshot, ResourceKind.SECURITY_AUTO_PROVISIONING)
        if not any(auto_provisioning_on(s) for s in provisioning):
            findings.append(
                self._finding(
                    "auto.provisioning", "Auto Provisioning", "Security Monitoring",
                    "Automatic provisioning of the monitoring agent is not enabled",
                    "Turn on auto provisioning so new resources are monitored automatically",
                    Severity.MEDIUM,
                )
            )

        if not select(snapshot, ResourceKind.POLICY_ASSIGNMENT):
            findings.append(
                self._finding(
                    "security.policies", "Security Policies", "Policy Governance",
                    "No security policy assignments found for the assessed scope",
                    "Assign the Azure Security Benchmark initiative to the subscription",
                    Severity.MEDIUM,
                )
            )

        if not any(t in WORKFLOW_ACTIONS for t in action_types):
            findings.append(
                self._finding(
                    "workflow.automation", "Workflow Automation", "Security Orchestration",
                    "No workflow automation is configured to respond to security alerts",
                    "Create workflow automations that trigger Logic Apps on high-severity alerts",
                    Severity.LOW,
                )
            )

        if not any(t in EXPORT_ACTIONS for t in action_types):
            findings.append(
                self._finding(
                    "continuous.export", "Continuous Export", "Security Data Integration",
                    "Security alerts and recommendations are not continuously exported",
                    "Configure continuous export to a Log Analytics workspace or Event Hub",
                    Severity.LOW,
                )
            )

        if vms and not select(snapshot, ResourceKind.JIT_ACCESS_POLICY):
            findings.append(
                self._finding(
                    "jit.access", "Just-in-Time VM Access", "Administrative Access Control",
                    f"Just-in-time VM access should be configured for {len(vms)} virtual machines "
                    "to reduce exposure of management ports",
                    "Enable just-in-time VM access for management ports",
                    Severity.MEDIUM,
                )
            )

        if vms and not servers_enabled:
            findings.append(
                self._finding(
                    "adaptive.application.controls", "Adaptive Application Controls", "Application Whitelisting",
                    "Adaptive application controls are unavailable without Defender for Servers",
                    "Enable Defender for Servers and configure adaptive application controls",
                    Severity.MEDIUM,
                )
            )
            findings.append(
                self._finding(
                    "file.integrity.monitoring", "File Integrity Monitoring", "Change Detection",
                    "File integrity monitoring is unavailable without Defender for Servers",
                    "Enable Defender for Servers and turn on file integrity monitoring for critical files",
                    Severity.MEDIUM,
                    framework="PCI DSS",
                )
            )

    def _score_optimization_finding(self, high: int, medium: int) -> Finding:
        return self._finding(
            "security.score.optimization", "Security Score Optimization", "Security Posture Management",
            f"Current configuration may impact Secure Score ({high} high, {medium} medium severity recommendations)",
            "Prioritize high-severity recommendations to raise the Secure Score",
            Severity.HIGH if high > 3 else Severity.MEDIUM,
        )

    def _build_result(
        self,
        snapshot,
        coverage: ProtectionCoverage,
        findings: list[Finding],
        contacts: bool,
        high: int,
        medium: int,
        score_estimate: float,
        complete: bool,
    ) -> PlatformProtectionResult:
        counts = count_by_severity(findings)
        missing = coverage.missing()
        plans = {
            plan.value: (
                "Enabled" if coverage.is_enabled(plan)
                else f"Not enabled ({coverage.protectable.get(plan, 0)} resources)"
            )
            for plan in PLAN_RESOURCE_KINDS
        }

        score = platform_score(
            PlatformTally(
                has_protectable_resources=coverage.protectable_resources > 0,
                protection_enabled=coverage.any_enabled,
                high=high,
                medium=medium,
                missing_critical_plans=sum(1 for plan in CRITICAL_PLANS if plan in missing),
                critical=counts[Severity.CRITICAL],
                low=counts[Severity.LOW],
            ),
            self.policy,
        )

        return PlatformProtectionResult(
            score=score,
            findings=tuple(findings),
            resources_assessed=len(snapshot),
            complete=complete,
            is_enabled=coverage.any_enabled,
            plans=plans,
            enabled_plans=len(coverage.enabled),
            high_severity_recommendations=high,
            medium_severity_recommendations=medium,
            secure_score_estimate=score_estimate,
            security_contacts_configured=contacts,
            protectable_resources=coverage.protectable_resources,
        )
