"""Private endpoint coverage for data and platform services."""

from typing import Optional

import structlog

from cloudposture.core.analyzers.base import Check, LeafAnalyzer, Snapshot
from cloudposture.core.cancellation import CancellationToken
from cloudposture.core.findings import Finding, FindingCategory, Severity
from cloudposture.core.resources import PropertiesDocument, Resource, ResourceKind, count, select
from cloudposture.core.rules import SHAPE_ERRORS, Rule, Tri, document_predicate

logger = structlog.get_logger(__name__)

PRIVATE_CONNECTIVITY_CONTROL = "Private Connectivity"
ZERO_TRUST = "Zero Trust Architecture"

# Kinds counted when measuring overall coverage.
COVERAGE_KINDS = (
    ResourceKind.KEY_VAULT,
    ResourceKind.STORAGE_ACCOUNT,
    ResourceKind.SQL_SERVER,
    ResourceKind.COSMOS_DB,
    ResourceKind.CONTAINER_REGISTRY,
    ResourceKind.APP_SERVICE,
)

# Kinds whose data makes them a zero-trust priority.
DATA_SERVICE_KINDS = (
    ResourceKind.KEY_VAULT,
    ResourceKind.STORAGE_ACCOUNT,
    ResourceKind.SQL_SERVER,
    ResourceKind.SQL_DATABASE,
    ResourceKind.COSMOS_DB,
)

ORPHANED_STATES = ("disconnected", "rejected")


@document_predicate(when_absent=Tri.UNKNOWN)
def has_private_endpoint(resource: Resource, document: PropertiesDocument) -> bool:
    """Private endpoint connections exist, or public network access is off."""
    connections = document.get("privateEndpointConnections")
    if connections is not None:
        return len(connections) > 0
    public_access = document.get("publicNetworkAccess")
    if public_access is not None:
        return str(public_access).lower() == "disabled"
    return False


def _type_rule(kind: ResourceKind, label: str, baseline: Severity, recommendation: str) -> Rule:
    return Rule(
        kinds=(kind,),
        predicate=has_private_endpoint,
        control=PRIVATE_CONNECTIVITY_CONTROL,
        issue="{label} '{name}' is not configured with private endpoint connectivity",
        recommendation=recommendation,
        baseline=baseline,
        category=FindingCategory.NETWORK,
        framework=ZERO_TRUST,
        label=label,
        limit=10,
    )


PRIVATE_ENDPOINT_RULES = (
    _type_rule(
        ResourceKind.KEY_VAULT, "Key Vault", Severity.HIGH,
        "Configure a private endpoint for the Key Vault so secrets, keys and certificates are reachable without internet exposure",
    ),
    _type_rule(
        ResourceKind.STORAGE_ACCOUNT, "Storage Account", Severity.MEDIUM,
        "Configure a private endpoint for the Storage Account to keep blob, file, table and queue access on the private network",
    ),
    _type_rule(
        ResourceKind.SQL_SERVER, "SQL Server", Severity.HIGH,
        "Configure a private endpoint for the SQL Server and disable public network access",
    ),
    _type_rule(
        ResourceKind.COSMOS_DB, "Cosmos DB", Severity.LOW,
        "Configure a private endpoint for Cosmos DB to prevent data exfiltration through public endpoints",
    ),
    _type_rule(
        ResourceKind.CONTAINER_REGISTRY, "Container Registry", Severity.MEDIUM,
        "Configure a private endpoint for the Container Registry to stop unauthorized image pulls",
    ),
    _type_rule(
        ResourceKind.APP_SERVICE, "App Service", Severity.LOW,
        "Configure a private endpoint for the App Service to protect it from internet-based attacks",
    ),
    _type_rule(
        ResourceKind.SERVICE_BUS, "Service Bus", Severity.LOW,
        "Configure a private endpoint for Service Bus to secure the messaging infrastructure",
    ),
    _type_rule(
        ResourceKind.EVENT_HUB, "Event Hub", Severity.LOW,
        "Configure a private endpoint for Event Hub to protect event streams from interception",
    ),
)


def _connection_states(document: PropertiesDocument) -> list[str]:
    states = []
    status = document.get("connectionState", "status")
    if status:
        states.append(str(status).lower())
    for key in ("privateLinkServiceConnections", "manualPrivateLinkServiceConnections"):
        for connection in document.get(key) or ():
            state = (connection.get("properties") or connection).get("privateLinkServiceConnectionState") or {}
            if state.get("status"):
                states.append(str(state["status"]).lower())
    return states


class PrivateConnectivityAnalyzer(LeafAnalyzer):
    """Finds data services reachable without a private endpoint."""

    name = "Private Endpoints"
    category = FindingCategory.NETWORK

    def checks(self) -> list[Check]:
        return [
            self._check_overall_coverage,
            self._check_resource_endpoints,
            self._check_orphaned_endpoints,
            self._check_zero_trust_readiness,
        ]

    def _check_overall_coverage(
        self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]
    ) -> None:
        total = count(snapshot, *COVERAGE_KINDS)
        endpoints = count(snapshot, ResourceKind.PRIVATE_ENDPOINT)
        if total == 0:
            return

        coverage = endpoints / total * 100
        logger.debug("private_endpoint_coverage", coverage=round(coverage, 1), endpoints=endpoints, resources=total)
        if coverage >= 50:
            return

        findings.append(
            Finding(
                category=self.category,
                resource_id="private.endpoint.coverage",
                resource_name="Private Endpoint Coverage",
                control="Zero Trust Networking",
                issue=(
                    f"Low private endpoint coverage ({coverage:.1f}%) for critical services. "
                    f"Found {endpoints} private endpoints for {total} critical resources"
                ),
                recommendation=(
                    "Implement private endpoints for Key Vaults, Storage Accounts, SQL Servers, "
                    "Cosmos DB and Container Registries"
                ),
                severity=Severity.HIGH if coverage < 25 else Severity.MEDIUM,
                framework=ZERO_TRUST,
            )
        )

    def _check_resource_endpoints(
        self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]
    ) -> None:
        self.apply_rules(PRIVATE_ENDPOINT_RULES, snapshot, findings, cancellation)

    def _check_orphaned_endpoints(
        self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]
    ) -> None:
        for endpoint in select(snapshot, ResourceKind.PRIVATE_ENDPOINT):
            if not endpoint.properties.is_parsed:
                continue
            try:
                states = [s for s in _connection_states(endpoint.properties) if s in ORPHANED_STATES]
            except SHAPE_ERRORS as e:
                logger.warning("private_endpoint_state_unreadable", resource_id=endpoint.id, error=str(e))
                continue
            if not states:
                continue
            findings.append(
                Finding(
                    category=self.category,
                    resource_id=endpoint.id,
                    resource_name=endpoint.name,
                    control="Resource Management",
                    issue=f"Private endpoint '{endpoint.name}' is in {states[0]} state and may be orphaned",
                    recommendation="Review and clean up disconnected or rejected private endpoints",
                    severity=Severity.LOW,
                    framework="Resource Management Best Practice",
                )
            )

    def _check_zero_trust_readiness(
        self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]
    ) -> None:
        endpoints = count(snapshot, ResourceKind.PRIVATE_ENDPOINT)
        public_ips = count(snapshot, ResourceKind.PUBLIC_IP_ADDRESS)
        data_services = count(snapshot, *DATA_SERVICE_KINDS)

        if data_services > 0:
            readiness = endpoints / data_services * 100
            if readiness < 75:
                findings.append(
                    Finding(
                        category=self.category,
                        resource_id="zero.trust.readiness",
                        resource_name="Zero Trust Readiness",
                        control=ZERO_TRUST,
                        issue=(
                            f"Zero Trust network readiness is {readiness:.1f}% - more private "
                            "connectivity needed for critical services"
                        ),
                        recommendation=(
                            "Deploy private endpoints, disable public access and use "
                            "identity-based access controls"
                        ),
                        severity=Severity.HIGH if readiness < 50 else Severity.MEDIUM,
                        framework="Zero Trust Security Model",
                    )
                )

        if public_ips > data_services * 2:
            findings.append(
                Finding(
                    category=self.category,
                    resource_id="public.ip.exposure",
                    resource_name="Public IP Exposure",
                    control="Attack Surface Reduction",
                    issue=(
                        f"High number of public IP addresses ({public_ips}) relative to "
                        f"critical services ({data_services}) increases attack surface"
                    ),
                    recommendation=(
                        "Consolidate public IPs behind load balancers, NAT gateways or "
                        "private endpoint connections"
                    ),
                    severity=Severity.MEDIUM,
                    framework="Zero Trust Security Model",
                )
            )
