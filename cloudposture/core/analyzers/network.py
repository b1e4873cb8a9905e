"""Network posture analyzer.

Scans NSGs, virtual networks, public IPs, gateways, load balancers and
firewalls directly, then merges in the private connectivity, encryption and
threat protection leaf analyzers, which run concurrently.
"""

import asyncio
import ipaddress
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

import structlog

from cloudposture.core.analyzers.base import LeafAnalyzer, Snapshot
from cloudposture.core.analyzers.encryption import DataEncryptionAnalyzer
from cloudposture.core.analyzers.private_connectivity import (
    PRIVATE_CONNECTIVITY_CONTROL,
    PrivateConnectivityAnalyzer,
)
from cloudposture.core.analyzers.threat_protection import ThreatProtectionAnalyzer
from cloudposture.core.cancellation import CancellationToken, is_cancelled
from cloudposture.core.findings import (
    Finding,
    FindingCategory,
    Severity,
    analysis_failed_finding,
    count_by_severity,
    dedupe_findings,
)
from cloudposture.core.inventory import DelegatedIdentity
from cloudposture.core.resources import PropertiesDocument, Resource, ResourceKind, count, select
from cloudposture.core.results import NetworkPostureResult
from cloudposture.core.rules import (
    SHAPE_ERRORS,
    Rule,
    Tri,
    document_predicate,
    evaluate_rules,
    flag_not_false,
)
from cloudposture.core.scoring import DEFAULT_POLICY, NetworkTally, ScoringPolicy, network_score

logger = structlog.get_logger(__name__)

CIS = "CIS Azure"
BENCHMARK = "Azure Security Benchmark"
NETWORK_BEST_PRACTICE = "Network Security Best Practice"

UNRESTRICTED_SOURCES = ("*", "any", "internet", "0.0.0.0/0", "::/0")

SENSITIVE_PORTS = {
    22: "SSH",
    3389: "RDP",
    23: "Telnet",
    21: "FTP",
    445: "SMB",
    1433: "SQL Server",
    3306: "MySQL",
    5432: "PostgreSQL",
    6379: "Redis",
    27017: "MongoDB",
}

FULL_PORT_RANGE = (0, 65535)
BROAD_PREFIX_LENGTH = 16
BROAD_PORT_WIDTH = 100
PUBLIC_IP_SAMPLE = 10
LOWEST_PRIORITY = 65000


@dataclass(frozen=True)
class PortRange:
    """Inclusive destination port range; ``*`` parses to the full range."""

    low: int
    high: int
    text: str

    @classmethod
    def parse(cls, text: str) -> "PortRange":
        value = str(text).strip()
        if value in ("*", ""):
            return cls(*FULL_PORT_RANGE, text="*")
        if "-" in value:
            low, high = value.split("-", 1)
            return cls(int(low), int(high), text=value)
        port = int(value)
        return cls(port, port, text=value)

    @classmethod
    def parse_or_full(cls, text: str) -> "PortRange":
        """Like ``parse``, but an unreadable value is read as the full range."""
        try:
            return cls.parse(text)
        except ValueError:
            logger.warning("port_range_unreadable", port=str(text)[:40])
            return cls(*FULL_PORT_RANGE, text=str(text))

    @property
    def is_full(self) -> bool:
        return self.low <= FULL_PORT_RANGE[0] and self.high >= FULL_PORT_RANGE[1]

    @property
    def width(self) -> int:
        return self.high - self.low + 1

    def sensitive_ports(self) -> list[int]:
        return [port for port in SENSITIVE_PORTS if self.low <= port <= self.high]


def is_unrestricted_source(prefix: str) -> bool:
    value = str(prefix).strip().lower()
    return value in UNRESTRICTED_SOURCES or value.endswith("/0")


def is_broad_prefix(prefix: str) -> bool:
    """True for CIDR blocks of /16 or wider. Service tags are not broad."""
    if is_unrestricted_source(prefix):
        return False
    try:
        network = ipaddress.ip_network(str(prefix).strip(), strict=False)
    except ValueError:
        return False
    return "/" in str(prefix) and network.prefixlen <= BROAD_PREFIX_LENGTH


def _listed(values: Mapping[str, Any], single: str, plural: str) -> list[str]:
    many = values.get(plural) or ()
    items = list(many) if isinstance(many, (list, tuple)) else [many]
    if values.get(single):
        items.insert(0, values[single])
    return [str(item) for item in items]


def _priority(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return LOWEST_PRIORITY


@dataclass(frozen=True)
class SecurityRule:
    """One NSG security rule, flattened out of its ARM shape."""

    name: str
    priority: int
    direction: str
    access: str
    protocol: str
    sources: tuple[str, ...]
    ports: tuple[PortRange, ...]

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> "SecurityRule":
        """Read a rule, taking the most exposed reading of any unreadable field.

        A missing or non-numeric priority sorts last and an unreadable port
        counts as every port. Raises a shape error only when the entry is not
        a rule object at all.
        """
        values = raw.get("properties") or raw
        if not isinstance(values, Mapping):
            raise TypeError(f"rule properties are {type(values).__name__}, not an object")
        ports = _listed(values, "destinationPortRange", "destinationPortRanges") or ["*"]
        return cls(
            name=str(raw.get("name") or values.get("name") or "unnamed"),
            priority=_priority(values.get("priority", LOWEST_PRIORITY)),
            direction=str(values.get("direction", "")).lower(),
            access=str(values.get("access", "")).lower(),
            protocol=str(values.get("protocol") or "*"),
            sources=tuple(_listed(values, "sourceAddressPrefix", "sourceAddressPrefixes")),
            ports=tuple(PortRange.parse_or_full(p) for p in ports),
        )

    @property
    def is_inbound_allow(self) -> bool:
        return self.direction == "inbound" and self.access == "allow"

    @property
    def unrestricted_source(self) -> Optional[str]:
        for source in self.sources:
            if is_unrestricted_source(source):
                return source
        return None

    @property
    def port_text(self) -> str:
        return ",".join(p.text for p in self.ports)

    def open_rule_severity(self) -> Severity:
        if any(p.is_full for p in self.ports):
            return Severity.CRITICAL
        if any(p.sensitive_ports() for p in self.ports):
            return Severity.HIGH
        return Severity.MEDIUM

    def sensitive_services(self) -> list[tuple[int, str]]:
        """Sensitive ports named explicitly by the rule. ``*`` is left to the other checks."""
        found: list[tuple[int, str]] = []
        for port_range in self.ports:
            if port_range.is_full:
                continue
            for port in port_range.sensitive_ports():
                found.append((port, SENSITIVE_PORTS[port]))
        return found

    @property
    def is_overly_broad(self) -> bool:
        return (
            any(is_broad_prefix(s) for s in self.sources)
            or self.protocol.strip() == "*"
            or any(p.width > BROAD_PORT_WIDTH for p in self.ports)
        )


def _entry_label(raw: Any, index: int) -> str:
    if isinstance(raw, Mapping) and raw.get("name"):
        return str(raw["name"])
    return f"#{index + 1}"


def parse_security_rules(document: PropertiesDocument) -> tuple[list[SecurityRule], list[str]]:
    """Custom rules sorted by priority, plus labels of entries that could not be read."""
    entries = document.get("securityRules") or ()
    if not isinstance(entries, (list, tuple)):
        logger.warning("security_rules_unreadable", shape=type(entries).__name__)
        return [], ["securityRules"]

    rules = []
    unreadable = []
    for index, raw in enumerate(entries):
        try:
            rules.append(SecurityRule.parse(raw))
        except SHAPE_ERRORS as e:
            logger.warning("security_rule_unreadable", rule=str(raw)[:120], error=str(e))
            unreadable.append(_entry_label(raw, index))
    return sorted(rules, key=lambda r: r.priority), unreadable


@document_predicate(when_absent=Tri.TRUE)
def has_explicit_deny(resource: Resource, document: PropertiesDocument) -> Tri:
    rules, unreadable = parse_security_rules(document)
    if any(r.access == "deny" for r in rules):
        return Tri.TRUE
    if unreadable:
        return Tri.UNKNOWN
    return Tri.of(not rules)


@document_predicate(when_absent=Tri.TRUE)
def is_associated(resource: Resource, document: PropertiesDocument) -> bool:
    return bool(document.get("subnets")) or bool(document.get("networkInterfaces"))


def has_purpose_tag(resource: Resource) -> Tri:
    return Tri.of(resource.has_tag("Purpose"))


def waf_enabled(resource: Resource) -> bool:
    document = resource.properties
    sku = resource.sku or ""
    if document.is_parsed:
        if document.get("webApplicationFirewallConfiguration", "enabled") is True:
            return True
        if document.get("firewallPolicy"):
            return True
        sku = document.get("sku", "tier") or document.get("sku", "name") or sku
    return "waf" in str(sku).lower()


def has_waf(resource: Resource) -> Tri:
    if resource.properties.is_malformed:
        return Tri.UNKNOWN
    return Tri.of(waf_enabled(resource))


@document_predicate(when_absent=Tri.TRUE)
def has_health_probes(resource: Resource, document: PropertiesDocument) -> bool:
    probes = document.get("probes")
    return probes is None or len(probes) > 0


def threat_intel_mode(resource: Resource) -> Optional[str]:
    if not resource.properties.is_parsed:
        return None
    mode = resource.properties.get("threatIntelMode")
    return str(mode) if mode is not None else None


def _rules_readable(resource: Resource) -> bool:
    return resource.resource_kind == ResourceKind.NETWORK_SECURITY_GROUP and resource.properties.is_parsed


def _rule(kind: ResourceKind, **kwargs) -> Rule:
    kwargs.setdefault("category", FindingCategory.NETWORK)
    kwargs.setdefault("escalate", False)
    return Rule(kinds=(kind,), **kwargs)


NSG_RULES = (
    _rule(
        ResourceKind.NETWORK_SECURITY_GROUP,
        predicate=has_explicit_deny,
        control="Default Security Rules",
        issue="NSG relies primarily on default security rules without explicit deny rules",
        recommendation="Add explicit deny rules with appropriate priorities to document intended traffic restrictions",
        baseline=Severity.LOW,
        framework=NETWORK_BEST_PRACTICE,
        applies_to=_rules_readable,
    ),
    _rule(
        ResourceKind.NETWORK_SECURITY_GROUP,
        predicate=is_associated,
        control="NSG Association",
        issue="Network Security Group is not associated with any subnets",
        recommendation="Associate the NSG with subnets or network interfaces, or remove it if unused",
        baseline=Severity.LOW,
        framework=NETWORK_BEST_PRACTICE,
        applies_to=_rules_readable,
    ),
    _rule(
        ResourceKind.NETWORK_SECURITY_GROUP,
        predicate=has_purpose_tag,
        control="Asset Management",
        issue="Network Security Group lacks proper tagging for security governance",
        recommendation="Add a Purpose tag describing what the NSG protects",
        baseline=Severity.LOW,
        framework="Governance Best Practice",
    ),
)

PERIMETER_RULES = (
    _rule(
        ResourceKind.VIRTUAL_NETWORK,
        predicate=flag_not_false("enableDdosProtection"),
        control="DDoS Protection",
        issue="Virtual Network does not have DDoS Protection enabled",
        recommendation="Enable Azure DDoS Protection for virtual networks hosting internet-facing workloads",
        baseline=Severity.MEDIUM,
        framework=BENCHMARK,
    ),
    _rule(
        ResourceKind.PUBLIC_IP_ADDRESS,
        predicate=has_purpose_tag,
        control="Asset Management",
        issue="Public IP address lacks proper tagging for security tracking",
        recommendation="Tag public IP addresses with their Purpose so exposure can be reviewed",
        baseline=Severity.MEDIUM,
        framework="Governance Best Practice",
        limit=PUBLIC_IP_SAMPLE,
    ),
    _rule(
        ResourceKind.APPLICATION_GATEWAY,
        predicate=has_waf,
        control="Web Application Firewall",
        issue="Application Gateway does not have Web Application Firewall (WAF) enabled",
        recommendation="Use the WAF_v2 SKU or attach a WAF policy to protect against OWASP Top 10 attacks",
        baseline=Severity.HIGH,
        framework=BENCHMARK,
    ),
    _rule(
        ResourceKind.LOAD_BALANCER,
        predicate=has_health_probes,
        control="Load Balancer Security",
        issue="Load Balancer has no health probes configured",
        recommendation="Configure health probes and restrict backend pools with NSGs",
        baseline=Severity.LOW,
        framework=NETWORK_BEST_PRACTICE,
    ),
)


@dataclass
class _NetworkTally:
    """Mutable counters gathered while scanning; frozen into the result at the end."""

    open_rules: int = 0
    permissive_rules: int = 0
    high_risk_paths: int = 0
    threat_intel_sources: int = 0
    findings: list[Finding] = field(default_factory=list)


class NetworkPostureAnalyzer:
    """Produces the network domain result for a snapshot."""

    name = "Network Security"
    category = FindingCategory.NETWORK

    def __init__(
        self,
        private_connectivity: Optional[LeafAnalyzer] = None,
        encryption: Optional[LeafAnalyzer] = None,
        threat_protection: Optional[LeafAnalyzer] = None,
        policy: Optional[ScoringPolicy] = None,
    ):
        self.private_connectivity = private_connectivity or PrivateConnectivityAnalyzer()
        self.encryption = encryption or DataEncryptionAnalyzer()
        self.threat_protection = threat_protection or ThreatProtectionAnalyzer()
        self.policy = policy or DEFAULT_POLICY

    @property
    def leaf_analyzers(self) -> list[LeafAnalyzer]:
        return [self.private_connectivity, self.encryption, self.threat_protection]

    async def analyze(
        self,
        resources: Iterable[Resource],
        identity: Optional[DelegatedIdentity] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> NetworkPostureResult:
        snapshot = tuple(resources)
        tally = _NetworkTally()
        logger.info("network_analysis_started", resources=len(snapshot), delegated=identity is not None)

        self._run_guarded(
            [self._scan_security_groups, self._scan_perimeter, self._scan_firewalls],
            snapshot,
            tally,
            cancellation,
        )

        leaf_results = await asyncio.gather(
            *(self._run_leaf(leaf, snapshot, identity, cancellation) for leaf in self.leaf_analyzers)
        )
        for leaf_findings in leaf_results:
            tally.findings.extend(leaf_findings)

        self._run_guarded([self._scan_topology], snapshot, tally, cancellation)

        result = self._build_result(snapshot, tally, complete=not is_cancelled(cancellation))
        logger.info(
            "network_analysis_completed",
            score=result.score,
            findings=len(result.findings),
            open_rules=result.open_to_internet_rules,
            complete=result.complete,
        )
        return result

    def _run_guarded(self, scans, snapshot: Snapshot, tally: _NetworkTally, cancellation) -> None:
        try:
            for scan in scans:
                if is_cancelled(cancellation):
                    break
                scan(snapshot, tally, cancellation)
        except Exception as e:
            logger.error("network_analysis_failed", error=str(e), exc_info=True)
            tally.findings.append(analysis_failed_finding(self.category, self.name, e, framework=CIS))

    async def _run_leaf(
        self,
        leaf: LeafAnalyzer,
        snapshot: Snapshot,
        identity: Optional[DelegatedIdentity],
        cancellation: Optional[CancellationToken],
    ) -> list[Finding]:
        try:
            return list(await leaf.analyze(snapshot, identity=identity, cancellation=cancellation))
        except Exception as e:
            logger.error("leaf_analyzer_raised", analyzer=leaf.name, error=str(e), exc_info=True)
            return [analysis_failed_finding(leaf.category, leaf.name, e)]

    def _scan_security_groups(self, snapshot: Snapshot, tally: _NetworkTally, cancellation) -> None:
        for nsg in select(snapshot, ResourceKind.NETWORK_SECURITY_GROUP):
            if is_cancelled(cancellation):
                return
            if nsg.properties.is_parsed:
                self._scan_rules(nsg, tally)
            else:
                tally.findings.append(self._unparsed_nsg_finding(nsg))

        tally.findings.extend(evaluate_rules(NSG_RULES, snapshot, cancellation))

    def _unparsed_nsg_finding(self, nsg: Resource) -> Finding:
        if nsg.properties.is_malformed:
            issue = f"Network Security Group '{nsg.name}' rule set could not be parsed"
            logger.warning("nsg_properties_malformed", resource_id=nsg.id, error=nsg.properties.error)
        else:
            issue = f"Network Security Group '{nsg.name}' rule set is not present in the snapshot"
        return Finding(
            category=self.category,
            resource_id=nsg.id,
            resource_name=nsg.name,
            control="Rule Set Integrity",
            issue=issue,
            recommendation="Review the NSG rules manually and re-collect the resource snapshot",
            severity=Severity.MEDIUM,
            framework=CIS,
        )

    def _unreadable_rule_finding(self, nsg: Resource, label: str) -> Finding:
        return Finding(
            category=self.category,
            resource_id=nsg.id,
            resource_name=f"{nsg.name} - Rule: {label}",
            control="Rule Set Integrity",
            issue=f"NSG rule '{label}' in '{nsg.name}' could not be parsed and may allow unrestricted access",
            recommendation="Review the NSG rule manually and re-collect the resource snapshot",
            severity=Severity.MEDIUM,
            framework=CIS,
        )

    def _scan_rules(self, nsg: Resource, tally: _NetworkTally) -> None:
        rules, unreadable = parse_security_rules(nsg.properties)
        for label in unreadable:
            tally.findings.append(self._unreadable_rule_finding(nsg, label))

        for rule in rules:
            if not rule.is_inbound_allow:
                continue
            rule_name = f"{nsg.name} - Rule: {rule.name}"
            protocol = rule.protocol.upper()

            source = rule.unrestricted_source
            if source is not None:
                severity = rule.open_rule_severity()
                tally.open_rules += 1
                if severity >= Severity.HIGH:
                    tally.high_risk_paths += 1
                tally.findings.append(
                    Finding(
                        category=self.category,
                        resource_id=nsg.id,
                        resource_name=rule_name,
                        control="Internet Exposure",
                        issue=(
                            f"NSG rule '{rule.name}' allows inbound traffic from any internet source "
                            f"({source}) on {protocol} {rule.port_text}"
                        ),
                        recommendation=(
                            "Restrict the source to specific IP ranges or service tags, or use "
                            "Azure Bastion or a VPN for administrative access"
                        ),
                        severity=severity,
                        framework=CIS,
                    )
                )

            for port, service in rule.sensitive_services():
                tally.findings.append(
                    Finding(
                        category=self.category,
                        resource_id=nsg.id,
                        resource_name=rule_name,
                        control="Administrative Access",
                        issue=(
                            f"NSG rule '{rule.name}' allows direct access to {service} (port {port}) "
                            "which should be restricted"
                        ),
                        recommendation=(
                            f"Restrict {service} access to jump servers, VPN, or Azure Bastion. "
                            "Consider using private endpoints."
                        ),
                        severity=Severity.HIGH,
                        framework=CIS,
                    )
                )

            if rule.is_overly_broad:
                tally.permissive_rules += 1
                sources = ",".join(rule.sources) or "*"
                tally.findings.append(
                    Finding(
                        category=self.category,
                        resource_id=nsg.id,
                        resource_name=rule_name,
                        control="Network Segmentation",
                        issue=(
                            f"NSG rule '{rule.name}' is overly permissive: {protocol} from "
                            f"{sources} to {rule.port_text}"
                        ),
                        recommendation="Narrow the rule to specific protocols, source ranges and destination ports",
                        severity=Severity.MEDIUM,
                        framework=CIS,
                    )
                )

    def _scan_perimeter(self, snapshot: Snapshot, tally: _NetworkTally, cancellation) -> None:
        tally.findings.extend(evaluate_rules(PERIMETER_RULES, snapshot, cancellation))

        public_ips = count(snapshot, ResourceKind.PUBLIC_IP_ADDRESS)
        if public_ips > PUBLIC_IP_SAMPLE:
            tally.findings.append(
                Finding(
                    category=self.category,
                    resource_id="public.ip.management",
                    resource_name="Public IP Management",
                    control="Attack Surface Reduction",
                    issue=f"High number of public IP addresses ({public_ips}) increases attack surface",
                    recommendation="Consolidate public IPs behind NAT gateways, load balancers or Azure Firewall",
                    severity=Severity.MEDIUM,
                    framework=BENCHMARK,
                )
            )

        tally.threat_intel_sources += sum(
            1 for gateway in select(snapshot, ResourceKind.APPLICATION_GATEWAY) if waf_enabled(gateway)
        )

    def _scan_firewalls(self, snapshot: Snapshot, tally: _NetworkTally, cancellation) -> None:
        for firewall in select(snapshot, ResourceKind.AZURE_FIREWALL):
            if is_cancelled(cancellation):
                return
            mode = threat_intel_mode(firewall)
            if mode is None:
                continue
            if mode.lower() == "deny":
                tally.threat_intel_sources += 1
                continue
            tally.findings.append(
                Finding(
                    category=self.category,
                    resource_id=firewall.id,
                    resource_name=firewall.name,
                    control="Threat Intelligence",
                    issue=f"Azure Firewall threat intelligence mode is set to '{mode}' instead of 'Deny'",
                    recommendation="Set threat intelligence mode to 'Deny' to block traffic from known malicious sources",
                    severity=Severity.MEDIUM,
                    framework=BENCHMARK,
                )
            )

    def _scan_topology(self, snapshot: Snapshot, tally: _NetworkTally, cancellation) -> None:
        vnets = count(snapshot, ResourceKind.VIRTUAL_NETWORK)
        nsgs = count(snapshot, ResourceKind.NETWORK_SECURITY_GROUP)
        public_ips = count(snapshot, ResourceKind.PUBLIC_IP_ADDRESS)

        def add(resource_id, resource_name, control, issue, recommendation, severity):
            tally.findings.append(
                Finding(
                    category=self.category,
                    resource_id=resource_id,
                    resource_name=resource_name,
                    control=control,
                    issue=issue,
                    recommendation=recommendation,
                    severity=severity,
                    framework=BENCHMARK,
                )
            )

        if vnets and not count(snapshot, ResourceKind.AZURE_FIREWALL, ResourceKind.APPLICATION_GATEWAY):
            add(
                "network.security.posture",
                "Network Security Posture",
                "Defense in Depth",
                "Virtual networks exist without centralized firewall or application gateway protection",
                "Deploy Azure Firewall or an Application Gateway with WAF for centralized traffic inspection",
                Severity.MEDIUM,
            )

        if vnets and not count(snapshot, ResourceKind.NETWORK_WATCHER):
            add(
                "network.monitoring.coverage",
                "Network Monitoring Coverage",
                "Network Observability",
                "Virtual networks exist without Network Watcher for monitoring and diagnostics",
                "Enable Network Watcher in every region with virtual networks and turn on NSG flow logs",
                Severity.MEDIUM,
            )

        traffic_control = count(
            snapshot, ResourceKind.LOAD_BALANCER, ResourceKind.TRAFFIC_MANAGER, ResourceKind.FRONT_DOOR
        )
        if public_ips > 5 and not traffic_control:
            add(
                "traffic.control.mechanisms",
                "Traffic Control Mechanisms",
                "Traffic Management",
                f"Multiple public IPs ({public_ips}) without centralized traffic control mechanisms",
                "Front public endpoints with a load balancer, Traffic Manager or Front Door",
                Severity.MEDIUM,
            )

        if vnets and not nsgs:
            add(
                "network.security",
                "Network Security",
                "Network Segmentation",
                "Virtual networks exist without Network Security Groups for traffic filtering",
                "Create NSGs and associate them with every subnet",
                Severity.HIGH,
            )

    def _build_result(self, snapshot: Snapshot, tally: _NetworkTally, complete: bool) -> NetworkPostureResult:
        findings = dedupe_findings(tally.findings)
        counts = count_by_severity(findings)
        vnets = count(snapshot, ResourceKind.VIRTUAL_NETWORK)
        nsgs = count(snapshot, ResourceKind.NETWORK_SECURITY_GROUP)

        score = network_score(
            NetworkTally(
                open_rules=tally.open_rules,
                permissive_rules=tally.permissive_rules,
                missing_nsg=vnets > 0 and nsgs == 0,
                critical=counts[Severity.CRITICAL],
                high=counts[Severity.HIGH],
                medium=counts[Severity.MEDIUM],
                low=counts[Severity.LOW],
                private_connectivity_gaps=sum(
                    1 for f in findings if f.control == PRIVATE_CONNECTIVITY_CONTROL
                ),
                encryption_findings=sum(
                    1 for f in findings if f.category == FindingCategory.DATA_ENCRYPTION
                ),
                threat_protection_findings=sum(
                    1 for f in findings if f.category == FindingCategory.THREAT_PROTECTION
                ),
            ),
            self.policy,
        )

        return NetworkPostureResult(
            score=score,
            findings=tuple(findings),
            resources_assessed=len(snapshot),
            complete=complete,
            network_security_groups=nsgs,
            virtual_networks=vnets,
            public_ip_addresses=count(snapshot, ResourceKind.PUBLIC_IP_ADDRESS),
            open_to_internet_rules=tally.open_rules,
            overly_permissive_rules=tally.permissive_rules,
            threat_intelligence_sources=tally.threat_intel_sources,
            high_risk_paths=tally.high_risk_paths,
        )
