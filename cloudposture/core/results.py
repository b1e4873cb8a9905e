"""Result objects returned by the domain analyzers and the aggregator."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cloudposture.core.findings import Finding, Severity, count_by_severity


@dataclass(frozen=True)
class DomainResult:
    """Score and findings for one assessment domain."""

    domain: str
    score: float = 100.0
    findings: tuple[Finding, ...] = ()
    resources_assessed: int = 0
    complete: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "findings", tuple(self.findings))

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity == severity)

    def _summary(self) -> dict[str, Any]:
        counts = count_by_severity(self.findings)
        return {
            "domain": self.domain,
            "score": self.score,
            "resources_assessed": self.resources_assessed,
            "complete": self.complete,
            "total_findings": len(self.findings),
            "critical_findings": counts[Severity.CRITICAL],
            "high_findings": counts[Severity.HIGH],
            "medium_findings": counts[Severity.MEDIUM],
            "low_findings": counts[Severity.LOW],
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary."""
        data = self._summary()
        data["findings"] = [f.to_dict() for f in self.findings]
        return data


@dataclass(frozen=True)
class NetworkPostureResult(DomainResult):
    """Network domain result, including the leaf analyzers' findings."""

    domain: str = "network"
    network_security_groups: int = 0
    virtual_networks: int = 0
    public_ip_addresses: int = 0
    open_to_internet_rules: int = 0
    overly_permissive_rules: int = 0
    threat_intelligence_sources: int = 0
    high_risk_paths: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = self._summary()
        data.update(
            {
                "network_security_groups": self.network_security_groups,
                "virtual_networks": self.virtual_networks,
                "public_ip_addresses": self.public_ip_addresses,
                "open_to_internet_rules": self.open_to_internet_rules,
                "overly_permissive_rules": self.overly_permissive_rules,
                "threat_intelligence_sources": self.threat_intelligence_sources,
                "high_risk_paths": self.high_risk_paths,
            }
        )
        data["findings"] = [f.to_dict() for f in self.findings]
        return data


@dataclass(frozen=True)
class PlatformProtectionResult(DomainResult):
    """Managed-protection (Defender plan) coverage result."""

    domain: str = "platform"
    is_enabled: bool = False
    plans: dict[str, str] = field(default_factory=dict)
    enabled_plans: int = 0
    high_severity_recommendations: int = 0
    medium_severity_recommendations: int = 0
    secure_score_estimate: float = 100.0
    security_contacts_configured: bool = False
    protectable_resources: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = self._summary()
        data.update(
            {
                "is_enabled": self.is_enabled,
                "plans": dict(self.plans),
                "enabled_plans": self.enabled_plans,
                "high_severity_recommendations": self.high_severity_recommendations,
                "medium_severity_recommendations": self.medium_severity_recommendations,
                "secure_score_estimate": self.secure_score_estimate,
                "security_contacts_configured": self.security_contacts_configured,
                "protectable_resources": self.protectable_resources,
            }
        )
        data["findings"] = [f.to_dict() for f in self.findings]
        return data


@dataclass(frozen=True)
class CombinedResult:
    """Caller-visible output of one posture assessment."""

    network: NetworkPostureResult
    platform: PlatformProtectionResult
    findings: tuple[Finding, ...]
    base_score: float
    cross_domain_penalty: float
    score: float
    delegated: bool = False
    assessed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "findings", tuple(self.findings))

    @property
    def resources_assessed(self) -> int:
        return max(self.network.resources_assessed, self.platform.resources_assessed)

    def findings_at_least(self, severity: Severity) -> list[Finding]:
        return [f for f in self.findings if f.severity >= severity]

    def to_dict(self) -> dict[str, Any]:
        """Convert result to a JSON-ready dictionary."""
        counts = count_by_severity(self.findings)
        return {
            "score": self.score,
            "base_score": self.base_score,
            "cross_domain_penalty": self.cross_domain_penalty,
            "delegated": self.delegated,
            "assessed_at": self.assessed_at.isoformat(),
            "resources_assessed": self.resources_assessed,
            "total_findings": len(self.findings),
            "critical_findings": counts[Severity.CRITICAL],
            "high_findings": counts[Severity.HIGH],
            "medium_findings": counts[Severity.MEDIUM],
            "low_findings": counts[Severity.LOW],
            "network": self.network.to_dict(),
            "platform": self.platform.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
        }
