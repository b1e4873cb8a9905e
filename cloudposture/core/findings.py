"""Security findings produced by the analyzers."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable


class Severity(str, Enum):
    """Finding severity levels, ordered Low < Medium < High < Critical."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str) -> "Severity":
        """Parse a severity name case-insensitively."""
        for severity in cls:
            if severity.value.lower() == str(value).strip().lower():
                return severity
        raise ValueError(f"Unknown severity: {value}")


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class FindingCategory(str, Enum):
    """Domain tag attached to every finding."""

    NETWORK = "Network"
    DATA_ENCRYPTION = "DataEncryption"
    THREAT_PROTECTION = "AdvancedThreatProtection"
    PLATFORM_PROTECTION = "PlatformProtection"
    GOVERNANCE = "SecurityGovernance"
    MONITORING = "SecurityMonitoring"
    THREAT_DETECTION = "ThreatDetection"
    INCIDENT_RESPONSE = "IncidentResponse"
    COST_OPTIMIZATION = "SecurityCostOptimization"
    DELEGATED_ACCESS = "DelegatedAccess"


@dataclass(frozen=True)
class Finding:
    """A single security gap. Two findings with the same ``key`` are the same finding."""

    category: FindingCategory
    resource_id: str
    resource_name: str
    control: str
    issue: str
    recommendation: str
    severity: Severity
    framework: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.resource_id, self.issue)

    def to_dict(self) -> dict[str, Any]:
        """Convert finding to dictionary."""
        return {
            "category": self.category.value,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "control": self.control,
            "issue": self.issue,
            "recommendation": self.recommendation,
            "severity": self.severity.value,
            "framework": self.framework,
        }


def dedupe_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Drop repeated ``(resource_id, issue)`` pairs, keeping the first occurrence.

    Order of the surviving findings follows the input order, so the result is
    deterministic and applying it twice changes nothing.
    """
    seen: set[tuple[str, str]] = set()
    unique: list[Finding] = []
    for finding in findings:
        if finding.key in seen:
            continue
        seen.add(finding.key)
        unique.append(finding)
    return unique


def count_by_severity(findings: Iterable[Finding]) -> dict[Severity, int]:
    counts = {severity: 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity] += 1
    return counts


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", ".", text.lower()).strip(".")


def analysis_failed_finding(
    category: FindingCategory,
    analysis_name: str,
    error: BaseException,
    framework: str = "",
) -> Finding:
    """Build the Medium finding that stands in for an analyzer that blew up."""
    return Finding(
        category=category,
        resource_id=f"error.{_slug(analysis_name)}",
        resource_name=f"{analysis_name} Analysis",
        control="Analysis Error",
        issue=f"Failed to analyze {analysis_name.lower()}: {error}",
        recommendation=f"Review {analysis_name.lower()} configuration manually",
        severity=Severity.MEDIUM,
        framework=framework,
    )
