"""Tests for findings, severity ordering and deduplication."""

import pytest

from cloudposture.core.findings import (
    Finding,
    FindingCategory,
    Severity,
    analysis_failed_finding,
    count_by_severity,
    dedupe_findings,
)


def _finding(resource_id: str, issue: str, category=FindingCategory.NETWORK, severity=Severity.MEDIUM) -> Finding:
    return Finding(
        category=category,
        resource_id=resource_id,
        resource_name=resource_id,
        control="Control",
        issue=issue,
        recommendation="Fix it",
        severity=severity,
    )


class TestSeverity:
    """Tests for Severity ordering and parsing."""

    def test_ordering(self) -> None:
        assert Severity.LOW < Severity.MEDIUM < Severity.HIGH < Severity.CRITICAL
        assert max(Severity.MEDIUM, Severity.HIGH) is Severity.HIGH
        assert sorted([Severity.CRITICAL, Severity.LOW, Severity.HIGH]) == [
            Severity.LOW,
            Severity.HIGH,
            Severity.CRITICAL,
        ]

    @pytest.mark.parametrize("text,expected", [("high", Severity.HIGH), (" Critical ", Severity.CRITICAL)])
    def test_parse(self, text, expected) -> None:
        assert Severity.parse(text) is expected

    def test_parse_unknown(self) -> None:
        with pytest.raises(ValueError):
            Severity.parse("urgent")


class TestDedupe:
    """Tests for (resource_id, issue) deduplication."""

    def test_keeps_first_occurrence(self) -> None:
        first = _finding("res-1", "Same issue", category=FindingCategory.NETWORK)
        second = _finding("res-1", "Same issue", category=FindingCategory.PLATFORM_PROTECTION)
        other = _finding("res-2", "Same issue")

        result = dedupe_findings([first, other, second])

        assert result == [first, other]
        assert result[0].category == FindingCategory.NETWORK

    def test_different_issue_same_resource_is_kept(self) -> None:
        findings = [_finding("res-1", "Issue A"), _finding("res-1", "Issue B")]

        assert dedupe_findings(findings) == findings

    def test_idempotent(self) -> None:
        findings = [
            _finding("a", "x"),
            _finding("b", "y"),
            _finding("a", "x"),
            _finding("c", "z"),
            _finding("b", "y"),
        ]

        once = dedupe_findings(findings)

        assert dedupe_findings(once) == once
        assert len(once) == 3


class TestFindingHelpers:
    """Tests for serialization and synthetic failure findings."""

    def test_to_dict(self) -> None:
        finding = _finding("res-1", "Issue", severity=Severity.HIGH)

        data = finding.to_dict()

        assert data["severity"] == "High"
        assert data["category"] == "Network"
        assert data["resource_id"] == "res-1"

    def test_count_by_severity(self) -> None:
        counts = count_by_severity(
            [_finding("a", "1", severity=Severity.HIGH), _finding("b", "2", severity=Severity.HIGH)]
        )

        assert counts[Severity.HIGH] == 2
        assert counts[Severity.CRITICAL] == 0

    def test_analysis_failed_finding(self) -> None:
        finding = analysis_failed_finding(
            FindingCategory.DATA_ENCRYPTION, "Data Encryption", RuntimeError("boom")
        )

        assert finding.category == FindingCategory.DATA_ENCRYPTION
        assert finding.severity == Severity.MEDIUM
        assert finding.resource_id == "error.data.encryption"
        assert finding.control == "Analysis Error"
        assert "boom" in finding.issue
