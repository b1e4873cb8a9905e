"""Shared boundary behaviour for the leaf analyzers."""

from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional, Sequence

import structlog

from cloudposture.core.cancellation import CancellationToken, is_cancelled
from cloudposture.core.findings import Finding, FindingCategory, analysis_failed_finding
from cloudposture.core.inventory import DelegatedIdentity
from cloudposture.core.resources import Resource
from cloudposture.core.rules import Rule, evaluate_rules

logger = structlog.get_logger(__name__)

Snapshot = Sequence[Resource]
Check = Callable[[Snapshot, list, Optional[CancellationToken]], None]


class LeafAnalyzer(ABC):
    """Scans the snapshot for one concern and returns a flat list of findings.

    Subclasses provide ``name``, ``category`` and an ordered list of checks.
    Each check appends to the shared findings list, so when one check raises,
    whatever was already found is kept and a single failure finding is
    appended after it.
    """

    name: str = ""
    category: FindingCategory = FindingCategory.NETWORK

    @abstractmethod
    def checks(self) -> list[Check]:
        """Checks to run, in order."""

    async def analyze(
        self,
        resources: Iterable[Resource],
        identity: Optional[DelegatedIdentity] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> list[Finding]:
        snapshot = tuple(resources)
        findings: list[Finding] = []
        logger.info(
            "leaf_analysis_started",
            analyzer=self.name,
            resources=len(snapshot),
            delegated=identity is not None,
        )

        try:
            for check in self.checks():
                if is_cancelled(cancellation):
                    logger.info("leaf_analysis_cancelled", analyzer=self.name, findings=len(findings))
                    break
                check(snapshot, findings, cancellation)
        except Exception as e:
            logger.error("leaf_analysis_failed", analyzer=self.name, error=str(e), exc_info=True)
            findings.append(analysis_failed_finding(self.category, self.name, e))

        logger.info("leaf_analysis_completed", analyzer=self.name, findings=len(findings))
        return findings

    @staticmethod
    def apply_rules(
        rules: Iterable[Rule],
        snapshot: Snapshot,
        findings: list,
        cancellation: Optional[CancellationToken],
    ) -> None:
        findings.extend(evaluate_rules(rules, snapshot, cancellation))
