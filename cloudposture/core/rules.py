"""Table-driven rule evaluation shared by every analyzer.

A rule selects a sub-population of the snapshot by kind, evaluates a
tri-state predicate over each resource and emits one finding per gap. Rules
differ only in data; severity always goes through ``resolve_severity``.
"""

import functools
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

import structlog

from cloudposture.core.cancellation import CancellationToken, is_cancelled
from cloudposture.core.findings import Finding, FindingCategory, Severity
from cloudposture.core.resources import PropertiesDocument, Resource, ResourceKind

logger = structlog.get_logger(__name__)


class Tri(Enum):
    """Predicate outcome: control satisfied, missing, or not determinable."""

    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, value: bool) -> "Tri":
        return cls.TRUE if value else cls.FALSE

    @property
    def is_gap(self) -> bool:
        """UNKNOWN counts as a gap so a bad record never hides one."""
        return self is not Tri.TRUE


Predicate = Callable[[Resource], Tri]

# Exceptions raised by predicates that walk an unexpected document shape.
SHAPE_ERRORS = (KeyError, TypeError, ValueError, AttributeError, IndexError)


def document_predicate(when_absent: Tri = Tri.UNKNOWN):
    """Turn ``fn(resource, document) -> bool | Tri`` into a Predicate.

    Malformed documents and shape errors yield UNKNOWN. ``when_absent`` is
    returned for resources that carry no properties at all.
    """

    def decorator(fn: Callable[[Resource, PropertiesDocument], object]) -> Predicate:
        @functools.wraps(fn)
        def wrapper(resource: Resource) -> Tri:
            document = resource.properties
            if document.is_absent:
                return when_absent
            if document.is_malformed:
                return Tri.UNKNOWN
            try:
                outcome = fn(resource, document)
            except SHAPE_ERRORS as e:
                logger.debug(
                    "predicate_shape_error",
                    predicate=fn.__name__,
                    resource_id=resource.id,
                    error=str(e),
                )
                return Tri.UNKNOWN
            if isinstance(outcome, Tri):
                return outcome
            return Tri.of(bool(outcome))

        return wrapper

    return decorator


def resolve_severity(
    baseline: Severity,
    is_production: bool,
    has_sensitivity_tag: bool,
    escalate: bool = True,
    override: Optional[Severity] = None,
) -> Severity:
    """Single severity function for every rule.

    An explicit override wins. Escalating rules raise production or
    sensitive resources to at least High. Otherwise the baseline applies.
    """
    if override is not None:
        return override
    if escalate and (is_production or has_sensitivity_tag):
        return max(baseline, Severity.HIGH)
    return baseline


@dataclass(frozen=True)
class Rule:
    """One generative check: (kinds, predicate, control, texts, baseline)."""

    kinds: tuple[ResourceKind, ...]
    predicate: Predicate
    control: str
    issue: str
    recommendation: str
    baseline: Severity
    category: FindingCategory
    framework: str = ""
    label: str = ""
    escalate: bool = True
    applies_to: Optional[Callable[[Resource], bool]] = None
    override: Optional[Callable[[Resource], Optional[Severity]]] = None
    limit: Optional[int] = None

    def selects(self, resource: Resource) -> bool:
        if resource.resource_kind not in self.kinds:
            return False
        return self.applies_to is None or self.applies_to(resource)

    def severity_for(self, resource: Resource) -> Severity:
        override = self.override(resource) if self.override else None
        return resolve_severity(
            self.baseline,
            resource.is_production,
            resource.has_sensitivity_tag,
            escalate=self.escalate,
            override=override,
        )

    def finding_for(self, resource: Resource) -> Finding:
        context = {"name": resource.name, "label": self.label or resource.type_name}
        return Finding(
            category=self.category,
            resource_id=resource.id,
            resource_name=resource.name,
            control=self.control,
            issue=self.issue.format(**context),
            recommendation=self.recommendation.format(**context),
            severity=self.severity_for(resource),
            framework=self.framework,
        )


def evaluate_rule(
    rule: Rule,
    resources: Iterable[Resource],
    cancellation: Optional[CancellationToken] = None,
) -> list[Finding]:
    """Evaluate one rule over the snapshot, stopping early on cancellation."""
    findings: list[Finding] = []
    selected = [r for r in resources if rule.selects(r)]
    if rule.limit is not None:
        selected = selected[: rule.limit]

    for resource in selected:
        if is_cancelled(cancellation):
            break
        outcome = rule.predicate(resource)
        if outcome is Tri.UNKNOWN:
            logger.info(
                "predicate_undetermined_treated_as_gap",
                control=rule.control,
                resource_id=resource.id,
                properties_state=resource.properties.state.value,
            )
        if outcome.is_gap:
            findings.append(rule.finding_for(resource))

    return findings


def evaluate_rules(
    rules: Iterable[Rule],
    resources: Iterable[Resource],
    cancellation: Optional[CancellationToken] = None,
) -> list[Finding]:
    snapshot = tuple(resources)
    findings: list[Finding] = []
    for rule in rules:
        if is_cancelled(cancellation):
            break
        findings.extend(evaluate_rule(rule, snapshot, cancellation))
    return findings


def flag_not_false(*path: str) -> Predicate:
    """Gap only when the flag is present and explicitly false."""

    @document_predicate(when_absent=Tri.TRUE)
    def predicate(resource: Resource, document: PropertiesDocument) -> bool:
        return document.get(*path) is not False

    return predicate


def flag_true(*path: str) -> Predicate:
    """Gap unless the flag is present and true."""

    @document_predicate()
    def predicate(resource: Resource, document: PropertiesDocument) -> bool:
        return document.get(*path) is True

    return predicate
