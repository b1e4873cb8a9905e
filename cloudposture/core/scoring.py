"""Scoring policy and pure scoring functions.

Every function here takes plain counts and returns a number, so the scoring
rules can be tested without building resource snapshots. The constants live
in ``ScoringPolicy`` and can be overridden through configuration.
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ScoringPolicy(BaseModel):
    """Tunable weights, penalties and thresholds used by the scorers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Combination
    network_weight: float = Field(default=0.40, ge=0, le=1, description="Weight of the network score")
    platform_weight: float = Field(default=0.60, ge=0, le=1, description="Weight of the platform score")

    # Network domain
    open_rule_penalty: float = Field(default=15, ge=0)
    permissive_rule_penalty: float = Field(default=8, ge=0)
    missing_nsg_penalty: float = Field(default=25, ge=0)
    network_critical_weight: float = Field(default=12, ge=0)
    network_high_weight: float = Field(default=8, ge=0)
    network_medium_weight: float = Field(default=3, ge=0)
    private_connectivity_gap_threshold: int = Field(default=5, ge=0)
    private_connectivity_penalty: float = Field(default=10, ge=0)
    encryption_finding_threshold: int = Field(default=3, ge=0)
    encryption_penalty: float = Field(default=8, ge=0)
    threat_protection_finding_threshold: int = Field(default=5, ge=0)
    threat_protection_penalty: float = Field(default=6, ge=0)

    # Platform domain
    protection_disabled_penalty: float = Field(default=50, ge=0)
    platform_high_weight: float = Field(default=12, ge=0)
    platform_medium_weight: float = Field(default=6, ge=0)
    missing_critical_plan_penalty: float = Field(default=8, ge=0)
    platform_critical_weight: float = Field(default=15, ge=0)
    secure_score_high_weight: float = Field(default=12, ge=0)
    secure_score_medium_weight: float = Field(default=4, ge=0)

    # Shared bonus
    low_findings_bonus: float = Field(default=5, ge=0)
    low_findings_bonus_threshold: int = Field(default=3, ge=0)

    # Cross-domain
    network_misalignment_penalty: float = Field(default=10, ge=0)
    platform_misalignment_penalty: float = Field(default=8, ge=0)
    critical_findings_threshold: int = Field(default=5, ge=0)
    excess_critical_penalty: float = Field(default=2, ge=0)
    cross_domain_penalty_cap: float = Field(default=25, ge=0, le=100)

    @model_validator(mode="after")
    def validate_weights(self) -> "ScoringPolicy":
        """Combination weights must sum to 1."""
        if abs(self.network_weight + self.platform_weight - 1.0) > 1e-9:
            raise ValueError("network_weight and platform_weight must sum to 1")
        return self


DEFAULT_POLICY = ScoringPolicy()


def clamp_score(value: float) -> float:
    """Clamp to [0, 100] and round to 2 places."""
    return round(min(100.0, max(0.0, value)), 2)


@dataclass(frozen=True)
class NetworkTally:
    """Counts the network score is computed from."""

    open_rules: int = 0
    permissive_rules: int = 0
    missing_nsg: bool = False
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    private_connectivity_gaps: int = 0
    encryption_findings: int = 0
    threat_protection_findings: int = 0


@dataclass(frozen=True)
class PlatformTally:
    """Counts the platform score is computed from."""

    has_protectable_resources: bool = False
    protection_enabled: bool = False
    high: int = 0
    medium: int = 0
    missing_critical_plans: int = 0
    critical: int = 0
    low: int = 0


def network_score(tally: NetworkTally, policy: ScoringPolicy = DEFAULT_POLICY) -> float:
    score = 100.0
    score -= tally.open_rules * policy.open_rule_penalty
    score -= tally.permissive_rules * policy.permissive_rule_penalty
    if tally.missing_nsg:
        score -= policy.missing_nsg_penalty

    score -= (
        tally.critical * policy.network_critical_weight
        + tally.high * policy.network_high_weight
        + tally.medium * policy.network_medium_weight
    )

    if tally.private_connectivity_gaps > policy.private_connectivity_gap_threshold:
        score -= policy.private_connectivity_penalty
    if tally.encryption_findings > policy.encryption_finding_threshold:
        score -= policy.encryption_penalty
    if tally.threat_protection_findings > policy.threat_protection_finding_threshold:
        score -= policy.threat_protection_penalty

    if tally.low < policy.low_findings_bonus_threshold:
        score += policy.low_findings_bonus

    return clamp_score(score)


def platform_score(tally: PlatformTally, policy: ScoringPolicy = DEFAULT_POLICY) -> float:
    score = 100.0
    if tally.has_protectable_resources and not tally.protection_enabled:
        score -= policy.protection_disabled_penalty

    score -= tally.high * policy.platform_high_weight
    score -= tally.medium * policy.platform_medium_weight
    score -= tally.missing_critical_plans * policy.missing_critical_plan_penalty
    score -= tally.critical * policy.platform_critical_weight

    if tally.low < policy.low_findings_bonus_threshold:
        score += policy.low_findings_bonus

    return clamp_score(score)


def secure_score_estimate(high: int, medium: int, policy: ScoringPolicy = DEFAULT_POLICY) -> float:
    return clamp_score(
        100.0 - high * policy.secure_score_high_weight - medium * policy.secure_score_medium_weight
    )


def combine_scores(network: float, platform: float, policy: ScoringPolicy = DEFAULT_POLICY) -> float:
    """Weighted combination of the two domain scores, before any penalty."""
    return round(network * policy.network_weight + platform * policy.platform_weight, 2)


def cross_domain_penalty(
    network_critical: int,
    platform_critical: int,
    total_critical: int,
    protection_enabled: bool,
    network_security_groups: int,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> float:
    """Penalty for gaps that only show up when both domains are seen together.

    Always within ``[0, policy.cross_domain_penalty_cap]``.
    """
    penalty = 0.0
    if network_critical > 0 and not protection_enabled:
        penalty += policy.network_misalignment_penalty
    if platform_critical > 0 and network_security_groups == 0:
        penalty += policy.platform_misalignment_penalty
    if total_critical > policy.critical_findings_threshold:
        penalty += (total_critical - policy.critical_findings_threshold) * policy.excess_critical_penalty

    return round(min(penalty, policy.cross_domain_penalty_cap), 2)


def final_score(base_score: float, penalty: float) -> float:
    return clamp_score(base_score - penalty)
