"""Managed-protection (Defender plan) coverage derived from the snapshot.

Plan state comes from ``microsoft.security/pricings`` resources: a plan is
enabled when its pricing tier is ``Standard``. Anything unreadable counts as
not enabled.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional

import structlog

from cloudposture.core.resources import Resource, ResourceKind

logger = structlog.get_logger(__name__)


class ProtectionPlan(str, Enum):
    """Defender plans, valued by display name."""

    SERVERS = "Servers"
    SQL = "SQL"
    STORAGE = "Storage"
    KEY_VAULT = "Key Vault"
    APP_SERVICE = "App Service"
    CONTAINER_REGISTRY = "Container Registry"
    KUBERNETES = "Kubernetes"
    COSMOS_DB = "Cosmos DB"


PLAN_RESOURCE_KINDS: dict[ProtectionPlan, tuple[ResourceKind, ...]] = {
    ProtectionPlan.SERVERS: (ResourceKind.VIRTUAL_MACHINE,),
    ProtectionPlan.SQL: (ResourceKind.SQL_SERVER,),
    ProtectionPlan.STORAGE: (ResourceKind.STORAGE_ACCOUNT,),
    ProtectionPlan.KEY_VAULT: (ResourceKind.KEY_VAULT,),
    ProtectionPlan.APP_SERVICE: (ResourceKind.APP_SERVICE,),
    ProtectionPlan.CONTAINER_REGISTRY: (ResourceKind.CONTAINER_REGISTRY,),
    ProtectionPlan.KUBERNETES: (ResourceKind.KUBERNETES_CLUSTER,),
    ProtectionPlan.COSMOS_DB: (ResourceKind.COSMOS_DB,),
}

CRITICAL_PLANS = (ProtectionPlan.SERVERS, ProtectionPlan.SQL, ProtectionPlan.KUBERNETES)

# Pricing resource names (lowercased) to the plans they switch on.
_PRICING_NAMES: dict[str, tuple[ProtectionPlan, ...]] = {
    "virtualmachines": (ProtectionPlan.SERVERS,),
    "sqlservers": (ProtectionPlan.SQL,),
    "sqlservervirtualmachines": (ProtectionPlan.SQL,),
    "storageaccounts": (ProtectionPlan.STORAGE,),
    "keyvaults": (ProtectionPlan.KEY_VAULT,),
    "appservices": (ProtectionPlan.APP_SERVICE,),
    "containerregistry": (ProtectionPlan.CONTAINER_REGISTRY,),
    "kubernetesservice": (ProtectionPlan.KUBERNETES,),
    "containers": (ProtectionPlan.CONTAINER_REGISTRY, ProtectionPlan.KUBERNETES),
    "cosmosdbs": (ProtectionPlan.COSMOS_DB,),
}


def plan_for_kind(kind: ResourceKind) -> Optional[ProtectionPlan]:
    for plan, kinds in PLAN_RESOURCE_KINDS.items():
        if kind in kinds:
            return plan
    return None


@dataclass(frozen=True)
class ProtectionCoverage:
    """Which plans are on, and how many resources each plan would protect."""

    enabled: frozenset = frozenset()
    protectable: Mapping[ProtectionPlan, int] = field(default_factory=dict)

    @property
    def any_enabled(self) -> bool:
        return bool(self.enabled)

    @property
    def protectable_resources(self) -> int:
        return sum(self.protectable.values())

    def is_enabled(self, plan: ProtectionPlan) -> bool:
        return plan in self.enabled

    def covers(self, resource: Resource) -> bool:
        """True when the plan matching this resource's kind is enabled."""
        plan = plan_for_kind(resource.resource_kind)
        return plan is not None and plan in self.enabled

    def missing(self) -> list[ProtectionPlan]:
        """Plans with resources to protect that are not enabled, in plan order."""
        return [
            plan
            for plan in ProtectionPlan
            if self.protectable.get(plan, 0) > 0 and plan not in self.enabled
        ]


def _pricing_enabled(pricing: Resource) -> bool:
    document = pricing.properties
    if not document.is_parsed:
        logger.warning(
            "pricing_properties_unreadable",
            resource_id=pricing.id,
            state=document.state.value,
        )
        return False
    tier = document.get("pricingTier")
    return isinstance(tier, str) and tier.lower() == "standard"


def derive_coverage(resources: Iterable[Resource]) -> ProtectionCoverage:
    """Build plan coverage for a snapshot."""
    snapshot = tuple(resources)
    enabled: set[ProtectionPlan] = set()

    for resource in snapshot:
        if resource.resource_kind != ResourceKind.SECURITY_PRICING:
            continue
        plans = _PRICING_NAMES.get(resource.name.lower(), ())
        if plans and _pricing_enabled(resource):
            enabled.update(plans)

    protectable = {plan: 0 for plan in ProtectionPlan}
    for resource in snapshot:
        plan = plan_for_kind(resource.resource_kind)
        if plan is not None:
            protectable[plan] += 1

    return ProtectionCoverage(enabled=frozenset(enabled), protectable=protectable)
