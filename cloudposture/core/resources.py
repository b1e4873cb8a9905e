"""Normalized cloud resources consumed by every analyzer.

A resource snapshot is fetched once per pipeline invocation and shared by
reference between concurrently running analyzers, so everything here is
immutable: resources are frozen dataclasses, tags are read-only mappings and
parsed properties are deep-frozen.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional


class ResourceKind(str, Enum):
    """Provider resource types the analyzers know how to assess."""

    # Network
    NETWORK_SECURITY_GROUP = "microsoft.network/networksecuritygroups"
    VIRTUAL_NETWORK = "microsoft.network/virtualnetworks"
    PUBLIC_IP_ADDRESS = "microsoft.network/publicipaddresses"
    APPLICATION_GATEWAY = "microsoft.network/applicationgateways"
    LOAD_BALANCER = "microsoft.network/loadbalancers"
    AZURE_FIREWALL = "microsoft.network/azurefirewalls"
    NETWORK_WATCHER = "microsoft.network/networkwatchers"
    TRAFFIC_MANAGER = "microsoft.network/trafficmanagerprofiles"
    FRONT_DOOR = "microsoft.network/frontdoors"
    PRIVATE_ENDPOINT = "microsoft.network/privateendpoints"

    # Data
    STORAGE_ACCOUNT = "microsoft.storage/storageaccounts"
    SQL_SERVER = "microsoft.sql/servers"
    SQL_DATABASE = "microsoft.sql/servers/databases"
    COSMOS_DB = "microsoft.documentdb/databaseaccounts"
    SERVICE_BUS = "microsoft.servicebus/namespaces"
    EVENT_HUB = "microsoft.eventhub/namespaces"

    # Identity and secrets
    KEY_VAULT = "microsoft.keyvault/vaults"
    POLICY_ASSIGNMENT = "microsoft.authorization/policyassignments"

    # Compute
    VIRTUAL_MACHINE = "microsoft.compute/virtualmachines"
    MANAGED_DISK = "microsoft.compute/disks"
    APP_SERVICE = "microsoft.web/sites"
    CONTAINER_REGISTRY = "microsoft.containerregistry/registries"
    KUBERNETES_CLUSTER = "microsoft.containerservice/managedclusters"

    # Monitoring and managed protection
    LOG_ANALYTICS_WORKSPACE = "microsoft.operationalinsights/workspaces"
    OPERATIONS_SOLUTION = "microsoft.operationsmanagement/solutions"
    SECURITY_PRICING = "microsoft.security/pricings"
    SECURITY_CONTACT = "microsoft.security/securitycontacts"
    SECURITY_AUTO_PROVISIONING = "microsoft.security/autoprovisioningsettings"
    SECURITY_AUTOMATION = "microsoft.security/automations"
    JIT_ACCESS_POLICY = "microsoft.security/locations/jitnetworkaccesspolicies"
    SECURITY_OTHER = "microsoft.security/*"

    UNCLASSIFIED = "unclassified"


_KIND_BY_TYPE = {
    kind.value: kind
    for kind in ResourceKind
    if kind not in (ResourceKind.SECURITY_OTHER, ResourceKind.UNCLASSIFIED)
}

# Whole provider namespaces that map onto one kind.
_KIND_BY_NAMESPACE = {
    "microsoft.keyvault/": ResourceKind.KEY_VAULT,
    "microsoft.security/": ResourceKind.SECURITY_OTHER,
}


def classify_type(raw_type: Optional[str]) -> ResourceKind:
    """Map a raw provider type string onto a ResourceKind.

    Matching is case-insensitive. Types nobody analyzes are UNCLASSIFIED.
    """
    if not raw_type:
        return ResourceKind.UNCLASSIFIED

    normalized = raw_type.strip().lower()
    kind = _KIND_BY_TYPE.get(normalized)
    if kind is not None:
        return kind

    for namespace, namespace_kind in _KIND_BY_NAMESPACE.items():
        if normalized.startswith(namespace):
            return namespace_kind

    return ResourceKind.UNCLASSIFIED


def freeze(value: Any) -> Any:
    """Recursively convert mappings and lists into read-only equivalents."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


class DocumentState(str, Enum):
    """Outcome of parsing a resource's properties blob."""

    PARSED = "parsed"
    ABSENT = "absent"
    MALFORMED = "malformed"


_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class PropertiesDocument:
    """Provider-specific properties of a resource.

    Exactly one of three states: parsed (``data`` holds a read-only mapping),
    absent (the provider returned nothing) or malformed (``error`` says why).
    Predicates must handle all three.
    """

    state: DocumentState
    data: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    error: Optional[str] = None

    @classmethod
    def absent(cls) -> "PropertiesDocument":
        return cls(state=DocumentState.ABSENT)

    @classmethod
    def malformed(cls, error: str) -> "PropertiesDocument":
        return cls(state=DocumentState.MALFORMED, error=error)

    @classmethod
    def from_raw(cls, raw: Any) -> "PropertiesDocument":
        """Build a document from a mapping, JSON text or None."""
        if isinstance(raw, PropertiesDocument):
            return raw
        if raw is None:
            return cls.absent()

        if isinstance(raw, (bytes, str)):
            try:
                text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                if not text.strip():
                    return cls.absent()
                raw = json.loads(text)
            except ValueError as e:
                return cls.malformed(f"invalid JSON: {e}")
            if raw is None:
                return cls.absent()

        if isinstance(raw, Mapping):
            return cls(state=DocumentState.PARSED, data=freeze(raw))

        return cls.malformed(f"expected an object, got {type(raw).__name__}")

    @property
    def is_parsed(self) -> bool:
        return self.state == DocumentState.PARSED

    @property
    def is_absent(self) -> bool:
        return self.state == DocumentState.ABSENT

    @property
    def is_malformed(self) -> bool:
        return self.state == DocumentState.MALFORMED

    def has(self, *path: str) -> bool:
        """Check whether a nested key path exists."""
        sentinel = object()
        return self.get(*path, default=sentinel) is not sentinel

    def get(self, *path: str, default: Any = None) -> Any:
        """Walk a nested key path, returning ``default`` when any step is missing."""
        current: Any = self.data
        for key in path:
            if not isinstance(current, Mapping) or key not in current:
                return default
            current = current[key]
        return current


# Tag names are matched case-insensitively.
ENVIRONMENT_TAGS = ("environment", "env")

_NAME_ENVIRONMENTS = (
    ("-production", "production"),
    ("-prod", "prod"),
    ("-staging", "staging"),
    ("-test", "test"),
    ("-dev", "dev"),
)

SENSITIVITY_TAG_MARKERS = {
    "dataclassification": ("confidential", "restricted", "sensitive"),
    "sensitivity": ("confidential", "restricted", "sensitive"),
    "complianceframework": ("pci", "hipaa", "sox"),
    "businesscriticality": ("critical", "high"),
}


def environment_from_name(name: str) -> Optional[str]:
    """Infer an environment from conventional name suffixes/infixes."""
    lowered = (name or "").lower()
    for marker, environment in _NAME_ENVIRONMENTS:
        if marker in lowered:
            return environment
    return None


@dataclass(frozen=True)
class Resource:
    """One normalized cloud resource."""

    id: str
    name: str
    type: str
    resource_group: Optional[str] = None
    location: Optional[str] = None
    subscription_id: Optional[str] = None
    kind: Optional[str] = None
    sku: Optional[str] = None
    tags: Mapping[str, str] = field(default_factory=dict)
    properties: PropertiesDocument = field(default_factory=PropertiesDocument.absent)
    environment: Optional[str] = None
    resource_kind: ResourceKind = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        tags = MappingProxyType(
            {str(k): "" if v is None else str(v) for k, v in dict(self.tags or {}).items()}
        )
        object.__setattr__(self, "tags", tags)
        object.__setattr__(self, "properties", PropertiesDocument.from_raw(self.properties))

        environment = self._environment_tag() or self.environment or environment_from_name(self.name)
        object.__setattr__(self, "environment", environment)
        object.__setattr__(self, "resource_kind", classify_type(self.type))

    def __hash__(self) -> int:
        return hash(self.id)

    def tag(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive tag lookup."""
        wanted = name.lower()
        for key, value in self.tags.items():
            if key.lower() == wanted:
                return value
        return default

    def has_tag(self, name: str) -> bool:
        return self.tag(name) is not None

    def _environment_tag(self) -> Optional[str]:
        for name in ENVIRONMENT_TAGS:
            value = self.tag(name)
            if value:
                return value
        return None

    @property
    def is_production(self) -> bool:
        return "prod" in (self.environment or "").lower()

    @property
    def has_sensitivity_tag(self) -> bool:
        """True when tags mark the resource as holding sensitive or regulated data."""
        for key, value in self.tags.items():
            markers = SENSITIVITY_TAG_MARKERS.get(key.lower())
            if markers and any(marker in value.lower() for marker in markers):
                return True
        return False

    @property
    def type_name(self) -> str:
        return self.type.split("/")[-1]


def select(resources: Iterable[Resource], *kinds: ResourceKind) -> list[Resource]:
    """Return the resources whose kind is one of ``kinds``, in snapshot order."""
    wanted = set(kinds)
    return [r for r in resources if r.resource_kind in wanted]


def count(resources: Iterable[Resource], *kinds: ResourceKind) -> int:
    return len(select(resources, *kinds))
