"""Resource inventory: the fetcher interface and record normalization.

The real cloud fetcher is an external collaborator. This module defines the
interface the pipeline consumes, the normalization every fetcher should run
its raw records through, and a snapshot-backed inventory used by the CLI
and tests.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import structlog

from cloudposture.core.cancellation import CancellationToken
from cloudposture.core.exceptions import DelegatedIdentityError, SnapshotUnavailableError
from cloudposture.core.resources import Resource

logger = structlog.get_logger(__name__)

_SUBSCRIPTION_IN_ID = re.compile(r"/subscriptions/([^/]+)", re.IGNORECASE)
_RESOURCE_GROUP_IN_ID = re.compile(r"/resourcegroups/([^/]+)", re.IGNORECASE)


@dataclass(frozen=True)
class DelegatedIdentity:
    """Delegated (OAuth) identity the fetch and analyzers run under."""

    client_id: str
    organization_id: str


class ResourceInventory(ABC):
    """Source of resource snapshots."""

    @abstractmethod
    async def fetch_resources(
        self,
        subscription_ids: Sequence[str],
        cancellation: Optional[CancellationToken] = None,
    ) -> list[Resource]:
        """Fetch the normalized snapshot using the ambient identity."""

    async def fetch_resources_with_delegated_identity(
        self,
        subscription_ids: Sequence[str],
        client_id: str,
        organization_id: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> list[Resource]:
        """Fetch the snapshot with a delegated credential.

        Inventories without delegated support raise DelegatedIdentityError,
        which callers answer by falling back to ``fetch_resources``.
        """
        raise DelegatedIdentityError(
            f"{type(self).__name__} does not support delegated access",
            client_id=client_id,
            organization_id=organization_id,
        )


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _normalize_sku(sku: Any) -> Optional[str]:
    if sku is None:
        return None
    if isinstance(sku, Mapping):
        value = _first(sku, "name", "tier")
        return str(value) if value is not None else None
    return str(sku) or None


def _normalize_tags(tags: Any) -> dict[str, str]:
    if tags is None:
        return {}
    if isinstance(tags, str):
        try:
            tags = json.loads(tags) if tags.strip() else {}
        except ValueError:
            logger.warning("resource_tags_unparsable", tags=tags[:100])
            return {}
    if not isinstance(tags, Mapping):
        return {}
    return {str(k): "" if v is None else str(v) for k, v in tags.items()}


def normalize_resource(raw: Union[Mapping[str, Any], Resource]) -> Optional[Resource]:
    """Build a Resource from a raw inventory record.

    Accepts both snake_case records and Azure Resource Graph rows
    (``resourceGroup``, ``subscriptionId``, ``sku`` as an object,
    ``properties`` as text or an object). Missing tags, properties, kind or
    sku normalize to empty/absent. Records without an id are skipped.
    """
    if isinstance(raw, Resource):
        return raw
    if not isinstance(raw, Mapping):
        logger.warning("resource_record_skipped", reason="not an object")
        return None

    resource_id = _first(raw, "id", "resource_id", "resourceId")
    if not resource_id:
        logger.warning("resource_record_skipped", reason="missing id", name=raw.get("name"))
        return None
    resource_id = str(resource_id)

    subscription_id = _first(raw, "subscriptionId", "subscription_id")
    if subscription_id is None:
        match = _SUBSCRIPTION_IN_ID.search(resource_id)
        subscription_id = match.group(1) if match else None

    resource_group = _first(raw, "resourceGroup", "resource_group")
    if resource_group is None:
        match = _RESOURCE_GROUP_IN_ID.search(resource_id)
        resource_group = match.group(1) if match else None

    return Resource(
        id=resource_id,
        name=str(_first(raw, "name") or resource_id.rstrip("/").split("/")[-1]),
        type=str(_first(raw, "type") or ""),
        resource_group=resource_group,
        location=_first(raw, "location"),
        subscription_id=subscription_id,
        kind=_first(raw, "kind"),
        sku=_normalize_sku(raw.get("sku")),
        tags=_normalize_tags(raw.get("tags")),
        properties=raw.get("properties"),
        environment=_first(raw, "environment"),
    )


def normalize_resources(records: Iterable[Any]) -> list[Resource]:
    resources = []
    for record in records:
        resource = normalize_resource(record)
        if resource is not None:
            resources.append(resource)
    return resources


def load_snapshot_records(path: Union[str, Path]) -> list[Any]:
    """Read raw records from a JSON snapshot file.

    The file may hold a list of records, or an object with the list under
    ``data`` (Resource Graph response) or ``resources``.
    """
    snapshot_file = Path(path)
    if not snapshot_file.exists():
        raise SnapshotUnavailableError(f"Snapshot file not found: {snapshot_file}")

    try:
        with open(snapshot_file, encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as e:
        raise SnapshotUnavailableError(f"Could not read snapshot {snapshot_file}: {e}") from e

    if isinstance(payload, Mapping):
        for key in ("data", "resources"):
            if isinstance(payload.get(key), list):
                return payload[key]
        raise SnapshotUnavailableError(
            f"Snapshot {snapshot_file} has no 'data' or 'resources' list"
        )
    if isinstance(payload, list):
        return payload

    raise SnapshotUnavailableError(f"Snapshot {snapshot_file} is not a list of resources")


class SnapshotInventory(ResourceInventory):
    """Inventory backed by an in-memory or on-disk snapshot."""

    def __init__(self, records: Iterable[Any] = (), allow_delegated: bool = False):
        """Initialize the inventory.

        Args:
            records: Raw records or Resource objects
            allow_delegated: Serve delegated-identity fetches from the same snapshot
        """
        self._resources = tuple(normalize_resources(records))
        self.allow_delegated = allow_delegated
        logger.info("snapshot_inventory_initialized", resources=len(self._resources))

    @classmethod
    def from_file(cls, path: Union[str, Path], allow_delegated: bool = False) -> "SnapshotInventory":
        return cls(load_snapshot_records(path), allow_delegated=allow_delegated)

    def _select(self, subscription_ids: Sequence[str]) -> list[Resource]:
        if not subscription_ids:
            return list(self._resources)
        wanted = {s.lower() for s in subscription_ids}
        return [
            r for r in self._resources
            if r.subscription_id is not None and r.subscription_id.lower() in wanted
        ]

    async def fetch_resources(
        self,
        subscription_ids: Sequence[str],
        cancellation: Optional[CancellationToken] = None,
    ) -> list[Resource]:
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        resources = self._select(subscription_ids)
        logger.info(
            "snapshot_resources_fetched",
            subscriptions=list(subscription_ids),
            resources=len(resources),
        )
        return resources

    async def fetch_resources_with_delegated_identity(
        self,
        subscription_ids: Sequence[str],
        client_id: str,
        organization_id: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> list[Resource]:
        if not self.allow_delegated:
            return await super().fetch_resources_with_delegated_identity(
                subscription_ids, client_id, organization_id, cancellation
            )
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        resources = self._select(subscription_ids)
        logger.info(
            "snapshot_resources_fetched_delegated",
            client_id=client_id,
            resources=len(resources),
        )
        return resources
