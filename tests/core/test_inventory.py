"""Tests for record normalization and the snapshot inventory."""

import json
from pathlib import Path

import pytest

from cloudposture.core.cancellation import CancellationToken
from cloudposture.core.exceptions import (
    DelegatedIdentityError,
    PipelineCancelledError,
    SnapshotUnavailableError,
)
from cloudposture.core.inventory import (
    SnapshotInventory,
    load_snapshot_records,
    normalize_resource,
    normalize_resources,
)
from cloudposture.core.resources import Resource, ResourceKind

from conftest import OTHER_SUBSCRIPTION, SUBSCRIPTION


class TestNormalizeResource:
    """Tests for raw record normalization."""

    def test_resource_graph_row(self, mixed_snapshot_records) -> None:
        resource = normalize_resource(mixed_snapshot_records[1])

        assert resource.resource_kind is ResourceKind.STORAGE_ACCOUNT
        assert resource.sku == "Standard_LRS"
        assert resource.subscription_id == SUBSCRIPTION
        assert resource.resource_group == "rg-core"
        assert resource.is_production

    def test_properties_as_text(self, mixed_snapshot_records) -> None:
        resource = normalize_resource(mixed_snapshot_records[0])

        assert resource.properties.is_parsed
        assert resource.properties.get("securityRules")[0]["name"] == "AllowRDP"

    def test_missing_optional_fields(self) -> None:
        resource = normalize_resource(
            {"id": "/subscriptions/abc/resourceGroups/rg1/providers/Microsoft.Web/sites/app1"}
        )

        assert resource.name == "app1"
        assert resource.subscription_id == "abc"
        assert resource.resource_group == "rg1"
        assert resource.tags == {}
        assert resource.properties.is_absent
        assert resource.sku is None
        assert resource.resource_kind is ResourceKind.UNCLASSIFIED

    def test_record_without_id_is_skipped(self) -> None:
        assert normalize_resource({"name": "orphan"}) is None
        assert normalize_resource("not a record") is None

    def test_resource_passthrough(self) -> None:
        resource = Resource(id="r1", name="r1", type="x")

        assert normalize_resource(resource) is resource

    def test_normalize_resources_drops_invalid(self, mixed_snapshot_records) -> None:
        resources = normalize_resources(mixed_snapshot_records)

        assert len(resources) == 3


class TestLoadSnapshotRecords:
    """Tests for snapshot file parsing."""

    def test_data_envelope(self, snapshot_file: Path) -> None:
        assert len(load_snapshot_records(snapshot_file)) == 4

    def test_plain_list(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text(json.dumps([{"id": "r1"}]), encoding="utf-8")

        assert load_snapshot_records(path) == [{"id": "r1"}]

    def test_resources_envelope(self, tmp_path: Path) -> None:
        path = tmp_path / "envelope.json"
        path.write_text(json.dumps({"resources": [{"id": "r1"}, {"id": "r2"}]}), encoding="utf-8")

        assert len(load_snapshot_records(path)) == 2

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SnapshotUnavailableError):
            load_snapshot_records(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(SnapshotUnavailableError):
            load_snapshot_records(path)

    def test_wrong_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "shape.json"
        path.write_text(json.dumps({"items": []}), encoding="utf-8")

        with pytest.raises(SnapshotUnavailableError):
            load_snapshot_records(path)


class TestSnapshotInventory:
    """Tests for the snapshot-backed inventory."""

    @pytest.mark.asyncio
    async def test_fetch_all(self, snapshot_file: Path) -> None:
        inventory = SnapshotInventory.from_file(snapshot_file)

        resources = await inventory.fetch_resources([])

        assert len(resources) == 3

    @pytest.mark.asyncio
    async def test_fetch_filters_by_subscription(self, snapshot_file: Path) -> None:
        inventory = SnapshotInventory.from_file(snapshot_file)

        resources = await inventory.fetch_resources([OTHER_SUBSCRIPTION.upper()])

        assert [r.name for r in resources] == ["vm-other"]

    @pytest.mark.asyncio
    async def test_fetch_observes_cancellation(self, snapshot_file: Path) -> None:
        inventory = SnapshotInventory.from_file(snapshot_file)
        token = CancellationToken()
        token.cancel("shutdown")

        with pytest.raises(PipelineCancelledError):
            await inventory.fetch_resources([], token)

    @pytest.mark.asyncio
    async def test_delegated_not_supported_by_default(self, snapshot_file: Path) -> None:
        inventory = SnapshotInventory.from_file(snapshot_file)

        with pytest.raises(DelegatedIdentityError) as exc_info:
            await inventory.fetch_resources_with_delegated_identity([], "client-1", "org-1")

        assert exc_info.value.client_id == "client-1"
        assert exc_info.value.organization_id == "org-1"

    @pytest.mark.asyncio
    async def test_delegated_allowed(self, snapshot_file: Path) -> None:
        inventory = SnapshotInventory.from_file(snapshot_file, allow_delegated=True)

        resources = await inventory.fetch_resources_with_delegated_identity(
            [SUBSCRIPTION], "client-1", "org-1"
        )

        assert {r.name for r in resources} == {"nsg-web", "stdataprod"}
