"""Pytest configuration and fixtures for cloudposture tests."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest
import structlog

from cloudposture.config import set_config
from cloudposture.core.resources import Resource

SUBSCRIPTION = "00000000-0000-0000-0000-000000000001"
OTHER_SUBSCRIPTION = "00000000-0000-0000-0000-000000000002"


def resource_id(type_: str, name: str, subscription: str = SUBSCRIPTION, group: str = "rg-core") -> str:
    return f"/subscriptions/{subscription}/resourceGroups/{group}/providers/{type_}/{name}"


@pytest.fixture(autouse=True)
def reset_global_state():
    """Undo logging and config changes a test (usually a CLI test) made."""
    yield
    structlog.reset_defaults()
    set_config(None)


@pytest.fixture
def make_resource() -> Callable[..., Resource]:
    """Factory for Resource objects with a realistic ARM id."""

    def factory(type_: str, name: str, properties: Any = None, **kwargs: Any) -> Resource:
        subscription = kwargs.pop("subscription_id", SUBSCRIPTION)
        return Resource(
            id=kwargs.pop("id", resource_id(type_, name, subscription)),
            name=name,
            type=type_,
            subscription_id=subscription,
            resource_group=kwargs.pop("resource_group", "rg-core"),
            location=kwargs.pop("location", "eastus"),
            properties=properties,
            **kwargs,
        )

    return factory


@pytest.fixture
def open_ssh_nsg(make_resource) -> Resource:
    """NSG with a single allow-any-to-22 inbound rule."""
    return make_resource(
        "Microsoft.Network/networkSecurityGroups",
        "nsg-web",
        properties={
            "securityRules": [
                {
                    "name": "AllowSSH",
                    "properties": {
                        "priority": 100,
                        "direction": "Inbound",
                        "access": "Allow",
                        "protocol": "Tcp",
                        "sourceAddressPrefix": "0.0.0.0/0",
                        "destinationPortRange": "22",
                    },
                }
            ],
            "subnets": [{"id": "subnet-1"}],
        },
        tags={"Purpose": "web tier"},
    )


@pytest.fixture
def locked_down_nsg(make_resource) -> Resource:
    """NSG with only an explicit deny rule, associated and tagged."""
    return make_resource(
        "Microsoft.Network/networkSecurityGroups",
        "nsg-app",
        properties={
            "securityRules": [
                {
                    "name": "DenyAll",
                    "properties": {
                        "priority": 4000,
                        "direction": "Inbound",
                        "access": "Deny",
                        "protocol": "*",
                        "sourceAddressPrefix": "*",
                        "destinationPortRange": "*",
                    },
                }
            ],
            "subnets": [{"id": "subnet-2"}],
        },
        tags={"Purpose": "app tier"},
    )


@pytest.fixture
def defender_pricing(make_resource) -> Callable[[str, str], Resource]:
    """Factory for Defender pricing resources, e.g. ``("VirtualMachines", "Standard")``."""

    def factory(plan_name: str, tier: str = "Standard") -> Resource:
        return make_resource("Microsoft.Security/pricings", plan_name, properties={"pricingTier": tier})

    return factory


@pytest.fixture
def mixed_snapshot_records() -> List[Dict[str, Any]]:
    """Raw Resource Graph style records spanning two subscriptions."""
    return [
        {
            "id": resource_id("Microsoft.Network/networkSecurityGroups", "nsg-web"),
            "name": "nsg-web",
            "type": "microsoft.network/networksecuritygroups",
            "subscriptionId": SUBSCRIPTION,
            "resourceGroup": "rg-core",
            "tags": {"Purpose": "web"},
            "properties": json.dumps(
                {
                    "securityRules": [
                        {
                            "name": "AllowRDP",
                            "properties": {
                                "priority": 110,
                                "direction": "Inbound",
                                "access": "Allow",
                                "protocol": "Tcp",
                                "sourceAddressPrefix": "*",
                                "destinationPortRange": "3389",
                            },
                        }
                    ],
                    "subnets": [{"id": "subnet-1"}],
                }
            ),
        },
        {
            "id": resource_id("Microsoft.Storage/storageAccounts", "stdataprod"),
            "name": "stdataprod",
            "type": "Microsoft.Storage/storageAccounts",
            "sku": {"name": "Standard_LRS", "tier": "Standard"},
            "tags": {"Environment": "Production"},
            "properties": {"supportsHttpsTrafficOnly": False},
        },
        {
            "id": resource_id("Microsoft.Compute/virtualMachines", "vm-other", OTHER_SUBSCRIPTION),
            "name": "vm-other",
            "type": "Microsoft.Compute/virtualMachines",
        },
        {"name": "record-without-id", "type": "Microsoft.Compute/virtualMachines"},
    ]


@pytest.fixture
def snapshot_file(tmp_path: Path, mixed_snapshot_records: List[Dict[str, Any]]) -> Path:
    """Write the mixed records to a snapshot file in Resource Graph response shape."""
    path = tmp_path / "resources.json"
    path.write_text(json.dumps({"data": mixed_snapshot_records}), encoding="utf-8")
    return path
