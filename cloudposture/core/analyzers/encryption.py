"""Data-at-rest and in-transit encryption checks."""

from typing import Optional

import structlog

from cloudposture.core.analyzers.base import Check, LeafAnalyzer, Snapshot
from cloudposture.core.cancellation import CancellationToken, is_cancelled
from cloudposture.core.findings import Finding, FindingCategory, Severity
from cloudposture.core.resources import PropertiesDocument, Resource, ResourceKind, count, select
from cloudposture.core.rules import (
    SHAPE_ERRORS,
    Predicate,
    Rule,
    Tri,
    document_predicate,
    flag_not_false,
    flag_true,
)

logger = structlog.get_logger(__name__)

BENCHMARK = "Azure Security Benchmark"
MODERN_TLS = ("tls1_2", "tls1_3", "1.2", "1.3")

ENCRYPTION_CAPABLE_KINDS = (
    ResourceKind.STORAGE_ACCOUNT,
    ResourceKind.SQL_SERVER,
    ResourceKind.SQL_DATABASE,
    ResourceKind.COSMOS_DB,
    ResourceKind.VIRTUAL_MACHINE,
    ResourceKind.MANAGED_DISK,
    ResourceKind.APP_SERVICE,
)


def modern_tls(*path: str) -> Predicate:
    """Gap when a minimum TLS version is set below 1.2."""

    @document_predicate(when_absent=Tri.TRUE)
    def predicate(resource: Resource, document: PropertiesDocument) -> bool:
        version = document.get(*path)
        return version is None or str(version).lower() in MODERN_TLS

    return predicate


def policy_enabled(name: str) -> Predicate:
    """Gap when the named policy object is present but not enabled."""

    @document_predicate(when_absent=Tri.TRUE)
    def predicate(resource: Resource, document: PropertiesDocument) -> bool:
        policy = document.get(name)
        return policy is None or policy.get("enabled") is True

    return predicate


@document_predicate()
def storage_uses_customer_keys(resource: Resource, document: PropertiesDocument) -> bool:
    key_source = document.get("encryption", "keySource")
    return str(key_source or "").lower() == "microsoft.keyvault"


@document_predicate()
def sql_server_uses_customer_keys(resource: Resource, document: PropertiesDocument) -> bool:
    key_type = document.get("encryptionProtector", "serverKeyType")
    return bool(document.get("keyId")) or str(key_type or "").lower() == "azurekeyvault"


@document_predicate()
def sql_database_tde_enabled(resource: Resource, document: PropertiesDocument) -> bool:
    tde = document.get("transparentDataEncryption")
    if tde is None:
        return False
    state = tde.get("state") or tde.get("status")
    return str(state or "").lower() == "enabled"


@document_predicate()
def cosmos_uses_customer_keys(resource: Resource, document: PropertiesDocument) -> bool:
    return bool(document.get("keyVaultKeyUri"))


@document_predicate(when_absent=Tri.TRUE)
def key_vault_purge_protected(resource: Resource, document: PropertiesDocument) -> bool:
    return document.get("enablePurgeProtection") is True


def key_vault_premium_sku(resource: Resource) -> Tri:
    """Premium SKU is needed for HSM-backed keys."""
    sku = None
    if resource.properties.is_parsed:
        sku = resource.properties.get("sku", "name")
    sku = sku or resource.sku
    if sku is None:
        return Tri.UNKNOWN
    return Tri.of(str(sku).lower() == "premium")


def _rule(kind: ResourceKind, **kwargs) -> Rule:
    kwargs.setdefault("category", FindingCategory.DATA_ENCRYPTION)
    kwargs.setdefault("framework", BENCHMARK)
    return Rule(kinds=(kind,), **kwargs)


def _is_production(resource: Resource) -> bool:
    return resource.is_production


STORAGE_RULES = (
    _rule(
        ResourceKind.STORAGE_ACCOUNT,
        predicate=storage_uses_customer_keys,
        control="Encryption Key Management",
        issue="Storage account is using Microsoft-managed keys instead of customer-managed keys",
        recommendation="Configure customer-managed keys in Key Vault for storage encryption",
        baseline=Severity.MEDIUM,
        limit=20,
    ),
    _rule(
        ResourceKind.STORAGE_ACCOUNT,
        predicate=flag_true("encryption", "requireInfrastructureEncryption"),
        control="Infrastructure Encryption",
        issue="Production storage account does not have infrastructure encryption (double encryption) enabled",
        recommendation="Enable infrastructure encryption when creating production storage accounts",
        baseline=Severity.MEDIUM,
        escalate=False,
        applies_to=_is_production,
        limit=20,
    ),
    _rule(
        ResourceKind.STORAGE_ACCOUNT,
        predicate=flag_not_false("supportsHttpsTrafficOnly"),
        control="Encryption in Transit",
        issue="Storage account allows HTTP traffic, potentially exposing data in transit",
        recommendation="Enable 'Secure transfer required' to enforce HTTPS",
        baseline=Severity.HIGH,
        escalate=False,
        limit=20,
    ),
    _rule(
        ResourceKind.STORAGE_ACCOUNT,
        predicate=modern_tls("minimumTlsVersion"),
        control="Encryption in Transit",
        issue="Storage account minimum TLS version is below TLS 1.2",
        recommendation="Set the minimum TLS version to TLS 1.2",
        baseline=Severity.MEDIUM,
        escalate=False,
        limit=20,
    ),
    _rule(
        ResourceKind.STORAGE_ACCOUNT,
        predicate=policy_enabled("blobRestorePolicy"),
        control="Data Protection",
        issue="Storage account does not have point-in-time restore enabled for blob data",
        recommendation="Enable point-in-time restore for block blob data",
        baseline=Severity.LOW,
        escalate=False,
        limit=20,
    ),
    _rule(
        ResourceKind.STORAGE_ACCOUNT,
        predicate=policy_enabled("deleteRetentionPolicy"),
        control="Data Protection",
        issue="Storage account does not have blob soft delete enabled",
        recommendation="Enable blob soft delete with an appropriate retention period",
        baseline=Severity.MEDIUM,
        escalate=False,
        limit=20,
    ),
)

DATABASE_RULES = (
    _rule(
        ResourceKind.SQL_SERVER,
        predicate=sql_server_uses_customer_keys,
        control="Database Encryption",
        issue="SQL Server transparent data encryption is not using customer-managed keys",
        recommendation="Configure the TDE protector to use a Key Vault key",
        baseline=Severity.MEDIUM,
        escalate=False,
        limit=15,
    ),
    _rule(
        ResourceKind.SQL_SERVER,
        predicate=modern_tls("minimalTlsVersion"),
        control="Encryption in Transit",
        issue="SQL Server accepts connections below TLS 1.2",
        recommendation="Set the SQL Server minimal TLS version to 1.2",
        baseline=Severity.MEDIUM,
        escalate=False,
        limit=15,
    ),
    _rule(
        ResourceKind.SQL_DATABASE,
        predicate=sql_database_tde_enabled,
        control="Database Encryption",
        issue="SQL Database transparent data encryption is not confirmed as enabled",
        recommendation="Enable transparent data encryption on the database",
        baseline=Severity.MEDIUM,
        limit=20,
    ),
    _rule(
        ResourceKind.COSMOS_DB,
        predicate=cosmos_uses_customer_keys,
        control="Database Encryption",
        issue="Cosmos DB account is using service-managed keys instead of customer-managed keys",
        recommendation="Configure customer-managed keys for the Cosmos DB account",
        baseline=Severity.MEDIUM,
        limit=15,
    ),
    _rule(
        ResourceKind.COSMOS_DB,
        predicate=flag_not_false("disableKeyBasedMetadataWriteAccess"),
        control="Access Control Encryption",
        issue="Cosmos DB allows key-based metadata write access",
        recommendation="Disable key-based metadata write access and use role-based access",
        baseline=Severity.MEDIUM,
        escalate=False,
        limit=15,
    ),
)

VM_HOST_ENCRYPTION = _rule(
    ResourceKind.VIRTUAL_MACHINE,
    predicate=flag_true("securityProfile", "encryptionAtHost"),
    control="Host-Level Encryption",
    issue="Virtual machine does not have encryption at host enabled",
    recommendation="Enable encryption at host so temp disks and caches are encrypted",
    baseline=Severity.MEDIUM,
    limit=10,
)

KEY_VAULT_RULES = (
    _rule(
        ResourceKind.KEY_VAULT,
        predicate=key_vault_premium_sku,
        control="Key Protection",
        issue="Production Key Vault is using Standard SKU which doesn't support HSM-protected keys",
        recommendation="Use the Premium SKU for production Key Vaults",
        baseline=Severity.MEDIUM,
        escalate=False,
        applies_to=_is_production,
        limit=15,
    ),
    _rule(
        ResourceKind.KEY_VAULT,
        predicate=key_vault_purge_protected,
        control="Key Protection",
        issue="Key Vault does not have purge protection enabled",
        recommendation="Enable purge protection to prevent permanent deletion of keys",
        baseline=Severity.MEDIUM,
        escalate=False,
        limit=15,
    ),
    _rule(
        ResourceKind.KEY_VAULT,
        predicate=flag_not_false("enableSoftDelete"),
        control="Key Protection",
        issue="Key Vault does not have soft delete enabled",
        recommendation="Enable soft delete so deleted keys and secrets can be recovered",
        baseline=Severity.HIGH,
        escalate=False,
        limit=15,
    ),
)

APP_SERVICE_RULES = (
    _rule(
        ResourceKind.APP_SERVICE,
        predicate=flag_not_false("httpsOnly"),
        control="Application Encryption",
        issue="App Service does not enforce HTTPS-only traffic",
        recommendation="Enable HTTPS Only on the App Service",
        baseline=Severity.MEDIUM,
        limit=15,
    ),
    _rule(
        ResourceKind.APP_SERVICE,
        predicate=modern_tls("siteConfig", "minTlsVersion"),
        control="Application Encryption",
        issue="App Service accepts TLS versions below 1.2",
        recommendation="Set the App Service minimum TLS version to 1.2",
        baseline=Severity.MEDIUM,
        escalate=False,
        limit=15,
    ),
)


def disk_encryption(disk: Resource) -> tuple[Tri, bool]:
    """Return (encrypted, uses customer-managed key) for a managed disk."""
    document = disk.properties
    if not document.is_parsed:
        return Tri.UNKNOWN, False
    try:
        settings_enabled = document.get("encryptionSettingsCollection", "enabled") is True
        encryption_type = str(document.get("encryption", "type") or "").lower()
    except SHAPE_ERRORS:
        return Tri.UNKNOWN, False
    encrypted = settings_enabled or encryption_type.startswith("encryptionatrest")
    return Tri.of(encrypted), "customerkey" in encryption_type


def is_high_value_disk(disk: Resource) -> bool:
    name = disk.name.lower()
    return (
        disk.is_production
        or disk.has_sensitivity_tag
        or disk.has_tag("DataClassification")
        or "data" in name
        or "db" in name
    )


class DataEncryptionAnalyzer(LeafAnalyzer):
    """Checks encryption at rest, in transit and key management."""

    name = "Data Encryption"
    category = FindingCategory.DATA_ENCRYPTION

    def checks(self) -> list[Check]:
        return [
            self._check_storage,
            self._check_databases,
            self._check_virtual_machines,
            self._check_managed_disks,
            self._check_key_vaults,
            self._check_app_services,
            self._check_key_management,
        ]

    def _check_storage(self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]) -> None:
        self.apply_rules(STORAGE_RULES, snapshot, findings, cancellation)

    def _check_databases(self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]) -> None:
        self.apply_rules(DATABASE_RULES, snapshot, findings, cancellation)

    def _check_virtual_machines(
        self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]
    ) -> None:
        vms = select(snapshot, ResourceKind.VIRTUAL_MACHINE)
        if not vms:
            return

        lacking = [vm for vm in vms if VM_HOST_ENCRYPTION.predicate(vm).is_gap]
        if lacking:
            production = sum(1 for vm in lacking if vm.is_production)
            findings.append(
                Finding(
                    category=self.category,
                    resource_id="vm.disk.encryption",
                    resource_name="Virtual Machine Encryption",
                    control="Disk Encryption",
                    issue=(
                        f"{len(lacking)} of {len(vms)} virtual machines do not have encryption at host "
                        f"enabled ({production} production VMs)"
                    ),
                    recommendation="Enable encryption at host or Azure Disk Encryption on all virtual machines",
                    severity=Severity.HIGH if production else Severity.MEDIUM,
                    framework=BENCHMARK,
                )
            )

        self.apply_rules((VM_HOST_ENCRYPTION,), snapshot, findings, cancellation)

    def _check_managed_disks(
        self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]
    ) -> None:
        disks = select(snapshot, ResourceKind.MANAGED_DISK)
        unencrypted = 0

        for disk in disks[:25]:
            if is_cancelled(cancellation):
                return
            encrypted, customer_key = disk_encryption(disk)
            if encrypted is not Tri.TRUE:
                unencrypted += 1
                if encrypted is Tri.UNKNOWN:
                    logger.info("disk_encryption_undetermined", resource_id=disk.id)
                findings.append(
                    Finding(
                        category=self.category,
                        resource_id=disk.id,
                        resource_name=disk.name,
                        control="Disk Encryption",
                        issue="Managed disk does not have encryption enabled",
                        recommendation="Enable Azure Disk Encryption or server-side encryption for this managed disk",
                        severity=Severity.HIGH,
                        framework=BENCHMARK,
                    )
                )
            elif not customer_key and is_high_value_disk(disk):
                findings.append(
                    Finding(
                        category=self.category,
                        resource_id=disk.id,
                        resource_name=disk.name,
                        control="Encryption Key Management",
                        issue="High-value managed disk is using platform-managed keys instead of customer-managed keys",
                        recommendation="Configure customer-managed keys for sensitive or production disk encryption",
                        severity=Severity.MEDIUM,
                        framework=BENCHMARK,
                    )
                )

        if unencrypted:
            findings.append(
                Finding(
                    category=self.category,
                    resource_id="managed.disk.encryption.summary",
                    resource_name="Managed Disk Encryption Summary",
                    control="Disk Encryption",
                    issue=f"Found {unencrypted} potentially unencrypted managed disks out of {len(disks)} total disks",
                    recommendation="Enable encryption at rest for all managed disks",
                    severity=Severity.HIGH if unencrypted / len(disks) > 0.5 else Severity.MEDIUM,
                    framework=BENCHMARK,
                )
            )

    def _check_key_vaults(self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]) -> None:
        self.apply_rules(KEY_VAULT_RULES, snapshot, findings, cancellation)

    def _check_app_services(self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]) -> None:
        self.apply_rules(APP_SERVICE_RULES, snapshot, findings, cancellation)

    def _check_key_management(
        self, snapshot: Snapshot, findings: list[Finding], cancellation: Optional[CancellationToken]
    ) -> None:
        capable = count(snapshot, *ENCRYPTION_CAPABLE_KINDS)
        if capable > 15 and count(snapshot, ResourceKind.KEY_VAULT) == 0:
            findings.append(
                Finding(
                    category=self.category,
                    resource_id="encryption.key.management",
                    resource_name="Centralized Key Management",
                    control="Key Management Strategy",
                    issue=(
                        f"Large number of encryption-capable resources ({capable}) "
                        "without centralized key management"
                    ),
                    recommendation="Deploy Azure Key Vault and adopt customer-managed keys across services",
                    severity=Severity.HIGH,
                    framework="Encryption Governance Best Practice",
                )
            )
