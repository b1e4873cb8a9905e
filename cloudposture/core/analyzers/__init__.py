"""Leaf and domain analyzers for cloud resource snapshots."""

from cloudposture.core.analyzers.base import LeafAnalyzer
from cloudposture.core.analyzers.encryption import DataEncryptionAnalyzer
from cloudposture.core.analyzers.network import NetworkPostureAnalyzer
from cloudposture.core.analyzers.platform import PlatformProtectionAnalyzer
from cloudposture.core.analyzers.private_connectivity import PrivateConnectivityAnalyzer
from cloudposture.core.analyzers.threat_protection import ThreatProtectionAnalyzer

__all__ = [
    "LeafAnalyzer",
    "DataEncryptionAnalyzer",
    "NetworkPostureAnalyzer",
    "PlatformProtectionAnalyzer",
    "PrivateConnectivityAnalyzer",
    "ThreatProtectionAnalyzer",
]
