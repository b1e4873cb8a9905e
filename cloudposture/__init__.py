"""cloudposture: cloud security posture assessment pipeline."""

__version__ = "0.1.0"
