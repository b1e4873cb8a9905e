"""Command-line interface for cloudposture."""
