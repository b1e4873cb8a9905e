"""Core assessment pipeline for cloudposture."""
