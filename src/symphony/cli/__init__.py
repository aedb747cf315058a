"""Command-line interface for Symphony."""
