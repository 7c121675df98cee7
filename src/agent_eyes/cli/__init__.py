"""Command-line interface for Agent Eyes."""
