"""Command-line interface for Lab Order Automation."""
