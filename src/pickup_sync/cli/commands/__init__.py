"""CLI command modules for pickup-sync."""
