"""Shared internals for usage-sync."""
