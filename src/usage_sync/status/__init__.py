"""Status reporting for sync workflows."""
