"""HTTP surfaces — monitor daemon app and management API app."""
