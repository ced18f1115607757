"""API route handlers."""
from . import accounts, connections, oauth, providers, sync

__all__ = ["accounts", "connections", "oauth", "providers", "sync"]
