"""Azure operations toolkit: storage, Key Vault, RBAC and app registration procedures."""

__version__ = "0.1.0"
