"""Core models, validation and exceptions of VaultKeeper."""
