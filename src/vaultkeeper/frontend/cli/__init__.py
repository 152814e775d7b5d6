"""Command-line client for VaultKeeper."""
