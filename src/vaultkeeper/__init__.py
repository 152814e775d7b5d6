"""VaultKeeper: a client/server secrets vault with client-side encryption."""

from .version import __version__

__all__ = ["__version__"]
