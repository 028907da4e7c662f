"""Sealpost — end-to-end encrypted messages over a public pub/sub relay."""

__version__ = "0.1.0"

from sealpost.client import SealpostClient

__all__ = ["SealpostClient", "__version__"]
