"""Stampchain API client."""

from .client import StampchainClient
from .models import Collection, Page, Stamp, Token

__all__ = ["StampchainClient", "Collection", "Page", "Stamp", "Token"]
