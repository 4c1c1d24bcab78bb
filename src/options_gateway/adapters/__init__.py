"""
Chain adapters.
"""

from .evm import EVMChainClient, LocalAccountSigner

__all__ = ["EVMChainClient", "LocalAccountSigner"]
