"""
Options Gateway API modules.
"""

from . import account, markets, orderbook, pool, stream, vaults

__all__ = ["account", "markets", "orderbook", "pool", "stream", "vaults"]
