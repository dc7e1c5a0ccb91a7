"""
Marketplace connectors used by the sync pipeline
"""

from .marketplace import MarketplaceClient, MarketplaceError, SimulatedMarketplaceClient

__all__ = ["MarketplaceClient", "MarketplaceError", "SimulatedMarketplaceClient"]
