"""
Adapters - Inbound per-domain signal producers
"""

from .base import DomainSignalAdapter
from .market_proxy import MarketProxyAdapter, create_default_adapters

__all__ = ['DomainSignalAdapter', 'MarketProxyAdapter', 'create_default_adapters']
