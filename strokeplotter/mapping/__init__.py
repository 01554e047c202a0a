"""Demand mapping - gift lookup table"""

from .gift_map import GiftMap, GiftMapError, resolve_gift_count

__all__ = ['GiftMap', 'GiftMapError', 'resolve_gift_count']
