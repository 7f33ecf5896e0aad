"""
Models package

One module per table:
- catalogrecord.py
- pricesnapshot.py
- blacklistentry.py
- syncrun.py
"""

from .catalogrecord import CatalogRecord
from .pricesnapshot import PriceSnapshot
from .blacklistentry import BlacklistEntry
from .syncrun import SyncRun

__all__ = [
    "CatalogRecord",
    "PriceSnapshot",
    "BlacklistEntry",
    "SyncRun",
]
