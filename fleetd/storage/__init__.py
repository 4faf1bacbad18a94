"""
Alert history storage and retention.
"""

from .gateway import GatewayResult, PersistenceGateway, RecordCategory
from .sqlite_gateway import SQLiteGateway

__all__ = [
    "GatewayResult",
    "PersistenceGateway",
    "RecordCategory",
    "SQLiteGateway",
]
