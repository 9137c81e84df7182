"""
Persistence layer.

SQLAlchemy tables for opportunities, CSR spending and digest
subscribers, and the OpportunityStore upsert/query API over them.
"""

from .db_models import Base, CsrSpendingRow, OpportunityRow, SubscriberRow
from .store import OpportunityStore, normalize_database_url, row_to_opportunity

__all__ = [
    "Base",
    "OpportunityRow",
    "CsrSpendingRow",
    "SubscriberRow",
    "OpportunityStore",
    "normalize_database_url",
    "row_to_opportunity",
]
