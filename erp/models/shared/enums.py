from enum import Enum

# Enums
class TransactionType(str, Enum):
    IN = "in"
    OUT = "out"
    TRANSFER = "transfer"
    COUNT = "count"
    ADJUSTMENT = "adjustment"

class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"

class TransactionReason(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    RETURN = "return"
    DAMAGE = "damage"
    EXPIRY = "expiry"
    TRANSFER = "transfer"
    COUNT = "count"
    ADJUSTMENT = "adjustment"
    THEFT = "theft"
    OTHER = "other"

class StockCountStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class StockCountType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    CYCLE = "cycle"


def enum_values(enum_cls):
    """Persist enum values (not member names) in SQL enum columns"""
    return [member.value for member in enum_cls]
