"""Enums for the Wallet Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class TransactionType(str, enum.Enum):
    CASHBACK = "cashback"
    PURCHASE = "purchase"
    REFUND = "refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class TransactionDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class ReferenceType(str, enum.Enum):
    """What a ledger entry points at via ``reference_id``."""

    ORDER = "order"
    CASHBACK = "cashback"
    REFUND = "refund"
    WITHDRAWAL = "withdrawal"
    ADJUSTMENT = "adjustment"


class CashbackStatus(str, enum.Enum):
    ELIGIBLE = "eligible"
    PROCESSED = "processed"
    EXPIRED = "expired"
    FAILED = "failed"
