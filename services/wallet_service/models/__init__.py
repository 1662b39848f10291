"""Wallet Service models package.

Re-exports all models and enums so that:
  - ``from services.wallet_service.models import Wallet`` works
  - Alembic env.py sees every table on import

When adding a new model, add both its import and its __all__ entry.
"""

# Cashbacks reference orders.id, so the store tables must be registered too
from services.store_service import models as _store_models  # noqa: F401
from services.wallet_service.models.cashback import Cashback  # noqa: F401
from services.wallet_service.models.enums import (  # noqa: F401
    CashbackStatus,
    ReferenceType,
    TransactionDirection,
    TransactionType,
)
from services.wallet_service.models.transaction import WalletTransaction  # noqa: F401
from services.wallet_service.models.wallet import Wallet  # noqa: F401

__all__ = [
    # Enums
    "CashbackStatus",
    "ReferenceType",
    "TransactionDirection",
    "TransactionType",
    # Models
    "Cashback",
    "Wallet",
    "WalletTransaction",
]
