"""Wallet Service schemas package.

Re-exports all schemas so that routers can import from
``services.wallet_service.schemas`` directly.

IMPORTANT: Every schema class must be listed here.
When adding a new schema, add its import and __all__ entry.
"""

from services.wallet_service.schemas.admin import (  # noqa: F401
    AdminCreditRequest,
    ExpireCashbackResponse,
)
from services.wallet_service.schemas.balance import (  # noqa: F401
    BalanceVerificationResponse,
)
from services.wallet_service.schemas.cashback import (  # noqa: F401
    CashbackResponse,
    CashbackStatsResponse,
)
from services.wallet_service.schemas.transaction import (  # noqa: F401
    TransactionListResponse,
    TransactionResponse,
)
from services.wallet_service.schemas.wallet import (  # noqa: F401
    UseBalanceRequest,
    WalletResponse,
)

__all__ = [
    "AdminCreditRequest",
    "BalanceVerificationResponse",
    "CashbackResponse",
    "CashbackStatsResponse",
    "ExpireCashbackResponse",
    "TransactionListResponse",
    "TransactionResponse",
    "UseBalanceRequest",
    "WalletResponse",
]
