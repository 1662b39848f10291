"""Ledger reconciliation schemas."""

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class BalanceVerificationResponse(BaseModel):
    user_id: str
    wallet_id: Optional[uuid.UUID] = None
    cached_balance: Decimal
    ledger_balance: Decimal
    transaction_count: int
    in_sync: bool
