"""Transaction request/response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from services.wallet_service.models.enums import (
    TransactionDirection,
    TransactionType,
)


class TransactionResponse(BaseModel):
    id: uuid.UUID
    wallet_id: uuid.UUID
    idempotency_key: str
    transaction_type: TransactionType
    direction: TransactionDirection
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    description: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    initiated_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    skip: int
    limit: int
