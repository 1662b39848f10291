"""Cashback response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from services.wallet_service.models.enums import CashbackStatus


class CashbackResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    user_id: str
    amount: Decimal
    percentage: Decimal
    status: CashbackStatus
    expires_at: datetime
    processed_at: Optional[datetime] = None
    wallet_transaction_id: Optional[uuid.UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CashbackStatsResponse(BaseModel):
    total_earned: Decimal
    pending_amount: Decimal
    processed_amount: Decimal
    expired_amount: Decimal
    counts: dict[str, int]

    model_config = ConfigDict(from_attributes=True)
