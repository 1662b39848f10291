"""Wallet request/response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WalletResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    balance: Decimal
    total_cashback: Decimal
    total_spent: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UseBalanceRequest(BaseModel):
    """Spend wallet balance against an order. Keyed on the order id."""

    order_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = Field(None, max_length=255)
