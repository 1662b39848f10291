"""Admin-specific schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field
from services.wallet_service.models.enums import TransactionType


class AdminCreditRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: str = Field(..., min_length=5, max_length=255)
    transaction_type: TransactionType = TransactionType.ADMIN_ADJUSTMENT
    reference_id: Optional[str] = None
    # Reusing a key replays the original credit instead of posting again
    idempotency_key: Optional[str] = Field(None, max_length=255)


class ExpireCashbackResponse(BaseModel):
    expired: int
