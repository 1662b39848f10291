"""Settlement schemas for vendor payouts."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from services.settlement_service.models import SettlementStatus


class SettlementResponse(BaseModel):
    """Response for one vendor settlement."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    store_id: uuid.UUID
    vendor_id: str

    gross_amount: Decimal
    commission_rate: Decimal
    platform_commission: Decimal
    cashback_amount: Decimal
    net_payout: Decimal

    status: SettlementStatus
    processed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    failure_reason: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class VendorEarningsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_revenue: Decimal
    commission_paid: Decimal
    cashback_funded: Decimal
    pending_payouts: Decimal
    processing_payouts: Decimal
    paid_payouts: Decimal


class PayoutResult(BaseModel):
    """Outcome reported by the payout rail."""

    succeeded: bool
    payment_reference: Optional[str] = Field(None, min_length=1, max_length=100)
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_reference(self):
        if self.succeeded and not self.payment_reference:
            raise ValueError("payment_reference is required for a successful payout")
        return self
