"""Cashback model: one per delivered order."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.wallet_service.models.enums import CashbackStatus, enum_values
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class Cashback(Base):
    """Cashback earned on an order.

    Leaves ELIGIBLE exactly once: to PROCESSED when credited to the wallet,
    or to EXPIRED by the sweep. Neither is ever reversed.
    """

    __tablename__ = "cashbacks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id"), unique=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    status: Mapped[CashbackStatus] = mapped_column(
        SAEnum(
            CashbackStatus,
            name="cashback_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=CashbackStatus.ELIGIBLE,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    wallet_transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("wallet_transactions.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_cashback_amount_positive"),
        Index("ix_cashbacks_status_expires_at", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Cashback order={self.order_id} {self.status.value} {self.amount}>"
