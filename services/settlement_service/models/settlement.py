"""Vendor settlement records."""

import uuid
from datetime import datetime
from decimal import Decimal

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.settlement_service.models.enums import SettlementStatus, enum_values
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class VendorSettlement(Base):
    """What the platform owes one store for its share of one delivered order.

    ``net_payout = gross_amount - platform_commission - cashback_amount``,
    fixed when the row is created. Only the payout status moves afterwards.
    """

    __tablename__ = "vendor_settlements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id"), index=True, nullable=False
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stores.id"), index=True, nullable=False
    )
    # Store owner at settlement time
    vendor_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    # Breakdown
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    platform_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cashback_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    net_payout: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Status
    status: Mapped[SettlementStatus] = mapped_column(
        SAEnum(
            SettlementStatus,
            name="settlement_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=SettlementStatus.PENDING,
        nullable=False,
    )

    # Payment tracking
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # payout requested
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # Bank or transfer reference
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("order_id", "store_id", name="uq_vendor_settlements_order_store"),
        Index("ix_vendor_settlements_vendor_status", "vendor_id", "status"),
    )

    def __repr__(self):
        return f"<VendorSettlement {self.id} store={self.store_id} {self.status.value}>"
