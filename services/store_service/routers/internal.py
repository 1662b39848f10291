"""Internal store endpoints.

Called by the payment service with a service-role JWT when a gateway
confirms a charge, never by frontend clients.
"""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_service_role
from libs.auth.models import AuthUser
from libs.common.retry import run_with_retry
from libs.db.session import get_async_db
from services.store_service.schemas import OrderResponse, PaymentConfirmation
from services.store_service.services import order_ops
from services.store_service.services.order_ops import Actor, ActorRole
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["internal-store"])


@router.post("/orders/{order_id}/payment-confirmed", response_model=OrderResponse)
async def payment_confirmed(
    order_id: uuid.UUID,
    body: PaymentConfirmation,
    service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    """Mark a created order as paid. Redelivered confirmations are ignored."""
    actor = Actor(user_id=service.user_id, role=ActorRole.SERVICE)
    return await run_with_retry(
        db,
        lambda: order_ops.confirm_payment(
            db,
            order_id=order_id,
            payment_reference=body.payment_reference,
            actor=actor,
        ),
    )
