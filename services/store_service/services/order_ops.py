"""Order lifecycle: checkout, status transitions, cancellation and payment.

Every operation takes the order row lock before reading its status, so two
racing transitions are serialized and the loser sees the winner's state.
The mapper version column turns any update that slipped past the lock into
a ``StaleDataError``, which the HTTP boundary retries.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_aware, utc_now
from libs.common.errors import (
    AddressNotFound,
    CannotCancelShippedOrDelivered,
    ConcurrencyConflict,
    EmptyCart,
    InsufficientStock,
    InvalidStatusTransition,
    NotAuthorized,
    OrderNotFound,
    PaymentMethodMismatch,
    ReturnWindowClosed,
)
from libs.common.logging import get_logger
from libs.common.money import ZERO, quantize
from services.settlement_service.models import VendorSettlement
from services.settlement_service.services.settlement_ops import (
    cancel_pending_settlements,
    create_settlements_for_order,
)
from services.store_service.models import (
    Address,
    AuditEntityType,
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    Store,
    StoreAuditLog,
)
from services.store_service.services.pricing import CartLine, redeem_coupon, resolve
from services.wallet_service.models import (
    Cashback,
    CashbackStatus,
    ReferenceType,
    TransactionType,
)
from services.wallet_service.services.cashback_ops import issue_cashback
from services.wallet_service.services.wallet_ops import (
    get_order_payment,
    order_payment_key,
    order_refund_key,
    post_credit,
    post_debit,
)
from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5

# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.CREATED, OrderStatus.PAID})


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


class ActorRole(str, enum.Enum):
    BUYER = "buyer"
    VENDOR = "vendor"
    ADMIN = "admin"
    SERVICE = "service"


@dataclass
class Actor:
    """Who is asking, and which stores they own."""

    user_id: str
    role: ActorRole
    store_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)

    @property
    def is_privileged(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SERVICE)

    @property
    def label(self) -> str:
        return f"{self.role.value}:{self.user_id}"


async def resolve_actor(db: AsyncSession, user: AuthUser) -> Actor:
    """Build an ``Actor`` from the authenticated user, loading owned stores for vendors."""
    if user.is_service:
        return Actor(user_id=user.user_id, role=ActorRole.SERVICE)
    if user.is_admin:
        return Actor(user_id=user.user_id, role=ActorRole.ADMIN)
    if user.is_vendor:
        result = await db.execute(select(Store.id).where(Store.owner_id == user.user_id))
        return Actor(
            user_id=user.user_id,
            role=ActorRole.VENDOR,
            store_ids=frozenset(result.scalars().all()),
        )
    return Actor(user_id=user.user_id, role=ActorRole.BUYER)


def _authorize_transition(actor: Actor, order: Order, new_status: OrderStatus) -> None:
    if actor.is_privileged:
        return
    if actor.store_ids & order.store_ids:
        if new_status == OrderStatus.PAID:
            raise NotAuthorized("Vendors cannot mark orders as paid")
        return
    if order.user_id == actor.user_id:
        if new_status != OrderStatus.CANCELLED:
            raise NotAuthorized("Buyers can only cancel their own orders")
        return
    raise NotAuthorized("You cannot change this order")


def _can_view(actor: Actor, order: Order) -> bool:
    return (
        actor.is_privileged
        or order.user_id == actor.user_id
        or bool(actor.store_ids & order.store_ids)
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _lock_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def log_audit(
    db: AsyncSession,
    order: Order,
    action: str,
    performed_by: str,
    old_value: Optional[dict] = None,
    new_value: Optional[dict] = None,
    notes: Optional[str] = None,
) -> None:
    db.add(
        StoreAuditLog(
            entity_type=AuditEntityType.ORDER,
            entity_id=order.id,
            action=action,
            old_value=old_value,
            new_value=new_value,
            performed_by=performed_by,
            notes=notes,
        )
    )


async def _load_address(db: AsyncSession, address_id: uuid.UUID, user_id: str) -> dict:
    address = await db.get(Address, address_id)
    if not address or address.user_id != user_id:
        raise AddressNotFound(f"Address {address_id} not found")
    return address.snapshot()


async def _stored_cart_lines(db: AsyncSession, user_id: str) -> list[CartLine]:
    result = await db.execute(
        select(CartItem.product_id, CartItem.quantity)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.created_at)
    )
    return [CartLine(product_id, quantity) for product_id, quantity in result.all()]


async def _reserve_stock(db: AsyncSession, product_id: uuid.UUID, quantity: int) -> None:
    """Decrement stock only if enough is left; the check lives in the UPDATE itself."""
    result = await db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity, updated_at=utc_now())
        .returning(Product.id)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        raise InsufficientStock(
            f"Product {product_id} no longer has {quantity} in stock",
            context={"product_id": str(product_id)},
        )


async def _release_stock(db: AsyncSession, order: Order) -> None:
    for item in order.items:
        await db.execute(
            update(Product)
            .where(Product.id == item.product_id)
            .values(stock=Product.stock + item.quantity, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )


async def _insert_order(
    db: AsyncSession, build_order, prefix: str
) -> Order:
    """Insert a new order, drawing a fresh order number on collision."""
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order = build_order(Order.generate_order_number(prefix))
        try:
            async with db.begin_nested():
                db.add(order)
        except IntegrityError as exc:
            if "order_number" not in str(exc.orig):
                raise
            logger.warning(
                "Order number %s collided (attempt %d)", order.order_number, attempt
            )
            continue
        return order

    raise ConcurrencyConflict("Could not allocate a unique order number")


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


async def create_order(
    db: AsyncSession,
    *,
    user_id: str,
    shipping_address_id: uuid.UUID,
    billing_address_id: Optional[uuid.UUID] = None,
    payment_method: PaymentMethod = PaymentMethod.COD,
    cart_lines: Optional[Iterable[CartLine]] = None,
    coupon_code: Optional[str] = None,
) -> Order:
    """Turn cart lines into an order in one transaction.

    Prices come from the catalog, stock is reserved with conditional
    decrements, the coupon use is counted, and the consumed cart lines are
    removed. Any failure rolls all of it back.
    """
    settings = get_settings()

    lines = list(cart_lines) if cart_lines is not None else None
    if lines is None:
        lines = await _stored_cart_lines(db, user_id)
    if not lines:
        raise EmptyCart()

    shipping = await _load_address(db, shipping_address_id, user_id)
    billing = (
        await _load_address(db, billing_address_id, user_id)
        if billing_address_id
        else dict(shipping)
    )

    pricing = await resolve(db, lines, coupon_code)

    for line in pricing.lines:
        await _reserve_stock(db, line.product_id, line.quantity)

    def build_order(order_number: str) -> Order:
        order = Order(
            order_number=order_number,
            user_id=user_id,
            subtotal_amount=pricing.subtotal,
            discount_amount=pricing.discount,
            total_amount=pricing.total,
            coupon_code=pricing.coupon_code,
            shipping_address=shipping,
            billing_address=billing,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            status=OrderStatus.CREATED,
        )
        order.items = [
            OrderItem(
                line_no=index,
                product_id=line.product_id,
                store_id=line.store_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
            )
            for index, line in enumerate(pricing.lines, start=1)
        ]
        return order

    order = await _insert_order(db, build_order, settings.ORDER_NUMBER_PREFIX)

    if pricing.coupon:
        await redeem_coupon(db, pricing.coupon)

    await db.execute(
        delete(CartItem)
        .where(
            CartItem.user_id == user_id,
            CartItem.product_id.in_([line.product_id for line in pricing.lines]),
        )
        .execution_options(synchronize_session=False)
    )

    log_audit(
        db,
        order,
        "order_created",
        performed_by=user_id,
        new_value={
            "status": order.status.value,
            "total_amount": str(order.total_amount),
            "coupon_code": order.coupon_code,
        },
    )

    await db.commit()
    logger.info(
        "Created order %s for user %s: subtotal=%s discount=%s total=%s lines=%d",
        order.order_number,
        user_id,
        order.subtotal_amount,
        order.discount_amount,
        order.total_amount,
        len(pricing.lines),
    )
    return order


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _check_transition(order: Order, new_status: OrderStatus, now: datetime) -> None:
    if not can_transition(order.status, new_status):
        raise InvalidStatusTransition(order.status.value, new_status.value)

    if order.status == OrderStatus.DELIVERED and new_status == OrderStatus.RETURNED:
        window = timedelta(days=get_settings().RETURN_WINDOW_DAYS)
        delivered_at = ensure_aware(order.delivered_at)
        if delivered_at and now - delivered_at > window:
            raise ReturnWindowClosed(
                f"Order {order.order_number} was delivered more than "
                f"{window.days} days ago"
            )


async def _cancel(
    db: AsyncSession,
    order: Order,
    actor: Actor,
    reason: Optional[str],
    now: datetime,
) -> Order:
    if order.status == OrderStatus.CANCELLED:
        raise InvalidStatusTransition(order.status.value, OrderStatus.CANCELLED.value)
    if order.status not in CANCELLABLE_STATUSES:
        raise CannotCancelShippedOrDelivered(
            f"Order {order.order_number} is {order.status.value} and can no longer be cancelled"
        )

    old_status = order.status
    await _release_stock(db, order)

    if order.payment_status == PaymentStatus.PAID:
        # Refund exactly what the wallet paid, never the order total
        payment = await get_order_payment(db, order_id=order.id)
        if payment is not None:
            await post_credit(
                db,
                user_id=order.user_id,
                amount=payment.amount,
                idempotency_key=order_refund_key(order.id),
                transaction_type=TransactionType.REFUND,
                description=f"Refund for cancelled order {order.order_number}",
                reference_type=ReferenceType.REFUND,
                reference_id=str(order.id),
                initiated_by=actor.label,
            )
            order.payment_status = PaymentStatus.REFUNDED
        elif order.payment_method == PaymentMethod.WALLET and order.total_amount == ZERO:
            order.payment_status = PaymentStatus.REFUNDED
        else:
            logger.warning(
                "Order %s cancelled after %s payment %s; refund must go through the gateway",
                order.order_number,
                order.payment_method.value,
                order.payment_reference,
            )

    order.status = OrderStatus.CANCELLED
    order.cancelled_at = now
    order.cancellation_reason = reason

    log_audit(
        db,
        order,
        "order_cancelled",
        performed_by=actor.label,
        old_value={"status": old_status.value},
        new_value={
            "status": order.status.value,
            "payment_status": order.payment_status.value,
        },
        notes=reason,
    )
    await db.flush()
    await db.commit()

    logger.info(
        "Order %s cancelled by %s (was %s): %s",
        order.order_number,
        actor.label,
        old_status.value,
        reason,
    )
    return order


async def update_status(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    new_status: OrderStatus,
    actor: Actor,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Move an order to ``new_status`` if the table and the actor allow it.

    Delivery issues cashback and vendor settlements in the same transaction;
    a return cancels settlements not yet paid out.
    """
    now = now or utc_now()
    order = await _lock_order(db, order_id)
    _authorize_transition(actor, order, new_status)

    if new_status == OrderStatus.CANCELLED:
        return await _cancel(db, order, actor, notes, now)

    _check_transition(order, new_status, now)

    old_status = order.status
    order.status = new_status
    if new_status == OrderStatus.PAID:
        order.payment_status = PaymentStatus.PAID
        order.paid_at = now
    elif new_status == OrderStatus.SHIPPED:
        order.shipped_at = now
    elif new_status == OrderStatus.DELIVERED:
        order.delivered_at = now
    elif new_status == OrderStatus.RETURNED:
        order.returned_at = now

    log_audit(
        db,
        order,
        "status_changed",
        performed_by=actor.label,
        old_value={"status": old_status.value},
        new_value={"status": new_status.value},
        notes=notes,
    )
    await db.flush()

    if new_status == OrderStatus.DELIVERED:
        await issue_cashback(db, order, now=now)
        await create_settlements_for_order(db, order)
    elif new_status == OrderStatus.RETURNED:
        await cancel_pending_settlements(db, order_id=order.id)

    await db.commit()
    logger.info(
        "Order %s: %s -> %s by %s",
        order.order_number,
        old_status.value,
        new_status.value,
        actor.label,
    )
    return order


async def cancel_order(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    actor: Actor,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Cancel a CREATED or PAID order, restoring stock and refunding wallet payments."""
    order = await _lock_order(db, order_id)
    _authorize_transition(actor, order, OrderStatus.CANCELLED)
    return await _cancel(db, order, actor, reason, now or utc_now())


async def confirm_payment(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    payment_reference: str,
    actor: Actor,
    now: Optional[datetime] = None,
) -> Order:
    """Apply an external payment confirmation to an ONLINE order. Redelivery is a no-op."""
    now = now or utc_now()
    order = await _lock_order(db, order_id)

    if order.payment_method != PaymentMethod.ONLINE:
        raise PaymentMethodMismatch(
            f"Order {order.order_number} is paid by {order.payment_method.value}, "
            "not through the payment gateway",
            context={"payment_method": order.payment_method.value},
        )
    if order.payment_status == PaymentStatus.PAID and order.status not in (
        OrderStatus.CREATED,
        OrderStatus.CANCELLED,
    ):
        logger.info(
            "Payment confirmation for %s ignored, already paid (ref=%s)",
            order.order_number,
            payment_reference,
        )
        return order
    if not can_transition(order.status, OrderStatus.PAID):
        raise InvalidStatusTransition(order.status.value, OrderStatus.PAID.value)

    order.status = OrderStatus.PAID
    order.payment_status = PaymentStatus.PAID
    order.payment_reference = payment_reference
    order.paid_at = now

    log_audit(
        db,
        order,
        "payment_confirmed",
        performed_by=actor.label,
        old_value={"status": OrderStatus.CREATED.value},
        new_value={"status": order.status.value, "payment_reference": payment_reference},
    )
    await db.commit()

    logger.info("Payment %s confirmed for order %s", payment_reference, order.order_number)
    return order


async def pay_with_wallet(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    user_id: str,
    now: Optional[datetime] = None,
) -> Order:
    """Pay a CREATED order from the buyer's wallet: debit and mark PAID atomically."""
    now = now or utc_now()
    order = await _lock_order(db, order_id)

    if order.user_id != user_id:
        raise NotAuthorized("You can only pay for your own orders")
    if not can_transition(order.status, OrderStatus.PAID):
        raise InvalidStatusTransition(order.status.value, OrderStatus.PAID.value)

    reference = None
    if order.total_amount > ZERO:
        txn = await post_debit(
            db,
            user_id=user_id,
            amount=order.total_amount,
            idempotency_key=order_payment_key(order.id),
            transaction_type=TransactionType.PURCHASE,
            description=f"Payment for order {order.order_number}",
            reference_type=ReferenceType.ORDER,
            reference_id=str(order.id),
            initiated_by=user_id,
        )
        reference = str(txn.id)

    order.payment_method = PaymentMethod.WALLET
    order.payment_status = PaymentStatus.PAID
    order.payment_reference = reference
    order.status = OrderStatus.PAID
    order.paid_at = now

    log_audit(
        db,
        order,
        "paid_with_wallet",
        performed_by=user_id,
        old_value={"status": OrderStatus.CREATED.value},
        new_value={"status": order.status.value, "wallet_transaction_id": reference},
    )
    await db.commit()

    logger.info("Order %s paid from wallet (%s)", order.order_number, order.total_amount)
    return order


# ---------------------------------------------------------------------------
# Delivery reconciliation
# ---------------------------------------------------------------------------


async def find_unreconciled_orders(db: AsyncSession, *, limit: int = 100) -> list[uuid.UUID]:
    """Delivered orders still missing their settlements or their cashback."""
    has_settlement = exists().where(VendorSettlement.order_id == Order.id)
    cashback_settled = exists().where(
        Cashback.order_id == Order.id,
        Cashback.status != CashbackStatus.ELIGIBLE,
    )
    result = await db.execute(
        select(Order.id)
        .where(
            Order.status == OrderStatus.DELIVERED,
            or_(
                ~has_settlement,
                (Order.cashback_given.is_(False))
                & (Order.total_amount > 0)
                & ~cashback_settled,
            ),
        )
        .order_by(Order.delivered_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def reconcile_delivered_order(db: AsyncSession, *, order_id: uuid.UUID) -> Order:
    """Re-run the delivery side effects for one order. Idempotent."""
    order = await _lock_order(db, order_id)
    if order.status == OrderStatus.DELIVERED:
        await issue_cashback(db, order)
        await create_settlements_for_order(db, order)
    await db.commit()
    return order


async def reconcile_delivered_orders(db: AsyncSession, *, limit: int = 100) -> int:
    """Sweep delivered orders and complete any missing side effects."""
    order_ids = await find_unreconciled_orders(db, limit=limit)
    await db.rollback()

    repaired = 0
    for order_id in order_ids:
        try:
            await reconcile_delivered_order(db, order_id=order_id)
            repaired += 1
        except Exception:
            await db.rollback()
            logger.exception("Failed to reconcile delivered order %s", order_id)

    if repaired:
        logger.info("Reconciled %d delivered orders", repaired)
    return repaired


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_order(db: AsyncSession, *, order_id: uuid.UUID, actor: Actor) -> Order:
    order = await db.get(Order, order_id)
    if not order or not _can_view(actor, order):
        raise OrderNotFound(f"Order {order_id} not found")
    return order


async def get_user_orders(
    db: AsyncSession, *, user_id: str, skip: int = 0, limit: int = 20
) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_vendor_orders(
    db: AsyncSession,
    *,
    actor: Actor,
    status: Optional[OrderStatus] = None,
    skip: int = 0,
    limit: int = 20,
) -> list[Order]:
    if not actor.store_ids:
        return []
    contains_store = exists().where(
        OrderItem.order_id == Order.id,
        OrderItem.store_id.in_(actor.store_ids),
    )
    query = select(Order).where(contains_store)
    if status:
        query = query.where(Order.status == status)
    result = await db.execute(
        query.order_by(Order.created_at.desc()).offset(skip).limit(limit)
    )
    return list(result.scalars().all())


@dataclass
class OrderStats:
    total_orders: int = 0
    revenue: Decimal = ZERO
    pending_orders: int = 0
    delivered_orders: int = 0
    cancelled_orders: int = 0
    returned_orders: int = 0
    cashback_paid: Decimal = ZERO
    by_status: dict[str, int] = field(default_factory=dict)


REVENUE_STATUSES = (OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED)


async def get_order_stats(db: AsyncSession) -> OrderStats:
    """Platform-wide order counts, collected revenue and cashback paid."""
    result = await db.execute(
        select(
            Order.status,
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0),
        ).group_by(Order.status)
    )

    stats = OrderStats()
    for status, count, total in result.all():
        stats.total_orders += count
        stats.by_status[status.value] = count
        if status in REVENUE_STATUSES:
            stats.revenue += quantize(Decimal(str(total)))
        if status in (OrderStatus.PAID, OrderStatus.SHIPPED):
            stats.pending_orders += count
        elif status == OrderStatus.DELIVERED:
            stats.delivered_orders = count
        elif status == OrderStatus.CANCELLED:
            stats.cancelled_orders = count
        elif status == OrderStatus.RETURNED:
            stats.returned_orders = count

    cashback_paid = await db.scalar(
        select(func.coalesce(func.sum(Cashback.amount), 0)).where(
            Cashback.status == CashbackStatus.PROCESSED
        )
    )
    stats.cashback_paid = quantize(Decimal(str(cashback_paid)))
    return stats
