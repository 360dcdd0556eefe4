"""订单/支付对账核心服务

协议三步：
1. initiate_checkout: 校验购物车与库存、快照价格、创建网关支付意图，订单进入 AWAITING_PAYMENT
2. confirm_payment: 校验网关签名，原子地 pending→paid，然后逐行扣减库存并清空购物车
3. abort_payment: 用户取消或网关失败回调，原子地 pending→failed，已支付订单不受影响

多步变更采用补偿语义而非单一事务：每一步单独提交，某一步失败只回滚该步，
之前已提交的步骤保持不变。
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple
import logging
import uuid

from redis import Redis
from redis.exceptions import RedisError
from redlock import MultipleRedlockException, Redlock
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booknest.core.config import settings
from booknest.core.exceptions import (
    CheckoutInProgress,
    GatewayUnavailable,
    OrderNotFound,
    SignatureMismatch,
    StockUnavailable,
    ValidationError,
)
from booknest.core.security import UserIdentity
from booknest.models.idempotency_keys import IdempotencyKey, IdempotencyStatus
from booknest.models.order import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from booknest.services.cart_store import CartStore
from booknest.services.catalog_store import CatalogStore
from booknest.services.payment_gateway import RazorpayGateway
from booknest.services.pricing import OrderTotals, PricedLine, PricingPolicy, compute_totals, to_minor_units

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StockShortfall:
    """支付已确认但未能扣减的库存行"""
    book_id: str
    title: str
    quantity: int
    available: Optional[int] = None


@dataclass
class ConfirmResult:
    order: Order
    stock_shortfalls: List[StockShortfall] = field(default_factory=list)
    already_finalized: bool = False


class CheckoutService:
    """结算与支付对账服务"""

    def __init__(
        self,
        db: Session,
        gateway: RazorpayGateway = None,
        redis: Redis = None,
        rlock: Redlock = None,
        notifier: Callable[[str], None] = None,
        config=settings,
    ):
        self.db = db
        self.gateway = gateway
        self.redis = redis
        self.rlock = rlock
        self.notifier = notifier
        self.config = config
        self.policy = PricingPolicy.from_settings(config)
        self.catalog = CatalogStore(db, redis)
        self.cart = CartStore(db)

    # ==================== 查询 ====================

    def get_order(self, order_id: str, buyer: UserIdentity = None) -> Order:
        """查询订单；传入 buyer 时只返回该买家自己的订单"""
        if not order_id:
            raise ValidationError("Order ID required")

        order = self.db.get(Order, order_id)
        if order is None or (buyer is not None and not buyer.is_admin and order.buyer_id != buyer.id):
            raise OrderNotFound(order_id)
        return order

    def list_orders(self, buyer: UserIdentity) -> List[Order]:
        return list(
            self.db.execute(
                select(Order)
                .where(Order.buyer_id == buyer.id)
                .order_by(Order.created_at.desc())
            ).scalars().all()
        )

    def preview_checkout(self, buyer: UserIdentity) -> dict:
        """结算预览：与下单使用同一计价函数"""
        items = self.cart.get_items(buyer.id)
        stocks = self.catalog.batch_get_stocks([item.book_id for item in items])

        lines = []
        priced = []
        for item in items:
            book = item.book
            discount = book.discount or 0
            priced.append(PricedLine(unit_price=book.price, discount_percent=discount, quantity=item.quantity))
            lines.append({
                "book_id": book.id,
                "title": book.title,
                "quantity": item.quantity,
                "unit_price": book.price,
                "discount_percent": discount,
                "in_stock": stocks.get(book.id, 0) >= item.quantity,
            })

        return {"items": lines, "totals": compute_totals(priced, self.policy)}

    # ==================== 下单 ====================

    def initiate_checkout(self, buyer: UserIdentity, shipping_address: dict, idempotency_key: str = None) -> dict:
        """创建待支付订单与网关支付意图

        网关调用失败时不持久化任何订单，调用方可以安全重试。
        """
        if not shipping_address:
            raise ValidationError("Shipping address is required")
        if self.gateway is None:
            raise GatewayUnavailable("Payment gateway is not configured")

        with self._checkout_lock(buyer.id):
            key = None
            if idempotency_key:
                key, replay = self._claim_idempotency_key(buyer.id, idempotency_key)
                if replay is not None:
                    logger.info(f"Idempotent replay of checkout for user {buyer.id}: order {replay.get('order_id')}")
                    return replay

            try:
                result = self._create_gateway_order(buyer, shipping_address)
            except Exception:
                if key:
                    self._finish_idempotency_key(key, IdempotencyStatus.FAILED)
                raise

            if key:
                self._finish_idempotency_key(key, IdempotencyStatus.SUCCESS, result)
            return result

    def place_cash_order(self, buyer: UserIdentity, shipping_address: dict) -> Order:
        """货到付款下单：不经过网关，下单时不扣减库存"""
        if not shipping_address:
            raise ValidationError("Shipping address is required")

        with self._checkout_lock(buyer.id):
            lines, totals = self._price_cart(buyer.id)
            order = self._new_order(buyer, shipping_address, PaymentMethod.CASH, lines, totals)

            try:
                self.db.add(order)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"Cash order creation failed for user {buyer.id}: {str(e)}")
                raise

        logger.info(f"Cash order placed: {order.id} for {order.total} {order.currency}")
        self._clear_cart(order)
        self._notify(order)
        return order

    # ==================== 支付确认 / 取消 ====================

    def confirm_payment(
        self,
        buyer: UserIdentity,
        order_id: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        gateway_signature: str,
    ) -> ConfirmResult:
        """校验网关回调并确认支付

        签名校验必须先于任何库存与购物车变更。重复回调（订单已 paid）走幂等空操作。
        """
        if not (order_id and gateway_order_id and gateway_payment_id and gateway_signature):
            raise ValidationError("Missing payment verification fields")
        if self.gateway is None:
            raise GatewayUnavailable("Payment gateway is not configured")

        order = self.get_order(order_id, buyer)
        if order.payment_method != PaymentMethod.GATEWAY:
            raise ValidationError("Order is not awaiting online payment")

        signature_ok = (
            order.gateway_order_id == gateway_order_id
            and self.gateway.verify_signature(gateway_order_id, gateway_payment_id, gateway_signature)
        )
        if not signature_ok:
            logger.critical(
                f"Razorpay signature mismatch, possible tamper attempt: order={order.id}, "
                f"gateway_order_id={gateway_order_id}, gateway_payment_id={gateway_payment_id}, user={buyer.id}"
            )
            self._mark_failed(order)
            raise SignatureMismatch()

        if not self._mark_paid(order, gateway_payment_id):
            if order.payment_status == PaymentStatus.FAILED:
                logger.warning(
                    f"Verified payment {gateway_payment_id} arrived for finalized order {order.id} "
                    f"(payment_status=failed), manual reconciliation required"
                )
            else:
                logger.info(f"Duplicate payment confirmation ignored for order {order.id}")
            return ConfirmResult(order=order, already_finalized=True)

        logger.info(f"Payment verified: {gateway_payment_id} -> order {order.id} marked PAID")

        shortfalls = self._decrement_order_stock(order, source="gateway_verify")
        self._clear_cart(order)
        self._notify(order)
        return ConfirmResult(order=order, stock_shortfalls=shortfalls)

    def abort_payment(self, buyer: UserIdentity, order_id: str) -> Order:
        """支付失败或用户取消：仅 pending 订单会被置为 failed/cancelled"""
        order = self.get_order(order_id, buyer)

        if self._mark_failed(order):
            logger.info(f"Payment failed/cancelled for order: {order.id}")
        else:
            logger.info(f"Abort ignored for finalized order {order.id} (payment_status={order.payment_status.value})")
        return order

    def settle_cash_order(self, order_id: str) -> ConfirmResult:
        """确认货到付款已收款（管理员操作），与在线支付共用 pending→paid 转换与库存扣减"""
        order = self.get_order(order_id)
        if order.payment_method != PaymentMethod.CASH:
            raise ValidationError("Only cash-on-delivery orders can be settled manually")

        if not self._mark_paid(order):
            logger.info(f"Cash settlement ignored for finalized order {order.id}")
            return ConfirmResult(order=order, already_finalized=True)

        logger.info(f"Cash collected for order {order.id}")
        shortfalls = self._decrement_order_stock(order, source="cash_settlement")
        return ConfirmResult(order=order, stock_shortfalls=shortfalls)

    # ==================== 过期清理 ====================

    def expire_stale_orders(self, older_than_minutes: int = None, batch_size: int = 500) -> int:
        """取消长时间停留在 AWAITING_PAYMENT 的在线支付订单，并清理过期幂等键

        Args:
            older_than_minutes: 超时阈值，默认取 PENDING_ORDER_TTL_MINUTES
            batch_size: 批处理大小

        Returns:
            被取消的订单数量
        """
        minutes = older_than_minutes if older_than_minutes is not None else self.config.PENDING_ORDER_TTL_MINUTES
        cutoff = utcnow() - timedelta(minutes=minutes)
        total_expired = 0

        while True:
            try:
                stale_ids = self.db.execute(
                    select(Order.id)
                    .where(
                        Order.payment_method == PaymentMethod.GATEWAY,
                        Order.payment_status == PaymentStatus.PENDING,
                        Order.created_at <= cutoff,
                    )
                    .limit(batch_size)
                    .with_for_update(skip_locked=True)
                ).scalars().all()

                if not stale_ids:
                    break

                result = self.db.execute(
                    update(Order)
                    .where(Order.id.in_(stale_ids), Order.payment_status == PaymentStatus.PENDING)
                    .values(payment_status=PaymentStatus.FAILED, order_status=OrderStatus.CANCELLED)
                    .execution_options(synchronize_session=False)
                )
                self.db.commit()
                total_expired += result.rowcount
                logger.info(f"Expired {result.rowcount} stale pending order(s) in this batch")

                if len(stale_ids) < batch_size:
                    break
            except Exception as e:
                self.db.rollback()
                logger.error(f"Stale order expiry batch failed: {str(e)}")
                raise

        purged = self.purge_expired_idempotency_keys()
        logger.info(f"Stale order expiry finished: {total_expired} order(s) cancelled, {purged} idempotency key(s) purged")
        return total_expired

    def purge_expired_idempotency_keys(self) -> int:
        try:
            result = self.db.execute(
                delete(IdempotencyKey)
                .where(IdempotencyKey.expires_at.is_not(None), IdempotencyKey.expires_at <= utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result.rowcount

    # ==================== 内部步骤 ====================

    @contextmanager
    def _checkout_lock(self, buyer_id: str):
        """同一买家的结算串行化（分布式锁）"""
        lock = None
        if self.rlock:
            try:
                lock = self.rlock.lock(f"lock:checkout:{buyer_id}", ttl=self.config.CHECKOUT_LOCK_TTL_MS)
            except (RedisError, MultipleRedlockException) as e:
                # Redis 不可用时退化为无锁结算
                logger.warning(f"Checkout lock unavailable for user {buyer_id}, continuing without lock: {e}")
            else:
                if not lock:
                    raise CheckoutInProgress()
        try:
            yield
        finally:
            if self.rlock and lock:
                try:
                    self.rlock.unlock(lock)
                except (RedisError, MultipleRedlockException) as e:
                    logger.warning(f"Checkout lock release failed for user {buyer_id}: {e}")

    def _price_cart(self, buyer_id: str) -> Tuple[List[OrderItem], OrderTotals]:
        """读取购物车、校验库存（只检查不扣减）并快照价格"""
        items = self.cart.get_items(buyer_id)
        if not items:
            raise ValidationError("Cart is empty")

        books = self.catalog.get_books(item.book_id for item in items)

        lines = []
        for position, item in enumerate(items):
            book = books.get(item.book_id)
            if book is None:
                raise StockUnavailable("a book", requested=item.quantity, available=0)
            if book.stock < item.quantity:
                raise StockUnavailable(book.title, requested=item.quantity, available=book.stock)

            lines.append(OrderItem(
                position=position,
                book_id=book.id,
                title=book.title,
                quantity=item.quantity,
                unit_price=book.price,
                discount_percent=book.discount or 0,
            ))

        totals = compute_totals(
            [PricedLine(line.unit_price, line.discount_percent, line.quantity) for line in lines],
            self.policy,
        )
        return lines, totals

    def _new_order(
        self,
        buyer: UserIdentity,
        shipping_address: dict,
        payment_method: PaymentMethod,
        lines: List[OrderItem],
        totals: OrderTotals,
    ) -> Order:
        return Order(
            id=str(uuid.uuid4()),
            buyer_id=buyer.id,
            buyer_email=buyer.email,
            shipping_address=shipping_address,
            items=lines,
            subtotal=totals.subtotal,
            shipping_cost=totals.shipping_cost,
            tax=totals.tax,
            total=totals.total,
            currency=self.config.CURRENCY,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            order_status=OrderStatus.PENDING,
        )

    def _create_gateway_order(self, buyer: UserIdentity, shipping_address: dict) -> dict:
        lines, totals = self._price_cart(buyer.id)
        order = self._new_order(buyer, shipping_address, PaymentMethod.GATEWAY, lines, totals)
        amount = to_minor_units(totals.total)

        try:
            order.gateway_order_id = self.gateway.create_intent(
                amount, self.config.CURRENCY, order.id, notes={"userId": buyer.id}
            )
        except GatewayUnavailable:
            # 订单尚未写入，结束只读事务即可
            self.db.rollback()
            raise

        try:
            self.db.add(order)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Order persistence failed after intent {order.gateway_order_id}: {str(e)}")
            raise

        logger.info(f"Checkout initiated: order {order.id}, intent {order.gateway_order_id}, total {order.total} {order.currency}")
        return {
            "order_id": order.id,
            "gateway_order_id": order.gateway_order_id,
            "amount": amount,
            "currency": order.currency,
            "key_id": self.gateway.key_id,
        }

    def _mark_paid(self, order: Order, gateway_payment_id: str = None) -> bool:
        """原子条件更新 pending→paid；返回本次调用是否完成了转换"""
        values = {
            "payment_status": PaymentStatus.PAID,
            "order_status": OrderStatus.PROCESSING,
            "paid_at": utcnow(),
        }
        conditions = [Order.id == order.id, Order.payment_status == PaymentStatus.PENDING]
        if gateway_payment_id:
            values["gateway_payment_id"] = gateway_payment_id
            conditions.append(Order.gateway_order_id.is_not(None))

        try:
            result = self.db.execute(
                update(Order)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        return result.rowcount == 1

    def _mark_failed(self, order: Order) -> bool:
        """原子条件更新 pending→failed；已 paid 的订单永不降级"""
        try:
            result = self.db.execute(
                update(Order)
                .where(Order.id == order.id, Order.payment_status == PaymentStatus.PENDING)
                .values(payment_status=PaymentStatus.FAILED, order_status=OrderStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        return result.rowcount == 1

    def _decrement_order_stock(self, order: Order, source: str) -> List[StockShortfall]:
        """逐行扣减库存（尽力而为），失败行只记录不回滚支付"""
        shortfalls = []
        for item in order.items:
            try:
                outcome = self.catalog.decrement_stock(item.book_id, item.quantity, order.id, source)
            except Exception as e:
                logger.error(f"Stock decrement error for order {order.id}, book {item.book_id}: {str(e)}")
                shortfalls.append(StockShortfall(item.book_id, item.title, item.quantity))
                continue

            if not outcome.applied:
                logger.error(
                    f"Stock shortfall after payment: order {order.id}, book {item.book_id} "
                    f"requested {item.quantity}, available {outcome.remaining}"
                )
                shortfalls.append(StockShortfall(item.book_id, item.title, item.quantity, outcome.remaining))
        return shortfalls

    def _clear_cart(self, order: Order):
        try:
            self.cart.clear(order.buyer_id)
        except Exception as e:
            logger.error(f"Cart clear failed for user {order.buyer_id} after order {order.id}: {str(e)}")

    def _notify(self, order: Order):
        """非关键通知：失败只记录日志"""
        if not self.notifier:
            return
        try:
            self.notifier(order.id)
        except Exception as e:
            logger.warning(f"Order notification could not be queued for {order.id}: {str(e)}")

    def _claim_idempotency_key(self, buyer_id: str, client_key: str) -> Tuple[str, Optional[dict]]:
        """占用幂等键；已成功的键返回响应快照"""
        key = f"checkout:{buyer_id}:{client_key}"[:128]
        record = self.db.get(IdempotencyKey, key)

        if record is not None:
            if record.status == IdempotencyStatus.SUCCESS:
                return key, record.response_snapshot
            if record.status == IdempotencyStatus.PROCESSING:
                raise CheckoutInProgress()
            record.status = IdempotencyStatus.PROCESSING
        else:
            self.db.add(IdempotencyKey(
                key=key,
                buyer_id=buyer_id,
                status=IdempotencyStatus.PROCESSING,
                expires_at=utcnow() + timedelta(hours=self.config.IDEMPOTENCY_TTL_HOURS),
            ))

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise CheckoutInProgress()
        return key, None

    def _finish_idempotency_key(self, key: str, status: IdempotencyStatus, snapshot: dict = None):
        try:
            record = self.db.get(IdempotencyKey, key)
            record.status = status
            record.response_snapshot = snapshot
            if snapshot:
                record.order_id = snapshot.get("order_id")
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Idempotency key update failed: key={key}, error={str(e)}")
            raise
