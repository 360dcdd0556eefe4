# Models
from .book import Book
from .cart import CartItem
from .order import Order, OrderItem, PaymentMethod, PaymentStatus, OrderStatus, CheckoutState
from .stock_logs import StockLog, ChangeType
from .idempotency_keys import IdempotencyKey, IdempotencyStatus

__all__ = [
    "Book",
    "CartItem",
    "Order",
    "OrderItem",
    "PaymentMethod",
    "PaymentStatus",
    "OrderStatus",
    "CheckoutState",
    "StockLog",
    "ChangeType",
    "IdempotencyKey",
    "IdempotencyStatus",
]
