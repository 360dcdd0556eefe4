"""订单通知 Celery 任务

通知属于非关键路径：发送失败只记录日志，不影响订单状态。
"""

import logging
import smtplib
from email.message import EmailMessage

from celery_app import app
from booknest.core.config import settings
from booknest.models.order import Order, PaymentMethod
from tasks.worker_context import get_session_factory

logger = logging.getLogger(__name__)


def build_confirmation_email(order: Order) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = f"BookNest order confirmed #{order.id[:8].upper()}"
    message["From"] = settings.MAIL_FROM
    message["To"] = order.buyer_email

    lines = [f"- {item.title} x {item.quantity}" for item in order.items]
    if order.payment_method == PaymentMethod.CASH:
        payment_line = f"Amount payable on delivery: {order.total:.2f} {order.currency}"
    else:
        payment_line = f"Amount paid: {order.total:.2f} {order.currency} (payment {order.gateway_payment_id})"

    message.set_content(
        "Thank you for shopping with BookNest!\n\n"
        + "\n".join(lines)
        + f"\n\nSubtotal: {order.subtotal:.2f}\nShipping: {order.shipping_cost:.2f}\nTax: {order.tax:.2f}\n"
        + payment_line
        + "\n"
    )
    return message


def try_send_email(message: EmailMessage) -> bool:
    """发送邮件，失败时返回 False"""
    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            smtp.starttls()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(message)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.warning(f"Email delivery to {message['To']} failed: {e}")
        return False


@app.task(name='tasks.notification.send_order_confirmation')
def send_order_confirmation(order_id: str):
    """发送订单确认邮件"""
    db = get_session_factory()()
    try:
        order = db.get(Order, order_id)
        if order is None:
            logger.warning(f"Order {order_id} not found, confirmation skipped")
            return {"status": "skipped", "order_id": order_id}
        if not order.buyer_email:
            logger.info(f"Order {order_id} has no buyer email, confirmation skipped")
            return {"status": "skipped", "order_id": order_id}

        sent = try_send_email(build_confirmation_email(order))
        return {"status": "sent" if sent else "failed", "order_id": order_id}
    finally:
        db.close()


__all__ = [
    'send_order_confirmation',
]
