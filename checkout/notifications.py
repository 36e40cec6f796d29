import logging
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def _items_lines(order):
    return "\n".join(
        f"• {item['name']}"
        f"{' / ' + item['size'] if item.get('size') else ''}"
        f"{' / ' + item['color'] if item.get('color') else ''}"
        f" (Qty: {item['quantity']}, Price: ₹{item['unitPrice']})"
        for item in order.items
    )


def _address_lines(address):
    line2 = f"\n{address['addressLine2']}" if address.get("addressLine2") else ""
    return (
        f"{address.get('fullName', '')}\n"
        f"{address.get('addressLine1', '')}{line2}\n"
        f"{address.get('city', '')}, {address.get('state', '')} - {address.get('pincode', '')}\n"
        f"{address.get('country', '')}"
    )


def _payment_summary(order):
    summary = (
        f"Subtotal: ₹{order.subtotal}\n"
        f"Discount: ₹{order.discount}{' (' + order.coupon_code + ')' if order.coupon_code else ''}\n"
        f"Shipping: ₹{order.shipping_charge}\n"
        f"TOTAL: ₹{order.total}"
    )
    if order.payment_method == "COD":
        summary += f"\nAdvance paid: ₹{order.advance_paid}\nTo collect on delivery: ₹{order.remaining_cod}"
    return summary


def send_admin_order_notification(order):
    """Send detailed email to admin about new order"""
    try:
        address = order.shipping_address
        message = f"""
Hello Admin,

A new order has been placed!

═══════════════════════════════════════

📋 ORDER DETAILS:
Order Number: {order.order_number}
Order Date: {order.created_at.strftime('%d-%b-%Y %I:%M %p')}
Status: {order.order_status}
Payment Method: {order.payment_method}
Payment Status: {order.payment_status}

═══════════════════════════════════════

👤 CUSTOMER DETAILS:
Name: {address.get('fullName', '')}
Phone: {address.get('phone', '')}
Email: {order.customer_email}
Account: {'Registered' if order.user_id else 'Guest'}

📍 SHIPPING ADDRESS:
{_address_lines(address)}

═══════════════════════════════════════

📦 ORDER ITEMS:
{_items_lines(order)}

═══════════════════════════════════════

💳 PAYMENT SUMMARY:
{_payment_summary(order)}
        """.strip()

        send_mail(
            subject=f'🛒 New Order Received - {order.order_number}',
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[settings.ADMIN_ORDER_EMAIL],
            fail_silently=False,
        )

        logger.info(f"Admin notification sent for Order {order.order_number}")
        return True, "Admin email sent successfully"

    except Exception as e:
        logger.error(f"Admin notification failed for {order.order_number}: {str(e)}")
        return False, str(e)


def send_customer_order_confirmation(order):
    """Send order confirmation to customer via EMAIL"""
    email = order.customer_email
    if not email:
        return False, "No customer email"

    try:
        names = [item["name"] for item in order.items[:3]]
        items_text = ", ".join(names)
        if len(order.items) > 3:
            items_text += f" and {len(order.items) - 3} more"

        message = f"""
Order Confirmed!

═══════════════════════════════════════

📋 ORDER DETAILS:
Order Number: {order.order_number}
Items: {items_text}

{_payment_summary(order)}

📍 Delivering to:
{_address_lines(order.shipping_address)}

═══════════════════════════════════════

Track your order any time at {settings.SITE_URL}/orders/{order.order_number}

Thank you for shopping with us! 😊
        """.strip()

        send_mail(
            subject=f'Order Confirmed - {order.order_number}',
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[email],
            fail_silently=False,
        )

        logger.info(f"Customer confirmation sent via email for Order {order.order_number}")
        return True, "Customer email sent successfully"

    except Exception as e:
        logger.error(f"Customer notification failed for {order.order_number}: {str(e)}")
        return False, str(e)


def notify_order_placed(order):
    """Send both order emails once; safe to call again for the same order."""
    if order.customer_notified:
        return
    send_admin_order_notification(order)
    customer_sent, _ = send_customer_order_confirmation(order)
    if customer_sent:
        order.__class__.objects.filter(pk=order.pk).update(customer_notified=True)
        order.customer_notified = True
