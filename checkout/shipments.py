# checkout/shipments.py
import logging

from django.db import transaction

from storefront.exceptions import Conflict, ExternalServiceError, NotFound, ValidationFailed

from .delivery import DelhiveryAPI
from .models import Order

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "CREATED": {"CONFIRMED", "CANCELLED"},
    "CONFIRMED": {"SHIPPED", "CANCELLED"},
    "SHIPPED": {"DELIVERED"},
    "DELIVERED": set(),
    "CANCELLED": set(),
}

# Partner status text -> our order status
PARTNER_STATUS_MAP = {
    "in transit": "SHIPPED",
    "dispatched": "SHIPPED",
    "delivered": "DELIVERED",
}


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, set())


def update_order_status(order_number, target):
    with transaction.atomic():
        order = Order.objects.select_for_update().filter(order_number=order_number).first()
        if order is None:
            raise NotFound("Order not found")
        if order.order_status == target:
            return order
        if not can_transition(order.order_status, target):
            raise Conflict(
                f"Cannot move order from {order.order_status} to {target}",
                code="invalid_status_transition",
            )
        order.order_status = target
        order.save(update_fields=["order_status", "updated_at"])
    logger.info(f"Order {order_number} status -> {target}")
    return order


def create_shipment(order_number):
    """
    Hand a CONFIRMED order to the shipping partner (IDEMPOTENT).

    ``shipment_created`` is claimed with a conditional update before the
    partner call, so two admins clicking at once create one shipment. A
    partner failure releases the claim and records the error on the order.
    """
    order = Order.objects.filter(order_number=order_number).first()
    if order is None:
        raise NotFound("Order not found")
    if order.waybill:
        return order
    if order.order_status != "CONFIRMED":
        raise Conflict("Shipments can only be created for confirmed orders", code="order_not_confirmed")

    claimed = Order.objects.filter(pk=order.pk, shipment_created=False, order_status="CONFIRMED").update(
        shipment_created=True
    )
    if not claimed:
        raise Conflict("Shipment creation already in progress", code="shipment_in_progress")

    try:
        success, result = DelhiveryAPI().create_shipment(order)
    except ExternalServiceError:
        Order.objects.filter(pk=order.pk).update(shipment_created=False)
        raise

    if not success:
        Order.objects.filter(pk=order.pk).update(shipment_created=False, shipment_error=str(result)[:1000])
        logger.error(f"Shipment creation failed for {order_number}: {result}")
        raise ExternalServiceError(f"Shipment creation failed: {result}")

    order.waybill = result["waybill"]
    order.courier_name = result.get("courier_name", "")
    order.tracking_url = result.get("tracking_url", "")
    order.delivery_status = "Manifested"
    order.shipment_error = ""
    order.shipment_created = True
    order.save(update_fields=[
        "waybill", "courier_name", "tracking_url", "delivery_status",
        "shipment_error", "shipment_created", "updated_at",
    ])
    logger.info(f"Shipment created for {order_number}: waybill {order.waybill}")
    return order


def apply_tracking_update(payload):
    """
    Apply a shipping-partner status push. Replays of the same status are
    no-ops; order status only moves along allowed transitions.
    """
    shipment = payload.get("Shipment") if isinstance(payload.get("Shipment"), dict) else payload
    waybill = shipment.get("AWB") or shipment.get("waybill")
    status_info = shipment.get("Status")
    status = status_info.get("Status") if isinstance(status_info, dict) else (status_info or shipment.get("status"))

    if not waybill or not status:
        raise ValidationFailed("waybill and status are required")

    with transaction.atomic():
        order = Order.objects.select_for_update().filter(waybill=str(waybill)).first()
        if order is None:
            logger.warning(f"Tracking update for unknown waybill {waybill}")
            raise NotFound("Order not found for waybill")

        if order.delivery_status == status:
            logger.info(f"Tracking update already applied for {waybill}")
            return order, False

        order.delivery_status = status
        order.tracking_data = payload
        fields = ["delivery_status", "tracking_data", "updated_at"]

        target = PARTNER_STATUS_MAP.get(status.strip().lower())
        if target and target != order.order_status:
            # Delivered without a prior in-transit push
            if order.order_status == "CONFIRMED" and target == "DELIVERED":
                order.order_status = "SHIPPED"
            if can_transition(order.order_status, target):
                order.order_status = target
            fields.append("order_status")
        order.save(update_fields=fields)

    logger.info(f"Order {order.order_number} tracking status {status} ({order.order_status})")
    return order, True
