# catalog/stock.py
"""
Per-size stock.

A product with no ``ProductSize`` rows is not stock-tracked and never runs
out. Once any size has a row, sizes without one are out of stock.
"""
import logging

from django.db.models import F

from storefront.exceptions import ValidationFailed

from .models import Product, ProductSize

logger = logging.getLogger(__name__)


def _out_of_stock(product, size):
    label = f"{product.name} ({size})" if size else product.name
    return ValidationFailed(f"{label} is out of stock", code="out_of_stock", fields={"size": "out_of_stock"})


def check_stock(product, size, quantity):
    """Raise when the size cannot cover ``quantity``; reads only, no locking."""
    levels = product.stock_levels()
    if levels and levels.get(size, 0) < quantity:
        raise _out_of_stock(product, size)


def reduce_stock(product, size, quantity):
    """
    Take ``quantity`` units of one size. The conditional UPDATE refuses to go
    below zero, so two orders cannot both take the last unit. Run inside the
    order transaction so a failed order puts the units back.
    """
    if not product.size_stock.exists():
        return

    updated = (
        ProductSize.objects.filter(product=product, size=size, stock__gte=quantity)
        .update(stock=F("stock") - quantity)
    )
    if not updated:
        raise _out_of_stock(product, size)

    if not product.size_stock.filter(stock__gt=0).exists():
        Product.objects.filter(pk=product.pk).update(is_active=False)
        logger.info(f"Product {product.pk} sold out, deactivated")


def reduce_stock_for_lines(lines):
    """Take stock for every order line snapshot (``productId``/``size``/``quantity``)."""
    products = Product.objects.in_bulk([int(line["productId"]) for line in lines])
    for line in lines:
        reduce_stock(products[int(line["productId"])], line["size"], line["quantity"])
