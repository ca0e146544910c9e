"""
Top-level models import shim for the Orders app, so that
    from apps.orders.models import Order
keeps working while models live in modules.
"""

from .order import Order, PaymentMethod, PaymentStatus
