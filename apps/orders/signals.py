# apps/orders/signals.py
from django.dispatch import Signal

# Fired when a delivered ONLINE order needs the payment service to confirm capture
# args: order_id
payment_confirmation_requested = Signal()
