from django.dispatch import Signal

# kwargs: delivery_id, order_id, partner_id
delivery_completed = Signal()

# kwargs: delivery_id, order_id, partner_id, reason
delivery_rejected = Signal()
