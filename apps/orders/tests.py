from decimal import Decimal

from django.test import TestCase

from apps.utils.exceptions import NotFound
from .models import Order, PaymentMethod, PaymentStatus
from .services import OrderService
from .signals import payment_confirmation_requested


class OrderServiceTests(TestCase):
    def setUp(self):
        self.cod_order = Order.objects.create(
            order_number="ORD-COD-1",
            total_amount=Decimal("500.00"),
            payment_method=PaymentMethod.COD,
        )
        self.online_order = Order.objects.create(
            order_number="ORD-ONL-1",
            total_amount=Decimal("250.00"),
            payment_method=PaymentMethod.ONLINE,
        )

    def test_payment_snapshot_copies_payment_fields(self):
        snapshot = OrderService.get_payment_snapshot(self.cod_order.id)

        self.assertTrue(snapshot.is_cod)
        self.assertEqual(snapshot.total_amount, Decimal("500.00"))
        self.assertEqual(snapshot.payment_status, PaymentStatus.PENDING)
        self.assertEqual(snapshot.order_number, "ORD-COD-1")

    def test_unknown_or_malformed_id_is_not_found(self):
        with self.assertRaises(NotFound):
            OrderService.get_order("00000000-0000-0000-0000-000000000000")
        with self.assertRaises(NotFound):
            OrderService.get_order("not-a-uuid")

    def test_mark_cod_collected_completes_payment(self):
        OrderService.mark_cod_collected(self.cod_order)

        self.cod_order.refresh_from_db()
        self.assertEqual(self.cod_order.payment_status, PaymentStatus.COMPLETED)
        self.assertIsNotNone(self.cod_order.paid_at)

    def test_payment_confirmation_requested_once_for_online_orders(self):
        received = []

        def handler(sender, order_id, **kwargs):
            received.append(order_id)

        payment_confirmation_requested.connect(handler)
        self.addCleanup(payment_confirmation_requested.disconnect, handler)

        self.assertTrue(OrderService.request_payment_confirmation(self.online_order.id))
        self.assertFalse(OrderService.request_payment_confirmation(self.online_order.id))

        self.assertEqual(received, [str(self.online_order.id)])
        self.online_order.refresh_from_db()
        self.assertIsNotNone(self.online_order.payment_confirmation_requested_at)

    def test_payment_confirmation_skips_cod_orders(self):
        self.assertFalse(OrderService.request_payment_confirmation(self.cod_order.id))
