from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.cod.services import CODLedger
from apps.delivery.models import Delivery, DeliveryStatus
from apps.orders.models import Order, PaymentMethod
from apps.riders.models import DeliveryPartner
from apps.utils.exceptions import NotFound
from . import cache as earnings_cache
from .services import EarningsAggregator, default_range
from .tasks import refresh_partner_summary

User = get_user_model()


class EarningsFixtureMixin:
    def make_delivery(self, number, method, fee, status, when=None, rating=None):
        order = Order.objects.create(
            order_number=number,
            total_amount=Decimal("300.00"),
            payment_method=method,
        )
        when = when or timezone.now() - timedelta(days=1)
        fields = {
            "order": order,
            "partner": self.partner,
            "status": status,
            "pickup_address": "Store 12",
            "delivery_address": "Flat 4B",
            "delivery_fee": Decimal(fee),
            "rating": rating,
        }
        if status == DeliveryStatus.DELIVERED:
            fields["delivered_at"] = when
        elif status == DeliveryStatus.CANCELLED:
            fields["cancelled_at"] = when
        return Delivery.objects.create(**fields)


class EarningsAggregatorTests(EarningsFixtureMixin, TestCase):
    def setUp(self):
        cache.clear()
        self.partner = DeliveryPartner.objects.create(full_name="Ravi", phone="9100000000", is_approved=True)

    def test_summary_counts_and_totals(self):
        self.make_delivery("ORD-1", PaymentMethod.ONLINE, "40.00", DeliveryStatus.DELIVERED, rating=5)
        self.make_delivery("ORD-2", PaymentMethod.COD, "35.00", DeliveryStatus.DELIVERED, rating=4)
        self.make_delivery("ORD-3", PaymentMethod.ONLINE, "30.00", DeliveryStatus.CANCELLED)
        self.make_delivery("ORD-4", PaymentMethod.ONLINE, "25.00", DeliveryStatus.ACCEPTED)

        summary = EarningsAggregator.get_summary(self.partner.id)

        self.assertEqual(summary.total_earnings, Decimal("75.00"))
        self.assertEqual(str(summary.total_earnings), "75.00")
        self.assertEqual(summary.online_payment_earnings, Decimal("40.00"))
        self.assertEqual(str(summary.online_payment_earnings), "40.00")
        self.assertEqual(summary.completed, 2)
        self.assertEqual(summary.cancelled, 1)
        self.assertEqual(summary.pending, 1)
        self.assertEqual(summary.total_deliveries, 4)
        self.assertEqual(summary.average_rating, 4.5)

    def test_empty_partner(self):
        summary = EarningsAggregator.get_summary(self.partner.id)

        self.assertEqual(summary.total_earnings, Decimal("0.00"))
        self.assertEqual(summary.total_deliveries, 0)
        self.assertEqual(summary.average_rating, 0.0)
        self.assertEqual(summary.cod_outstanding, Decimal("0.00"))

    def test_range_uses_completion_time(self):
        self.make_delivery("ORD-1", PaymentMethod.ONLINE, "40.00", DeliveryStatus.DELIVERED,
                           when=timezone.now() - timedelta(days=10))
        self.make_delivery("ORD-2", PaymentMethod.ONLINE, "50.00", DeliveryStatus.DELIVERED,
                           when=timezone.now() - timedelta(hours=2))

        end = timezone.now()
        summary = EarningsAggregator.get_summary(self.partner.id, end - timedelta(days=3), end)

        self.assertEqual(summary.completed, 1)
        self.assertEqual(summary.total_earnings, Decimal("50.00"))

    def test_cod_figures_come_from_ledger(self):
        delivery = self.make_delivery("ORD-9", PaymentMethod.COD, "35.00", DeliveryStatus.ON_THE_WAY)
        CODLedger.record_collection(delivery.order_id, delivery.id, self.partner.id, "300.00")
        CODLedger.record_settlement(self.partner.id, "100.00")

        summary = EarningsAggregator.get_summary(self.partner.id)

        self.assertEqual(summary.cod_outstanding, Decimal("200.00"))
        self.assertEqual(summary.cod_submitted, Decimal("100.00"))
        self.assertEqual(summary.cod.total_collected, Decimal("300.00"))

    def test_cached_until_partner_invalidated(self):
        start, end = default_range()
        first = EarningsAggregator.get_summary(self.partner.id, start, end)
        self.make_delivery("ORD-1", PaymentMethod.ONLINE, "40.00", DeliveryStatus.DELIVERED)

        self.assertEqual(EarningsAggregator.get_summary(self.partner.id, start, end), first)

        earnings_cache.invalidate_partner(self.partner.id)
        fresh = EarningsAggregator.get_summary(self.partner.id, start, end)
        self.assertEqual(fresh.completed, 1)

    def test_use_cache_false_recomputes(self):
        start, end = default_range()
        EarningsAggregator.get_summary(self.partner.id, start, end)
        self.make_delivery("ORD-1", PaymentMethod.ONLINE, "40.00", DeliveryStatus.DELIVERED)

        summary = EarningsAggregator.get_summary(self.partner.id, start, end, use_cache=False)
        self.assertEqual(summary.completed, 1)

    def test_unknown_partner(self):
        with self.assertRaises(NotFound):
            EarningsAggregator.get_summary("00000000-0000-0000-0000-000000000000")

    def test_default_range_rounds_to_minute(self):
        now = timezone.now().replace(second=42, microsecond=7)
        start, end = default_range(now)

        self.assertEqual((end.second, end.microsecond), (0, 0))
        self.assertGreater(end, now)
        self.assertEqual(end - start, timedelta(days=365))

    def test_refresh_task_bypasses_cache(self):
        start, end = default_range()
        EarningsAggregator.get_summary(self.partner.id, start, end)
        self.make_delivery("ORD-1", PaymentMethod.ONLINE, "40.00", DeliveryStatus.DELIVERED)

        result = refresh_partner_summary.delay(str(self.partner.id)).get()

        self.assertEqual(result["total_earnings"], "40.00")

    def test_refresh_task_ignores_missing_partner(self):
        result = refresh_partner_summary.delay("00000000-0000-0000-0000-000000000000").get()
        self.assertIsNone(result)


class EarningsApiTests(EarningsFixtureMixin, APITestCase):
    def setUp(self):
        cache.clear()
        self.user = User.objects.create_user(username="rider1", password="test")
        self.partner = DeliveryPartner.objects.create(
            user=self.user, full_name="Ravi", phone="9100000000", is_approved=True
        )
        self.staff = User.objects.create_user(username="ops", password="test", is_staff=True)

    def test_partner_sees_own_summary(self):
        self.make_delivery("ORD-1", PaymentMethod.ONLINE, "40.00", DeliveryStatus.DELIVERED, rating=5)
        self.client.force_authenticate(self.user)

        response = self.client.get(reverse("earnings-me"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["total_earnings"], "40.00")
        self.assertEqual(response.data["completed"], 1)
        self.assertEqual(response.data["cod"]["pending_collections"], [])

    def test_invalid_range(self):
        self.client.force_authenticate(self.user)
        response = self.client.get(reverse("earnings-me"), {"start": "2026-02-10", "end": "2026-02-01"})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_date")

    def test_staff_reads_any_partner(self):
        self.client.force_authenticate(self.staff)
        response = self.client.get(reverse("earnings-partner", args=[self.partner.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.client.force_authenticate(self.user)
        response = self.client.get(reverse("earnings-partner", args=[self.partner.id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
