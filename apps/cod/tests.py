from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.delivery.models import DeliveryStatus
from apps.delivery.services import DeliveryService
from apps.orders.models import Order, PaymentMethod, PaymentStatus
from apps.riders.models import DeliveryPartner
from apps.utils.exceptions import BusinessLogicException
from . import ledger
from .exceptions import DuplicateCollection, InsufficientCollection, Oversettlement, SettlementMismatch
from .models import CODCollection, CODSettlement, SettlementSource
from .services import CODLedger

User = get_user_model()


class LedgerFoldTests(SimpleTestCase):
    def setUp(self):
        now = timezone.now()
        self.c1 = ledger.CollectionEntry(id=1, order_id="o1", amount=Decimal("100.00"), collected_at=now - timedelta(days=3))
        self.c2 = ledger.CollectionEntry(id=2, order_id="o2", amount=Decimal("200.00"), collected_at=now - timedelta(days=2))
        self.c3 = ledger.CollectionEntry(id=3, order_id="o3", amount=Decimal("300.00"), collected_at=now - timedelta(days=1))
        self.now = now

    def test_lump_sum_settles_oldest_first(self):
        s = ledger.SettlementEntry(id=10, amount=Decimal("250.00"), submitted_at=self.now)
        settled = ledger.allocate([self.c3, self.c1, self.c2], [s])

        self.assertEqual(settled[1], Decimal("100.00"))
        self.assertEqual(settled[2], Decimal("150.00"))
        self.assertEqual(settled[3], Decimal("0.00"))

    def test_explicit_references_win_over_age(self):
        explicit = ledger.SettlementEntry(id=10, amount=Decimal("300.00"), submitted_at=self.now, collection_ids=(3,))
        lump = ledger.SettlementEntry(id=11, amount=Decimal("100.00"), submitted_at=self.now + timedelta(minutes=1))
        settled = ledger.allocate([self.c1, self.c2, self.c3], [explicit, lump])

        self.assertEqual(settled[3], Decimal("300.00"))
        self.assertEqual(settled[1], Decimal("100.00"))
        self.assertEqual(settled[2], Decimal("0.00"))

    def test_summary_lists_unsettled_collections(self):
        s = ledger.SettlementEntry(id=10, amount=Decimal("100.00"), submitted_at=self.now)
        summary = ledger.summarize([self.c1, self.c2, self.c3], [s])

        self.assertEqual(summary.total_collected, Decimal("600.00"))
        self.assertEqual(summary.total_submitted, Decimal("100.00"))
        self.assertEqual(summary.collected_not_submitted, Decimal("500.00"))
        self.assertEqual([p.order_id for p in summary.pending_collections], ["o2", "o3"])

    def test_summary_window_keeps_whole_log_allocation(self):
        s = ledger.SettlementEntry(id=10, amount=Decimal("100.00"), submitted_at=self.now - timedelta(days=10))
        summary = ledger.summarize(
            [self.c1, self.c2, self.c3], [s],
            start=self.now - timedelta(days=2, hours=1), end=self.now,
        )

        # c1 is outside the window but still absorbed the settlement
        self.assertEqual(summary.total_collected, Decimal("500.00"))
        self.assertEqual(summary.total_submitted, Decimal("0.00"))
        self.assertEqual(summary.collected_not_submitted, Decimal("500.00"))

    def test_outstanding(self):
        s = ledger.SettlementEntry(id=10, amount=Decimal("50.00"), submitted_at=self.now)
        self.assertEqual(ledger.outstanding([self.c1, self.c2], [s]), Decimal("250.00"))


class CODLedgerTests(TestCase):
    def setUp(self):
        self.partner = DeliveryPartner.objects.create(full_name="Ravi", phone="9100000000", is_approved=True)
        self.other = DeliveryPartner.objects.create(full_name="Asha", phone="9100000001", is_approved=True)
        self.order = self._cod_order("ORD-1", "500.00")
        self.delivery = self._picked_up(self.order)

    def _cod_order(self, number, total):
        return Order.objects.create(
            order_number=number, total_amount=Decimal(total), payment_method=PaymentMethod.COD
        )

    def _picked_up(self, order, partner=None):
        partner = partner or self.partner
        delivery = DeliveryService.create_delivery(order.id, "Store", "Home", "40", partner_id=partner.id)
        DeliveryService.request_transition(delivery.id, DeliveryStatus.ACCEPTED, f"{delivery.id}-a")
        DeliveryService.request_transition(delivery.id, DeliveryStatus.PICKED_UP, f"{delivery.id}-p")
        return delivery

    def test_record_collection_marks_order_paid(self):
        collection = CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")

        self.assertEqual(collection.amount, Decimal("500.00"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.COMPLETED)
        self.assertEqual(CODLedger.collected_amount(self.order.id), Decimal("500.00"))

    def test_second_collection_is_duplicate(self):
        first = CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")
        with self.assertRaises(DuplicateCollection):
            CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")

        self.assertEqual(CODCollection.objects.filter(order=self.order).count(), 1)
        self.assertEqual(CODCollection.objects.get(order=self.order).id, first.id)

    def test_short_collection_is_rejected(self):
        with self.assertRaises(InsufficientCollection):
            CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "499.99")
        self.assertFalse(CODCollection.objects.exists())

    def test_collection_needs_pickup(self):
        order = self._cod_order("ORD-2", "100")
        delivery = DeliveryService.create_delivery(order.id, "Store", "Home", "40", partner_id=self.partner.id)
        with self.assertRaises(BusinessLogicException) as ctx:
            CODLedger.record_collection(order.id, delivery.id, self.partner.id, "100")
        self.assertEqual(ctx.exception.code, "not_picked_up")

    def test_collection_by_wrong_partner(self):
        with self.assertRaises(BusinessLogicException) as ctx:
            CODLedger.record_collection(self.order.id, self.delivery.id, self.other.id, "500")
        self.assertEqual(ctx.exception.code, "not_assigned")

    def test_online_order_is_not_collectable(self):
        order = Order.objects.create(
            order_number="ORD-ONL", total_amount=Decimal("100"), payment_method=PaymentMethod.ONLINE
        )
        delivery = self._picked_up(order)
        with self.assertRaises(BusinessLogicException) as ctx:
            CODLedger.record_collection(order.id, delivery.id, self.partner.id, "100")
        self.assertEqual(ctx.exception.code, "not_cod")

    def test_non_positive_amounts_rejected(self):
        with self.assertRaises(BusinessLogicException):
            CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "0")
        CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")
        with self.assertRaises(BusinessLogicException):
            CODLedger.record_settlement(self.partner.id, "-5")

    def test_oversettlement_then_exact_settlement(self):
        CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")

        with self.assertRaises(Oversettlement):
            CODLedger.record_settlement(self.partner.id, "600")
        self.assertEqual(CODLedger.outstanding_balance(self.partner.id), Decimal("500.00"))

        CODLedger.record_settlement(self.partner.id, "500")
        self.assertEqual(CODLedger.outstanding_balance(self.partner.id), Decimal("0.00"))

    def test_settlement_with_order_ids_must_match(self):
        CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")
        order2 = self._cod_order("ORD-2", "200")
        delivery2 = self._picked_up(order2)
        CODLedger.record_collection(order2.id, delivery2.id, self.partner.id, "200")

        with self.assertRaises(SettlementMismatch):
            CODLedger.record_settlement(self.partner.id, "300", order_ids=[order2.id])

        settlement = CODLedger.record_settlement(self.partner.id, "200", order_ids=[order2.id], reference="UPI-77")
        self.assertEqual(list(settlement.collections.values_list("order_id", flat=True)), [order2.id])

        with self.assertRaises(SettlementMismatch):
            CODLedger.record_settlement(self.partner.id, "200", order_ids=[order2.id])

        summary = CODLedger.summary(self.partner.id)
        self.assertEqual(summary.collected_not_submitted, Decimal("500.00"))
        self.assertEqual([p.order_id for p in summary.pending_collections], [self.order.id])

    def test_settlement_for_foreign_order_is_mismatch(self):
        CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")
        order2 = self._cod_order("ORD-4", "100")
        delivery2 = self._picked_up(order2, partner=self.other)
        CODLedger.record_collection(order2.id, delivery2.id, self.other.id, "100")

        with self.assertRaises(SettlementMismatch):
            CODLedger.record_settlement(self.other.id, "100", order_ids=[self.order.id])

    def test_balances_are_conserved(self):
        CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")
        order2 = self._cod_order("ORD-3", "150")
        delivery2 = self._picked_up(order2)
        CODLedger.record_collection(order2.id, delivery2.id, self.partner.id, "150")
        CODLedger.record_settlement(self.partner.id, "120")
        CODLedger.record_settlement(self.partner.id, "80", submitted_by=SettlementSource.PLATFORM)

        summary = CODLedger.summary(self.partner.id)
        self.assertEqual(summary.total_collected, Decimal("650.00"))
        self.assertEqual(summary.total_submitted, Decimal("200.00"))
        self.assertEqual(summary.collected_not_submitted, Decimal("450.00"))
        self.assertEqual(CODLedger.outstanding_balance(self.partner.id), summary.collected_not_submitted)

    def test_ledger_rows_are_immutable(self):
        collection = CODLedger.record_collection(self.order.id, self.delivery.id, self.partner.id, "500")
        collection.amount = Decimal("1.00")
        with self.assertRaises(ValueError):
            collection.save()
        with self.assertRaises(ValueError):
            collection.delete()

        settlement = CODLedger.record_settlement(self.partner.id, "500")
        with self.assertRaises(ValueError):
            settlement.delete()
        self.assertEqual(CODSettlement.objects.count(), 1)


class CODApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="rider1", password="test")
        self.partner = DeliveryPartner.objects.create(
            user=self.user, full_name="Ravi", phone="9100000000", is_approved=True
        )
        self.order = Order.objects.create(
            order_number="ORD-1", total_amount=Decimal("500.00"), payment_method=PaymentMethod.COD
        )
        self.delivery = DeliveryService.create_delivery(
            self.order.id, "Store", "Home", "40", partner_id=self.partner.id
        )
        DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "a")
        DeliveryService.request_transition(self.delivery.id, DeliveryStatus.PICKED_UP, "p")
        self.client.force_authenticate(self.user)

    def _collect(self):
        return self.client.post(reverse("cod-collect"), {
            "order_id": str(self.order.id),
            "delivery_id": str(self.delivery.id),
            "amount": "500.00",
        }, format="json")

    def test_collect_then_duplicate(self):
        self.assertEqual(self._collect().status_code, status.HTTP_201_CREATED)

        response = self._collect()
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "duplicate_collection")

    def test_submit_and_summary(self):
        self._collect()

        response = self.client.post(reverse("cod-submit"), {"amount": "600.00"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "oversettlement")

        response = self.client.post(reverse("cod-submit"), {"amount": "500.00"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.get(reverse("cod-summary"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["outstanding_balance"], "0.00")
        self.assertEqual(response.data["total_collected"], "500.00")
        self.assertEqual(response.data["pending_collections"], [])

    def test_platform_settlement_needs_staff(self):
        response = self.client.post(reverse("cod-platform-settlement"), {
            "partner_id": str(self.partner.id), "amount": "10.00",
        }, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
