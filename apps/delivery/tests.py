from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import OperationalError
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.cod.services import CODLedger
from apps.orders.models import Order, PaymentMethod, PaymentStatus
from apps.riders.models import DeliveryPartner
from apps.tracking.models import TrackingMode
from apps.tracking.services import LocationTracker
from apps.utils.exceptions import BusinessLogicException, OperationTimeout
from . import state_machine
from .exceptions import CollectionRequired, InvalidTransition
from .models import Delivery, DeliveryStatus, TransitionRequest
from .services import DeliveryService
from .signals import delivery_completed, delivery_rejected

User = get_user_model()


def _history(delivery):
    return list(delivery.status_history.order_by('sequence').values_list('status', flat=True))


class StateMachineTests(TestCase):
    def test_forward_path_is_legal(self):
        path = [
            DeliveryStatus.PENDING,
            DeliveryStatus.ACCEPTED,
            DeliveryStatus.PICKED_UP,
            DeliveryStatus.ON_THE_WAY,
            DeliveryStatus.DELIVERED,
        ]
        for current, target in zip(path, path[1:]):
            self.assertTrue(state_machine.is_legal(current, target))

    def test_no_backward_edges(self):
        self.assertFalse(state_machine.is_legal(DeliveryStatus.ACCEPTED, DeliveryStatus.PENDING))
        self.assertFalse(state_machine.is_legal(DeliveryStatus.ON_THE_WAY, DeliveryStatus.PICKED_UP))
        self.assertFalse(state_machine.is_legal(DeliveryStatus.PICKED_UP, DeliveryStatus.CANCELLED))

    def test_terminal_states_have_no_exits(self):
        for terminal in state_machine.TERMINAL_STATUSES:
            self.assertEqual(state_machine.allowed_targets(terminal), set())
            with self.assertRaises(InvalidTransition):
                state_machine.check_transition(terminal, DeliveryStatus.ACCEPTED)

    def test_reject_after_accept_needs_reason(self):
        with self.assertRaises(InvalidTransition):
            state_machine.check_transition(DeliveryStatus.ACCEPTED, DeliveryStatus.CANCELLED, reason="  ")
        state_machine.check_transition(DeliveryStatus.ACCEPTED, DeliveryStatus.CANCELLED, reason="Bike broke down")
        state_machine.check_transition(DeliveryStatus.PENDING, DeliveryStatus.CANCELLED)

    def test_unknown_target(self):
        with self.assertRaises(InvalidTransition):
            state_machine.check_transition(DeliveryStatus.PENDING, "TELEPORTED")


class DeliveryServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="rider1", password="test")
        self.partner = DeliveryPartner.objects.create(
            user=self.user, full_name="Ravi", phone="9100000000", is_approved=True
        )
        self.online_order = Order.objects.create(
            order_number="ORD-1",
            total_amount=Decimal("250.00"),
            payment_method=PaymentMethod.ONLINE,
        )
        self.cod_order = Order.objects.create(
            order_number="ORD-2",
            total_amount=Decimal("500.00"),
            payment_method=PaymentMethod.COD,
        )
        self.delivery = DeliveryService.create_delivery(
            self.online_order.id, "Store 12, MG Road", "Flat 4B, Indiranagar", "40.00",
            partner_id=self.partner.id,
        )

    def _advance(self, delivery, *statuses):
        for i, target in enumerate(statuses):
            DeliveryService.request_transition(delivery.id, target, f"{delivery.id}-{target}-{i}")

    def test_create_records_pending_history(self):
        self.assertEqual(self.delivery.status, DeliveryStatus.PENDING)
        self.assertEqual(self.delivery.delivery_fee, Decimal("40.00"))
        self.assertIsNotNone(self.delivery.assigned_at)
        self.assertEqual(_history(self.delivery), [DeliveryStatus.PENDING])

    def test_only_one_live_delivery_per_order(self):
        with self.assertRaises(BusinessLogicException) as ctx:
            DeliveryService.create_delivery(self.online_order.id, "A", "B", "10")
        self.assertEqual(ctx.exception.code, "delivery_exists")

    def test_order_can_get_new_delivery_after_cancellation(self):
        DeliveryService.reject_delivery(self.delivery.id, "k-reject")
        replacement = DeliveryService.create_delivery(self.online_order.id, "A", "B", "10")
        self.assertEqual(replacement.status, DeliveryStatus.PENDING)

    def test_blank_address_is_rejected(self):
        with self.assertRaises(BusinessLogicException):
            DeliveryService.create_delivery(self.cod_order.id, "   ", "B", "10")

    def test_accept_requires_assigned_partner(self):
        unassigned = DeliveryService.create_delivery(self.cod_order.id, "A", "B", "30")
        with self.assertRaises(InvalidTransition):
            DeliveryService.request_transition(unassigned.id, DeliveryStatus.ACCEPTED, "k1")

        DeliveryService.assign_partner(unassigned.id, self.partner.id)
        result = DeliveryService.request_transition(unassigned.id, DeliveryStatus.ACCEPTED, "k1")
        self.assertEqual(result.status, DeliveryStatus.ACCEPTED)

    def test_online_delivery_full_flow(self):
        completed = []

        def on_completed(sender, delivery_id, **kwargs):
            completed.append(delivery_id)

        delivery_completed.connect(on_completed)
        self.addCleanup(delivery_completed.disconnect, on_completed)

        with self.captureOnCommitCallbacks(execute=True):
            self._advance(
                self.delivery,
                DeliveryStatus.ACCEPTED,
                DeliveryStatus.PICKED_UP,
                DeliveryStatus.ON_THE_WAY,
                DeliveryStatus.DELIVERED,
            )

        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.status, DeliveryStatus.DELIVERED)
        self.assertIsNotNone(self.delivery.accepted_at)
        self.assertIsNotNone(self.delivery.picked_up_at)
        self.assertIsNotNone(self.delivery.departed_at)
        self.assertIsNotNone(self.delivery.delivered_at)
        self.assertEqual(_history(self.delivery), [
            DeliveryStatus.PENDING,
            DeliveryStatus.ACCEPTED,
            DeliveryStatus.PICKED_UP,
            DeliveryStatus.ON_THE_WAY,
            DeliveryStatus.DELIVERED,
        ])
        self.assertEqual(completed, [str(self.delivery.id)])

        self.online_order.refresh_from_db()
        self.assertIsNotNone(self.online_order.payment_confirmation_requested_at)

    def test_same_key_replays_without_new_history(self):
        first = DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "accept-1")
        second = DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "accept-1")

        self.assertFalse(first.replayed)
        self.assertTrue(second.replayed)
        self.assertEqual(second.status, DeliveryStatus.ACCEPTED)
        self.assertEqual(_history(self.delivery).count(DeliveryStatus.ACCEPTED), 1)
        self.assertEqual(TransitionRequest.objects.filter(delivery=self.delivery).count(), 1)

    def test_replay_after_later_transitions_returns_recorded_result(self):
        DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "accept-1")
        DeliveryService.request_transition(self.delivery.id, DeliveryStatus.PICKED_UP, "pickup-1")

        replay = DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "accept-1")
        self.assertTrue(replay.replayed)
        self.assertEqual(replay.status, DeliveryStatus.ACCEPTED)
        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.status, DeliveryStatus.PICKED_UP)

    def test_same_key_for_different_target_is_rejected(self):
        DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "k1")
        with self.assertRaises(InvalidTransition):
            DeliveryService.request_transition(self.delivery.id, DeliveryStatus.PICKED_UP, "k1")

    def test_two_keys_accepting_only_one_wins(self):
        DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "device-a")
        with self.assertRaises(InvalidTransition):
            DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "device-b")

        self.assertEqual(_history(self.delivery).count(DeliveryStatus.ACCEPTED), 1)

    def test_illegal_edge_leaves_state_unchanged(self):
        with self.assertRaises(InvalidTransition):
            DeliveryService.request_transition(self.delivery.id, DeliveryStatus.PICKED_UP, "k1")

        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.status, DeliveryStatus.PENDING)
        self.assertFalse(TransitionRequest.objects.filter(delivery=self.delivery).exists())

    def test_missing_idempotency_key(self):
        with self.assertRaises(BusinessLogicException) as ctx:
            DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "  ")
        self.assertEqual(ctx.exception.code, "idempotency_key_required")

    def test_overlong_idempotency_key(self):
        with self.assertRaises(BusinessLogicException) as ctx:
            DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "k" * 101)
        self.assertEqual(ctx.exception.code, "invalid_idempotency_key")

        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.status, DeliveryStatus.PENDING)

    def test_reject_accepted_delivery_requires_reason(self):
        DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "k1")

        with self.assertRaises(InvalidTransition):
            DeliveryService.reject_delivery(self.delivery.id, "k2")

        rejected = []

        def on_rejected(sender, delivery_id, reason, **kwargs):
            rejected.append((delivery_id, reason))

        delivery_rejected.connect(on_rejected)
        self.addCleanup(delivery_rejected.disconnect, on_rejected)

        with self.captureOnCommitCallbacks(execute=True):
            DeliveryService.reject_delivery(self.delivery.id, "k2", reason="Vehicle breakdown")

        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.status, DeliveryStatus.CANCELLED)
        self.assertEqual(self.delivery.cancellation_reason, "Vehicle breakdown")
        self.assertIsNotNone(self.delivery.cancelled_at)
        self.assertEqual(rejected, [(str(self.delivery.id), "Vehicle breakdown")])

    def test_terminal_delivery_cannot_move(self):
        DeliveryService.reject_delivery(self.delivery.id, "k1")
        with self.assertRaises(InvalidTransition):
            DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "k2")

    def test_cod_guard_blocks_until_cash_collected(self):
        delivery = DeliveryService.create_delivery(
            self.cod_order.id, "Store", "Home", "40.00", partner_id=self.partner.id
        )
        self._advance(delivery, DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP, DeliveryStatus.ON_THE_WAY)

        with self.assertRaises(CollectionRequired) as ctx:
            DeliveryService.request_transition(delivery.id, DeliveryStatus.DELIVERED, "complete-1")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.message, "Collect cash before completing this delivery.")

        delivery.refresh_from_db()
        self.assertEqual(delivery.status, DeliveryStatus.ON_THE_WAY)
        self.assertFalse(
            TransitionRequest.objects.filter(delivery=delivery, idempotency_key="complete-1").exists()
        )

        CODLedger.record_collection(self.cod_order.id, delivery.id, self.partner.id, "500.00")

        # Same key retried after collection re-evaluates the guard
        result = DeliveryService.request_transition(delivery.id, DeliveryStatus.DELIVERED, "complete-1")
        self.assertEqual(result.status, DeliveryStatus.DELIVERED)

    def test_cod_scenario_end_to_end(self):
        delivery = DeliveryService.create_delivery(
            self.cod_order.id, "Store", "Home", "40.00", partner_id=self.partner.id
        )
        with self.captureOnCommitCallbacks(execute=True):
            self._advance(delivery, DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP, DeliveryStatus.ON_THE_WAY)
            CODLedger.record_collection(self.cod_order.id, delivery.id, self.partner.id, "500")
            DeliveryService.request_transition(delivery.id, DeliveryStatus.DELIVERED, "done")

        delivery.refresh_from_db()
        self.cod_order.refresh_from_db()
        self.assertEqual(delivery.status, DeliveryStatus.DELIVERED)
        self.assertEqual(self.cod_order.payment_status, PaymentStatus.COMPLETED)
        # COD orders are already paid; no online confirmation is requested
        self.assertIsNone(self.cod_order.payment_confirmation_requested_at)
        self.assertEqual(CODLedger.outstanding_balance(self.partner.id), Decimal("500.00"))

    def test_navigation_hint_follows_delivery(self):
        LocationTracker.start(self.partner.id, "granted")

        with self.captureOnCommitCallbacks(execute=True):
            self._advance(self.delivery, DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP, DeliveryStatus.ON_THE_WAY)
        self.partner.tracking_session.refresh_from_db()
        self.assertEqual(self.partner.tracking_session.mode, TrackingMode.NAVIGATION)

        with self.captureOnCommitCallbacks(execute=True):
            DeliveryService.request_transition(self.delivery.id, DeliveryStatus.DELIVERED, "done")
        self.partner.tracking_session.refresh_from_db()
        self.assertEqual(self.partner.tracking_session.mode, TrackingMode.STANDARD)

    def test_side_effect_failure_does_not_fail_transition(self):
        self._advance(self.delivery, DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP)

        with mock.patch.object(LocationTracker, "set_navigation", side_effect=RuntimeError("boom")):
            with self.captureOnCommitCallbacks(execute=True):
                result = DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ON_THE_WAY, "depart")

        self.assertEqual(result.status, DeliveryStatus.ON_THE_WAY)
        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.status, DeliveryStatus.ON_THE_WAY)

    def test_lock_timeout_surfaces_as_retryable(self):
        with mock.patch.object(DeliveryService, "_lock", side_effect=OperationalError("database is locked")):
            with self.assertRaises(OperationTimeout) as ctx:
                DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "k1")
        self.assertTrue(ctx.exception.retryable)

        result = DeliveryService.request_transition(self.delivery.id, DeliveryStatus.ACCEPTED, "k1")
        self.assertEqual(result.status, DeliveryStatus.ACCEPTED)

    def test_rate_delivery(self):
        with self.assertRaises(BusinessLogicException):
            DeliveryService.rate_delivery(self.delivery.id, 5)

        self._advance(
            self.delivery,
            DeliveryStatus.ACCEPTED,
            DeliveryStatus.PICKED_UP,
            DeliveryStatus.ON_THE_WAY,
            DeliveryStatus.DELIVERED,
        )
        with self.assertRaises(BusinessLogicException):
            DeliveryService.rate_delivery(self.delivery.id, 6)

        rated = DeliveryService.rate_delivery(self.delivery.id, 4, "Quick and polite")
        self.assertEqual(rated.rating, 4)
        with self.assertRaises(BusinessLogicException):
            DeliveryService.rate_delivery(self.delivery.id, 5)


class DeliveryApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="rider1", password="test")
        self.partner = DeliveryPartner.objects.create(
            user=self.user, full_name="Ravi", phone="9100000000", is_approved=True
        )
        self.order = Order.objects.create(
            order_number="ORD-API-1",
            total_amount=Decimal("500.00"),
            payment_method=PaymentMethod.COD,
        )
        self.delivery = DeliveryService.create_delivery(
            self.order.id, "Store", "Home", "40.00", partner_id=self.partner.id
        )
        self.client.force_authenticate(self.user)

    def _post(self, action, key=None, data=None):
        url = reverse(f"delivery-jobs-{action}", args=[self.delivery.id])
        headers = {"HTTP_IDEMPOTENCY_KEY": key} if key else {}
        return self.client.post(url, data or {}, format="json", **headers)

    def test_list_shows_own_deliveries(self):
        other_user = User.objects.create_user(username="rider2", password="test")
        DeliveryPartner.objects.create(user=other_user, full_name="Other", phone="9100000001", is_approved=True)

        response = self.client.get(reverse("delivery-jobs-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data["results"]), 1)

        self.client.force_authenticate(other_user)
        response = self.client.get(reverse("delivery-jobs-list"))
        self.assertEqual(len(response.data["results"]), 0)

    def test_accept_requires_idempotency_key(self):
        response = self._post("accept")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "idempotency_key_required")

    def test_overlong_header_key_is_bad_request(self):
        response = self._post("accept", key="k" * 101)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_idempotency_key")

    def test_accept_and_replay(self):
        first = self._post("accept", key="abc")
        second = self._post("accept", key="abc")

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(first.data["status"], DeliveryStatus.ACCEPTED)
        self.assertFalse(first.data["replayed"])
        self.assertTrue(second.data["replayed"])

    def test_invalid_transition_is_conflict(self):
        response = self._post("complete", key="k1")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "invalid_transition")
        self.assertFalse(response.data["retryable"])

    def test_collection_required_is_retryable_conflict(self):
        self._post("accept", key="k1")
        self._post("pickup", key="k2")
        self._post("depart", key="k3")

        response = self._post("complete", key="k4")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "collection_required")
        self.assertTrue(response.data["retryable"])
        self.assertEqual(response.data["error"], "Collect cash before completing this delivery.")

    def test_history_action(self):
        self._post("accept", key="k1")
        response = self.client.get(reverse("delivery-jobs-history", args=[self.delivery.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([e["status"] for e in response.data], [DeliveryStatus.PENDING, DeliveryStatus.ACCEPTED])

    def test_unapproved_partner_is_forbidden(self):
        self.partner.is_approved = False
        self.partner.save()
        response = self.client.get(reverse("delivery-jobs-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_staff_creates_delivery(self):
        staff = User.objects.create_user(username="ops", password="test", is_staff=True)
        order = Order.objects.create(
            order_number="ORD-API-2", total_amount=Decimal("120.00"), payment_method=PaymentMethod.ONLINE
        )
        self.client.force_authenticate(staff)

        response = self.client.post(reverse("delivery-create"), {
            "order_id": str(order.id),
            "pickup_address": "Store",
            "delivery_address": "Home",
            "delivery_fee": "25.00",
        }, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], DeliveryStatus.PENDING)
        self.assertTrue(Delivery.objects.filter(order=order).exists())
