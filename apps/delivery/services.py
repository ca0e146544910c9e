import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from apps.cod.services import CODLedger
from apps.earnings.cache import invalidate_partner
from apps.orders.services import OrderService
from apps.riders.services import PartnerService
from apps.utils.db import operation_timeout
from apps.utils.exceptions import BusinessLogicException, NotFound
from . import state_machine
from .exceptions import CollectionRequired, InvalidTransition
from .models import Delivery, DeliveryStatus, DeliveryStatusEvent, TransitionRequest
from .signals import delivery_completed, delivery_rejected

logger = logging.getLogger(__name__)

IDEMPOTENCY_KEY_MAX_LENGTH = TransitionRequest._meta.get_field("idempotency_key").max_length


@dataclass(frozen=True)
class TransitionResult:
    delivery_id: str
    status: str
    replayed: bool = False


def _best_effort(label, func, *args, **kwargs):
    """
    Run a side effect whose failure must not fail the primary operation.
    """
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("Side effect '%s' failed", label)


class DeliveryService:
    """
    Sole writer of Delivery rows. Every status change goes through
    request_transition so the graph, the COD guard and idempotency are
    enforced in one place.
    """

    @staticmethod
    def get_delivery(delivery_id) -> Delivery:
        try:
            return Delivery.objects.select_related('order', 'partner').get(id=delivery_id)
        except (Delivery.DoesNotExist, ValidationError):
            raise NotFound(f"Delivery {delivery_id} not found.")

    @staticmethod
    def _lock(delivery_id) -> Delivery:
        try:
            return Delivery.objects.select_for_update().get(id=delivery_id)
        except (Delivery.DoesNotExist, ValidationError):
            raise NotFound(f"Delivery {delivery_id} not found.")

    @staticmethod
    def create_delivery(order_id, pickup_address, delivery_address, delivery_fee,
                        partner_id=None, estimated_delivery_time=None) -> Delivery:
        """
        Called by dispatch when an order is ready for pickup.
        Addresses and fee are frozen on the delivery row.
        """
        pickup_address = (pickup_address or "").strip()
        delivery_address = (delivery_address or "").strip()
        if not pickup_address or not delivery_address:
            raise BusinessLogicException("Pickup and delivery addresses are required.", code="invalid_address")

        try:
            delivery_fee = Decimal(str(delivery_fee)).quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError, TypeError):
            raise BusinessLogicException("Invalid delivery fee.", code="invalid_fee")
        if not delivery_fee.is_finite() or delivery_fee < 0:
            raise BusinessLogicException("Delivery fee must be non-negative.", code="invalid_fee")

        with operation_timeout():
            order = OrderService.lock_order(order_id)

            live = Delivery.objects.filter(order=order).exclude(status=DeliveryStatus.CANCELLED)
            if live.exists():
                raise BusinessLogicException("Delivery already exists for this order.", code="delivery_exists")

            partner = PartnerService.get_partner(partner_id) if partner_id else None
            now = timezone.now()

            delivery = Delivery.objects.create(
                order=order,
                partner=partner,
                pickup_address=pickup_address,
                delivery_address=delivery_address,
                delivery_fee=delivery_fee,
                estimated_delivery_time=estimated_delivery_time,
                assigned_at=now if partner else None,
            )
            DeliveryStatusEvent.objects.create(
                delivery=delivery,
                sequence=1,
                status=DeliveryStatus.PENDING,
                note=state_machine.HISTORY_NOTES[DeliveryStatus.PENDING],
            )
            if partner:
                transaction.on_commit(lambda: invalidate_partner(partner.id))

        logger.info("Delivery created: %s", delivery.id, extra={"delivery_id": delivery.id, "order_id": order.id})
        return delivery

    @staticmethod
    def assign_partner(delivery_id, partner_id) -> Delivery:
        with operation_timeout():
            delivery = DeliveryService._lock(delivery_id)

            if delivery.status != DeliveryStatus.PENDING:
                raise InvalidTransition(
                    "Delivery is no longer pending assignment.", delivery.status, DeliveryStatus.PENDING
                )
            if delivery.partner_id is not None:
                raise BusinessLogicException("Delivery already has a partner.", code="already_assigned")

            partner = PartnerService.get_partner(partner_id)
            delivery.partner = partner
            delivery.assigned_at = timezone.now()
            delivery.save(update_fields=['partner', 'assigned_at', 'updated_at'])
            transaction.on_commit(lambda: invalidate_partner(partner.id))

        logger.info("Partner %s assigned to delivery %s", partner.id, delivery.id)
        return delivery

    @staticmethod
    def request_transition(delivery_id, target_status, idempotency_key, reason="") -> TransitionResult:
        """
        Move a delivery along the status graph.

        Replaying a (delivery, idempotency_key) pair that already succeeded
        returns the recorded result and changes nothing. Guard failures are
        not recorded, so a retry with the same key re-evaluates the guard.
        """
        idempotency_key = (idempotency_key or "").strip()
        if not idempotency_key:
            raise BusinessLogicException("An idempotency key is required.", code="idempotency_key_required")
        if len(idempotency_key) > IDEMPOTENCY_KEY_MAX_LENGTH:
            raise BusinessLogicException(
                f"Idempotency key must be at most {IDEMPOTENCY_KEY_MAX_LENGTH} characters.",
                code="invalid_idempotency_key",
            )

        log_extra = {"delivery_id": delivery_id, "idempotency_key": idempotency_key}

        try:
            with operation_timeout():
                delivery = DeliveryService._lock(delivery_id)

                previous = TransitionRequest.objects.filter(
                    delivery=delivery, idempotency_key=idempotency_key
                ).first()
                if previous is not None:
                    if previous.target_status != target_status:
                        raise InvalidTransition(
                            "Idempotency key was already used for a different transition.",
                            delivery.status,
                            target_status,
                        )
                    logger.info("Replayed transition to %s", previous.resulting_status, extra=log_extra)
                    return TransitionResult(str(delivery.id), previous.resulting_status, replayed=True)

                state_machine.check_transition(delivery.status, target_status, reason)

                if target_status == DeliveryStatus.ACCEPTED and delivery.partner_id is None:
                    raise InvalidTransition(
                        "Delivery has no assigned partner to accept it.", delivery.status, target_status
                    )

                if target_status == DeliveryStatus.DELIVERED:
                    DeliveryService._check_collection_guard(delivery)

                previous_status = delivery.status
                DeliveryService._apply(delivery, target_status, reason)
                TransitionRequest.objects.create(
                    delivery=delivery,
                    idempotency_key=idempotency_key,
                    target_status=target_status,
                    resulting_status=delivery.status,
                )

                transaction.on_commit(
                    lambda: DeliveryService._after_transition(delivery, previous_status)
                )
        except InvalidTransition as exc:
            logger.warning("Rejected transition: %s", exc.message, extra=log_extra)
            raise
        except CollectionRequired:
            logger.info("Completion blocked until COD is collected", extra=log_extra)
            raise

        logger.info("Delivery moved %s -> %s", previous_status, delivery.status, extra=log_extra)
        return TransitionResult(str(delivery.id), delivery.status)

    @staticmethod
    def reject_delivery(delivery_id, idempotency_key, reason="") -> TransitionResult:
        """
        Partner declines the job. Picking a replacement partner is the
        dispatch collaborator's job (see delivery_rejected).
        """
        return DeliveryService.request_transition(
            delivery_id, DeliveryStatus.CANCELLED, idempotency_key, reason=reason
        )

    @staticmethod
    def rate_delivery(delivery_id, rating, review="") -> Delivery:
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            raise BusinessLogicException("Rating must be a number between 1 and 5.", code="invalid_rating")
        if not 1 <= rating <= 5:
            raise BusinessLogicException("Rating must be between 1 and 5.", code="invalid_rating")

        with operation_timeout():
            delivery = DeliveryService._lock(delivery_id)
            if delivery.status != DeliveryStatus.DELIVERED:
                raise BusinessLogicException("Only delivered orders can be rated.", code="not_delivered")
            if delivery.rating is not None:
                raise BusinessLogicException("Delivery is already rated.", code="already_rated")

            delivery.rating = rating
            delivery.review = (review or "").strip()[:500]
            delivery.save(update_fields=['rating', 'review', 'updated_at'])
        return delivery

    @staticmethod
    def status_history(delivery_id):
        delivery = DeliveryService.get_delivery(delivery_id)
        return list(delivery.status_history.order_by('sequence'))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_collection_guard(delivery: Delivery):
        payment = OrderService.get_payment_snapshot(delivery.order_id)
        if not payment.is_cod:
            return

        collected = CODLedger.collected_amount(delivery.order_id)
        if collected < payment.total_amount:
            raise CollectionRequired(delivery.order_id, payment.total_amount, collected)

    @staticmethod
    def _apply(delivery: Delivery, target_status, reason=""):
        now = timezone.now()
        delivery.status = target_status
        update_fields = ['status', 'updated_at']

        stamp = state_machine.TIMESTAMP_FIELDS.get(target_status)
        if stamp:
            setattr(delivery, stamp, now)
            update_fields.append(stamp)

        note = state_machine.HISTORY_NOTES[target_status]
        if target_status == DeliveryStatus.CANCELLED:
            delivery.cancellation_reason = (reason or "").strip() or "Rejected by delivery partner"
            update_fields.append('cancellation_reason')
            note = f"{note}: {delivery.cancellation_reason}"

        delivery.save(update_fields=update_fields)

        # Row lock held, so the next sequence number cannot race
        sequence = delivery.status_history.count() + 1
        DeliveryStatusEvent.objects.create(
            delivery=delivery,
            sequence=sequence,
            status=target_status,
            note=note,
        )

    @staticmethod
    def _after_transition(delivery: Delivery, previous_status):
        """
        Post-commit side effects. All best-effort.
        """
        # Imported here: tracking and earnings are leaves that must not import delivery at load time
        from apps.tracking.services import LocationTracker
        from apps.earnings.tasks import refresh_partner_summary

        partner_id = delivery.partner_id
        _best_effort("invalidate_earnings", invalidate_partner, partner_id)

        if delivery.status == DeliveryStatus.ON_THE_WAY and partner_id:
            _best_effort("navigation_on", LocationTracker.set_navigation, partner_id, True)

        elif delivery.status == DeliveryStatus.DELIVERED:
            if partner_id:
                _best_effort("navigation_off", LocationTracker.set_navigation, partner_id, False)
                _best_effort("refresh_earnings", refresh_partner_summary.delay, str(partner_id))
            _best_effort("payment_confirmation", OrderService.request_payment_confirmation, delivery.order_id)
            _best_effort(
                "delivery_completed_signal",
                delivery_completed.send,
                sender=Delivery,
                delivery_id=str(delivery.id),
                order_id=str(delivery.order_id),
                partner_id=str(partner_id) if partner_id else None,
            )

        elif delivery.status == DeliveryStatus.CANCELLED:
            if previous_status != DeliveryStatus.PENDING and partner_id:
                _best_effort("navigation_off", LocationTracker.set_navigation, partner_id, False)
            _best_effort(
                "delivery_rejected_signal",
                delivery_rejected.send,
                sender=Delivery,
                delivery_id=str(delivery.id),
                order_id=str(delivery.order_id),
                partner_id=str(partner_id) if partner_id else None,
                reason=delivery.cancellation_reason,
            )
