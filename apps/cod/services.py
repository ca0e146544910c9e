import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Sum

from apps.delivery.models import Delivery, DeliveryStatus
from apps.earnings.cache import invalidate_partner
from apps.orders.services import OrderService
from apps.riders.services import PartnerService
from apps.utils.db import operation_timeout
from apps.utils.exceptions import BusinessLogicException, NotFound
from apps.utils.validators import validate_money
from . import ledger
from .exceptions import DuplicateCollection, InsufficientCollection, Oversettlement, SettlementMismatch
from .models import CODCollection, CODSettlement, SettlementSource

logger = logging.getLogger(__name__)

COLLECTABLE_STATUSES = (DeliveryStatus.PICKED_UP, DeliveryStatus.ON_THE_WAY)


class CODLedger:
    """
    Append-only record of cash collected at the door and cash remitted.
    Balances are folded from the events on every read.
    """

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def record_collection(order_id, delivery_id, partner_id, amount) -> CODCollection:
        """
        Partner confirms the customer paid in cash.
        Serialized per order through a row lock on the order.
        """
        amount = validate_money(amount)

        with operation_timeout():
            order = OrderService.lock_order(order_id)

            if CODCollection.objects.filter(order=order).exists():
                raise DuplicateCollection(order_id)

            if not order.is_cod:
                raise BusinessLogicException("This order is not a COD order.", code="not_cod")

            try:
                delivery = Delivery.objects.filter(id=delivery_id, order=order).first()
            except ValidationError:
                delivery = None
            if delivery is None:
                raise NotFound(f"Delivery {delivery_id} not found for order {order_id}.")

            if str(delivery.partner_id) != str(partner_id):
                raise BusinessLogicException("This order is not assigned to you.", code="not_assigned")

            if delivery.status not in COLLECTABLE_STATUSES:
                raise BusinessLogicException(
                    "Order must be picked up before marking COD as collected.",
                    code="not_picked_up",
                )

            if amount < order.total_amount:
                raise InsufficientCollection(order_id, amount, order.total_amount)

            try:
                with transaction.atomic():
                    collection = CODCollection.objects.create(
                        order=order,
                        delivery=delivery,
                        partner_id=delivery.partner_id,
                        amount=amount,
                    )
            except IntegrityError:
                raise DuplicateCollection(order_id)

            OrderService.mark_cod_collected(order, collected_at=collection.collected_at)
            transaction.on_commit(lambda: invalidate_partner(delivery.partner_id))

        logger.info(
            "COD collected: %s for order %s", amount, order_id,
            extra={"order_id": order_id, "partner_id": partner_id, "delivery_id": delivery_id},
        )
        return collection

    @staticmethod
    def record_settlement(partner_id, amount, order_ids=(), submitted_by=SettlementSource.PARTNER, reference="") -> CODSettlement:
        """
        Partner (or the platform on their behalf) remits collected cash.
        Serialized per partner: the balance check and the append happen
        under the same row lock.
        """
        amount = validate_money(amount)
        if submitted_by not in SettlementSource.values:
            raise BusinessLogicException(f"Invalid settlement source: {submitted_by}", code="invalid_source")
        order_ids = list(dict.fromkeys(str(o) for o in (order_ids or [])))

        with operation_timeout():
            partner = PartnerService.lock_partner(partner_id)

            collections = CODLedger._collection_entries(partner.id)
            settlements = CODLedger._settlement_entries(partner.id)

            balance = ledger.outstanding(collections, settlements)
            if amount > balance:
                raise Oversettlement(partner_id, amount, balance)

            covered = []
            if order_ids:
                settled = ledger.allocate(collections, settlements)
                by_order = {str(c.order_id): c for c in collections}
                for oid in order_ids:
                    entry = by_order.get(oid)
                    if entry is None:
                        raise SettlementMismatch(f"Order {oid} has no COD collected by this partner.")
                    if settled[entry.id] >= entry.amount:
                        raise SettlementMismatch(f"COD for order {oid} is already submitted.")
                    covered.append(entry)

                expected = sum((c.amount - settled[c.id] for c in covered), ledger.ZERO)
                if amount != expected:
                    raise SettlementMismatch(
                        f"Amount {amount} does not match the {expected} outstanding on the listed orders."
                    )

            settlement = CODSettlement.objects.create(
                partner=partner,
                amount=amount,
                submitted_by=submitted_by,
                reference=reference or "",
            )
            if covered:
                settlement.collections.add(*[c.id for c in covered])

            transaction.on_commit(lambda: invalidate_partner(partner.id))

        logger.info(
            "COD settlement of %s recorded (%s orders)", amount, len(covered),
            extra={"partner_id": partner_id},
        )
        return settlement

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def collected_amount(order_id) -> Decimal:
        total = CODCollection.objects.filter(order_id=order_id).aggregate(s=Sum("amount"))["s"]
        return (total or ledger.ZERO).quantize(ledger.ZERO)

    @staticmethod
    def outstanding_balance(partner_id) -> Decimal:
        collected = CODCollection.objects.filter(partner_id=partner_id).aggregate(s=Sum("amount"))["s"]
        submitted = CODSettlement.objects.filter(partner_id=partner_id).aggregate(s=Sum("amount"))["s"]
        return ((collected or ledger.ZERO) - (submitted or ledger.ZERO)).quantize(ledger.ZERO)

    @staticmethod
    def summary(partner_id, start=None, end=None) -> ledger.LedgerSummary:
        return ledger.summarize(
            CODLedger._collection_entries(partner_id),
            CODLedger._settlement_entries(partner_id),
            start=start,
            end=end,
        )

    @staticmethod
    def _collection_entries(partner_id):
        rows = CODCollection.objects.filter(partner_id=partner_id).select_related("order")
        return [
            ledger.CollectionEntry(
                id=c.id,
                order_id=c.order_id,
                amount=c.amount,
                collected_at=c.collected_at,
                order_number=c.order.order_number,
            )
            for c in rows
        ]

    @staticmethod
    def _settlement_entries(partner_id):
        rows = CODSettlement.objects.filter(partner_id=partner_id).prefetch_related("collections")
        return [
            ledger.SettlementEntry(
                id=s.id,
                amount=s.amount,
                submitted_at=s.submitted_at,
                collection_ids=tuple(c.id for c in s.collections.all()),
            )
            for s in rows
        ]
