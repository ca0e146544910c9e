import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.cache import cache
from django.db.models import Avg, Q, Sum
from django.utils import timezone

from apps.cod.ledger import LedgerSummary
from apps.cod.services import CODLedger
from apps.delivery.models import Delivery, DeliveryStatus
from apps.delivery.state_machine import TERMINAL_STATUSES
from apps.orders.models import PaymentMethod
from apps.riders.services import PartnerService
from . import cache as earnings_cache

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class EarningsSummary:
    partner_id: str
    start: object
    end: object
    total_earnings: Decimal = ZERO
    online_payment_earnings: Decimal = ZERO
    completed: int = 0
    pending: int = 0
    cancelled: int = 0
    total_deliveries: int = 0
    average_rating: float = 0.0
    cod_outstanding: Decimal = ZERO
    cod_submitted: Decimal = ZERO
    cod: LedgerSummary = field(default_factory=LedgerSummary)


def default_range(now=None):
    # Rounded up to the minute so repeated default requests share a cache key
    now = now or timezone.now()
    end = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    days = getattr(settings, "EARNINGS_DEFAULT_RANGE_DAYS", 365)
    return end - timedelta(days=days), end


class EarningsAggregator:
    """
    Read-only projection over deliveries and the COD ledger.
    The cache only saves work; a miss always recomputes from the rows.
    """

    @staticmethod
    def get_summary(partner_id, start=None, end=None, use_cache=True) -> EarningsSummary:
        partner = PartnerService.get_partner(partner_id)
        if start is None or end is None:
            default_start, default_end = default_range()
            start = start or default_start
            end = end or default_end

        key = earnings_cache.summary_key(partner.id, start, end)
        if use_cache:
            cached = cache.get(key)
            if cached is not None:
                return cached

        summary = EarningsAggregator.compute(partner.id, start, end)
        cache.set(key, summary, timeout=earnings_cache.cache_ttl())
        return summary

    @staticmethod
    def compute(partner_id, start, end) -> EarningsSummary:
        deliveries = Delivery.objects.filter(partner_id=partner_id)

        delivered = deliveries.filter(
            status=DeliveryStatus.DELIVERED,
            delivered_at__gte=start,
            delivered_at__lte=end,
        )
        cancelled = deliveries.filter(
            status=DeliveryStatus.CANCELLED,
            cancelled_at__gte=start,
            cancelled_at__lte=end,
        )
        pending = deliveries.filter(
            created_at__gte=start,
            created_at__lte=end,
        ).exclude(status__in=TERMINAL_STATUSES)

        totals = delivered.aggregate(
            total=Sum("delivery_fee"),
            online=Sum("delivery_fee", filter=Q(order__payment_method=PaymentMethod.ONLINE)),
            rating=Avg("rating"),
        )

        completed_count = delivered.count()
        cancelled_count = cancelled.count()
        pending_count = pending.count()

        ledger = CODLedger.summary(partner_id, start, end)

        return EarningsSummary(
            partner_id=str(partner_id),
            start=start,
            end=end,
            total_earnings=(totals["total"] or ZERO).quantize(ZERO),
            online_payment_earnings=(totals["online"] or ZERO).quantize(ZERO),
            completed=completed_count,
            pending=pending_count,
            cancelled=cancelled_count,
            total_deliveries=completed_count + cancelled_count + pending_count,
            average_rating=round(float(totals["rating"] or 0), 2),
            cod_outstanding=CODLedger.outstanding_balance(partner_id),
            cod_submitted=ledger.total_submitted,
            cod=ledger,
        )

    @staticmethod
    def refresh(partner_id) -> EarningsSummary:
        """
        Recompute the default-range summary and warm the cache.
        """
        start, end = default_range()
        logger.info("Refreshing earnings for %s", partner_id, extra={"partner_id": partner_id})
        return EarningsAggregator.get_summary(partner_id, start, end, use_cache=False)
