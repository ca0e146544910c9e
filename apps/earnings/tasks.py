import logging
from celery import shared_task

from apps.utils.exceptions import NotFound
from .services import EarningsAggregator

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=10)
def refresh_partner_summary(self, partner_id: str):
    """
    Recompute a partner's earnings after a delivery completes.
    Fire-and-forget: the summary is recomputed on demand anyway.
    """
    try:
        summary = EarningsAggregator.refresh(partner_id)
    except NotFound:
        logger.error(f"Partner {partner_id} not found for earnings refresh.")
        return None
    except Exception as e:
        logger.exception(f"Earnings refresh failed for {partner_id}: {e}")
        raise self.retry(exc=e)

    return {"partner_id": partner_id, "total_earnings": str(summary.total_earnings)}
