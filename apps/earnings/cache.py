"""
Per-partner cache versioning for the earnings projection.

Every Delivery or ledger mutation bumps the partner's version, which
orphans all cached summaries for that partner. The cache is never read
as a source of truth.
"""
import time
from django.conf import settings
from django.core.cache import cache


def _version_key(partner_id):
    return f"earnings_ver:{partner_id}"


def get_version(partner_id) -> int:
    return cache.get_or_set(_version_key(partner_id), time.time_ns, timeout=None)


def summary_key(partner_id, start, end) -> str:
    return f"earnings:{partner_id}:v{get_version(partner_id)}:{start.isoformat()}:{end.isoformat()}"


def invalidate_partner(partner_id):
    if partner_id is None:
        return
    key = _version_key(partner_id)
    try:
        cache.incr(key)
    except ValueError:
        # Version missing (evicted or never read): a fresh clock value orphans old keys
        cache.set(key, time.time_ns(), timeout=None)


def cache_ttl() -> int:
    return getattr(settings, "EARNINGS_CACHE_TTL", 300)
