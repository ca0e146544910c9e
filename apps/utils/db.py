import logging
from contextlib import contextmanager

from django.conf import settings
from django.db import DEFAULT_DB_ALIAS, OperationalError, connections, transaction

from apps.utils.exceptions import OperationTimeout

logger = logging.getLogger(__name__)

# lock_not_available, query_canceled
PG_TIMEOUT_CODES = {"55P03", "57014"}


def _is_timeout(exc: OperationalError) -> bool:
    cause = exc.__cause__
    code = getattr(cause, "pgcode", None) or getattr(cause, "sqlstate", None)
    if code in PG_TIMEOUT_CODES:
        return True
    # SQLite reports lock waits as a plain message
    return "database is locked" in str(exc).lower()


@contextmanager
def operation_timeout(timeout_ms=None, using=DEFAULT_DB_ALIAS):
    """
    Atomic block with an upper bound on lock waits and statement time.
    Lock/statement timeouts surface as OperationTimeout so callers can
    retry with the same idempotency key.
    """
    if timeout_ms is None:
        timeout_ms = getattr(settings, "DELIVERY_OPERATION_TIMEOUT_MS", 5000)

    try:
        with transaction.atomic(using=using):
            connection = connections[using]
            if connection.vendor == "postgresql":
                with connection.cursor() as cursor:
                    cursor.execute("SELECT set_config('lock_timeout', %s, true)", [f"{timeout_ms}ms"])
                    cursor.execute("SELECT set_config('statement_timeout', %s, true)", [f"{timeout_ms}ms"])
            yield
    except OperationalError as exc:
        if _is_timeout(exc):
            logger.warning("Operation exceeded %sms budget: %s", timeout_ms, exc)
            raise OperationTimeout() from exc
        raise
