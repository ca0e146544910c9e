import json
import logging
import sys
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.core.cache import cache
from django.db import OperationalError
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.exceptions import ValidationError

from .dates import parse_range
from .db import operation_timeout
from .exceptions import BusinessLogicException, NotFound, OperationTimeout, custom_exception_handler
from .logging import JSONFormatter, mask_key
from .resilience import CircuitBreaker, ServiceUnavailable
from .validators import validate_heading, validate_lat_lng, validate_money


class ValidatorTests(SimpleTestCase):
    def test_lat_lng_validator(self):
        validate_lat_lng(12.9716, 77.5946)

        with self.assertRaises(ValueError):
            validate_lat_lng(91.0, 77.5946)
        with self.assertRaises(ValueError):
            validate_lat_lng(12.9716, 181.0)

    def test_heading(self):
        self.assertIsNone(validate_heading(None))
        self.assertEqual(validate_heading(360), 0)
        with self.assertRaises(ValueError):
            validate_heading(-1)

    def test_money(self):
        self.assertEqual(validate_money("499.999"), Decimal("500.00"))
        self.assertEqual(validate_money(20), Decimal("20.00"))
        for bad in ("0", "-5", "abc", None, "NaN"):
            with self.assertRaises(BusinessLogicException):
                validate_money(bad)


class ParseRangeTests(SimpleTestCase):
    def test_empty(self):
        self.assertEqual(parse_range({}), (None, None))

    def test_date_only_end_covers_whole_day(self):
        start, end = parse_range({"start": "2026-03-01", "end": "2026-03-01"})
        self.assertEqual(end - start, timedelta(days=1) - timedelta(microseconds=1))

    def test_datetime_values(self):
        start, end = parse_range({"start": "2026-03-01T10:00:00+00:00", "end": "2026-03-01T12:00:00+00:00"})
        self.assertEqual(end - start, timedelta(hours=2))

    def test_default_days(self):
        start, end = parse_range({"end": "2026-03-10T00:00:00+00:00"}, default_days=7)
        self.assertEqual(end - start, timedelta(days=7))

    def test_invalid(self):
        for params in ({"start": "yesterday"}, {"start": "2026-03-05", "end": "2026-03-01"}):
            with self.assertRaises(BusinessLogicException) as ctx:
                parse_range(params)
            self.assertEqual(ctx.exception.code, "invalid_date")


class CircuitBreakerTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.breaker = CircuitBreaker("test_service", failure_threshold=2, recovery_timeout=60)
        self.calls = 0

    def _flaky(self):
        self.calls += 1
        raise ConnectionError("down")

    def test_opens_after_threshold(self):
        wrapped = self.breaker(self._flaky)
        for _ in range(2):
            with self.assertRaises(ConnectionError):
                wrapped()

        self.assertTrue(self.breaker.is_open())
        with self.assertRaises(ServiceUnavailable):
            wrapped()
        self.assertEqual(self.calls, 2)

    def test_reset_closes(self):
        self.breaker.record_failure()
        self.breaker.record_failure()
        self.breaker.reset()
        self.assertFalse(self.breaker.is_open())

    def test_success_passes_through(self):
        self.assertEqual(self.breaker(lambda: "ok")(), "ok")


class ExceptionHandlerTests(SimpleTestCase):
    def test_business_error_shape(self):
        response = custom_exception_handler(BusinessLogicException("Nope", code="nope"), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data, {"error": "Nope", "code": "nope", "retryable": False})

    def test_typed_statuses(self):
        self.assertEqual(custom_exception_handler(NotFound(), {}).status_code, status.HTTP_404_NOT_FOUND)

        response = custom_exception_handler(OperationTimeout(), {})
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertTrue(response.data["retryable"])

    def test_drf_errors_pass_through(self):
        response = custom_exception_handler(ValidationError({"lat": ["required"]}), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data, {"lat": ["required"]})

    def test_unhandled_is_500(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {})
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data["code"], "server_error")


class OperationTimeoutTests(TestCase):
    def test_lock_wait_becomes_operation_timeout(self):
        with self.assertRaises(OperationTimeout):
            with operation_timeout():
                raise OperationalError("database is locked")

    def test_other_errors_propagate(self):
        with self.assertRaises(OperationalError):
            with operation_timeout():
                raise OperationalError("no such table: nowhere")


class JSONFormatterTests(SimpleTestCase):
    def _record(self, msg, args=None, **extra):
        record = logging.LogRecord("apps.delivery", logging.INFO, __file__, 10, msg, args, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_context_fields_are_included(self):
        payload = json.loads(JSONFormatter().format(self._record("moved", delivery_id="d-1", partner_id="p-1")))

        self.assertEqual(payload["msg"], "moved")
        self.assertEqual(payload["lvl"], "INFO")
        self.assertEqual(payload["delivery_id"], "d-1")
        self.assertEqual(payload["partner_id"], "p-1")

    def test_sensitive_keys_are_redacted(self):
        record = self._record({"phone": "9100000000", "nested": {"token": "abc", "status": "ok"}})
        payload = json.loads(JSONFormatter().format(record))

        self.assertNotIn("9100000000", payload["msg"])
        self.assertNotIn("abc", payload["msg"])
        self.assertIn("ok", payload["msg"])

    def test_idempotency_key_is_masked(self):
        record = self._record("replayed", idempotency_key="client-retry-0042")
        payload = json.loads(JSONFormatter().format(record))

        self.assertEqual(payload["idempotency_key"], "*************0042")
        self.assertEqual(mask_key("abc"), "***")

    def test_domain_error_code_is_surfaced(self):
        try:
            raise OperationTimeout()
        except OperationTimeout:
            record = logging.LogRecord("apps.delivery", logging.ERROR, __file__, 10, "failed", None, sys.exc_info())
        payload = json.loads(JSONFormatter().format(record))

        self.assertEqual(payload["error_code"], "timeout")
        self.assertTrue(payload["retryable"])
        self.assertIn("OperationTimeout", payload["exc"])


class HealthCheckTests(TestCase):
    def test_healthy(self):
        response = self.client.get(reverse("health-check"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["components"], {"db": "ok", "cache": "ok"})

    def test_cache_failure_is_503(self):
        with mock.patch("apps.utils.health.cache.get", return_value=None):
            response = self.client.get(reverse("health-check"))
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["components"]["db"], "ok")
