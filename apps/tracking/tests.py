from datetime import timedelta
from unittest import mock

import requests
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.riders.models import DeliveryPartner
from apps.utils.exceptions import BusinessLogicException
from .exceptions import LocationPermissionDenied, NotTracking
from .geo import haversine_meters, travel_seconds
from .models import PartnerLocation, SessionState, TrackingMode
from .routing_service import RouteSource, RoutingClient, directions_breaker
from .services import LocationTracker, ReportOutcome

User = get_user_model()

# ~111m north of the base point
BASE = (12.9716, 77.5946)
NORTH = (12.9726, 77.5946)


class GeoTests(SimpleTestCase):
    def test_haversine_one_degree_latitude(self):
        self.assertAlmostEqual(haversine_meters(0, 0, 1, 0), 111195, delta=50)

    def test_zero_distance(self):
        self.assertEqual(haversine_meters(*BASE, *BASE), 0)

    def test_travel_seconds(self):
        # 20 km/h covers 1 km in 3 minutes
        self.assertEqual(travel_seconds(1000, 20), 180)


@override_settings(
    TRACKING_SAMPLE_INTERVAL_SECONDS=15,
    TRACKING_NAVIGATION_INTERVAL_SECONDS=5,
    TRACKING_MIN_DISTANCE_METERS=20,
    TRACKING_AVERAGE_SPEED_KMPH=20,
    GOOGLE_MAPS_API_KEY="",
)
class LocationTrackerTests(TestCase):
    def setUp(self):
        self.partner = DeliveryPartner.objects.create(full_name="Ravi", phone="9100000000", is_approved=True)
        self.t0 = timezone.now() - timedelta(minutes=5)
        directions_breaker.reset()

    def _start(self):
        return LocationTracker.start(self.partner.id, "granted")

    def test_start_requires_permission(self):
        with self.assertRaises(LocationPermissionDenied):
            LocationTracker.start(self.partner.id, "denied")
        with self.assertRaises(LocationPermissionDenied):
            LocationTracker.start(self.partner.id, None)

        session = self._start()
        self.assertEqual(session.state, SessionState.ACTIVE)
        self.assertEqual(session.mode, TrackingMode.STANDARD)

    def test_report_without_session_is_not_tracking(self):
        with self.assertRaises(NotTracking):
            LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0)

    def test_first_sample_is_accepted(self):
        self._start()
        result = LocationTracker.report(self.partner.id, *BASE, heading=90, sampled_at=self.t0, accuracy=8)

        self.assertTrue(result.accepted)
        location = LocationTracker.sample(self.partner.id)
        self.assertEqual((location.lat, location.lng), BASE)
        self.assertEqual(location.heading, 90)
        self.assertEqual(location.sampled_at, self.t0)

    def test_older_sample_is_dropped(self):
        self._start()
        LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0)

        result = LocationTracker.report(self.partner.id, *NORTH, sampled_at=self.t0 - timedelta(seconds=30))

        self.assertEqual(result.outcome, ReportOutcome.STALE)
        location = LocationTracker.sample(self.partner.id)
        self.assertEqual((location.lat, location.lng), BASE)

    def test_close_and_recent_sample_is_throttled(self):
        self._start()
        LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0)

        nearby = LocationTracker.report(self.partner.id, BASE[0] + 0.00001, BASE[1], sampled_at=self.t0 + timedelta(seconds=3))
        self.assertEqual(nearby.outcome, ReportOutcome.THROTTLED)

        moved = LocationTracker.report(self.partner.id, *NORTH, sampled_at=self.t0 + timedelta(seconds=4))
        self.assertTrue(moved.accepted)

        later = LocationTracker.report(self.partner.id, *NORTH, sampled_at=self.t0 + timedelta(seconds=30))
        self.assertTrue(later.accepted)

    def test_navigation_mode_shortens_interval(self):
        self._start()
        LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0)

        standard = LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0 + timedelta(seconds=6))
        self.assertEqual(standard.outcome, ReportOutcome.THROTTLED)

        self.assertTrue(LocationTracker.set_navigation(self.partner.id, True))
        navigating = LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0 + timedelta(seconds=7))
        self.assertTrue(navigating.accepted)

    def test_invalid_coordinates(self):
        self._start()
        with self.assertRaises(BusinessLogicException):
            LocationTracker.report(self.partner.id, 91, 0, sampled_at=self.t0)

    def test_stop_is_idempotent(self):
        self._start()
        self.assertTrue(LocationTracker.stop(self.partner.id))
        self.assertFalse(LocationTracker.stop(self.partner.id))

        with self.assertRaises(NotTracking):
            LocationTracker.sample(self.partner.id)

    def test_latest_location_survives_stop(self):
        self._start()
        LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0)
        LocationTracker.stop(self.partner.id)

        location = LocationTracker.get_latest_location(self.partner.id)
        self.assertEqual((location.lat, location.lng), BASE)

    def test_latest_location_before_any_report_is_not_tracking(self):
        self._start()
        with self.assertRaises(NotTracking):
            LocationTracker.get_latest_location(self.partner.id)

    def test_future_dated_sample_is_rejected(self):
        self._start()
        LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0)

        with self.assertRaises(BusinessLogicException) as ctx:
            LocationTracker.report(self.partner.id, 12.0, 77.0, sampled_at=timezone.now() + timedelta(days=365))
        self.assertEqual(ctx.exception.code, "invalid_sample_time")

        # Real samples keep flowing afterwards
        result = LocationTracker.report(self.partner.id, *NORTH, sampled_at=timezone.now())
        self.assertTrue(result.accepted)
        location = LocationTracker.sample(self.partner.id)
        self.assertEqual((location.lat, location.lng), NORTH)

    def test_small_clock_skew_is_tolerated(self):
        self._start()
        result = LocationTracker.report(self.partner.id, *BASE, sampled_at=timezone.now() + timedelta(seconds=5))
        self.assertTrue(result.accepted)

    def test_set_navigation_without_session_is_noop(self):
        self.assertFalse(LocationTracker.set_navigation(self.partner.id, True))

    def test_eta_falls_back_to_straight_line(self):
        self._start()
        LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0)

        estimate = LocationTracker.estimate_eta(self.partner.id, 12.9806, 77.5946)

        self.assertEqual(estimate.source, RouteSource.STRAIGHT_LINE)
        expected = haversine_meters(*BASE, 12.9806, 77.5946)
        self.assertEqual(estimate.distance_meters, round(expected))
        self.assertEqual(estimate.duration_seconds, travel_seconds(expected, 20))

    def test_eta_uses_routing_service_when_available(self):
        self._start()
        LocationTracker.report(self.partner.id, *BASE, sampled_at=self.t0)
        payload = {
            "status": "OK",
            "routes": [{
                "overview_polyline": {"points": "abc"},
                "legs": [{"distance": {"value": 1500}, "duration": {"value": 420}}],
            }],
        }

        with override_settings(GOOGLE_MAPS_API_KEY="test-key"), \
                mock.patch("apps.tracking.routing_service.requests.get") as get:
            get.return_value.json.return_value = payload
            get.return_value.raise_for_status.return_value = None
            estimate = LocationTracker.estimate_eta(self.partner.id, 12.9806, 77.5946)

        self.assertEqual(estimate.source, RouteSource.ROUTED)
        self.assertEqual(estimate.distance_meters, 1500)
        self.assertEqual(estimate.duration_seconds, 420)
        self.assertEqual(estimate.polyline, "abc")

    def test_eta_without_sample_is_not_tracking(self):
        self._start()
        with self.assertRaises(NotTracking):
            LocationTracker.estimate_eta(self.partner.id, 12.98, 77.59)


@override_settings(GOOGLE_MAPS_API_KEY="test-key")
class RoutingClientTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.addCleanup(directions_breaker.reset)

    def test_http_failure_returns_none(self):
        with mock.patch("apps.tracking.routing_service.requests.get", side_effect=requests.Timeout("slow")):
            self.assertIsNone(RoutingClient.route(BASE, NORTH))

    def test_breaker_opens_after_repeated_failures(self):
        with mock.patch("apps.tracking.routing_service.requests.get", side_effect=requests.ConnectionError("down")) as get:
            for _ in range(directions_breaker.failure_threshold):
                RoutingClient.route(BASE, NORTH)
            calls = get.call_count

            self.assertIsNone(RoutingClient.route(BASE, NORTH))
            self.assertEqual(get.call_count, calls)

    def test_api_error_status_returns_none(self):
        with mock.patch("apps.tracking.routing_service.requests.get") as get:
            get.return_value.json.return_value = {"status": "ZERO_RESULTS", "routes": []}
            self.assertIsNone(RoutingClient.route(BASE, NORTH))


class TrackingApiTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="rider1", password="test")
        self.partner = DeliveryPartner.objects.create(
            user=self.user, full_name="Ravi", phone="9100000000", is_approved=True
        )
        self.client.force_authenticate(self.user)

    def test_start_report_stop(self):
        response = self.client.post(reverse("tracking-start"), {"permission": "granted"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["state"], SessionState.ACTIVE)
        self.assertEqual(response.data["reporting_interval"], 15)

        response = self.client.post(reverse("tracking-report"), {"lat": BASE[0], "lng": BASE[1]}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["accepted"])
        self.assertTrue(PartnerLocation.objects.filter(partner=self.partner).exists())

        response = self.client.post(reverse("tracking-stop"))
        self.assertTrue(response.data["stopped"])

    def test_permission_denied_is_403(self):
        response = self.client.post(reverse("tracking-start"), {"permission": "denied"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["code"], "location_permission_denied")

    def test_report_before_start_is_404(self):
        response = self.client.post(reverse("tracking-report"), {"lat": BASE[0], "lng": BASE[1]}, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "not_tracking")


class PartnerLocationApiTests(APITestCase):
    def setUp(self):
        self.staff = User.objects.create_user(username="ops", password="test", is_staff=True)
        self.partner = DeliveryPartner.objects.create(full_name="Ravi", phone="9100000000", is_approved=True)
        self.client.force_authenticate(self.staff)

    def test_never_reported_is_404(self):
        response = self.client.get(reverse("tracking-partner-location", args=[self.partner.id]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "not_tracking")

    def test_last_known_position_after_stop(self):
        LocationTracker.start(self.partner.id, "granted")
        LocationTracker.report(self.partner.id, *BASE)
        LocationTracker.stop(self.partner.id)

        response = self.client.get(reverse("tracking-partner-location", args=[self.partner.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual((response.data["lat"], response.data["lng"]), BASE)
