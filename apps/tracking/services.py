import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.riders.services import PartnerService
from apps.utils.exceptions import BusinessLogicException
from apps.utils.validators import validate_heading, validate_lat_lng
from .exceptions import LocationPermissionDenied, NotTracking
from .geo import haversine_meters, travel_seconds
from .models import PartnerLocation, SessionState, TrackingMode, TrackingSession
from .routing_service import RouteEstimate, RouteSource, RoutingClient

logger = logging.getLogger(__name__)

GRANTED = "granted"


class ReportOutcome:
    ACCEPTED = "accepted"
    STALE = "stale"
    THROTTLED = "throttled"


@dataclass(frozen=True)
class ReportResult:
    outcome: str
    location: Optional[PartnerLocation] = None

    @property
    def accepted(self):
        return self.outcome == ReportOutcome.ACCEPTED


def partner_group(partner_id) -> str:
    return f"partner_{partner_id}"


def reporting_interval(mode) -> int:
    if mode == TrackingMode.NAVIGATION:
        return getattr(settings, "TRACKING_NAVIGATION_INTERVAL_SECONDS", 5)
    return getattr(settings, "TRACKING_SAMPLE_INTERVAL_SECONDS", 15)


def broadcast_location(location: PartnerLocation):
    channel_layer = get_channel_layer()
    if not channel_layer:
        return

    try:
        async_to_sync(channel_layer.group_send)(
            partner_group(location.partner_id),
            {
                "type": "location.update",  # LocationConsumer.location_update
                "lat": location.lat,
                "lng": location.lng,
                "heading": location.heading,
                "sampled_at": location.sampled_at.isoformat(),
            }
        )
    except Exception as e:
        logger.error(f"Failed to broadcast location for {location.partner_id}: {e}")


class LocationTracker:
    """
    Live position feed for delivery partners. Knows nothing about
    delivery state; the ON_THE_WAY hint arrives through set_navigation.
    """

    @staticmethod
    def start(partner_id, permission) -> TrackingSession:
        granted = permission is True or str(permission).strip().lower() == GRANTED
        if not granted:
            logger.info("Tracking refused for %s: permission=%s", partner_id, permission,
                        extra={"partner_id": partner_id})
            raise LocationPermissionDenied()

        partner = PartnerService.get_partner(partner_id)
        session, _ = TrackingSession.objects.update_or_create(
            partner=partner,
            defaults={
                "state": SessionState.ACTIVE,
                "mode": TrackingMode.STANDARD,
                "started_at": timezone.now(),
                "stopped_at": None,
            },
        )
        logger.info("Tracking started for %s", partner.id, extra={"partner_id": partner.id})
        return session

    @staticmethod
    def stop(partner_id) -> bool:
        """
        Returns True if a live session was stopped, False if there was none.
        """
        stopped = TrackingSession.objects.filter(
            partner_id=partner_id, state=SessionState.ACTIVE
        ).update(
            state=SessionState.STOPPED,
            mode=TrackingMode.STANDARD,
            stopped_at=timezone.now(),
            updated_at=timezone.now(),
        )
        if stopped:
            logger.info("Tracking stopped for %s", partner_id, extra={"partner_id": partner_id})
        return bool(stopped)

    @staticmethod
    def set_navigation(partner_id, active) -> bool:
        mode = TrackingMode.NAVIGATION if active else TrackingMode.STANDARD
        updated = TrackingSession.objects.filter(
            partner_id=partner_id, state=SessionState.ACTIVE
        ).exclude(mode=mode).update(mode=mode, updated_at=timezone.now())
        return bool(updated)

    @staticmethod
    def _active_session(partner_id) -> TrackingSession:
        session = TrackingSession.objects.filter(partner_id=partner_id, state=SessionState.ACTIVE).first()
        if session is None:
            raise NotTracking(partner_id)
        return session

    @staticmethod
    def report(partner_id, lat, lng, heading=None, sampled_at=None, accuracy=None) -> ReportResult:
        """
        Accept one device sample.
        Last writer wins by sampled_at; samples close to the held one in
        both time and space are throttled.
        """
        try:
            lat, lng = float(lat), float(lng)
            validate_lat_lng(lat, lng)
            heading = validate_heading(float(heading) if heading is not None else None)
            accuracy = float(accuracy) if accuracy is not None else None
        except (TypeError, ValueError) as e:
            raise BusinessLogicException(f"Invalid location sample: {e}", code="invalid_location")

        now = timezone.now()
        sampled_at = sampled_at or now
        if timezone.is_naive(sampled_at):
            sampled_at = timezone.make_aware(sampled_at)

        # A future-dated sample would outrank every real one until that time passes
        skew = getattr(settings, "TRACKING_MAX_CLOCK_SKEW_SECONDS", 30)
        if sampled_at > now + timedelta(seconds=skew):
            logger.warning("Future-dated sample from %s: %s", partner_id, sampled_at.isoformat(),
                           extra={"partner_id": partner_id})
            raise BusinessLogicException(
                "Sample timestamp is ahead of server time.", code="invalid_sample_time"
            )

        session = LocationTracker._active_session(partner_id)
        current = PartnerLocation.objects.filter(partner_id=partner_id).first()
        values = {
            "lat": lat,
            "lng": lng,
            "heading": heading,
            "accuracy": accuracy,
            "sampled_at": sampled_at,
            "received_at": now,
        }

        if current is None:
            try:
                with transaction.atomic():
                    location = PartnerLocation.objects.create(partner_id=partner_id, **values)
            except IntegrityError:
                # A concurrent first sample won; fall through to the conditional update
                location = None
            if location is not None:
                broadcast_location(location)
                return ReportResult(ReportOutcome.ACCEPTED, location)
            current = PartnerLocation.objects.get(partner_id=partner_id)

        if sampled_at <= current.sampled_at:
            return ReportResult(ReportOutcome.STALE, current)

        elapsed = (sampled_at - current.sampled_at).total_seconds()
        moved = haversine_meters(current.lat, current.lng, lat, lng)
        min_distance = getattr(settings, "TRACKING_MIN_DISTANCE_METERS", 20)
        if elapsed < reporting_interval(session.mode) and moved < min_distance:
            return ReportResult(ReportOutcome.THROTTLED, current)

        updated = PartnerLocation.objects.filter(
            partner_id=partner_id, sampled_at__lt=sampled_at
        ).update(**values)
        if not updated:
            # A newer sample landed between our read and write
            return ReportResult(ReportOutcome.STALE, PartnerLocation.objects.get(partner_id=partner_id))

        location = PartnerLocation.objects.get(partner_id=partner_id)
        broadcast_location(location)
        return ReportResult(ReportOutcome.ACCEPTED, location)

    @staticmethod
    def sample(partner_id) -> PartnerLocation:
        LocationTracker._active_session(partner_id)
        location = PartnerLocation.objects.filter(partner_id=partner_id).first()
        if location is None:
            raise NotTracking(partner_id)
        return location

    @staticmethod
    def get_latest_location(partner_id) -> PartnerLocation:
        """
        Last known position regardless of session state.
        Raises NotTracking if the partner has never reported.
        """
        location = PartnerLocation.objects.filter(partner_id=partner_id).first()
        if location is None:
            raise NotTracking(partner_id)
        return location

    @staticmethod
    def estimate_eta(partner_id, dest_lat, dest_lng) -> RouteEstimate:
        try:
            dest_lat, dest_lng = float(dest_lat), float(dest_lng)
            validate_lat_lng(dest_lat, dest_lng)
        except (TypeError, ValueError) as e:
            raise BusinessLogicException(str(e), code="invalid_location")

        location = LocationTracker.sample(partner_id)
        origin = (location.lat, location.lng)

        routed = RoutingClient.route(origin, (dest_lat, dest_lng))
        if routed is not None:
            return routed

        distance = haversine_meters(location.lat, location.lng, dest_lat, dest_lng)
        speed = getattr(settings, "TRACKING_AVERAGE_SPEED_KMPH", 20)
        return RouteEstimate(
            distance_meters=int(round(distance)),
            duration_seconds=travel_seconds(distance, speed),
            source=RouteSource.STRAIGHT_LINE,
        )
