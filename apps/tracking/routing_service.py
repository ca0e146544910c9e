"""
Client for the external routing service (Google Directions).

Any failure here is reported as None so LocationTracker can fall back
to a straight-line estimate.
"""
import logging
from dataclasses import dataclass

import requests
from django.conf import settings

from apps.utils.resilience import CircuitBreaker, ServiceUnavailable

logger = logging.getLogger(__name__)

DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"


class RouteSource:
    ROUTED = "ROUTED"
    STRAIGHT_LINE = "STRAIGHT_LINE"


@dataclass(frozen=True)
class RouteEstimate:
    distance_meters: int
    duration_seconds: int
    source: str
    polyline: str = ""


class RoutingError(Exception):
    pass


directions_breaker = CircuitBreaker(service_name="google_directions", failure_threshold=5, recovery_timeout=60)


@directions_breaker
def _fetch_directions(origin, destination, api_key, timeout):
    response = requests.get(
        DIRECTIONS_URL,
        params={
            "origin": f"{origin[0]},{origin[1]}",
            "destination": f"{destination[0]},{destination[1]}",
            "mode": "driving",
            "alternatives": "false",
            "key": api_key,
        },
        timeout=timeout,
    )
    response.raise_for_status()
    data = response.json()

    if data.get("status") != "OK" or not data.get("routes"):
        raise RoutingError(f"Directions API error: {data.get('status')} {data.get('error_message', '')}".strip())
    return data


class RoutingClient:

    @staticmethod
    def route(origin, destination):
        """
        origin/destination are (lat, lng). Returns a ROUTED RouteEstimate or None.
        """
        api_key = getattr(settings, "GOOGLE_MAPS_API_KEY", "")
        if not api_key:
            return None

        timeout = getattr(settings, "ROUTING_TIMEOUT_SECONDS", 3)
        try:
            data = _fetch_directions(origin, destination, api_key, timeout)
            route = data["routes"][0]
            leg = route["legs"][0]
        except ServiceUnavailable:
            logger.info("Routing circuit open; using straight-line estimate")
            return None
        except (requests.RequestException, RoutingError, ValueError, KeyError, IndexError) as e:
            logger.warning(f"Routing failed: {e}")
            return None

        return RouteEstimate(
            distance_meters=int(leg["distance"]["value"]),
            duration_seconds=int(leg["duration"]["value"]),
            source=RouteSource.ROUTED,
            polyline=route.get("overview_polyline", {}).get("points", ""),
        )
