from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_METERS = 6371000


def haversine_meters(lat1, lng1, lat2, lng2) -> float:
    """
    Great-circle distance between two points.
    """
    lng1, lat1, lng2, lat2 = map(radians, [lng1, lat1, lng2, lat2])
    dlng = lng2 - lng1
    dlat = lat2 - lat1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * asin(sqrt(a))


def travel_seconds(distance_meters, speed_kmph) -> int:
    if speed_kmph <= 0:
        raise ValueError("Average speed must be positive.")
    return int(round(distance_meters / (speed_kmph * 1000 / 3600)))
