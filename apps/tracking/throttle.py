from rest_framework.throttling import UserRateThrottle


class LocationReportThrottle(UserRateThrottle):
    """
    Upper bound on raw device pings, independent of the sample throttle.
    Scope: 'location' (Configured in settings)
    """
    scope = 'location'
