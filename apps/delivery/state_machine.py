"""
The delivery status graph.

    PENDING    --accept-->   ACCEPTED
    PENDING    --reject-->   CANCELLED
    ACCEPTED   --reject-->   CANCELLED   (reason required)
    ACCEPTED   --pickup-->   PICKED_UP
    PICKED_UP  --depart-->   ON_THE_WAY
    ON_THE_WAY --complete--> DELIVERED   (COD guard, see DeliveryService)

Pure functions only: no database access, so the graph can be checked in
isolation and reused by serializers and admin.
"""
from .exceptions import InvalidTransition
from .models import DeliveryStatus

TRANSITIONS = {
    DeliveryStatus.PENDING: {DeliveryStatus.ACCEPTED, DeliveryStatus.CANCELLED},
    DeliveryStatus.ACCEPTED: {DeliveryStatus.PICKED_UP, DeliveryStatus.CANCELLED},
    DeliveryStatus.PICKED_UP: {DeliveryStatus.ON_THE_WAY},
    DeliveryStatus.ON_THE_WAY: {DeliveryStatus.DELIVERED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED})

# Named actions exposed to partners
ACTIONS = {
    "accept": DeliveryStatus.ACCEPTED,
    "reject": DeliveryStatus.CANCELLED,
    "pickup": DeliveryStatus.PICKED_UP,
    "depart": DeliveryStatus.ON_THE_WAY,
    "complete": DeliveryStatus.DELIVERED,
}

# Entry timestamp written on each state
TIMESTAMP_FIELDS = {
    DeliveryStatus.ACCEPTED: "accepted_at",
    DeliveryStatus.PICKED_UP: "picked_up_at",
    DeliveryStatus.ON_THE_WAY: "departed_at",
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.CANCELLED: "cancelled_at",
}

HISTORY_NOTES = {
    DeliveryStatus.PENDING: "Delivery created",
    DeliveryStatus.ACCEPTED: "Delivery accepted by partner",
    DeliveryStatus.PICKED_UP: "Order picked up by delivery partner",
    DeliveryStatus.ON_THE_WAY: "Delivery partner is on the way to delivery location",
    DeliveryStatus.DELIVERED: "Order delivered successfully",
    DeliveryStatus.CANCELLED: "Delivery cancelled",
}


def allowed_targets(current):
    return TRANSITIONS.get(current, set())


def is_legal(current, target) -> bool:
    return target in allowed_targets(current)


def check_transition(current, target, reason=""):
    """
    Raise InvalidTransition unless current -> target is a legal edge.
    """
    if target not in DeliveryStatus.values:
        raise InvalidTransition(f"Unknown delivery status: {target}", current, target)

    if current in TERMINAL_STATUSES:
        raise InvalidTransition(
            f"Delivery is already {current} and cannot change.", current, target
        )

    if current == target:
        raise InvalidTransition(f"Delivery is already {current}.", current, target)

    if not is_legal(current, target):
        raise InvalidTransition(f"Cannot change status from {current} to {target}", current, target)

    if (
        current == DeliveryStatus.ACCEPTED
        and target == DeliveryStatus.CANCELLED
        and not (reason or "").strip()
    ):
        raise InvalidTransition(
            "A reason is required to reject an accepted delivery.", current, target
        )
