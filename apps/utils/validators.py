from decimal import Decimal, InvalidOperation
from apps.utils.exceptions import BusinessLogicException


def validate_lat_lng(lat, lng):
    if not (-90 <= lat <= 90):
        raise ValueError("Latitude must be between -90 and 90.")
    if not (-180 <= lng <= 180):
        raise ValueError("Longitude must be between -180 and 180.")


def validate_heading(heading):
    if heading is None:
        return None
    if not (0 <= heading <= 360):
        raise ValueError("Heading must be between 0 and 360 degrees.")
    return heading % 360


def validate_money(value):
    """
    Coerce to a 2dp Decimal and reject non-positive amounts.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise BusinessLogicException("Invalid amount.", code="invalid_amount")
    if not amount.is_finite():
        raise BusinessLogicException("Invalid amount.", code="invalid_amount")
    amount = amount.quantize(Decimal("0.01"))
    if amount <= 0:
        raise BusinessLogicException("Amount must be greater than zero.", code="invalid_amount")
    return amount
