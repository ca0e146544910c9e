from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Cash not collected').
    """
    http_status = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message, code="business_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFound(BusinessLogicException):
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, message="Not found."):
        super().__init__(message, code="not_found")


class OperationTimeout(BusinessLogicException):
    """
    The write did not finish inside the operation budget.
    Safe to retry with the same idempotency key.
    """
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, message="Operation timed out. Please retry."):
        super().__init__(message, code="timeout")


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, BusinessLogicException):
        return Response(
            {"error": exc.message, "code": exc.code, "retryable": exc.retryable},
            status=exc.http_status,
        )

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"error": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return response
