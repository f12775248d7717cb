"""Translation of operation results into HTTP errors."""

from fastapi import HTTPException, status

from refcredit.errors import ErrorKind
from refcredit.results import Result

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_CREDITS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_REFERRAL_CODE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SELF_REFERRAL: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_OR_EXPIRED_TOKEN: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.EMAIL_TAKEN: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOTIFICATION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_for_failure(result: Result) -> None:
    """Raise an HTTPException if the result is a failure.

    The detail keeps the error kind so clients can branch on it.
    """
    if result.ok:
        return

    detail = {"error": result.error.value, "message": result.message}
    if result.field_errors:
        detail["errors"] = [e.to_dict() for e in result.field_errors]

    raise HTTPException(
        status_code=STATUS_BY_KIND.get(result.error, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=detail,
    )
