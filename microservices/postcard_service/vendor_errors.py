"""
Mail vendor error classification.

Maps vendor error codes and HTTP status onto VendorErrorCause and a
plain-language message suitable for showing to the campaign owner.
"""

from typing import Any, Dict, Optional

import httpx

from .models import VendorErrorCause
from .protocols import VendorError


CODE_CAUSES: Dict[str, VendorErrorCause] = {
    "failed_deliverability_strictness": VendorErrorCause.ADDRESS_UNDELIVERABLE,
    "undeliverable_address": VendorErrorCause.ADDRESS_UNDELIVERABLE,
    "invalid_address": VendorErrorCause.INVALID_ADDRESS,
    "address_length_exceeds_limit": VendorErrorCause.ADDRESS_TOO_LONG,
    "rate_limit_exceeded": VendorErrorCause.RATE_LIMITED,
    "unauthorized": VendorErrorCause.AUTHENTICATION,
    "invalid_api_key": VendorErrorCause.AUTHENTICATION,
}

USER_MESSAGES: Dict[VendorErrorCause, str] = {
    VendorErrorCause.ADDRESS_UNDELIVERABLE: (
        "Address Undeliverable: This address failed USPS verification and cannot "
        "receive mail. Please verify the address is correct."
    ),
    VendorErrorCause.INVALID_ADDRESS: (
        "Invalid Address: This address format is invalid. Please check street, "
        "city, state, and ZIP code."
    ),
    VendorErrorCause.ADDRESS_TOO_LONG: (
        "Address Too Long: One or more address fields exceed the maximum length."
    ),
    VendorErrorCause.RATE_LIMITED: (
        "The mail provider is busy right now. Please retry this recipient later."
    ),
    VendorErrorCause.AUTHENTICATION: (
        "The mail provider rejected our credentials. Please contact support."
    ),
    VendorErrorCause.TIMEOUT: (
        "The mail provider did not respond in time. Please retry this recipient."
    ),
    VendorErrorCause.NETWORK: (
        "Could not reach the mail provider. Please retry this recipient."
    ),
    VendorErrorCause.SERVER_ERROR: (
        "The mail provider had an internal error. Please retry this recipient."
    ),
    VendorErrorCause.UNRECOGNIZED: (
        "The mail provider rejected this postcard."
    ),
}

RETRYABLE_CAUSES = frozenset({
    VendorErrorCause.RATE_LIMITED,
    VendorErrorCause.TIMEOUT,
    VendorErrorCause.NETWORK,
    VendorErrorCause.SERVER_ERROR,
})


def classify_vendor_error(
    status_code: Optional[int] = None, code: Optional[str] = None
) -> VendorErrorCause:
    """Known error code first, then HTTP status, then UNRECOGNIZED"""
    if code and code in CODE_CAUSES:
        return CODE_CAUSES[code]
    if status_code in (401, 403):
        return VendorErrorCause.AUTHENTICATION
    if status_code == 429:
        return VendorErrorCause.RATE_LIMITED
    if status_code is not None and status_code >= 500:
        return VendorErrorCause.SERVER_ERROR
    return VendorErrorCause.UNRECOGNIZED


def user_message_for(cause: VendorErrorCause, vendor_message: Optional[str] = None) -> str:
    """
    Plain-language message for a cause.

    Unrecognized errors carry the vendor's own message when one was given,
    since it is usually the most specific explanation available.
    """
    if cause == VendorErrorCause.UNRECOGNIZED and vendor_message:
        return f"{USER_MESSAGES[cause]} {vendor_message}".strip()
    return USER_MESSAGES[cause]


def build_vendor_error(
    message: str,
    status_code: Optional[int] = None,
    code: Optional[str] = None,
) -> VendorError:
    cause = classify_vendor_error(status_code, code)
    return VendorError(
        message,
        cause=cause,
        code=code,
        status_code=status_code,
        user_message=user_message_for(cause, message),
        retryable=cause in RETRYABLE_CAUSES,
    )


def vendor_error_from_response(response: httpx.Response) -> VendorError:
    """Build a VendorError from a non-2xx vendor response"""
    error: Dict[str, Any] = {}
    try:
        body = response.json()
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
    except ValueError:
        pass

    message = error.get("message") or f"HTTP {response.status_code}"
    status_code = error.get("status_code") or response.status_code
    return build_vendor_error(str(message), status_code=int(status_code), code=error.get("code"))


def vendor_error_from_exception(exc: httpx.HTTPError) -> VendorError:
    """Build a VendorError from a transport-level failure"""
    if isinstance(exc, httpx.TimeoutException):
        cause = VendorErrorCause.TIMEOUT
    else:
        cause = VendorErrorCause.NETWORK
    return VendorError(
        f"{type(exc).__name__}: {exc}",
        cause=cause,
        user_message=USER_MESSAGES[cause],
        retryable=True,
    )


def describe_error(exc: Exception) -> str:
    """User-facing text for any per-recipient send failure"""
    if isinstance(exc, VendorError):
        return exc.user_message
    text = str(exc)
    if "address" in text.lower():
        return "Address validation failed. Please verify the recipient's address is correct."
    first_line = text.split("\n", 1)[0] if text else type(exc).__name__
    return first_line[:200]


__all__ = [
    "CODE_CAUSES",
    "USER_MESSAGES",
    "RETRYABLE_CAUSES",
    "classify_vendor_error",
    "user_message_for",
    "build_vendor_error",
    "vendor_error_from_response",
    "vendor_error_from_exception",
    "describe_error",
]
