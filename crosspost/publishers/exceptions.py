"""
Custom exceptions for social media publishing

Every platform failure is classified once, at the adapter boundary, into one
of the ``ErrorKind`` values below. Callers branch on ``exc.kind`` (or the
exception class) and never on message text.
"""
import time
from typing import Any, Dict, List, Optional

import httpx

from ..models import ErrorKind


class PublisherException(Exception):
    """Base exception for all publisher errors"""

    kind = ErrorKind.PLATFORM_ERROR

    def __init__(self, message, platform=None, status_code=None):
        super().__init__(message)
        self.message = message
        self.platform = platform
        self.status_code = status_code


class AuthenticationException(PublisherException):
    """Token is invalid, expired, or has been revoked"""

    kind = ErrorKind.AUTH_EXPIRED
    needs_reconnection = True


class MissingCredentialsException(AuthenticationException):
    """Account lacks the credentials an operation needs (e.g. OAuth 1.0a for uploads)"""


class RateLimitException(PublisherException):
    """Rate limit exceeded"""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message, retry_after=None, platform=None, status_code=429):
        super().__init__(message, platform=platform, status_code=status_code)
        self.retry_after = retry_after


class PayloadRejectedException(PublisherException):
    """Content rejected by platform or by local media validation"""

    kind = ErrorKind.PAYLOAD_REJECTED

    def __init__(self, message, platform=None, status_code=None, failures: Optional[List[str]] = None):
        super().__init__(message, platform=platform, status_code=status_code)
        self.failures = failures or []


class ProcessingFailedException(PublisherException):
    """Platform finished processing an upload and reported failure"""

    kind = ErrorKind.PROCESSING_FAILED


class ProcessingTimeoutException(PublisherException):
    """Processing did not finish within the attempt bound or the deadline"""

    kind = ErrorKind.PROCESSING_TIMEOUT


class PublishingException(PublisherException):
    """Generic publishing error"""


# Graph API (Instagram) error codes
GRAPH_AUTH_CODES = {190}
GRAPH_RATE_LIMIT_CODES = {4, 17, 32, 613}
GRAPH_ASPECT_RATIO_CODE = 36003

# Twitter v1.1 error codes
TWITTER_RATE_LIMIT_CODES = {88}
TWITTER_AUTH_CODES = {32, 89}

# LinkedIn serviceErrorCode for revoked/insufficient permissions
LINKEDIN_AUTH_CODES = {65600, 100}

PAYLOAD_STATUS_CODES = {400, 413, 415, 422}


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def extract_error_message(response: httpx.Response) -> str:
    """Pull the human-readable error out of a platform response body."""
    data = _json_body(response)
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("error_user_msg") or error.get("message")
        if message:
            return str(message)
    elif isinstance(error, str):
        return data.get("error_description") or error
    errors = data.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return str(errors[0].get("message") or errors[0].get("detail") or errors[0])
    for key in ("detail", "message", "title"):
        if data.get(key):
            return str(data[key])
    return response.text[:200] or f"HTTP {response.status_code}"


def _retry_after(response: httpx.Response) -> Optional[int]:
    retry_after = response.headers.get("retry-after")
    if retry_after and retry_after.isdigit():
        return int(retry_after)
    # Twitter uses x-rate-limit-reset header (epoch seconds)
    reset_time = response.headers.get("x-rate-limit-reset")
    if reset_time and reset_time.isdigit():
        return max(int(reset_time) - int(time.time()), 0)
    return None


def _error_codes(data: Dict[str, Any]) -> List[int]:
    codes = []
    error = data.get("error")
    if isinstance(error, dict):
        for key in ("code", "error_subcode"):
            if isinstance(error.get(key), int):
                codes.append(error[key])
    errors = data.get("errors")
    if isinstance(errors, list):
        codes.extend(e["code"] for e in errors if isinstance(e, dict) and isinstance(e.get("code"), int))
    if isinstance(data.get("serviceErrorCode"), int):
        codes.append(data["serviceErrorCode"])
    return codes


def classify_response(platform: str, response: httpx.Response, context: str = "request") -> Optional[PublisherException]:
    """
    Map an HTTP response to a typed publisher exception.

    Args:
        platform: Platform name used in messages
        response: Platform response
        context: Short description of the call ("FINALIZE", "register upload")

    Returns:
        The exception to raise, or None for a successful response
    """
    data = _json_body(response)
    codes = _error_codes(data)
    status = response.status_code

    if status < 400 and not codes:
        return None

    detail = extract_error_message(response)
    message = f"{platform} {context} failed: {detail}"

    if platform == "instagram":
        if GRAPH_AUTH_CODES & set(codes):
            return AuthenticationException(message, platform=platform, status_code=status)
        if GRAPH_RATE_LIMIT_CODES & set(codes):
            return RateLimitException(message, _retry_after(response), platform=platform, status_code=status)
        if GRAPH_ASPECT_RATIO_CODE in codes:
            return PayloadRejectedException(
                f"{message} (aspect ratio not supported; Instagram supports 1:1, 4:5 and 1.91:1)",
                platform=platform,
                status_code=status,
            )
    elif platform == "twitter":
        if TWITTER_RATE_LIMIT_CODES & set(codes):
            return RateLimitException(message, _retry_after(response), platform=platform, status_code=status)
        if TWITTER_AUTH_CODES & set(codes) or status == 401:
            return AuthenticationException(message, platform=platform, status_code=status)
        # v2 answers 403 for duplicate or policy-violating tweets
        if status == 403:
            return PayloadRejectedException(message, platform=platform, status_code=status)
    elif platform == "linkedin":
        if LINKEDIN_AUTH_CODES & set(codes):
            return AuthenticationException(message, platform=platform, status_code=status)

    if status in (401, 403):
        return AuthenticationException(message, platform=platform, status_code=status)
    if status == 429:
        return RateLimitException(message, _retry_after(response), platform=platform, status_code=status)
    if status in PAYLOAD_STATUS_CODES:
        return PayloadRejectedException(message, platform=platform, status_code=status)
    return PublishingException(message, platform=platform, status_code=status)


def raise_for_platform_error(platform: str, response: httpx.Response, context: str = "request") -> None:
    error = classify_response(platform, response, context)
    if error is not None:
        raise error
