"""Error classification for retry decisions.

Transient errors are expected to resolve on their own and are retried after a fixed
delay without surfacing an error. Terminal errors are caused by the caller's input or
permissions and are surfaced so the default exponential backoff applies. Anything the
classifier does not recognise is surfaced like a terminal error.
"""

import enum
import json

import urllib3
from kubernetes.client.exceptions import ApiException

from evroc_provider.config import TRANSIENT_RETRY_DELAY
from evroc_provider.exceptions import ReconcileError
from evroc_provider.result import Result

TRANSIENT_MESSAGES = (
    "timeout",
    "connection refused",
    "connection reset",
    "rate limit",
    "too many requests",
    "temporarily unavailable",
)

# Network-layer failures: socket errors and urllib3's connection/protocol errors
NETWORK_ERRORS = (ConnectionError, TimeoutError, urllib3.exceptions.HTTPError)


class ErrorClass(enum.Enum):
    NONE = "none"
    TRANSIENT = "transient"
    TERMINAL = "terminal"
    UNKNOWN = "unknown"


def _chain(err: BaseException):
    """Yield the error and every error it was raised from."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__


def _api_exception(err: BaseException) -> ApiException | None:
    for e in _chain(err):
        if isinstance(e, ApiException):
            return e
    return None


def _status(err: BaseException) -> int | None:
    api_err = _api_exception(err)
    return api_err.status if api_err is not None else None


def status_reason(err: BaseException) -> str:
    """Machine-readable reason of an API error.

    The Status object in the response body carries it (``ServerTimeout``, ``NotFound``);
    the exception's own ``reason`` is only the HTTP reason phrase and is the fallback.
    """
    api_err = _api_exception(err)
    if api_err is None:
        return ""
    if api_err.body:
        try:
            body = json.loads(api_err.body)
        except (TypeError, ValueError):
            body = None
        if isinstance(body, dict) and body.get("reason"):
            return body["reason"]
    return api_err.reason or ""


def describe(err: BaseException) -> str:
    """One-line description of an error, fit for a condition message."""
    if isinstance(err, ApiException):
        return f"({err.status}) {err.reason}"
    return str(err).splitlines()[0] if str(err) else type(err).__name__


def is_not_found_error(err: BaseException | None) -> bool:
    return err is not None and _status(err) == 404


def is_forbidden_error(err: BaseException | None) -> bool:
    return err is not None and _status(err) == 403


def is_conflict_error(err: BaseException | None) -> bool:
    return err is not None and _status(err) == 409


def _is_api_timeout(err: BaseException) -> bool:
    status = _status(err)
    if status == 504:
        return True
    return status == 500 and status_reason(err).replace(" ", "") in ("ServerTimeout", "Timeout")


def is_transient_error(err: BaseException | None) -> bool:
    """Check if an error is transient and should be retried after a fixed delay."""
    if err is None:
        return False

    if any(isinstance(e, NETWORK_ERRORS) for e in _chain(err)):
        return True

    message = str(err).lower()
    if any(text in message for text in TRANSIENT_MESSAGES):
        return True

    # Object store signals: service unavailable, timeouts, throttling
    if _status(err) in (429, 503) or _is_api_timeout(err):
        return True

    return False


def is_terminal_error(err: BaseException | None) -> bool:
    """Check if an error is terminal and will not resolve without outside action."""
    if err is None:
        return False
    # invalid, bad request, unauthorized, forbidden, not found, conflict
    return _status(err) in (422, 400, 401, 403, 404, 409)


def classify_error(err: BaseException | None) -> ErrorClass:
    if err is None:
        return ErrorClass.NONE
    if is_transient_error(err):
        return ErrorClass.TRANSIENT
    if is_terminal_error(err):
        return ErrorClass.TERMINAL
    return ErrorClass.UNKNOWN


def handle_error(err: BaseException | None, message: str):
    """Turn an error into a reconcile outcome.

    Returns:
        A Result: empty for no error, with the transient retry delay for transient errors

    Raises:
        ReconcileError: wrapping terminal and unclassified errors
    """
    error_class = classify_error(err)
    if error_class is ErrorClass.NONE:
        return Result()
    if error_class is ErrorClass.TRANSIENT:
        return Result(requeue_after=TRANSIENT_RETRY_DELAY)
    raise ReconcileError(f"{message}: {err}") from err
