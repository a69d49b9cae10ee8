"""Transient vs permanent error classification.

``retry_fixed`` asks ``classify_error`` after every failed attempt:

- "retryable": another attempt may succeed (timeouts, dropped
  connections, 5xx, 429, S3 throttling)
- "permanent": another attempt cannot succeed (4xx, denied access,
  missing bucket, a local file that vanished); raised at once
- "unknown": anything else; retried until the attempt budget runs out
"""

import asyncio

import httpx
from botocore.exceptions import ClientError

# Connection-level httpx failures. A Docker daemon or S3 endpoint that is
# restarting drops connections mid-response (RemoteProtocolError).
HTTPX_TRANSIENT = (
    httpx.ConnectError,
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
)

HTTPX_PERMANENT = (
    httpx.InvalidURL,
    httpx.TooManyRedirects,
)

S3_TRANSIENT_CODES = frozenset({
    "RequestTimeout",
    "RequestTimeoutException",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "InternalError",
    "InternalServerError",
})

S3_PERMANENT_CODES = frozenset({
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
    "NoSuchKey",
    "InvalidBucketName",
})


def _classify_status(status: int) -> str:
    if status == 429 or status >= 500:
        return "retryable"
    if 400 <= status < 500:
        return "permanent"
    return "unknown"


def _classify_s3(exc: ClientError) -> str:
    code = exc.response.get("Error", {}).get("Code", "")
    if code in S3_TRANSIENT_CODES:
        return "retryable"
    if code in S3_PERMANENT_CODES:
        return "permanent"
    return "unknown"


def classify_error(exc: BaseException) -> str:
    """Classify error as 'retryable', 'permanent', or 'unknown'."""
    if isinstance(exc, httpx.HTTPStatusError):
        return _classify_status(exc.response.status_code)
    if isinstance(exc, (asyncio.TimeoutError, *HTTPX_TRANSIENT)):
        return "retryable"
    if isinstance(exc, HTTPX_PERMANENT):
        return "permanent"
    if isinstance(exc, ClientError):
        return _classify_s3(exc)
    if isinstance(exc, FileNotFoundError):
        return "permanent"
    return "unknown"
