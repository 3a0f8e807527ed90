import logging
import time
from typing import Any

import httpx

from image_builder.sanitize import sanitize_error_message, sanitize_url


logger = logging.getLogger(__name__)


class RetryPolicy:
    def __init__(self, attempts: int, sleep_sec: float):
        self.attempts = max(1, attempts)
        self.sleep_sec = sleep_sec


class RequestFailure(RuntimeError):
    """Raised when a request keeps failing; the URL is always stored sanitized."""

    def __init__(
        self,
        *,
        method: str,
        url: str,
        attempts: int,
        error_type: str,
        detail: str,
        status_code: int | None = None,
    ):
        self.method = method
        self.url = sanitize_url(url)
        self.attempts = attempts
        self.error_type = error_type
        self.detail = sanitize_error_message(detail)
        self.status_code = status_code
        super().__init__(
            f"request failed after {attempts} attempts: "
            f"{method} {self.url} ({error_type}: {self.detail})"
        )


def _retryable(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def request_with_retry(
    client: httpx.Client, method: str, url: str, retry: RetryPolicy, **kwargs: Any
) -> httpx.Response:
    error: Exception | None = None
    status_code: int | None = None
    detail = "unknown error"
    error_type = "RuntimeError"
    attempt = 0
    for attempt in range(1, retry.attempts + 1):
        try:
            response = client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            error = exc
            status_code = exc.response.status_code
            detail = f"HTTP {status_code}"
            error_type = exc.__class__.__name__
            if not _retryable(status_code):
                break
        except httpx.RequestError as exc:
            error = exc
            detail = str(exc)
            error_type = exc.__class__.__name__
        if attempt < retry.attempts:
            logger.info(
                "retrying request method=%s url=%s attempt=%s detail=%s",
                method,
                sanitize_url(url),
                attempt,
                sanitize_error_message(detail),
            )
            time.sleep(retry.sleep_sec)
    raise RequestFailure(
        method=method,
        url=url,
        attempts=attempt,
        error_type=error_type,
        detail=detail,
        status_code=status_code,
    ) from error
