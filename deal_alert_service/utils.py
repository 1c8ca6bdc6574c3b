"""Helper utilities.

Shared helpers for the crawl source: a configured HTTP session, the retry
policy applied to network calls, and a UTC clock used by the stores.
"""

from __future__ import annotations

import datetime as _dt
import logging
from typing import Any, Callable, Dict

import requests
from requests import Response
from tenacity import (after_log, retry, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)


logger = logging.getLogger(__name__)


def utc_now() -> _dt.datetime:
    """Timezone-aware current time in UTC."""
    return _dt.datetime.now(_dt.timezone.utc)


def isoformat(value: _dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def get_http_session() -> requests.Session:
    """Return a new HTTP session with sensible defaults.

    The session sets a browser-like User-Agent header because most deal
    listing pages refuse the default python-requests one.  Caller is
    responsible for closing the session.
    """
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": "Mozilla/5.0 (compatible; DealAlert/1.0)",
            "Accept": "application/json, text/html;q=0.9, */*;q=0.8",
            "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.8",
        }
    )
    return session


class HTTPError(Exception):
    """Raised when an HTTP request fails after retries."""


class _ServerError(HTTPError):
    """5xx response; retried."""


def _raise_for_status(resp: Response) -> None:
    try:
        resp.raise_for_status()
    except requests.RequestException as e:
        raise HTTPError(str(e)) from e


def retryable_request(method: Callable[[requests.Session, str, Dict[str, Any]], Response]) -> Callable[..., Response]:
    """Decorator factory to apply retry logic to HTTP calls.

    The decorated function must accept a `requests.Session` as its first
    argument, followed by URL and optional kwargs, and return a
    `requests.Response`.  Network errors and responses with status >= 500
    are retried up to 5 attempts with exponential back-off between 1 and
    10 seconds.  Other 4xx responses fail on the first attempt.
    """

    @retry(
        reraise=True,
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=(
            retry_if_exception_type(requests.RequestException)
            | retry_if_exception_type(_ServerError)
        ),
        after=after_log(logger, logging.WARNING),
    )
    def wrapper(session: requests.Session, url: str, **kwargs: Any) -> Response:
        response = method(session, url, **kwargs)
        if response.status_code >= 500:
            raise _ServerError(f"Server returned status {response.status_code}")
        _raise_for_status(response)
        return response

    return wrapper


__all__ = ["get_http_session", "retryable_request", "HTTPError", "utc_now", "isoformat"]
