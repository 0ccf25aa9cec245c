"""HTTP fetch of external calendar feeds."""

import requests

from bookholiday.observability.redaction import redact_url

_HEADERS = {
    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.5",
    "User-Agent": "bookholiday-availability/1.0 (+ical-sync)",
}


class FeedFetchError(Exception):
    """Feed could not be downloaded (network error or non-2xx status)."""


def fetch_feed(url: str, timeout: float = 10.0) -> bytes:
    """Download a feed body.

    Args:
        url: Feed URL (http or https).
        timeout: Connect/read timeout in seconds.

    Returns:
        Raw response body.

    Raises:
        FeedFetchError: On connection errors, timeouts and non-2xx responses.
    """
    try:
        response = requests.get(url, headers=_HEADERS, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        status = getattr(getattr(e, "response", None), "status_code", None)
        raise FeedFetchError(
            f"fetch failed for {redact_url(url)}"
            + (f" (HTTP {status})" if status else f" ({type(e).__name__})")
        ) from e
    return response.content
