"""HTTP transport that tags every outbound request with the tenant id."""
import time
from typing import Optional

import httpx

TENANT_HEADER = "X-Scope-OrgID"


class TenantHeaderTransport(httpx.BaseTransport):
    """Wraps another transport and sets the tenant header on each request."""

    def __init__(self, tenant_id: str, transport: Optional[httpx.BaseTransport] = None):
        self.tenant_id = tenant_id
        self.transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        # Work on a copy so the caller's request object is left untouched.
        headers = request.headers.copy()
        headers[TENANT_HEADER] = self.tenant_id
        tagged = httpx.Request(
            request.method,
            request.url,
            headers=headers,
            stream=request.stream,
            extensions=request.extensions,
        )
        return self.transport.handle_request(tagged)

    def close(self):
        self.transport.close()


def validate_url(url: str, what: str) -> httpx.URL:
    """Parse a configured endpoint URL, failing fast when it is unusable."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise ValueError(f"Invalid {what} URL '{url}': {e}")

    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValueError(f"Invalid {what} URL '{url}': expected an absolute http(s) URL")

    return parsed


def new_tenant_client(
    tenant_id: str,
    transport: Optional[httpx.BaseTransport] = None,
    **kwargs
) -> httpx.Client:
    """Create an ``httpx.Client`` whose requests carry the tenant header."""
    return httpx.Client(transport=TenantHeaderTransport(tenant_id, transport), **kwargs)


def read_body(
    response: httpx.Response,
    deadline: float,
    max_bytes: Optional[int] = None
) -> bytes:
    """Read a streamed response body, giving up once ``deadline`` has passed.

    ``deadline`` is a ``time.monotonic()`` instant. httpx timeouts bound each
    network operation separately, so a server that keeps trickling bytes would
    otherwise hold the caller indefinitely. When ``max_bytes`` is set, reading
    stops as soon as that many bytes have arrived.
    """
    check_deadline(response.request, deadline)
    body = b""
    for chunk in response.iter_bytes():
        body += chunk
        if max_bytes is not None and len(body) >= max_bytes:
            return body[:max_bytes]
        check_deadline(response.request, deadline)
    return body


def check_deadline(request: httpx.Request, deadline: float):
    if time.monotonic() > deadline:
        raise httpx.TimeoutException("request deadline exceeded", request=request)
