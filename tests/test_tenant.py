"""Tests for the tenant header transport."""
import time

import httpx
import pytest

from loadgen.tenant import (
    TENANT_HEADER, TenantHeaderTransport, new_tenant_client, read_body, validate_url
)


def test_tenant_header_is_added_to_every_request():
    seen = []

    def handler(request):
        seen.append(request.headers.get(TENANT_HEADER))
        return httpx.Response(200)

    with new_tenant_client("tenant-1", httpx.MockTransport(handler)) as client:
        client.get("http://backend/api/v1/query_range")
        client.post("http://backend/api/v1/push", content=b"payload")

    assert seen == ["tenant-1", "tenant-1"]


def test_tenant_header_overrides_caller_value_without_mutating_request():
    seen = []

    def handler(request):
        seen.append(request.headers[TENANT_HEADER])
        return httpx.Response(200)

    transport = TenantHeaderTransport("tenant-2", httpx.MockTransport(handler))
    request = httpx.Request("GET", "http://backend/", headers={TENANT_HEADER: "someone-else"})
    transport.handle_request(request)

    assert seen == ["tenant-2"]
    assert request.headers[TENANT_HEADER] == "someone-else"


def test_request_body_is_forwarded():
    bodies = []

    def handler(request):
        bodies.append(request.content)
        return httpx.Response(204)

    with new_tenant_client("tenant-1", httpx.MockTransport(handler)) as client:
        client.post("http://backend/api/v1/push", content=b"\x00\x01payload")

    assert bodies == [b"\x00\x01payload"]


@pytest.mark.parametrize("url", ["", "not a url", "ftp://backend/push", "http://"])
def test_validate_url_rejects_malformed(url):
    with pytest.raises(ValueError):
        validate_url(url, "remote write")


def test_validate_url_accepts_http():
    assert validate_url("http://localhost:9009/api/v1/push", "remote write").host == "localhost"


def test_read_body_stops_at_max_bytes():
    def handler(request):
        return httpx.Response(400, content=b"abcdef")

    with new_tenant_client("tenant-1", httpx.MockTransport(handler)) as client:
        with client.stream("GET", "http://backend/") as response:
            assert read_body(response, time.monotonic() + 5, max_bytes=4) == b"abcd"


def test_read_body_raises_once_deadline_has_passed():
    def handler(request):
        return httpx.Response(200, content=b"{}")

    with new_tenant_client("tenant-1", httpx.MockTransport(handler)) as client:
        with client.stream("GET", "http://backend/") as response:
            with pytest.raises(httpx.TimeoutException):
                read_body(response, time.monotonic() - 1)
