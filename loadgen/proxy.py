"""Reverse proxy injecting a fixed tenant id, for ad-hoc queries against a multi-tenant backend."""
import argparse
import logging
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool

from loadgen.tenant import new_tenant_client, validate_url

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

# Headers describing a single hop; httpx recomputes them for the upstream request
# and for the body it hands back already decoded.
HOP_BY_HOP_HEADERS = {
    "connection",
    "content-encoding",
    "content-length",
    "host",
    "keep-alive",
    "transfer-encoding",
    "upgrade",
}


def filter_headers(headers) -> dict:
    return {k: v for k, v in headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


class TenantProxy:
    """Forwards every request to ``backend_url`` tagged with ``tenant_id``."""

    def __init__(
        self,
        backend_url: str,
        tenant_id: str,
        transport: Optional[httpx.BaseTransport] = None,
        timeout_s: float = 60.0
    ):
        self.backend_url = validate_url(backend_url, "backend")
        self.tenant_id = tenant_id
        self.client = new_tenant_client(tenant_id, transport, timeout=httpx.Timeout(timeout_s))
        self.app = FastAPI(title="TSDB Tenant Proxy")
        self._setup_routes()

    def upstream_url(self, path: str) -> str:
        return str(self.backend_url).rstrip("/") + "/" + path

    def _setup_routes(self):
        """Setup the catch-all forwarding route."""

        @self.app.api_route("/{path:path}", methods=PROXY_METHODS)
        async def forward(path: str, request: Request):
            body = await request.body()
            try:
                upstream = await run_in_threadpool(
                    self.client.request,
                    request.method,
                    self.upstream_url(path),
                    params=request.query_params.multi_items(),
                    content=body,
                    headers=filter_headers(request.headers),
                )
            except httpx.HTTPError as e:
                logger.error(f"Proxy error forwarding {request.method} /{path}: {e}")
                return Response(status_code=502, content=f"proxy error: {e}")

            return Response(
                content=upstream.content,
                status_code=upstream.status_code,
                headers=filter_headers(upstream.headers),
            )

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the proxy server."""
        import uvicorn
        try:
            uvicorn.run(self.app, host=host, port=port, log_level="info")
        finally:
            self.client.close()


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="TSDB Tenant Proxy - forward requests with a fixed tenant id"
    )
    parser.add_argument("--listen-port", type=int, default=8081, help="Local port to listen on")
    parser.add_argument("--backend", default="http://localhost:8080", help="Backend base URL")
    parser.add_argument("--tenant-id", default="load-generator-1", help="Tenant id to inject")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    try:
        proxy = TenantProxy(args.backend, args.tenant_id)
    except ValueError as e:
        logger.error(f"Failed to initialize proxy: {e}")
        raise SystemExit(1)

    logger.info(f"Proxying :{args.listen_port} to {args.backend} as tenant {args.tenant_id}")
    proxy.run(port=args.listen_port)


if __name__ == "__main__":
    main()
