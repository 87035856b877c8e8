"""Per-tenant orchestration of the write and query clients."""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from loadgen.config import Config, TenantConfig
from loadgen.metrics import LoadGeneratorMetrics
from loadgen.query_client import QueryClient
from loadgen.write_client import WriteClient

logger = logging.getLogger(__name__)


@dataclass
class TenantRunner:
    """The clients owned by one simulated tenant. Tenants share no state."""
    tenant_id: str
    write_client: WriteClient
    query_client: Optional[QueryClient] = None

    def start(self):
        self.write_client.start()
        if self.query_client:
            self.query_client.start()

    def stop(self):
        self.write_client.stop()
        if self.query_client:
            self.query_client.stop()

    def status(self) -> Dict[str, Any]:
        status = {
            "tenant_id": self.tenant_id,
            "write_ticks": self.write_client.ticker.tick_count,
            "write_skipped_ticks": self.write_client.ticker.skipped_count,
            "write_failed_batches": self.write_client.failed_batches,
            "last_write_timestamp_ms": self.write_client.last_tick_ms,
            "query_enabled": self.query_client is not None,
        }
        if self.query_client:
            status["query_ticks"] = self.query_client.ticker.tick_count
            status["last_query_failures"] = len(self.query_client.last_failures)
        return status


def build_tenant_runner(
    tenant: TenantConfig,
    metrics: LoadGeneratorMetrics,
    transport: Optional[httpx.BaseTransport] = None
) -> TenantRunner:
    """Construct a tenant's clients. Raises ValueError on a bad endpoint URL."""
    write_client = WriteClient(tenant.write, metrics, transport=transport)

    query_client = None
    if tenant.query is not None:
        query_client = QueryClient(tenant.query, metrics, transport=transport)

    return TenantRunner(tenant.tenant_id, write_client, query_client)


class LoadGeneratorEngine:
    """Main engine owning one runner per simulated tenant."""

    def __init__(
        self,
        config: Config,
        metrics: LoadGeneratorMetrics,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.config = config
        self.metrics = metrics
        self.start_time = time.time()
        self.running = False
        self._stopped = threading.Event()

        self.tenants: List[TenantRunner] = [
            build_tenant_runner(tenant, metrics, transport)
            for tenant in config.tenant_configs()
        ]

        logger.info(
            f"Load generator engine initialized with {len(self.tenants)} tenants "
            f"(query verification {'enabled' if config.query.enabled else 'disabled'})"
        )

    def start(self):
        """Start every tenant's clients."""
        self.running = True
        self.start_time = time.time()
        self._stopped.clear()

        for tenant in self.tenants:
            tenant.start()

        logger.info(f"Started {len(self.tenants)} tenants")

    def stop(self):
        """Stop every tenant's clients."""
        if not self.running:
            return

        logger.info("Stopping load generator engine")
        self.running = False
        for tenant in self.tenants:
            tenant.stop()
        self._stopped.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the engine is stopped."""
        return self._stopped.wait(timeout)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "uptime_seconds": time.time() - self.start_time,
            "tenants": [tenant.status() for tenant in self.tenants],
        }
