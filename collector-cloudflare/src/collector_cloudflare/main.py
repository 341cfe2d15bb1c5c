"""Cloudflare collector main async loop."""

import asyncio
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from prometheus_client import start_http_server

from analytics_core.schemas import TimeWindow, Zone
from analytics_core.utils.logging import setup_logging
from .aggregator import Aggregator
from .cf import CloudflareClient, build_query
from .config import CollectorConfig
from .errors import FatalConfigError, MalformedResponseError, ProviderError, QueryError
from .metrics import MetricRegistry
from .mock import MockCloudflareClient
from .parser import parse_response
from .window import compute_time_window
from .zones import filter_by_id, filter_paid_tier, find_zone_name, zone_ids


logger = logging.getLogger(__name__)

SERVICE_NAME = "collector-cloudflare"


class CloudflareCollector:
    """Runs scrape cycles against Cloudflare and folds the results into counters."""

    def __init__(
        self,
        config: Optional[CollectorConfig] = None,
        client=None,
        metrics: Optional[MetricRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or CollectorConfig.from_env()

        # Fails fast on bad credentials or an unknown denylist entry
        denied = self.config.validate_startup()

        self.metrics = metrics or MetricRegistry(denied)
        self.aggregator = Aggregator(self.metrics)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        if client is not None:
            self.client = client
        elif self.config.use_mock:
            self.client = MockCloudflareClient()
        else:
            self.client = CloudflareClient(
                self.config.credentials, timeout=self.config.query_timeout
            )

        self.running = False

        if not self.config.request_paths:
            logger.warning("CF_REQUEST_PATHS is empty, scrape cycles will not query anything")
        if not self.config.domain_names:
            logger.warning("CF_DOMAIN_NAMES is empty, queries will match no hosts")

        logger.info(
            f"Cloudflare collector starting in {'mock' if self.config.use_mock else 'real'} mode"
        )

    async def fetch_zones(self) -> List[Zone]:
        """List zones and narrow them to the allow-list and the paid tier.

        ProviderError propagates: the collector cannot run without zones.
        """
        zones = await self.client.list_zones()
        zones = filter_by_id(zones, self.config.zone_ids)
        return filter_paid_tier(zones)

    async def scrape_path(
        self, zones: List[Zone], request_path: str, window: TimeWindow
    ) -> bool:
        """Query, parse and fold one request path. Returns False if it was skipped."""
        query = build_query(
            zone_ids(zones),
            self.config.domain_names,
            request_path,
            window,
            limit=self.config.query_limit,
        )

        try:
            data = await asyncio.wait_for(
                self.client.execute(query), timeout=self.config.query_timeout
            )
            records = parse_response(data, limit=query.limit)
        except asyncio.TimeoutError:
            logger.error(
                f"Query for path {request_path} timed out after {self.config.query_timeout}s"
            )
            self.metrics.queries_total.labels(path=request_path, status="error").inc()
            return False
        except QueryError as e:
            logger.error(f"Query for path {e.request_path or request_path} failed: {e}")
            self.metrics.queries_total.labels(path=request_path, status="error").inc()
            return False
        except MalformedResponseError as e:
            logger.error(f"Malformed response for path {request_path}: {e}")
            self.metrics.queries_total.labels(path=request_path, status="malformed").inc()
            return False

        self.aggregator.fold(
            records, lambda tag: find_zone_name(zones, tag), request_path
        )
        self.metrics.queries_total.labels(path=request_path, status="ok").inc()
        logger.debug(f"Path {request_path}: {len(records)} records")
        return True

    async def scrape_cycle(self) -> None:
        """One pass over every configured request path."""
        # None of the exported datasets exist on the free tier
        if self.config.free_tier:
            logger.debug("Free tier configured, skipping analytics")
            return

        start_time = time.time()

        zones = await self.fetch_zones()
        if not zones:
            logger.info("No paid-tier zones to query")
            return

        window = compute_time_window(self.clock(), self.config.scrape_delay)
        semaphore = asyncio.Semaphore(self.config.query_concurrency)

        async def bounded(request_path: str) -> bool:
            async with semaphore:
                return await self.scrape_path(zones, request_path, window)

        results = await asyncio.gather(
            *(bounded(path) for path in self.config.request_paths)
        )

        duration = time.time() - start_time
        self.metrics.scrape_duration_seconds.observe(duration)
        if any(results):
            self.metrics.last_success_timestamp_seconds.set(time.time())

        logger.info(
            f"Scrape cycle for {window.start.isoformat()}..{window.end.isoformat()} "
            f"completed in {duration:.2f}s: {sum(results)}/{len(results)} paths ok, "
            f"{len(zones)} zones"
        )

    async def run_collection_loop(self):
        """Run a scrape cycle every scrape_interval seconds."""
        interval = self.config.scrape_interval

        while self.running:
            started = time.monotonic()
            await self.scrape_cycle()

            sleep_time = max(0.0, interval - (time.monotonic() - started))
            logger.debug(f"Sleeping for {sleep_time:.1f}s")
            await asyncio.sleep(sleep_time)

    async def run(self):
        """Main run method."""
        logger.info({"service": SERVICE_NAME, "status": "starting", **self.config.redacted()})

        start_http_server(
            self.config.prom_port,
            addr=self.config.prom_addr,
            registry=self.metrics.registry,
        )
        logger.info(f"Prometheus metrics server started on port {self.config.prom_port}")

        self.running = True
        try:
            await self.run_collection_loop()
        finally:
            self.running = False
            await self.client.close()
            logger.info("Collector shutdown complete")


async def main():
    """Entry point."""
    config = CollectorConfig.from_env()
    setup_logging(SERVICE_NAME, config.log_level)
    collector = CloudflareCollector(config)
    await collector.run()


def cli():
    try:
        asyncio.run(main())
    except FatalConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except ProviderError as e:
        logger.error(f"Cannot list zones, exiting: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    cli()
