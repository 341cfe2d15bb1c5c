"""Fold analytics records into the cumulative zone counters."""

import logging
from typing import Callable, Iterable

from analytics_core.schemas import AnalyticsRecord
from .metrics import MetricName, MetricRegistry


logger = logging.getLogger(__name__)


class Aggregator:
    def __init__(self, registry: MetricRegistry):
        self.registry = registry

    def fold(
        self,
        records: Iterable[AnalyticsRecord],
        zone_name_lookup: Callable[[str], str],
        request_path: str,
    ) -> None:
        """Add each record's count to the (zone, status, host, path) counter.

        Nothing is written when the metric is denied. prometheus_client
        guards each child with its own lock, so this is safe to run while the
        exposition thread is collecting.
        """
        counter = self.registry.counter(MetricName.ZONE_REQUESTS_STATUS_COUNTRY_HOST)
        if counter is None:
            return

        folded = 0
        for record in records:
            counter.labels(
                zone=zone_name_lookup(record.zone_tag) or "",
                status=str(record.edge_response_status),
                host=record.client_host,
                path=request_path,
            ).inc(record.count)
            folded += 1

        logger.debug(f"Folded {folded} records for path {request_path}")
