"""Prometheus metrics for the Cloudflare collector."""

from enum import Enum
from typing import Dict, Iterable, Iterator, Optional, Set

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from .errors import UnknownMetricError


class MetricName(str, Enum):
    ZONE_REQUESTS_STATUS_COUNTRY_HOST = "cloudflare_zone_requests_status_country_host"


class MetricsSet:
    """A set of MetricName values, used for both the catalog and the denylist."""

    def __init__(self, names: Iterable[MetricName] = ()):
        self._names: Set[MetricName] = set(names)

    def has(self, name: MetricName) -> bool:
        return name in self._names

    def add(self, name: MetricName) -> None:
        self._names.add(name)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[MetricName]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"MetricsSet({sorted(n.value for n in self._names)})"


def all_metrics() -> MetricsSet:
    return MetricsSet(MetricName)


def build_denied_metrics_set(names: Iterable[str]) -> MetricsSet:
    """Validate operator-supplied metric names against the catalog.

    Raises UnknownMetricError on the first name that is not exported.
    """
    known = {name.value: name for name in all_metrics()}
    denied = MetricsSet()
    for raw in names:
        if raw not in known:
            raise UnknownMetricError(raw)
        denied.add(known[raw])
    return denied


ZONE_LABELS = ["zone", "status", "host", "path"]


class MetricRegistry:
    """Owns the CollectorRegistry served on the exposition endpoint.

    Catalog counters are only created when they are not denied; the
    collector's own operational metrics are always present.
    """

    def __init__(self, denied: Optional[MetricsSet] = None):
        self.denied = denied or MetricsSet()
        self.registry = CollectorRegistry()
        self._counters: Dict[MetricName, Counter] = {}

        if not self.denied.has(MetricName.ZONE_REQUESTS_STATUS_COUNTRY_HOST):
            self._counters[MetricName.ZONE_REQUESTS_STATUS_COUNTRY_HOST] = Counter(
                MetricName.ZONE_REQUESTS_STATUS_COUNTRY_HOST.value,
                "Count of requests for zone per edge HTTP status per country per host",
                ZONE_LABELS,
                registry=self.registry,
            )

        # Collector health
        self.queries_total = Counter(
            "cloudflare_exporter_queries_total",
            "Analytics queries issued, by request path and outcome",
            ["path", "status"],
            registry=self.registry,
        )
        self.scrape_duration_seconds = Histogram(
            "cloudflare_exporter_scrape_duration_seconds",
            "Duration of a full scrape cycle",
            registry=self.registry,
        )
        self.last_success_timestamp_seconds = Gauge(
            "cloudflare_exporter_last_success_timestamp_seconds",
            "Timestamp of the last scrape cycle in which at least one path succeeded",
            registry=self.registry,
        )

    def is_enabled(self, name: MetricName) -> bool:
        return name in self._counters

    def counter(self, name: MetricName) -> Optional[Counter]:
        """Return the counter for ``name``, or None when it is denied."""
        return self._counters.get(name)

    def sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        return self.registry.get_sample_value(name, labels or {})
