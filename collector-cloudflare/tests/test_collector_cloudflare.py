import asyncio
import logging
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from analytics_core.schemas import PlanTier, Zone
from collector_cloudflare.config import CollectorConfig
from collector_cloudflare.errors import (
    FatalConfigError,
    MalformedResponseError,
    ProviderAuthError,
    QueryError,
    UnknownMetricError,
)
from collector_cloudflare.main import CloudflareCollector
from collector_cloudflare.metrics import MetricName


COUNTER = "cloudflare_zone_requests_status_country_host_total"
NOW = datetime(2024, 5, 1, 12, 10, 42, tzinfo=timezone.utc)

ZONES = [
    Zone(id="z1", name="free.example", plan_tier=PlanTier.FREE),
    Zone(id="z2", name="example.com", plan_tier=PlanTier.PAID),
]


def make_env(**overrides):
    env = {
        "CF_API_TOKEN": "test-token",
        "CF_REQUEST_PATHS": "/api/%,/v1/.*",
        "CF_DOMAIN_NAMES": "example.com, test.com",
        "CF_SCRAPE_DELAY": "300",
    }
    env.update(overrides)
    return env


def analytics_data(zone_tag="z2", groups=None):
    if groups is None:
        groups = [
            {
                "count": 3,
                "dimensions": {
                    "edgeResponseStatus": 200,
                    "clientRequestHTTPHost": "example.com",
                },
            }
        ]
    return {"viewer": {"zones": [{"zoneTag": zone_tag, "httpRequestsEdgeCountryHost": groups}]}}


@pytest.fixture
def client():
    """Provider client double returning one free and one paid zone"""
    mock_client = AsyncMock()
    mock_client.list_zones.return_value = list(ZONES)
    mock_client.execute.return_value = analytics_data()
    return mock_client


def make_collector(client, **env):
    config = CollectorConfig.from_env(make_env(**env))
    return CloudflareCollector(config=config, client=client, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_one_query_per_path_with_normalized_domains(client):
    """Test that every configured path gets exactly one query against the trimmed domains"""
    collector = make_collector(client)

    assert collector.config.request_paths == ["/api/%", "/v1/.*"]
    assert collector.config.domain_names == ["example.com", "test.com"]

    await collector.scrape_cycle()

    assert client.list_zones.await_count == 1
    assert client.execute.await_count == 2

    queries = [c.args[0] for c in client.execute.await_args_list]
    assert sorted(q.request_path for q in queries) == ["/api/%", "/v1/.*"]
    for q in queries:
        assert q.domain_names == ["example.com", "test.com"]
        assert q.zone_ids == ["z2"]  # free-tier zone filtered out
        assert q.limit == 9999


@pytest.mark.asyncio
async def test_cycle_uses_delayed_aligned_window(client):
    """Test that the query window ends scrape_delay before now, floored to the minute"""
    collector = make_collector(client)

    await collector.scrape_cycle()

    query = client.execute.await_args_list[0].args[0]
    assert query.window.end == datetime(2024, 5, 1, 12, 5, 0, tzinfo=timezone.utc)
    assert query.window.start == datetime(2024, 5, 1, 12, 4, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_counters_labelled_by_zone_name_and_path(client):
    """Test that folded counters carry the zone name, status, host and path"""
    collector = make_collector(client, CF_REQUEST_PATHS="/api/%")

    await collector.scrape_cycle()
    await collector.scrape_cycle()

    value = collector.metrics.sample_value(
        COUNTER,
        {"zone": "example.com", "status": "200", "host": "example.com", "path": "/api/%"},
    )
    assert value == 6


@pytest.mark.asyncio
async def test_failed_path_does_not_affect_other_paths(client):
    """Test that a query failure on one path keeps the counters of the other"""

    async def execute(query):
        if query.request_path == "/v1/.*":
            raise QueryError("boom", query.request_path)
        return analytics_data()

    client.execute.side_effect = execute
    collector = make_collector(client)

    await collector.scrape_cycle()

    assert (
        collector.metrics.sample_value(
            COUNTER,
            {"zone": "example.com", "status": "200", "host": "example.com", "path": "/api/%"},
        )
        == 3
    )
    assert (
        collector.metrics.sample_value(
            "cloudflare_exporter_queries_total", {"path": "/v1/.*", "status": "error"}
        )
        == 1
    )
    assert (
        collector.metrics.sample_value(
            "cloudflare_exporter_queries_total", {"path": "/api/%", "status": "ok"}
        )
        == 1
    )


@pytest.mark.asyncio
async def test_failure_on_first_path_still_runs_second(client):
    """Test that an earlier failing path does not stop later ones"""
    client.execute.side_effect = [QueryError("boom", "/api/%"), analytics_data()]
    collector = make_collector(client)

    await collector.scrape_cycle()

    assert client.execute.await_count == 2
    assert (
        collector.metrics.sample_value(
            COUNTER,
            {"zone": "example.com", "status": "200", "host": "example.com", "path": "/v1/.*"},
        )
        == 3
    )


@pytest.mark.asyncio
async def test_malformed_response_is_skipped(client):
    """Test that a response without viewer.zones only costs that path"""
    client.execute.side_effect = [{"unexpected": True}, analytics_data()]
    collector = make_collector(client)

    await collector.scrape_cycle()

    assert (
        collector.metrics.sample_value(
            "cloudflare_exporter_queries_total", {"path": "/api/%", "status": "malformed"}
        )
        == 1
    )


@pytest.mark.asyncio
async def test_slow_query_times_out(client):
    """Test that a query exceeding the timeout is abandoned without blocking the cycle"""

    async def execute(query):
        if query.request_path == "/api/%":
            await asyncio.sleep(5)
        return analytics_data()

    client.execute.side_effect = execute
    collector = make_collector(client, CF_QUERY_TIMEOUT="0.05", CF_QUERY_CONCURRENCY="2")

    await collector.scrape_cycle()

    assert (
        collector.metrics.sample_value(
            "cloudflare_exporter_queries_total", {"path": "/api/%", "status": "error"}
        )
        == 1
    )
    assert (
        collector.metrics.sample_value(
            "cloudflare_exporter_queries_total", {"path": "/v1/.*", "status": "ok"}
        )
        == 1
    )


@pytest.mark.asyncio
async def test_free_tier_flag_is_noop(client):
    """Test that the free tier flag short-circuits the whole cycle"""
    collector = make_collector(client, CF_FREE_TIER="true")

    await collector.scrape_cycle()

    client.list_zones.assert_not_called()
    client.execute.assert_not_called()


@pytest.mark.asyncio
async def test_only_free_zones_exits_early(client):
    """Test that an empty paid-tier zone set ends the cycle without queries"""
    client.list_zones.return_value = [ZONES[0]]
    collector = make_collector(client)

    await collector.scrape_cycle()

    client.execute.assert_not_called()
    assert collector.metrics.sample_value("cloudflare_exporter_last_success_timestamp_seconds") == 0


@pytest.mark.asyncio
async def test_zone_allow_list(client):
    """Test that CF_ZONES restricts which zones are queried"""
    client.list_zones.return_value = [
        Zone(id="z2", name="example.com", plan_tier=PlanTier.PAID),
        Zone(id="z3", name="other.com", plan_tier=PlanTier.PAID),
    ]
    collector = make_collector(client, CF_ZONES="z3")

    await collector.scrape_cycle()

    for c in client.execute.await_args_list:
        assert c.args[0].zone_ids == ["z3"]


@pytest.mark.asyncio
async def test_zone_listing_failure_propagates(client):
    """Test that provider errors during zone listing abort the cycle"""
    client.list_zones.side_effect = ProviderAuthError("bad token")
    collector = make_collector(client)

    with pytest.raises(ProviderAuthError):
        await collector.scrape_cycle()

    client.execute.assert_not_called()


@pytest.mark.asyncio
async def test_denied_metric_is_not_written(client):
    """Test that a denylisted counter is neither registered nor incremented"""
    collector = make_collector(
        client, CF_METRICS_DENYLIST=MetricName.ZONE_REQUESTS_STATUS_COUNTRY_HOST.value
    )

    await collector.scrape_cycle()

    assert client.execute.await_count == 2
    assert (
        collector.metrics.sample_value(
            COUNTER,
            {"zone": "example.com", "status": "200", "host": "example.com", "path": "/api/%"},
        )
        is None
    )


def test_unknown_denylist_metric_fails_at_startup(client):
    """Test that an unknown denylist entry stops the collector before scraping"""
    with pytest.raises(UnknownMetricError):
        make_collector(client, CF_METRICS_DENYLIST="unknown_metric")


def test_missing_credentials_fail_at_startup(client):
    """Test that the collector refuses to start without credentials"""
    config = CollectorConfig.from_env(make_env(CF_API_TOKEN=""))

    with pytest.raises(FatalConfigError):
        CloudflareCollector(config=config, client=client)


@pytest.mark.asyncio
async def test_mock_mode_runs_without_credentials():
    """Test that mock mode drives the full pipeline with no network or credentials"""
    config = CollectorConfig.from_env(make_env(CF_API_TOKEN="", CF_USE_MOCK="true"))
    collector = CloudflareCollector(config=config, clock=lambda: NOW)

    await collector.scrape_cycle()

    assert (
        collector.metrics.sample_value(
            "cloudflare_exporter_queries_total", {"path": "/api/%", "status": "ok"}
        )
        == 1
    )
    assert collector.metrics.sample_value("cloudflare_exporter_last_success_timestamp_seconds") > 0


@pytest.mark.asyncio
async def test_run_starts_metrics_server_and_closes_client(client):
    """Test that run() serves the registry and closes the client on exit"""
    collector = make_collector(client)

    async def stop_after_one_cycle():
        collector.running = False

    with patch("collector_cloudflare.main.start_http_server") as mock_server, patch.object(
        collector, "scrape_cycle", side_effect=stop_after_one_cycle
    ), patch("collector_cloudflare.main.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        await collector.run()

    mock_sleep.assert_awaited_once()

    mock_server.assert_called_once_with(
        8080, addr="0.0.0.0", registry=collector.metrics.registry
    )
    client.close.assert_awaited_once()
    assert collector.running is False


@pytest.mark.asyncio
async def test_all_paths_failing_leaves_last_success_unset(client):
    """Test that a cycle where every path fails does not count as a success"""
    client.execute.side_effect = QueryError("boom")
    collector = make_collector(client)

    await collector.scrape_cycle()

    assert client.execute.await_count == 2
    assert collector.metrics.sample_value("cloudflare_exporter_last_success_timestamp_seconds") == 0
    assert (
        collector.metrics.sample_value(
            "cloudflare_exporter_queries_total", {"path": "/v1/.*", "status": "error"}
        )
        == 1
    )


@pytest.mark.asyncio
async def test_one_path_ok_sets_last_success(client):
    """Test that a single successful path marks the cycle as a success"""
    client.execute.side_effect = [MalformedResponseError("no viewer"), analytics_data()]
    collector = make_collector(client)

    await collector.scrape_cycle()

    assert collector.metrics.sample_value("cloudflare_exporter_last_success_timestamp_seconds") > 0


@pytest.mark.asyncio
async def test_query_error_log_names_failing_path(client, caplog):
    """Test that the failure log line carries the request path from the error"""
    client.execute.side_effect = [QueryError("graphql: limit exceeded", "/api/%"), analytics_data()]
    collector = make_collector(client)

    with caplog.at_level(logging.ERROR, logger="collector_cloudflare.main"):
        await collector.scrape_cycle()

    assert "Query for path /api/% failed: graphql: limit exceeded" in caplog.text
