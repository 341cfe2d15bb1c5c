"""Mock Cloudflare provider for running the collector without credentials."""

import random
from typing import List, Dict, Any, Optional

from analytics_core.schemas import AnalyticsQuery, PlanTier, Zone


MOCK_ZONES = [
    Zone(id="mockzone0000000000000000000000a1", name="example.com", plan_tier=PlanTier.PAID),
    Zone(id="mockzone0000000000000000000000b2", name="example.org", plan_tier=PlanTier.PAID),
    Zone(id="mockzone0000000000000000000000c3", name="hobby.example", plan_tier=PlanTier.FREE),
]

STATUSES = [200, 200, 200, 200, 301, 304, 404, 500, 503]


def generate_mock_groups(hosts: List[str], count: Optional[int] = None) -> List[Dict[str, Any]]:
    """Generate adaptive-group rows shaped like the GraphQL dataset."""
    if count is None:
        count = random.randint(1, 6)
    if not hosts:
        return []

    groups = []
    for _ in range(count):
        groups.append(
            {
                "count": random.randint(1, 500),
                "dimensions": {
                    "edgeResponseStatus": random.choice(STATUSES),
                    "clientRequestHTTPHost": random.choice(hosts),
                },
            }
        )
    return groups


def generate_mock_response(query: AnalyticsQuery) -> Dict[str, Any]:
    """Generate the ``data`` member of an analytics reply for ``query``."""
    zones = []
    for zone_id in query.zone_ids:
        groups = generate_mock_groups(query.domain_names)
        zones.append({"zoneTag": zone_id, "httpRequestsEdgeCountryHost": groups[: query.limit]})

    return {"viewer": {"zones": zones}}


class MockCloudflareClient:
    """Drop-in for CloudflareClient that never touches the network."""

    def __init__(self, zones: Optional[List[Zone]] = None):
        self.zones = list(MOCK_ZONES if zones is None else zones)

    async def list_zones(self) -> List[Zone]:
        return list(self.zones)

    async def execute(self, query: AnalyticsQuery) -> Dict[str, Any]:
        return generate_mock_response(query)

    async def close(self):
        pass
