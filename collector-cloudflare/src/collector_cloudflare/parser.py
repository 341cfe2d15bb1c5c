"""Flatten the GraphQL analytics response into AnalyticsRecord rows."""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from analytics_core.schemas import AnalyticsRecord, AnalyticsResponse
from .errors import MalformedResponseError


logger = logging.getLogger(__name__)


def parse_response(
    data: Optional[Dict[str, Any]], limit: Optional[int] = None
) -> List[AnalyticsRecord]:
    """Return one record per (zone, status, host) group in ``data``.

    ``data`` is the ``data`` member of the GraphQL reply. The whole response
    is rejected if ``viewer.zones`` is missing or has the wrong shape; zones
    without groups simply contribute nothing. When ``limit`` is given, a zone
    that returned exactly that many groups is reported as possibly truncated.
    """
    if not isinstance(data, dict):
        raise MalformedResponseError(f"expected a JSON object, got {type(data).__name__}")

    try:
        response = AnalyticsResponse.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(f"unexpected analytics response shape: {e}") from e

    records: List[AnalyticsRecord] = []
    for zone in response.viewer.zones:
        groups = zone.httpRequestsEdgeCountryHost or []

        if limit is not None and len(groups) >= limit:
            logger.warning(
                f"Zone {zone.zoneTag} returned {len(groups)} groups, "
                f"hitting the query limit of {limit}; results may be truncated"
            )

        for g in groups:
            records.append(
                AnalyticsRecord(
                    zone_tag=zone.zoneTag,
                    edge_response_status=g.dimensions.edgeResponseStatus,
                    client_host=g.dimensions.clientRequestHTTPHost,
                    count=g.count,
                )
            )

    return records
