"""Cloudflare API client: zone listing and GraphQL analytics queries."""

import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from analytics_core.schemas import (
    AnalyticsQuery,
    Credentials,
    TimeWindow,
    Zone,
)
from .errors import ProviderAuthError, ProviderUnavailable, QueryError
from .window import format_rfc3339
from .zones import zone_from_api


logger = logging.getLogger(__name__)

CF_API_BASE = "https://api.cloudflare.com/client/v4"
CF_GRAPHQL_ENDPOINT = "https://api.cloudflare.com/client/v4/graphql/"
DEFAULT_QUERY_LIMIT = 9999
ZONES_PER_PAGE = 50

ZONE_TOTALS_QUERY = """
query ($zoneIDs: [String!], $mintime: Time!, $maxtime: Time!, $limit: Int!, $requestPath: String!, $domainNames: [String!]) {
  viewer {
    zones(filter: { zoneTag_in: $zoneIDs }) {
      zoneTag
      httpRequestsEdgeCountryHost: httpRequestsAdaptiveGroups(limit: $limit, filter: {
        datetime_geq: $mintime,
        datetime_lt: $maxtime,
        clientRequestPath_like: $requestPath,
        clientRequestHTTPHost_in: $domainNames
      }) {
        count
        dimensions {
          edgeResponseStatus
          clientRequestHTTPHost
        }
      }
    }
  }
}
"""


def auth_headers(credentials: Credentials) -> Dict[str, str]:
    """Token auth wins whenever a token is configured."""
    if credentials.uses_token:
        return {"Authorization": f"Bearer {credentials.api_token}"}
    return {
        "X-AUTH-EMAIL": credentials.api_email,
        "X-AUTH-KEY": credentials.api_key,
    }


def build_query(
    zone_ids: List[str],
    domain_names: List[str],
    request_path: str,
    window: TimeWindow,
    limit: int = DEFAULT_QUERY_LIMIT,
) -> AnalyticsQuery:
    if not zone_ids:
        raise ValueError("an analytics query needs at least one zone id")
    return AnalyticsQuery(
        zone_ids=list(zone_ids),
        domain_names=list(domain_names),
        request_path=request_path,
        window=window,
        limit=limit,
    )


def graphql_variables(query: AnalyticsQuery) -> Dict[str, Any]:
    return {
        "zoneIDs": query.zone_ids,
        "mintime": format_rfc3339(query.window.start),
        "maxtime": format_rfc3339(query.window.end),
        "limit": query.limit,
        "requestPath": query.request_path,
        "domainNames": query.domain_names,
    }


def _error_messages(body: Any) -> str:
    if isinstance(body, dict):
        errors = body.get("errors") or []
        messages = [
            e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors
        ]
        return "; ".join(messages)
    return ""


class CloudflareClient:
    """Async Cloudflare client bound to one set of credentials."""

    def __init__(
        self,
        credentials: Credentials,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        api_base: str = CF_API_BASE,
        graphql_endpoint: str = CF_GRAPHQL_ENDPOINT,
    ):
        self.credentials = credentials
        self.api_base = api_base.rstrip("/")
        self.graphql_endpoint = graphql_endpoint
        self.headers = {
            **auth_headers(credentials),
            "Accept": "application/json",
            "User-Agent": "cloudflare-analytics-exporter/1.0",
        }

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            headers=self.headers,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    @retry(
        retry=retry_if_exception_type(ProviderUnavailable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def list_zones(self) -> List[Zone]:
        """Fetch every zone the credentials can see, across all pages."""
        zones: List[Zone] = []
        page = 1
        while True:
            body = await self._get_zone_page(page)
            try:
                zones.extend(zone_from_api(z) for z in body.get("result") or [])
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                logger.warning(f"Unexpected zone entry on page {page}: {e!r}")
                raise ProviderUnavailable(
                    "zone listing returned an unexpected shape"
                ) from e

            total_pages = (body.get("result_info") or {}).get("total_pages", 1)
            if page >= total_pages:
                break
            page += 1

        logger.info(f"Listed {len(zones)} zones")
        return zones

    async def _get_zone_page(self, page: int) -> Dict[str, Any]:
        url = f"{self.api_base}/zones"
        params = {"page": page, "per_page": ZONES_PER_PAGE}

        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.warning(f"Zone listing request failed: {e}")
            raise ProviderUnavailable(f"zone listing failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code in (400, 401, 403):
            raise ProviderAuthError(
                f"zone listing rejected with HTTP {response.status_code}: "
                f"{_error_messages(body) or response.text[:200]}"
            )
        if response.status_code >= 300:
            raise ProviderUnavailable(
                f"zone listing failed with HTTP {response.status_code}"
            )
        if not isinstance(body, dict):
            raise ProviderUnavailable("zone listing returned a non-JSON body")
        if not body.get("success", False):
            raise ProviderUnavailable(
                f"zone listing unsuccessful: {_error_messages(body)}"
            )

        return body

    async def execute(self, query: AnalyticsQuery) -> Optional[Dict[str, Any]]:
        """Run one analytics query and return the GraphQL ``data`` member."""
        payload = {"query": ZONE_TOTALS_QUERY, "variables": graphql_variables(query)}

        try:
            response = await self.client.post(self.graphql_endpoint, json=payload)
        except httpx.HTTPError as e:
            raise QueryError(
                f"analytics request failed: {e!r}", query.request_path
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            raise QueryError(
                f"analytics request failed with HTTP {response.status_code}: "
                f"{_error_messages(body)}",
                query.request_path,
            )
        if not isinstance(body, dict):
            raise QueryError("analytics response is not a JSON object", query.request_path)

        if body.get("errors"):
            raise QueryError(
                f"graphql: {_error_messages(body)}", query.request_path
            )

        return body.get("data")
