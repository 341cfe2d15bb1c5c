"""Zone filtering helpers."""

from typing import Any, Dict, Iterable, List

from analytics_core.schemas import FREE_PLAN_ID, PlanTier, Zone


def zone_from_api(data: Dict[str, Any]) -> Zone:
    """Build a Zone from one entry of the ``/zones`` result list."""
    plan = data.get("plan") or {}
    tier = PlanTier.FREE if plan.get("id") == FREE_PLAN_ID else PlanTier.PAID
    return Zone(id=data["id"], name=data.get("name", ""), plan_tier=tier)


def filter_by_id(zones: List[Zone], ids: Iterable[str]) -> List[Zone]:
    """Keep zones whose id is in ``ids``; an empty allow-list keeps everything."""
    wanted = set(ids)
    if not wanted:
        return list(zones)
    return [z for z in zones if z.id in wanted]


def filter_paid_tier(zones: List[Zone]) -> List[Zone]:
    # None of the exported datasets are available on the free plan
    return [z for z in zones if z.plan_tier != PlanTier.FREE]


def zone_ids(zones: List[Zone]) -> List[str]:
    return [z.id for z in zones]


def find_zone_name(zones: List[Zone], zone_id: str) -> str:
    for z in zones:
        if z.id == zone_id:
            return z.name
    return ""
