from enum import Enum
from datetime import datetime, timedelta
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


FREE_PLAN_ID = "0feeeeeeeeeeeeeeeeeeeeeeeeeeeeee"


class PlanTier(str, Enum):
    FREE = "free"
    PAID = "paid"


class Zone(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    plan_tier: PlanTier = PlanTier.PAID


class TimeWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_one_minute(self) -> "TimeWindow":
        if self.end - self.start != timedelta(seconds=60):
            raise ValueError("time window must span exactly 60 seconds")
        if self.end.second or self.end.microsecond:
            raise ValueError("time window must be aligned to a minute boundary")
        return self


class AnalyticsQuery(BaseModel):
    zone_ids: List[str] = Field(min_length=1)
    domain_names: List[str]
    request_path: str
    window: TimeWindow
    limit: int = Field(default=9999, gt=0)


class AnalyticsRecord(BaseModel):
    zone_tag: str
    edge_response_status: int
    client_host: str
    count: int = Field(ge=0)


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_token: str = ""
    api_key: str = ""
    api_email: str = ""

    @property
    def uses_token(self) -> bool:
        return bool(self.api_token)

    @property
    def is_complete(self) -> bool:
        return self.uses_token or bool(self.api_key and self.api_email)


# GraphQL response envelope. Unknown fields are ignored.


class GroupDimensions(BaseModel):
    edgeResponseStatus: int
    clientRequestHTTPHost: str = ""


class EdgeCountryHostGroup(BaseModel):
    count: int = Field(ge=0)
    dimensions: GroupDimensions


class ZoneAnalytics(BaseModel):
    zoneTag: str
    httpRequestsEdgeCountryHost: Optional[List[EdgeCountryHostGroup]] = None


class Viewer(BaseModel):
    zones: List[ZoneAnalytics]


class AnalyticsResponse(BaseModel):
    viewer: Viewer
