from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import Field

from admarket.auth.schemas import CamelModel

ListOrString = Union[list[str], str, None]


class AdPayload(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    target_url: Optional[str] = Field(default=None, alias="targetUrl")
    final_destination_url: Optional[str] = Field(default=None, alias="finalDestinationUrl")
    url_parameters: Optional[Any] = Field(default=None, alias="urlParameters")
    budget: Optional[int] = None
    daily_budget: Optional[int] = Field(default=None, alias="dailyBudget")
    bid_per_impression: Optional[int] = Field(default=None, alias="bidPerImpression")
    bid_per_click: Optional[int] = Field(default=None, alias="bidPerClick")
    format: Optional[str] = None
    freq_cap_views: Optional[int] = Field(default=None, alias="freqCapViews")
    freq_cap_hours: Optional[int] = Field(default=None, alias="freqCapHours")
    target_location: ListOrString = Field(default=None, alias="targetLocation")
    target_interests: ListOrString = Field(default=None, alias="targetInterests")
    target_age: Optional[str] = Field(default=None, alias="targetAge")
    targeted_ad_spaces: list[str] = Field(default_factory=list, alias="targetedAdSpaces")
    campaign_id: Optional[str] = Field(default=None, alias="campaignId")
    status: Optional[str] = None


class ClickPayload(CamelModel):
    space_id: Optional[str] = Field(default=None, alias="spaceId")
