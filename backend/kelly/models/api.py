from pydantic import BaseModel, Field, ConfigDict, Discriminator, Tag, field_validator
from typing import Optional, Dict, Any, List, Literal, Union
from typing_extensions import Annotated
from datetime import datetime


Priority = Literal["high", "medium", "low"]
InsightStatus = Literal["active", "dismissed", "completed"]

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


class MarketData(BaseModel):
    avg_price: float
    min_price: float
    max_price: float
    sales_last_30d: Optional[int] = None


class AdjustPriceAction(BaseModel):
    type: Literal["adjust_price"] = "adjust_price"
    current_price: Optional[float] = None
    suggested_price: float = Field(..., gt=0)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    reasoning: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0, le=1)
    market_data: Optional[MarketData] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value):
        # Models sometimes answer with a percentage
        if isinstance(value, (int, float)) and value > 1:
            return value / 100
        return value


class CreateBundleAction(BaseModel):
    type: Literal["create_bundle"] = "create_bundle"
    article_ids: List[str] = Field(default_factory=list, description="Bundle members; defaults to the insight's articles")
    reasoning: Optional[str] = None


class TestPriceAction(BaseModel):
    type: Literal["test_price"] = "test_price"
    min_price: float = Field(..., gt=0)
    max_price: float = Field(..., gt=0)
    reasoning: Optional[str] = None


class InformationalAction(BaseModel):
    """Any other tag; carried as-is, never executed"""
    model_config = ConfigDict(extra="allow")

    type: str
    value: Optional[Any] = None


EXECUTABLE_ACTION_TAGS = ("adjust_price", "create_bundle", "test_price")


def _action_tag(value: Any) -> str:
    tag = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return tag if tag in EXECUTABLE_ACTION_TAGS else "informational"


SuggestedAction = Annotated[
    Union[
        Annotated[AdjustPriceAction, Tag("adjust_price")],
        Annotated[CreateBundleAction, Tag("create_bundle")],
        Annotated[TestPriceAction, Tag("test_price")],
        Annotated[InformationalAction, Tag("informational")],
    ],
    Discriminator(_action_tag),
]


class InsightDraft(BaseModel):
    """A recommendation as produced by a generator, before it is stored"""

    type: str
    priority: Priority = "medium"
    title: str = Field(..., min_length=1, max_length=255)
    message: str = ""
    action_label: Optional[str] = None
    article_ids: List[str] = Field(default_factory=list)
    article_titles: List[str] = Field(default_factory=list)
    suggested_action: Optional[SuggestedAction] = None

    @field_validator("article_ids")
    @classmethod
    def dedupe_article_ids(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))


class Insight(InsightDraft):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: InsightStatus = "active"
    cache_key: str
    created_at: datetime
    expires_at: datetime
    last_refresh_at: datetime


class MarketStats(BaseModel):
    brand: str
    category: str
    condition: Optional[str] = None
    avg_sold_price: float
    min_sold_price: float
    max_sold_price: float
    total_sales: int


class SellingSuggestion(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    article_id: Optional[str] = None
    lot_id: Optional[str] = None
    suggested_date: str
    priority: Priority = "medium"
    reason: Optional[str] = None
    status: Literal["pending", "accepted", "rejected"] = "pending"


class ActionResult(BaseModel):
    insight_id: str
    status: InsightStatus
    message: str
    applied_ids: List[str] = Field(default_factory=list)
    lot_id: Optional[str] = None
    navigate_to: Optional[str] = None  # Article to open for informational insights
    regeneration_scheduled: bool = False


class InsightCounts(BaseModel):
    general: int = 0
    pricing: int = 0
    scheduling: int = 0
    total: int = 0


class InsightsResponse(BaseModel):
    counts: InsightCounts
    general: List[Insight] = Field(default_factory=list)
    pricing: List[Insight] = Field(default_factory=list)
    scheduling: List[SellingSuggestion] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
    in_flight: Dict[str, bool] = Field(default_factory=dict)


class DismissResponse(BaseModel):
    insight_id: str
    status: InsightStatus = "dismissed"
    counts: InsightCounts


class AcceptSuggestionRequest(BaseModel):
    scheduled_for: Optional[datetime] = None
