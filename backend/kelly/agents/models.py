from pydantic import BaseModel, Field
from typing import List, Literal

from kelly.models.api import InsightDraft


PricingInsightType = Literal[
    "overpriced",
    "underpriced",
    "optimal_price",
    "price_test",
    "bundle_opportunity",
    "psychological_pricing",
]

ProactiveInsightType = Literal[
    "ready_to_list",
    "ready_to_publish",
    "stale",
    "seasonal",
    "incomplete",
    "bundle",
    "seo_optimization",
    "price_drop",
    "opportunity",
]


class PricingInsightOut(InsightDraft):
    type: PricingInsightType


class PricingInsightBatch(BaseModel):
    """Structured answer expected for a pricing analysis"""
    insights: List[PricingInsightOut] = Field(default_factory=list, description="3 to 5 pricing insights")


class ProactiveInsightOut(InsightDraft):
    type: ProactiveInsightType


class ProactiveInsightBatch(BaseModel):
    """Structured answer expected for a proactive inventory review"""
    insights: List[ProactiveInsightOut] = Field(default_factory=list)


class SeoCopy(BaseModel):
    seo_keywords: List[str] = Field(default_factory=list)
    hashtags: List[str] = Field(default_factory=list)
    search_terms: List[str] = Field(default_factory=list)


class LotCopy(SeoCopy):
    """Title and description written for a new lot"""
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    ai_confidence_score: int = Field(50, ge=0, le=100)
