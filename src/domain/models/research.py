"""Research result domain models.

The research agent returns loosely structured JSON; every section except
title/summary is optional and unknown keys are ignored.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.domain.models.form_schema import CamelModel


class LenientModel(CamelModel):
    """Camel-cased model that drops keys it does not know."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class ProsAndCons(LenientModel):
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)


class PricingTier(LenientModel):
    name: str = ""
    price: str = ""
    features: str = ""


class Pricing(LenientModel):
    overview: str = ""
    tiers: List[PricingTier] = Field(default_factory=list)
    notes: Optional[str] = None


class Competitor(LenientModel):
    name: str = ""
    comparison: str = ""


class ResearchSource(LenientModel):
    title: str = ""
    url: str = ""
    snippet: str = ""


class ResearchResult(LenientModel):
    """Structured research report shown in the PRESENTING state.

    ``is_fallback`` marks a degraded result assembled from raw text when
    the agent output could not be parsed.
    """

    id: str = Field(default_factory=lambda: f"result_{uuid.uuid4().hex[:12]}")
    title: str = ""
    summary: str = ""
    overview: Optional[str] = None
    key_findings: List[str] = Field(default_factory=list)
    pros_and_cons: Optional[ProsAndCons] = None
    pricing: Optional[Pricing] = None
    competitors: Optional[List[Competitor]] = None
    recommendations: Optional[str] = None
    sources: List[ResearchSource] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_fallback: bool = False
