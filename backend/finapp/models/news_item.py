from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

Sentiment = Literal["positive", "negative", "neutral"]


class Entity(BaseModel):
    symbol: Optional[str] = None
    name: Optional[str] = None
    exchange: Optional[str] = None
    country: Optional[str] = None
    type: Optional[str] = None
    industry: Optional[str] = None


class NewsItem(BaseModel):
    """Единая новость, не зависящая от провайдера."""

    id: str
    title: str
    description: str = ""
    url: str
    published_at: datetime
    source: str
    category: str
    sentiment: Optional[Sentiment] = None
    symbols: list[str] = Field(default_factory=list)
    image_url: Optional[str] = None

    # Только у MarketAux
    sentiment_score: Optional[float] = None
    country: Optional[str] = None
    entities: list[Entity] = Field(default_factory=list)

    @field_validator("title", "url")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("must be a non-empty string")
        return v.strip()
