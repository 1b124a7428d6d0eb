from typing import Literal, Optional

from pydantic import BaseModel, Field

SortOrder = Literal["published_desc", "published_asc", "relevance_desc", "relevance_asc"]


class NewsQuery(BaseModel):
    """Параметры запроса к MarketAux /news/all."""

    symbols: Optional[list[str]] = None
    exchanges: Optional[list[str]] = None
    entity_types: Optional[list[str]] = None
    countries: Optional[list[str]] = None
    languages: Optional[list[str]] = None
    sentiment: Optional[Literal["positive", "negative", "neutral"]] = None
    min_match_score: Optional[float] = None
    must_have_entities: Optional[bool] = None
    published_after: Optional[str] = None
    published_before: Optional[str] = None
    published_on: Optional[str] = None
    sort: Optional[SortOrder] = None
    filter_entities: Optional[bool] = None
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    page: Optional[int] = Field(default=None, ge=1)

    def to_params(self) -> dict:
        params = {}
        for key, value in self.model_dump(exclude_none=True).items():
            if isinstance(value, list):
                if value:
                    params[key] = ",".join(str(v) for v in value)
            elif isinstance(value, bool):
                params[key] = "true" if value else "false"
            else:
                params[key] = str(value)
        return params
