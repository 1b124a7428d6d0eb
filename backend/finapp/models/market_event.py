from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

ImpactColor = Literal["green", "yellow", "red"]

# (нижняя граница, верхняя граница, уровень, цвет), шкала 0–100
IMPACT_BANDS = [
    (0, 9, "negligible", "green"),
    (10, 29, "minor/local", "green"),
    (30, 49, "moderate", "yellow"),
    (50, 69, "material", "yellow"),
    (70, 89, "major/broad", "red"),
    (90, 100, "systemic", "red"),
]


def clamp_impact(score) -> int:
    value = float(score)
    if value != value:
        raise ValueError("impact_score is NaN")
    return int(round(max(0.0, min(100.0, value))))


def impact_color(score) -> str:
    """Цвет события строго по таблице IMPACT_BANDS."""
    value = clamp_impact(score)
    for low, high, _, color in IMPACT_BANDS:
        if low <= value <= high:
            return color
    return "red"


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class StockRef(BaseModel):
    ticker: str
    name: str

    @field_validator("ticker")
    @classmethod
    def upper_ticker(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("ticker must be non-empty")
        return v


class MarketEvent(BaseModel):
    title: str
    summary: str
    category: str
    article_link: str
    image_url: str
    coordinates: Coordinates
    country_code: Optional[str] = None
    impact_score: int
    impact_reason: str
    impact_color: ImpactColor
    relevant_stocks: list[StockRef]
    event_date: str
    origin: Literal["model", "heuristic"] = "model"

    @field_validator("title", "article_link")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be a non-empty string")
        return v.strip()

    @field_validator("impact_score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        if v is None or isinstance(v, bool):
            raise ValueError("impact_score is required")
        return clamp_impact(v)

    @field_validator("country_code")
    @classmethod
    def upper_country(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        return v.strip().upper() or None

    @model_validator(mode="before")
    @classmethod
    def color_from_score(cls, data):
        # Цвет всегда согласован со шкалой, даже если модель ошиблась
        if isinstance(data, dict) and data.get("impact_score") is not None and data.get("impact_color") is not None:
            try:
                data = {**data, "impact_color": impact_color(data["impact_score"])}
            except (TypeError, ValueError):
                pass
        return data
