from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Response models are serialized with the camelCase keys clients expect."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Price Schemas
class PricePoint(CamelModel):
    """One quote from the pricing service. Immutable once received."""
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    price: float
    volume: int = 0
    timestamp: datetime = Field(alias="lastUpdatedAt")

    @field_validator("timestamp")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        # Naive upstream timestamps are treated as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class TickerStats(CamelModel):
    average_price: float
    price_history: List[PricePoint]


# Endpoint Schemas
class StocksResponse(CamelModel):
    stocks: Dict[str, str]  # company name -> ticker


class AveragePriceResponse(CamelModel):
    average_stock_price: float
    price_history: List[PricePoint]


class CorrelationResponse(CamelModel):
    correlation: Optional[float] = None  # None when there is not enough aligned data
    sample_size: int = 0
    stocks: Dict[str, TickerStats]


class HealthResponse(CamelModel):
    success: bool
    stock_count: int = 0
    message: str
    error: Optional[str] = None


class CacheClearResponse(CamelModel):
    message: str
    entries_removed: int
