"""
Trade event (transaction) models.

A transaction is identified by ``(event_time, pure_product_id,
pure_variant_id)``; the provider may re-report an event and the triple
collapses the duplicate on upsert. ``event_type`` is derived at ingestion
time and may be re-derived by the event-type backfill.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class EventType(str, Enum):
    """Buy/sell classification of a trade relative to the market extremes."""

    BUY = "buy"
    SELL = "sell"
    UNKNOWN = "unknown"


class NewTransaction(BaseModel):
    """A transaction candidate built from one provider activity event.

    ``product_id`` is informational; the repository re-resolves the
    surrogate id from the natural variant key at write time.

    Attributes:
        product_id: Surrogate ``products.id`` of the owning variant, if known.
        pure_product_id: Provider product id.
        pure_variant_id: Provider variant id.
        price: Trade price in USD.
        quantity: Units traded.
        spot_premium_percentage: Premium over spot, in percent.
        spot_premium_dollar: Premium over spot, in USD.
        event_time: UTC time of the trade.
        event_type: Derived buy/sell/unknown label.
    """

    model_config = ConfigDict(frozen=True)

    product_id: Optional[int] = None
    pure_product_id: str
    pure_variant_id: str
    price: float
    quantity: int
    spot_premium_percentage: float
    spot_premium_dollar: float
    event_time: datetime
    event_type: Optional[EventType] = None

    @field_validator("event_time")
    @classmethod
    def validate_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("event_time must be timezone-aware.")
        return v

    @property
    def natural_key(self) -> tuple[datetime, str, str]:
        return (self.event_time, self.pure_product_id, self.pure_variant_id)


class Transaction(NewTransaction):
    """A persisted ``transactions`` row."""

    id: int
    product_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
