"""
Product variant models — the external catalog unit plus its market snapshot.

Two shapes:
  1. ``NewProductVariant`` — upsert-ready record built by the API client;
                             carries no surrogate id.
  2. ``ProductVariant``    — a stored ``products`` row, with ``id`` and
                             audit timestamps.

The natural key is ``(pure_product_id, pure_variant_id)``. The market
snapshot premiums are ``None`` when the provider has no live offer/listing;
``market_data_updated_at`` is stamped on every sync regardless.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

VariantKey = tuple[str, str]


class NewProductVariant(BaseModel):
    """A product variant ready to be upserted into ``products``.

    Attributes:
        pure_product_id: Provider product id.
        pure_variant_id: Provider variant id (distinct from the product id).
        name: Product title.
        sku: Product SKU.
        material: Metal/material label (e.g. ``"Silver"``).
        variant_label: Variant title, e.g. ``"1 oz"`` or ``"Proof"``.
        image_url: Product image reference, when the provider supplies one.
        highest_offer_spot_premium: Best bid premium (%), or ``None``.
        lowest_listing_spot_premium: Best ask premium (%), or ``None``.
        market_data_updated_at: UTC time the snapshot was taken.
    """

    model_config = ConfigDict(frozen=True)

    pure_product_id: str
    pure_variant_id: str
    name: str
    sku: str
    material: str
    variant_label: str
    image_url: Optional[str] = None
    highest_offer_spot_premium: Optional[float] = None
    lowest_listing_spot_premium: Optional[float] = None
    market_data_updated_at: Optional[datetime] = None

    @field_validator("pure_product_id", "pure_variant_id")
    @classmethod
    def validate_id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Provider ids must be non-empty.")
        return v

    @property
    def key(self) -> VariantKey:
        return (self.pure_product_id, self.pure_variant_id)


class ProductVariant(NewProductVariant):
    """A persisted ``products`` row."""

    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
