"""
Buy/sell classification of a trade from the variant's market extremes.

A trade whose spot premium sits closer to the lowest listing (the ask) was
most likely a buyer taking a listing; one closer to the highest offer (the
bid) was a seller hitting an offer.
"""

from __future__ import annotations

from typing import Optional

from pure_ingest.models.transaction import EventType


def determine_event_type(
    transaction_premium: float,
    highest_offer_premium: Optional[float],
    lowest_listing_premium: Optional[float],
) -> EventType:
    """Classify a trade premium against the current bid/ask premiums.

    Returns ``UNKNOWN`` when either extreme is missing, ``BUY`` when the trade
    is strictly closer to the listing, ``SELL`` otherwise (ties included).
    """
    if highest_offer_premium is None or lowest_listing_premium is None:
        return EventType.UNKNOWN

    dist_to_offer = abs(transaction_premium - highest_offer_premium)
    dist_to_listing = abs(transaction_premium - lowest_listing_premium)
    if dist_to_listing < dist_to_offer:
        return EventType.BUY
    return EventType.SELL
