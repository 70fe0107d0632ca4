"""
Activity fetcher and transaction builder.

For one stored variant: fetch its full trade history, then turn each event
into a ``NewTransaction`` classified against the variant's stored market
snapshot (the one written by the most recent product sync).

A malformed ``createdAt`` skips that event only. A failing network call
raises out of ``fetch_transactions_for_variant``; the transaction sync logs
it and moves on to the next variant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pure_ingest.errors import EventTimeParseError
from pure_ingest.ingestion.event_type import determine_event_type
from pure_ingest.models.product import ProductVariant
from pure_ingest.models.transaction import NewTransaction
from pure_ingest.utils.time_utils import parse_event_time

if TYPE_CHECKING:
    from pure_ingest.ingestion.pure_client import ActivityEvent, PureApiClient

logger = logging.getLogger(__name__)


@dataclass
class ActivityBuildResult:
    """Transactions built for one variant, plus the events that were skipped."""

    transactions: list[NewTransaction] = field(default_factory=list)
    events_received: int = 0
    parse_errors: list[str] = field(default_factory=list)


def build_transaction(event: "ActivityEvent", variant: ProductVariant) -> NewTransaction:
    """Convert one activity event into a transaction candidate.

    Raises:
        EventTimeParseError: If ``event.created_at`` is malformed.
    """
    event_time = parse_event_time(event.created_at)
    event_type = determine_event_type(
        event.spot_premium,
        variant.highest_offer_spot_premium,
        variant.lowest_listing_spot_premium,
    )
    return NewTransaction(
        product_id=variant.id,
        pure_product_id=variant.pure_product_id,
        pure_variant_id=variant.pure_variant_id,
        price=event.price,
        quantity=event.quantity,
        spot_premium_percentage=event.spot_premium,
        spot_premium_dollar=event.spot_premium_dollar,
        event_time=event_time,
        event_type=event_type,
    )


def build_transactions(
    events: list["ActivityEvent"], variant: ProductVariant
) -> ActivityBuildResult:
    """Build candidates for every event, skipping ones with bad timestamps."""
    result = ActivityBuildResult(events_received=len(events))
    for event in events:
        try:
            result.transactions.append(build_transaction(event, variant))
        except EventTimeParseError as exc:
            logger.warning(
                "Failed to parse transaction for product %s, variant %s: %s",
                variant.pure_product_id, variant.pure_variant_id, exc,
            )
            result.parse_errors.append(str(exc))
    return result


def fetch_transactions_for_variant(
    client: "PureApiClient", variant: ProductVariant
) -> ActivityBuildResult:
    """Fetch a variant's activity and build its transaction candidates.

    Raises:
        RetryExhaustedError: If the activity call keeps failing.
    """
    events = client.fetch_product_activity(variant.pure_product_id, variant.pure_variant_id)
    return build_transactions(events, variant)
