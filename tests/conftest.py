"""
Shared pytest fixtures for the pure-ingest test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``app_config`` / ``db_file``: an ``AppConfig`` pointing at a temporary
    on-disk database (stages open their own connections), zero retry delays.
  - ``pure_api``: an in-process fake of the Pure API served through
    ``httpx.MockTransport``; ``pure_api.client()`` returns a ready client.
  - Sample domain object factories for use in multiple test modules.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any, Generator, Optional

import httpx
import pytest
from pydantic import SecretStr

from pure_ingest.config import ApiConfig, AppConfig, BatchConfig, DatabaseConfig, RetryConfig
from pure_ingest.db.connection import get_connection
from pure_ingest.db.migrations import init_database
from pure_ingest.db.schema import apply_schema
from pure_ingest.ingestion.pure_client import PureApiClient
from pure_ingest.ingestion.retry import RetryPolicy
from pure_ingest.models.product import NewProductVariant
from pure_ingest.models.transaction import EventType, NewTransaction


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Config for stage tests: temp DB file, test API key, no real waiting."""
    return AppConfig(
        database=DatabaseConfig(db_path=str(tmp_path / "pure_ingest_test.db")),
        api=ApiConfig(base_url="https://api.test", api_key=SecretStr("test-key")),
        retry=RetryConfig(max_retries=2, initial_backoff_seconds=0, rate_limit_delay_seconds=0),
        batch=BatchConfig(product_batch_size=1, transaction_insert_batch_size=2),
    )


@pytest.fixture
def db_file(app_config) -> str:
    """Initialise the schema in ``app_config``'s database file and return its path."""
    with get_connection(app_config.database.db_path) as conn:
        init_database(conn)
    return app_config.database.db_path


# ── Fake provider ─────────────────────────────────────────────────────────────

class FakePureApi:
    """Minimal in-process stand-in for the three Pure endpoints.

    ``failing_product_ids`` makes any product-detail chunk containing one of
    those ids answer 500; ``failing_activity`` does the same per variant key.
    """

    def __init__(self) -> None:
        self.options: list[dict[str, Any]] = []
        self.products: dict[str, dict[str, Any]] = {}
        self.activity: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.failing_product_ids: set[str] = set()
        self.failing_activity: set[tuple[str, str]] = set()
        self.requests: list[httpx.Request] = []

    def add_product(
        self,
        product_id: str,
        title: str,
        variants: list[tuple[str, str, Optional[float], Optional[float]]],
        image_url: Optional[str] = None,
    ) -> None:
        """Register a product; ``variants`` are ``(id, label, offer, listing)``."""
        self.options.append({
            "value": product_id,
            "label": title,
            "variants": [{"value": vid, "label": label} for vid, label, _, _ in variants],
        })
        payload: dict[str, Any] = {
            "id": product_id,
            "title": title,
            "sku": f"SKU-{product_id}",
            "material": "Silver",
            "variants": [
                {
                    "title": label,
                    "highestOffer": {"spotPremium": offer} if offer is not None else None,
                    "lowestListing": {"spotPremium": listing} if listing is not None else None,
                }
                for _, label, offer, listing in variants
            ],
        }
        if image_url:
            payload["imageUrl"] = image_url
        self.products[product_id] = payload

    def add_activity(self, product_id: str, variant_id: str, events: list[dict[str, Any]]) -> None:
        self.activity.setdefault((product_id, variant_id), []).extend(events)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if path == PureApiClient.PRODUCT_OPTIONS_PATH:
            return httpx.Response(200, json={"data": self.options})

        if path == PureApiClient.GET_PRODUCTS_PATH:
            ids = params["ids"].split(",")
            if self.failing_product_ids.intersection(ids):
                return httpx.Response(500, text="internal error")
            return httpx.Response(
                200, json={"data": [self.products[i] for i in ids if i in self.products]}
            )

        if path == PureApiClient.PRODUCT_ACTIVITY_PATH:
            key = (params["productId"], params["variantId"])
            if key in self.failing_activity:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json={"data": self.activity.get(key, [])})

        return httpx.Response(404, text="not found")

    def client(self, product_batch_size: int = 30, max_retries: int = 2) -> PureApiClient:
        return PureApiClient(
            api_key="test-key",
            base_url="https://api.test",
            retry_policy=RetryPolicy(max_retries=max_retries, initial_backoff=0, rate_limit_delay=0),
            product_batch_size=product_batch_size,
            transport=httpx.MockTransport(self.handler),
            sleep=lambda _seconds: None,
        )


@pytest.fixture
def pure_api() -> FakePureApi:
    return FakePureApi()


def activity_event(
    created_at: str = "2025-01-15 14:03:27.123456+0000",
    spot_premium: float = 5.0,
    price: float = 31.5,
    quantity: int = 1,
) -> dict[str, Any]:
    """A raw activity event as the provider sends it."""
    return {
        "event": "sale",
        "createdAt": created_at,
        "price": price,
        "quantity": quantity,
        "spotPremium": spot_premium,
        "spotPremiumDollar": round(price * spot_premium / 100, 2),
    }


@pytest.fixture
def make_activity_event():
    return activity_event


# ── Sample domain object factories ────────────────────────────────────────────

@pytest.fixture
def sample_variant() -> NewProductVariant:
    """A valid ``NewProductVariant`` with a full market snapshot."""
    return NewProductVariant(
        pure_product_id="prod-1",
        pure_variant_id="var-1",
        name="American Silver Eagle",
        sku="ASE-2024",
        material="Silver",
        variant_label="1 oz",
        image_url="https://img.test/ase.png",
        highest_offer_spot_premium=2.0,
        lowest_listing_spot_premium=10.0,
        market_data_updated_at=datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def sample_transaction() -> NewTransaction:
    """A valid ``NewTransaction`` for ``sample_variant``."""
    return NewTransaction(
        pure_product_id="prod-1",
        pure_variant_id="var-1",
        price=32.10,
        quantity=2,
        spot_premium_percentage=9.0,
        spot_premium_dollar=2.65,
        event_time=datetime(2025, 1, 15, 14, 3, 27, 123456, tzinfo=timezone.utc),
        event_type=EventType.BUY,
    )
