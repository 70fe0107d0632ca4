"""
Pure API client — product catalog, product details, and trade activity.

API:   https://api.collectpure.com
Auth:  ``x-api-key`` header (``PURE_API_KEY`` in .env)

Endpoints::

    GET /products/get-product-options/v1
        → {"data": [{"value": <product id>, "label": ..., "variants":
                     [{"value": <variant id>, "label": <variant title>}]}]}
    GET /products/get-products/v1?ids=<id>,<id>,...
        → {"data": [{"id", "title", "sku", "material", "imageUrl"?,
                     "variants": [{"title", "highestOffer": {"spotPremium"}?,
                                   "lowestListing": {"spotPremium"}?}]}]}
    GET /products/get-product-activity/v1?productId=&variantId=
        → {"data": [{"event", "createdAt", "price", "quantity",
                     "spotPremium", "spotPremiumDollar"}]}

Every request goes through ``with_retry_and_rate_limit``. A non-2xx status
raises ``ProviderError``; transport failures raise ``httpx.HTTPError``; a
payload that does not have the shape above raises ``KeyError``/``TypeError``/
``ValueError``. All of them are retried.

Building upsert-ready variants (``build_new_products``):
  1. fetch the option tree and flatten it to one record per variant;
  2. collapse to the unique product ids;
  3. fetch product details in chunks of ``product_batch_size``; a chunk that
     exhausts its retries is logged and skipped;
  4. inner-join variants to fetched products, matching the variant entry in
     the product payload by title to pick up the market premiums;
  5. stamp every record with the snapshot time, premiums or not.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Optional, TypeVar

import httpx
from pydantic import ValidationError

from pure_ingest.errors import ConfigurationError, ProviderError, RetryExhaustedError
from pure_ingest.ingestion.retry import RetryPolicy, with_retry_and_rate_limit
from pure_ingest.models.product import NewProductVariant
from pure_ingest.utils.time_utils import utcnow

if TYPE_CHECKING:
    from pure_ingest.config import AppConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Response types ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FlattenedVariant:
    """One ``(product, variant)`` pair from the option tree."""

    pure_product_id: str
    pure_variant_id: str
    pure_variant_label: str


@dataclass(frozen=True)
class VariantMarketData:
    """A variant entry inside a product detail payload."""

    title: str
    highest_offer_premium: Optional[float] = None
    lowest_listing_premium: Optional[float] = None


@dataclass(frozen=True)
class ProductDetail:
    """Descriptive fields and per-variant market data for one product."""

    id: str
    title: str
    sku: str
    material: str
    image_url: Optional[str] = None
    variants: tuple[VariantMarketData, ...] = ()

    def find_variant(self, label: str) -> Optional[VariantMarketData]:
        """First variant entry whose title equals ``label`` exactly."""
        return next((v for v in self.variants if v.title == label), None)


@dataclass(frozen=True)
class ActivityEvent:
    """One trade event as reported by the activity endpoint.

    ``created_at`` is kept as the raw provider string; the transaction
    builder parses it so that one bad timestamp only skips one event.
    """

    event: str
    created_at: str
    price: float
    quantity: int
    spot_premium: float
    spot_premium_dollar: float


@dataclass(frozen=True)
class FailedBatch:
    """A product-detail chunk that could not be fetched."""

    batch_number: int
    product_ids: tuple[str, ...]
    error: str


@dataclass
class ProductFetchResult:
    """Outcome of ``fetch_products_in_batches``."""

    products: list[ProductDetail] = field(default_factory=list)
    requested: int = 0
    failed_batches: list[FailedBatch] = field(default_factory=list)

    @property
    def fetched(self) -> int:
        return len(self.products)


@dataclass
class ProductBuildResult:
    """Outcome of ``build_new_products``.

    Attributes:
        records: Upsert-ready variants (inner join of variants and products).
        variants_flattened: Variants in the option tree.
        products_requested: Unique product ids requested.
        products_fetched: Product details actually received.
        failed_batches: Chunks skipped after retry exhaustion.
        join_misses: Variants dropped because their product was not fetched.
    """

    records: list[NewProductVariant] = field(default_factory=list)
    variants_flattened: int = 0
    products_requested: int = 0
    products_fetched: int = 0
    failed_batches: list[FailedBatch] = field(default_factory=list)
    join_misses: list[FlattenedVariant] = field(default_factory=list)


# ── Helpers ────────────────────────────────────────────────────────────────────

def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items, preserving order."""
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}.")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def _spot_premium(quote: Any) -> Optional[float]:
    if not quote:
        return None
    value = quote.get("spotPremium")
    return float(value) if value is not None else None


def _image_url(product: dict[str, Any]) -> Optional[str]:
    if product.get("imageUrl"):
        return str(product["imageUrl"])
    images = product.get("images") or []
    if images:
        first = images[0]
        if isinstance(first, dict):
            return first.get("url")
        return str(first)
    return None


# ── Client ─────────────────────────────────────────────────────────────────────

class PureApiClient:
    """Synchronous client for the Pure product and activity endpoints.

    Usage::

        with PureApiClient.from_config(config) as client:
            result = client.build_new_products()

    Attributes:
        retry_policy: Throttle/backoff applied to every request.
        product_batch_size: Product ids per ``get-products`` call.
    """

    PRODUCT_OPTIONS_PATH: ClassVar[str] = "/products/get-product-options/v1"
    GET_PRODUCTS_PATH: ClassVar[str] = "/products/get-products/v1"
    PRODUCT_ACTIVITY_PATH: ClassVar[str] = "/products/get-product-activity/v1"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.collectpure.com",
        retry_policy: RetryPolicy = RetryPolicy(),
        product_batch_size: int = 30,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise the client.

        Args:
            api_key: Value for the ``x-api-key`` header.
            base_url: API root, without trailing slash.
            retry_policy: Retry/throttle parameters for every request.
            product_batch_size: Ids per product-detail request.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests pass a ``MockTransport``).
            sleep: Wait function handed to the retry executor.
        """
        if not api_key:
            raise ConfigurationError("PURE_API_KEY must be set in .env or the environment.")
        if product_batch_size < 1:
            raise ValueError(f"product_batch_size must be >= 1, got {product_batch_size}.")
        self.retry_policy = retry_policy
        self.product_batch_size = product_batch_size
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=base_url,
            headers={"x-api-key": api_key},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: "AppConfig", **kwargs: Any) -> "PureApiClient":
        """Build a client from ``AppConfig``; keyword args override (tests)."""
        api_key = config.api.api_key.get_secret_value() if config.api.api_key else ""
        params: dict[str, Any] = {
            "api_key": api_key,
            "base_url": config.api.base_url,
            "retry_policy": RetryPolicy.from_config(config.retry),
            "product_batch_size": config.batch.product_batch_size,
            "timeout": config.api.timeout_seconds,
        }
        params.update(kwargs)
        return cls(**params)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "PureApiClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Transport ──────────────────────────────────────────────────────────────

    def _get_data(self, path: str, params: Optional[dict[str, str]] = None) -> list[Any]:
        """One GET; returns the ``data`` array of the JSON body."""
        resp = self._http.get(path, params=params)
        if not resp.is_success:
            raise ProviderError(resp.status_code, resp.text, str(resp.request.url))
        return resp.json()["data"]

    def _retry(self, operation: Callable[[], T], context: str) -> T:
        return with_retry_and_rate_limit(operation, self.retry_policy, context, sleep=self._sleep)

    # ── Stage 1: option tree ───────────────────────────────────────────────────

    def fetch_and_flatten_variants(self) -> list[FlattenedVariant]:
        """Fetch the product → variant option tree and flatten it.

        Raises:
            RetryExhaustedError: If the options call keeps failing.
        """
        logger.info("Fetching product options from Pure API")

        def _fetch() -> list[FlattenedVariant]:
            return [
                FlattenedVariant(
                    pure_product_id=str(product["value"]),
                    pure_variant_id=str(variant["value"]),
                    pure_variant_label=str(variant["label"]),
                )
                for product in self._get_data(self.PRODUCT_OPTIONS_PATH)
                for variant in product.get("variants") or []
            ]

        flattened = self._retry(_fetch, "Fetch product options")
        logger.info("Fetched and flattened %d product variants", len(flattened))
        return flattened

    # ── Stage 2: unique product ids ────────────────────────────────────────────

    @staticmethod
    def deduplicate_product_ids(variants: Sequence[FlattenedVariant]) -> list[str]:
        """Unique product ids referenced by ``variants``, in first-seen order."""
        return list(dict.fromkeys(v.pure_product_id for v in variants))

    # ── Stage 3: product details ───────────────────────────────────────────────

    def _fetch_products_batch(self, product_ids: Sequence[str]) -> list[ProductDetail]:
        products = []
        for raw in self._get_data(self.GET_PRODUCTS_PATH, {"ids": ",".join(product_ids)}):
            products.append(
                ProductDetail(
                    id=str(raw["id"]),
                    title=str(raw["title"]),
                    sku=str(raw.get("sku") or ""),
                    material=str(raw.get("material") or ""),
                    image_url=_image_url(raw),
                    variants=tuple(
                        VariantMarketData(
                            title=str(v["title"]),
                            highest_offer_premium=_spot_premium(v.get("highestOffer")),
                            lowest_listing_premium=_spot_premium(v.get("lowestListing")),
                        )
                        for v in raw.get("variants") or []
                    ),
                )
            )
        return products

    def fetch_products_in_batches(self, product_ids: Sequence[str]) -> ProductFetchResult:
        """Fetch product details chunk by chunk; failed chunks are skipped."""
        total_batches = math.ceil(len(product_ids) / self.product_batch_size)
        logger.info(
            "Fetching %d products in %d batch(es) of up to %d",
            len(product_ids), total_batches, self.product_batch_size,
        )
        result = ProductFetchResult(requested=len(product_ids))

        for batch_number, chunk in enumerate(chunked(product_ids, self.product_batch_size), 1):
            context = f"Fetch products batch {batch_number}/{total_batches}"
            logger.info("[%d/%d] Fetching batch of %d products", batch_number, total_batches, len(chunk))
            try:
                products = self._retry(lambda: self._fetch_products_batch(chunk), context)
            except RetryExhaustedError as exc:
                logger.warning(
                    "[%d/%d] Skipping batch %s: %s",
                    batch_number, total_batches, ",".join(chunk), exc.last_error,
                )
                result.failed_batches.append(
                    FailedBatch(batch_number, tuple(chunk), str(exc.last_error))
                )
                continue
            logger.info("[%d/%d] Fetched %d products", batch_number, total_batches, len(products))
            result.products.extend(products)

        logger.info(
            "Fetched %d of %d products (%d failed batch(es))",
            result.fetched, result.requested, len(result.failed_batches),
        )
        return result

    # ── Stage 4: join ──────────────────────────────────────────────────────────

    @staticmethod
    def build_product_map(products: Sequence[ProductDetail]) -> dict[str, ProductDetail]:
        return {p.id: p for p in products}

    @staticmethod
    def combine_variants_with_products(
        variants: Sequence[FlattenedVariant],
        product_map: dict[str, ProductDetail],
        snapshot_at: Optional[datetime] = None,
    ) -> tuple[list[NewProductVariant], list[FlattenedVariant]]:
        """Inner-join flattened variants to product details.

        Args:
            variants: Output of ``fetch_and_flatten_variants``.
            product_map: Product id → detail.
            snapshot_at: Snapshot timestamp; defaults to now (UTC).

        Returns:
            ``(records, misses)`` — upsert-ready records, and the variants
            dropped because their product is not in ``product_map`` or their
            ids fail validation.
        """
        snapshot_at = snapshot_at or utcnow()
        records: list[NewProductVariant] = []
        misses: list[FlattenedVariant] = []

        for variant in variants:
            product = product_map.get(variant.pure_product_id)
            if product is None:
                logger.warning(
                    "No product details for product %s (variant %s); dropping variant",
                    variant.pure_product_id, variant.pure_variant_id,
                )
                misses.append(variant)
                continue

            market = product.find_variant(variant.pure_variant_label)
            if market is None:
                logger.debug(
                    "Variant label %r not in product %s payload; no market data",
                    variant.pure_variant_label, product.id,
                )
            try:
                record = NewProductVariant(
                    pure_product_id=variant.pure_product_id,
                    pure_variant_id=variant.pure_variant_id,
                    name=product.title,
                    sku=product.sku,
                    material=product.material,
                    variant_label=variant.pure_variant_label,
                    image_url=product.image_url,
                    highest_offer_spot_premium=market.highest_offer_premium if market else None,
                    lowest_listing_spot_premium=market.lowest_listing_premium if market else None,
                    market_data_updated_at=snapshot_at,
                )
            except ValidationError as exc:
                logger.warning(
                    "Invalid catalog entry for product %r variant %r; dropping: %s",
                    variant.pure_product_id, variant.pure_variant_id, exc,
                )
                misses.append(variant)
                continue
            records.append(record)
        return records, misses

    # ── Orchestration ──────────────────────────────────────────────────────────

    def build_new_products(self) -> ProductBuildResult:
        """Run stages 1–5 and return upsert-ready variants plus counts.

        Raises:
            RetryExhaustedError: If the option tree cannot be fetched. Product
                detail chunk failures do not raise.
        """
        variants = self.fetch_and_flatten_variants()
        product_ids = self.deduplicate_product_ids(variants)
        logger.info("Found %d unique products to fetch", len(product_ids))

        fetched = self.fetch_products_in_batches(product_ids)
        records, misses = self.combine_variants_with_products(
            variants, self.build_product_map(fetched.products)
        )
        logger.info(
            "Built %d product variant records (%d dropped without product details)",
            len(records), len(misses),
        )
        return ProductBuildResult(
            records=records,
            variants_flattened=len(variants),
            products_requested=fetched.requested,
            products_fetched=fetched.fetched,
            failed_batches=fetched.failed_batches,
            join_misses=misses,
        )

    # ── Activity ───────────────────────────────────────────────────────────────

    def fetch_product_activity(self, product_id: str, variant_id: str) -> list[ActivityEvent]:
        """All reported trade events for one variant (no pagination upstream).

        Raises:
            RetryExhaustedError: If the activity call keeps failing.
        """
        params = {"productId": product_id, "variantId": variant_id}

        def _fetch() -> list[ActivityEvent]:
            return [
                ActivityEvent(
                    event=str(raw.get("event", "")),
                    created_at=str(raw["createdAt"]),
                    price=float(raw["price"]),
                    quantity=int(raw["quantity"]),
                    spot_premium=float(raw["spotPremium"]),
                    spot_premium_dollar=float(raw["spotPremiumDollar"]),
                )
                for raw in self._get_data(self.PRODUCT_ACTIVITY_PATH, params)
            ]

        return self._retry(
            _fetch, f"Fetch activity for product: {product_id}, variant: {variant_id}"
        )
