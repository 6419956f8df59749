"""
Billing Snapshot Collector

Fetches subscription and payment state from Stripe and normalizes it into
SubscriptionRecord values:
- Active subscriptions with expanded line-item prices (MRR, tiers)
- Subscriptions canceled inside the churn window
- Succeeded payments (all-time and trailing-window revenue)
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from ..config import BillingConfig, RetryPolicy, TIER_SEGMENTS, Segment, TierMapping, TierName
from ..exceptions import UpstreamBillingError, unwrap_exception_group
from ..schemas import (
    BillingSnapshot,
    RevenueBreakdown,
    SubscriptionRecord,
    SubscriptionStatus,
    TierBreakdown,
)
from .logging_service import get_logger
from .retry import call_with_retry

logger = get_logger("billing")

Params = List[Tuple[str, Any]]

ACTIVE_SUBSCRIPTIONS = "active_subscriptions"
CANCELED_SUBSCRIPTIONS = "canceled_subscriptions"
PAYMENT_INTENTS = "payment_intents"

# Snapshot fields understated when a listing hits the page cap
TRUNCATED_LISTING_FIELDS: Dict[str, Tuple[str, ...]] = {
    ACTIVE_SUBSCRIPTIONS: ("mrr", "totalSubscribers"),
    CANCELED_SUBSCRIPTIONS: ("churnCount", "churnRate"),
    PAYMENT_INTENTS: ("totalRevenueAllTime", "recentRevenue"),
}


class _RetryableStatus(Exception):
    """A 429 or 5xx answer from the provider."""

    def __init__(self, status_code: int, path: str):
        super().__init__(f"HTTP {status_code} from {path}")
        self.status_code = status_code


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _status(value: Optional[str]) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError:
        return SubscriptionStatus.other


def normalize_subscription(subscription: Dict[str, Any]) -> Tuple[List[SubscriptionRecord], int]:
    """
    Turn one provider subscription into a record per line item.

    Line items without a price object or price id are logged and skipped;
    a missing unit amount (metered prices) counts as zero.

    Returns:
        (records, number of skipped line items)
    """
    subscription_id = subscription.get("id")
    items = (subscription.get("items") or {}).get("data") or []
    status = _status(subscription.get("status"))
    created_at = _timestamp(subscription.get("created"))
    canceled_at = _timestamp(subscription.get("canceled_at"))

    if not subscription_id or created_at is None:
        logger.warning(
            "Skipping malformed subscription",
            extra={"subscription_id": subscription_id, "line_items": len(items)},
        )
        return [], len(items)

    records: List[SubscriptionRecord] = []
    skipped = 0
    for item in items:
        price = item.get("price") if isinstance(item, dict) else None
        if not isinstance(price, dict) or not price.get("id"):
            logger.warning(
                "Skipping line item without price",
                extra={"subscription_id": subscription_id, "item_id": item.get("id") if isinstance(item, dict) else None},
            )
            skipped += 1
            continue

        unit_amount = price.get("unit_amount")
        if unit_amount is not None and (not isinstance(unit_amount, int) or unit_amount < 0):
            logger.warning(
                "Skipping line item with invalid unit amount",
                extra={"subscription_id": subscription_id, "unit_amount": unit_amount},
            )
            skipped += 1
            continue

        records.append(SubscriptionRecord(
            id=subscription_id,
            item_id=item.get("id") or f"{subscription_id}:{price['id']}",
            price_identifier=price["id"],
            unit_amount=unit_amount or 0,
            status=status,
            created_at=created_at,
            canceled_at=canceled_at,
        ))
    return records, skipped


def canceled_record(subscription: Dict[str, Any]) -> Optional[SubscriptionRecord]:
    """
    One record per canceled subscription, whatever its line items look like.

    Churn counts subscriptions, so a canceled subscription with unusable line
    items still counts; only a missing id or timestamp drops it.
    """
    subscription_id = subscription.get("id")
    created_at = _timestamp(subscription.get("created"))
    if not subscription_id or created_at is None:
        logger.warning("Skipping malformed canceled subscription", extra={"subscription_id": subscription_id})
        return None

    items = (subscription.get("items") or {}).get("data") or []
    first = items[0] if items and isinstance(items[0], dict) else {}
    price = first.get("price") if isinstance(first.get("price"), dict) else {}
    unit_amount = price.get("unit_amount")
    return SubscriptionRecord(
        id=subscription_id,
        item_id=first.get("id") or subscription_id,
        price_identifier=price.get("id") or "",
        unit_amount=unit_amount if isinstance(unit_amount, int) and unit_amount >= 0 else 0,
        status=_status(subscription.get("status")),
        created_at=created_at,
        canceled_at=_timestamp(subscription.get("canceled_at")),
    )


def classify_revenue(records: Iterable[SubscriptionRecord], mapping: TierMapping) -> RevenueBreakdown:
    """
    Accumulate MRR and per-tier counts from active line items.

    Unmapped price identifiers add to MRR and the unmapped remainder but
    never to revenue_by_tier or the segment totals.
    """
    tiers = {
        tier: {"count": 0, "revenue": 0}
        for tier in TierName if tier is not TierName.unmapped
    }
    mrr = 0
    segment_revenue = {Segment.b2c: 0, Segment.b2b: 0}
    unmapped_revenue = 0
    unmapped_count = 0

    for record in records:
        mrr += record.unit_amount
        tier = mapping.classify(record.price_identifier)
        if tier is TierName.unmapped:
            unmapped_count += 1
            unmapped_revenue += record.unit_amount
            continue
        tiers[tier]["count"] += 1
        tiers[tier]["revenue"] += record.unit_amount
        segment_revenue[TIER_SEGMENTS[tier]] += record.unit_amount

    revenue_by_tier = {
        tier.value: TierBreakdown(tier_name=tier, active_count=v["count"], monthly_revenue=v["revenue"])
        for tier, v in tiers.items()
    }
    return RevenueBreakdown(
        mrr=mrr,
        b2c_revenue=segment_revenue[Segment.b2c],
        b2b_revenue=segment_revenue[Segment.b2b],
        revenue_by_tier=revenue_by_tier,
        unmapped_revenue=unmapped_revenue,
        unmapped_active_count=unmapped_count,
        total_subscribers=sum(v["count"] for v in tiers.values()) + unmapped_count,
    )


class BillingSnapshotCollector:
    """
    Reads billing state from the Stripe REST API.

    Authentication rejections and exhausted retries raise UpstreamBillingError;
    billing data is load-bearing for every downstream figure.
    """

    def __init__(
        self,
        config: BillingConfig,
        retry: RetryPolicy,
        client: Optional[httpx.AsyncClient] = None,
        window_days: int = 30,
    ):
        self.config = config
        self.retry = retry
        self.window_days = window_days
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=config.api_base,
            timeout=retry.timeout_seconds,
        )

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.secret_key}"}

    async def _get_page(self, path: str, params: Params) -> Dict[str, Any]:
        async def request() -> Dict[str, Any]:
            response = await self.client.get(path, params=params, headers=self._headers)
            if response.status_code in (401, 403):
                raise UpstreamBillingError(
                    "Billing provider rejected credentials",
                    context={"path": path, "status": response.status_code},
                )
            if response.status_code == 429 or response.status_code >= 500:
                raise _RetryableStatus(response.status_code, path)
            if response.is_error:
                raise UpstreamBillingError(
                    f"Billing provider returned HTTP {response.status_code}",
                    context={"path": path, "status": response.status_code},
                )
            try:
                return response.json()
            except ValueError as e:
                raise UpstreamBillingError(f"Invalid JSON from billing provider: {e}") from e

        try:
            return await call_with_retry(
                request,
                self.retry,
                retry_on=(httpx.TransportError, _RetryableStatus),
                description=f"GET {path}",
            )
        except (httpx.TransportError, _RetryableStatus, asyncio.TimeoutError) as e:
            raise UpstreamBillingError(
                f"Billing provider unreachable: {e!r}",
                context={"path": path},
            ) from e

    async def _paginate(self, path: str, params: Params) -> Tuple[List[Dict[str, Any]], bool]:
        """
        Follow starting_after cursors up to max_pages.

        Returns:
            (objects, True if the page cap cut the listing short)
        """
        objects: List[Dict[str, Any]] = []
        starting_after: Optional[str] = None
        for _ in range(self.config.max_pages):
            query = list(params) + [("limit", self.config.page_size)]
            if starting_after:
                query.append(("starting_after", starting_after))
            body = await self._get_page(path, query)
            data = body.get("data") or []
            objects.extend(data)
            if not body.get("has_more") or not data:
                return objects, False
            starting_after = data[-1].get("id")
            if not starting_after:
                return objects, False
        logger.warning(
            f"Pagination cap reached for {path}",
            extra={"max_pages": self.config.max_pages, "objects": len(objects)},
        )
        return objects, True

    async def list_active_subscriptions(self) -> Tuple[List[SubscriptionRecord], int, bool]:
        """(records, skipped line items, truncated)"""
        subscriptions, truncated = await self._paginate("/v1/subscriptions", [
            ("status", "active"),
            ("expand[]", "data.items.data.price"),
        ])
        records: List[SubscriptionRecord] = []
        skipped = 0
        for subscription in subscriptions:
            normalized, dropped = normalize_subscription(subscription)
            records.extend(normalized)
            skipped += dropped
        return records, skipped, truncated

    async def list_canceled_subscriptions(self, since: datetime) -> Tuple[List[SubscriptionRecord], bool]:
        """One record per subscription canceled on or after `since`."""
        subscriptions, truncated = await self._paginate("/v1/subscriptions", [("status", "canceled")])
        records: List[SubscriptionRecord] = []
        for subscription in subscriptions:
            record = canceled_record(subscription)
            if record is None:
                continue
            if record.canceled_at is not None and record.canceled_at >= since:
                records.append(record)
        return records, truncated

    async def list_succeeded_payments(self) -> Tuple[List[Tuple[int, datetime]], bool]:
        intents, truncated = await self._paginate("/v1/payment_intents", [])
        payments: List[Tuple[int, datetime]] = []
        for intent in intents:
            if intent.get("status") != "succeeded":
                continue
            amount = intent.get("amount")
            created_at = _timestamp(intent.get("created"))
            if not isinstance(amount, int) or created_at is None:
                logger.warning("Skipping malformed payment", extra={"payment_id": intent.get("id")})
                continue
            payments.append((amount, created_at))
        return payments, truncated

    async def collect(self, now: datetime) -> BillingSnapshot:
        """Run the three listings concurrently and fold them into one snapshot."""
        since = now - timedelta(days=self.window_days)
        try:
            async with asyncio.TaskGroup() as tg:
                active_task = tg.create_task(self.list_active_subscriptions())
                canceled_task = tg.create_task(self.list_canceled_subscriptions(since))
                payments_task = tg.create_task(self.list_succeeded_payments())
        except ExceptionGroup as group:
            raise unwrap_exception_group(group)

        active, skipped, active_truncated = active_task.result()
        canceled, canceled_truncated = canceled_task.result()
        payments, payments_truncated = payments_task.result()

        truncated = tuple(
            listing for listing, flag in (
                (ACTIVE_SUBSCRIPTIONS, active_truncated),
                (CANCELED_SUBSCRIPTIONS, canceled_truncated),
                (PAYMENT_INTENTS, payments_truncated),
            ) if flag
        )
        snapshot = BillingSnapshot(
            active=tuple(active),
            canceled=tuple(canceled),
            total_revenue_all_time=sum(amount for amount, _ in payments),
            recent_revenue=sum(amount for amount, created in payments if created >= since),
            skipped_items=skipped,
            truncated_listings=truncated,
        )
        logger.log_step(
            "Stripe data fetched",
            active_items=len(snapshot.active),
            canceled=len(snapshot.canceled),
            payments=len(payments),
            skipped_items=snapshot.skipped_items,
            truncated=list(truncated),
        )
        return snapshot
