"""
Order normalizer.

Flattens a customer's order history into time-ordered box events:

    orders → line items → (skip addon/ignored) → resolve box number → BoxEvent

Duplicates are kept as separate events; the analyzer decides what they mean.
Line items that resolve to no box number are still emitted (with
sequence_number=None) and are also reported to the unmapped-item sink.
"""

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

import structlog
from pydantic import ValidationError as PydanticValidationError

from models.order import BoxEvent, LineItem, Order, VariationType
from services.sku_resolver import SkuResolutionMap

logger = structlog.get_logger(__name__)


class UnmappedItemSink(Protocol):
    """Append-only destination for line items with no box number."""

    def record(
        self,
        organization_id: Optional[str],
        sku: Optional[str],
        product_name: str,
        order_id: str,
        customer_identifier: Optional[str],
        occurred_at: datetime,
    ) -> None:
        ...


def coerce_orders(raw_orders: Iterable[Any]) -> list[Order]:
    """
    Validate raw order payloads at the normalizer boundary.

    Accepts Order instances or dicts shaped like Order. Malformed orders are
    dropped; malformed line items are dropped from otherwise valid orders.
    Nothing half-valid is passed on.

    Args:
        raw_orders: Orders or order dicts

    Returns:
        Validated orders
    """
    orders: list[Order] = []

    for raw in raw_orders:
        if isinstance(raw, Order):
            orders.append(raw)
            continue

        if not isinstance(raw, dict):
            logger.warning("malformed_order_skipped", reason="not_a_mapping", type=type(raw).__name__)
            continue

        items: list[LineItem] = []
        for raw_item in raw.get("line_items") or []:
            try:
                items.append(
                    raw_item if isinstance(raw_item, LineItem) else LineItem.model_validate(raw_item)
                )
            except PydanticValidationError as e:
                logger.warning(
                    "malformed_line_item_skipped",
                    order_id=raw.get("order_id"),
                    errors=e.error_count()
                )

        try:
            orders.append(Order.model_validate({**raw, "line_items": items}))
        except PydanticValidationError as e:
            logger.warning(
                "malformed_order_skipped",
                order_id=raw.get("order_id"),
                errors=e.error_count()
            )

    return orders


def normalize(
    orders: Iterable[Any],
    sku_map: SkuResolutionMap,
    *,
    unmapped_sink: Optional[UnmappedItemSink] = None,
    organization_id: Optional[str] = None,
    customer_identifier: Optional[str] = None,
) -> list[BoxEvent]:
    """
    Convert an order history into sorted box events.

    Args:
        orders: Orders (or raw order dicts) for one customer
        sku_map: Resolution map for the organization
        unmapped_sink: Receives every line item with no box number
        organization_id: Passed through to the sink
        customer_identifier: Passed through to the sink

    Returns:
        BoxEvents sorted by (occurred_at, source_order_id)
    """
    events: list[BoxEvent] = []
    skipped = 0

    for order in coerce_orders(orders):
        for item in order.line_items:
            classification = sku_map.classify(item.sku, item.product_name)
            if classification in (VariationType.ADDON, VariationType.IGNORED):
                skipped += 1
                continue

            sequence, source = sku_map.resolve_with_source(item.sku, item.product_name)
            events.append(BoxEvent(
                sequence_number=sequence,
                occurred_at=order.created_at,
                source_order_id=order.order_id,
                source_order_number=order.order_number,
                raw_sku=item.sku,
                raw_product_name=item.product_name,
                variant_title=item.variant_title,
                quantity=item.quantity,
                match_source=source,
            ))

    events.sort(key=lambda e: e.sort_key)

    unmapped = [e for e in events if not e.is_mapped]
    if unmapped:
        logger.info(
            "unmapped_line_items_found",
            customer=customer_identifier,
            count=len(unmapped)
        )
        if unmapped_sink is not None:
            for event in unmapped:
                unmapped_sink.record(
                    organization_id,
                    event.raw_sku or None,
                    event.raw_product_name,
                    event.source_order_id,
                    customer_identifier,
                    event.occurred_at,
                )

    logger.debug(
        "orders_normalized",
        customer=customer_identifier,
        events=len(events),
        unmapped=len(unmapped),
        skipped=skipped
    )

    return events
