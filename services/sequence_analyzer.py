"""
Sequence analyzer.

Reconstructs which box a subscriber is on from their normalized box events
and reports anomalies for human review. Pure functions: no I/O, no clock, no
sorting (events arrive sorted from the normalizer).

Walkthrough for events [1, 2, 4, 3], one month apart:
    1  → first box, running max 1
    2  → max + 1, clean step
    4  → more than max + 1               → skipped_box
    3  → below max, never seen, later    → out_of_order_purchase
    proposed next box = max + 1 = 5

Reasons are listed once each, in the order first detected during the pass.

Three audit modes share the same output:
    sku_mapping  each box has its own SKU; analyze()
    order_count  one recurring SKU; every mapped unit is the next box
    hybrid       sku_mapping, falling back to order_count when every
                 mapped purchase resolves to the same box
"""

from collections import Counter
from datetime import datetime
from typing import Callable, Optional, Sequence

import structlog

from models.audit import AuditMode, AuditResult, AuditStatus, FlagReason
from models.order import BoxEvent

logger = structlog.get_logger(__name__)


# Multiplicative confidence penalty per occurrence of each anomaly.
# Every factor is in (0, 1), so each extra anomaly strictly lowers the score.
ANOMALY_PENALTIES: dict[FlagReason, float] = {
    FlagReason.SKIPPED_BOX: 0.75,
    FlagReason.DUPLICATE_BOX: 0.85,
    FlagReason.OUT_OF_ORDER_PURCHASE: 0.70,
    FlagReason.UNMAPPED_ITEMS_PRESENT: 0.90,
}

# Occurrences beyond this no longer lower the score; keeps it above 0.0
MAX_PENALIZED_OCCURRENCES = 25

# Anomalies that put the verdict up for review. Unmapped items alone only
# lower confidence.
SEQUENCE_ANOMALIES = frozenset({
    FlagReason.SKIPPED_BOX,
    FlagReason.DUPLICATE_BOX,
    FlagReason.OUT_OF_ORDER_PURCHASE,
})


def confidence_from_counts(counts: Counter) -> float:
    """
    Confidence score from anomaly occurrence counts.

    1.0 with no anomalies; multiplied by the penalty factor once per
    occurrence, up to MAX_PENALIZED_OCCURRENCES per reason. Factors are
    applied in a fixed order so the float result is identical across calls.
    """
    score = 1.0
    for reason, factor in ANOMALY_PENALTIES.items():
        occurrences = min(counts.get(reason, 0), MAX_PENALIZED_OCCURRENCES)
        if occurrences:
            score *= factor ** occurrences
    return min(max(score, 0.0), 1.0)


def _no_mapped_purchases(unmapped_count: int) -> AuditResult:
    logger.debug("no_mapped_purchases", unmapped=unmapped_count)
    return AuditResult(
        status=AuditStatus.FLAGGED,
        proposed_next_box=1,
        detected_sequences=[],
        flag_reasons=[FlagReason.NO_MAPPED_PURCHASES],
        confidence_score=0.0,
        mapped_event_count=0,
        unmapped_event_count=unmapped_count,
    )


def analyze(events: Sequence[BoxEvent]) -> AuditResult:
    """
    Analyze one subscriber's box events by their mapped box numbers.

    A lower, never-seen box counts as out_of_order_purchase only when it was
    bought strictly later than the purchase that set the running max. Boxes
    listed in either order within one order (or at one timestamp) are a
    catch-up purchase, not a regression.

    Args:
        events: Box events sorted by (occurred_at, source_order_id)

    Returns:
        AuditResult with status, proposed next box, confidence and reasons
    """
    reasons: list[FlagReason] = []
    counts: Counter = Counter()

    def note(reason: FlagReason, occurrences: int = 1) -> None:
        counts[reason] += occurrences
        if reason not in reasons:
            reasons.append(reason)

    detected: list[int] = []
    seen: set[int] = set()
    max_seen: Optional[int] = None
    max_seen_at: Optional[datetime] = None
    # Later events overwrite earlier ones: for repeated boxes the most
    # recent purchase is the one that counts
    received_at: dict[int, datetime] = {}
    unmapped_count = 0

    for event in events:
        if not event.is_mapped:
            unmapped_count += 1
            note(FlagReason.UNMAPPED_ITEMS_PRESENT)
            continue

        sequence = event.sequence_number
        detected.append(sequence)

        if max_seen is not None:
            if sequence in seen:
                note(FlagReason.DUPLICATE_BOX)
            elif sequence > max_seen + 1:
                note(FlagReason.SKIPPED_BOX)
            elif sequence < max_seen and event.occurred_at > max_seen_at:
                note(FlagReason.OUT_OF_ORDER_PURCHASE)

        if event.quantity > 1:
            note(FlagReason.DUPLICATE_BOX, event.quantity - 1)

        seen.add(sequence)
        if max_seen is None or sequence > max_seen:
            max_seen = sequence
            max_seen_at = event.occurred_at
        received_at[sequence] = event.occurred_at

    if max_seen is None:
        return _no_mapped_purchases(unmapped_count)

    flagged = any(reason in SEQUENCE_ANOMALIES for reason in reasons)

    return AuditResult(
        status=AuditStatus.FLAGGED if flagged else AuditStatus.CLEAN,
        proposed_next_box=max_seen + 1,
        detected_sequences=detected,
        flag_reasons=reasons,
        confidence_score=confidence_from_counts(counts),
        mapped_event_count=len(detected),
        unmapped_event_count=unmapped_count,
        last_box_received_at=received_at[max_seen],
    )


def analyze_by_count(events: Sequence[BoxEvent]) -> AuditResult:
    """
    Analyze a same-SKU subscription by counting purchases.

    Every mapped event contributes one box per unit of quantity, numbered
    1, 2, 3... in purchase order; the mapped box number itself is ignored.
    Counting cannot produce gaps or duplicates, so the verdict is clean
    unless nothing mapped. Unmapped events still lower confidence.
    """
    reasons: list[FlagReason] = []
    unmapped_count = 0
    mapped_count = 0
    episodes = 0
    last_at: Optional[datetime] = None

    for event in events:
        if not event.is_mapped:
            unmapped_count += 1
            if not reasons:
                reasons.append(FlagReason.UNMAPPED_ITEMS_PRESENT)
            continue
        mapped_count += 1
        episodes += event.quantity
        last_at = event.occurred_at

    if not episodes:
        return _no_mapped_purchases(unmapped_count)

    return AuditResult(
        status=AuditStatus.CLEAN,
        proposed_next_box=episodes + 1,
        detected_sequences=list(range(1, episodes + 1)),
        flag_reasons=reasons,
        confidence_score=confidence_from_counts(Counter({FlagReason.UNMAPPED_ITEMS_PRESENT: unmapped_count})),
        mapped_event_count=mapped_count,
        unmapped_event_count=unmapped_count,
        last_box_received_at=last_at,
    )


def analyze_hybrid(events: Sequence[BoxEvent]) -> AuditResult:
    """
    SKU analysis first, purchase counting when the same box number was
    bought repeatedly and no other (one SKU reused for every box). A single
    purchase keeps the SKU verdict.
    """
    result = analyze(events)

    distinct = set(result.detected_sequences)
    if len(distinct) == 1 and FlagReason.DUPLICATE_BOX in result.flag_reasons:
        logger.debug("hybrid_fell_back_to_count", box=next(iter(distinct)), events=result.mapped_event_count)
        return analyze_by_count(events)

    return result


ANALYZERS: dict[AuditMode, Callable[[Sequence[BoxEvent]], AuditResult]] = {
    AuditMode.SKU_MAPPING: analyze,
    AuditMode.ORDER_COUNT: analyze_by_count,
    AuditMode.HYBRID: analyze_hybrid,
}


def analyzer_for(mode: AuditMode) -> Callable[[Sequence[BoxEvent]], AuditResult]:
    """Analyzer function for an audit mode."""
    return ANALYZERS[mode]
