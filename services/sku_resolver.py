"""
SKU resolution map.

Translates a raw SKU / product name into a box number. Built once per audit
run from the organization's aliases and product patterns; read-only after
construction, so every subscriber analysis in the run can share it.

Resolution order:
    1. Exact alias match on the SKU (case-insensitive, trimmed)
    2. Product patterns by ascending priority, first match wins
    3. None (unmapped)
"""

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Pattern

import structlog

from models.order import MatchSource, VariationType
from models.sku_mapping import (
    PatternType,
    ProductClassification,
    ProductPattern,
    SEQUENCE_PLACEHOLDER,
    SkuAlias,
)
from exceptions import InvalidPatternError

logger = structlog.get_logger(__name__)


# Line items that are never subscription boxes (fees, credits, upsells)
NON_SUBSCRIPTION_PATTERNS: tuple[Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE) for p in (
        r"\bshipping\b",
        r"\btax(es)?\b",
        r"\btips?\b",
        r"\bgratuity\b",
        r"\bgift\s*card\b",
        r"\bstore\s*credit\b",
        r"\bdiscount\b",
        r"\bcoupon\b",
        r"\bhandling\b",
        r"\binsurance\b",
        r"\brush\b",
        r"\bexpedited\b",
        r"\bupgrade\b",
    )
)


def normalize_key(value: Optional[str]) -> str:
    """Lookup key for SKUs and product names."""
    return (value or "").strip().lower()


def is_likely_non_subscription_item(product_name: str) -> bool:
    """Heuristic for fee/credit lines that are clearly not boxes."""
    return any(p.search(product_name or "") for p in NON_SUBSCRIPTION_PATTERNS)


def _placeholder_regex(pattern: str, pattern_type: PatternType) -> Pattern[str]:
    """
    Build the regex for a {N} pattern.

    "Box {N} -" as prefix becomes r"^Box\\ (\\d+)\\ \\-".
    """
    escaped = re.escape(pattern).replace(re.escape(SEQUENCE_PLACEHOLDER), r"(\d+)", 1)
    if pattern_type == PatternType.PREFIX:
        escaped = f"^{escaped}"
    elif pattern_type == PatternType.SUFFIX:
        escaped = f"{escaped}$"
    return re.compile(escaped, re.IGNORECASE)


def extract_sequence_from_name(
    product_name: str,
    pattern: str,
    pattern_type: PatternType
) -> Optional[int]:
    """
    Read a box number out of a product name using a {N} pattern.

    Args:
        product_name: Product title from the order
        pattern: Pattern containing {N} (or a regex with one capture group)
        pattern_type: How the pattern is anchored

    Returns:
        Extracted number, or None if the name doesn't match
    """
    try:
        if pattern_type == PatternType.REGEX:
            regex = re.compile(pattern, re.IGNORECASE)
        else:
            regex = _placeholder_regex(pattern, pattern_type)
    except re.error:
        return None

    match = regex.search(product_name or "")
    if not match or not match.groups() or match.group(1) is None:
        return None
    try:
        return int(match.group(1))
    except ValueError:
        return None


@dataclass(frozen=True)
class PatternRule:
    """A product pattern compiled for matching."""

    pattern: ProductPattern
    regex: Optional[Pattern[str]]
    needle: str

    @classmethod
    def compile(cls, pattern: ProductPattern) -> "PatternRule":
        """
        Compile one pattern.

        Raises:
            InvalidPatternError: Bad regex, or {N} rule without a capture point
        """
        text = pattern.pattern
        if not text or not text.strip():
            raise InvalidPatternError(text, "pattern is empty")

        regex = None
        if pattern.pattern_type == PatternType.REGEX:
            try:
                regex = re.compile(text, re.IGNORECASE)
            except re.error as e:
                raise InvalidPatternError(text, str(e)) from e
            if pattern.uses_placeholder and regex.groups < 1:
                raise InvalidPatternError(
                    text, "regex without a fixed box number needs a capture group"
                )
        elif pattern.uses_placeholder:
            if SEQUENCE_PLACEHOLDER not in text:
                raise InvalidPatternError(
                    text, f"pattern without a box number must contain {SEQUENCE_PLACEHOLDER}"
                )
            regex = _placeholder_regex(text, pattern.pattern_type)

        return cls(pattern=pattern, regex=regex, needle=normalize_key(text))

    def match(self, product_name: str) -> Optional[int]:
        """Box number for this product name, or None."""
        if self.pattern.uses_placeholder:
            found = self.regex.search(product_name)
            if not found or found.group(1) is None:
                return None
            try:
                sequence = int(found.group(1))
            except ValueError:
                return None
            return sequence if sequence >= 1 else None

        if self.pattern.pattern_type == PatternType.REGEX:
            hit = self.regex.search(product_name) is not None
        else:
            name = normalize_key(product_name)
            if self.pattern.pattern_type == PatternType.PREFIX:
                hit = name.startswith(self.needle)
            elif self.pattern.pattern_type == PatternType.SUFFIX:
                hit = name.endswith(self.needle)
            else:
                hit = self.needle in name

        return self.pattern.sequence_number if hit else None


class SkuResolutionMap:
    """
    Immutable SKU → box number lookup for one organization.

    Usage:
        sku_map = SkuResolutionMap.build(aliases, patterns, classifications)
        sku_map.resolve("BOX-01", "Box 1 - The Beginning")  # → 1
    """

    def __init__(
        self,
        aliases: Mapping[str, int],
        rules: tuple[PatternRule, ...] = (),
        classifications_by_sku: Optional[Mapping[str, VariationType]] = None,
        classifications_by_name: Optional[Mapping[str, VariationType]] = None,
    ):
        self._aliases = MappingProxyType(dict(aliases))
        self._rules = tuple(rules)
        self._by_sku = MappingProxyType(dict(classifications_by_sku or {}))
        self._by_name = MappingProxyType(dict(classifications_by_name or {}))

    @classmethod
    def build(
        cls,
        aliases: Iterable[SkuAlias],
        patterns: Iterable[ProductPattern] = (),
        classifications: Iterable[ProductClassification] = (),
    ) -> "SkuResolutionMap":
        """
        Build the map from organization mapping rows.

        Patterns are ordered by explicit priority; equal priorities keep
        the order they were supplied in.

        Raises:
            InvalidPatternError: If any pattern fails to compile
        """
        alias_map: dict[str, int] = {}
        for alias in aliases:
            key = normalize_key(alias.raw_sku)
            if not key:
                continue
            if key in alias_map and alias_map[key] != alias.sequence_number:
                logger.warning(
                    "conflicting_sku_alias_ignored",
                    sku=alias.raw_sku,
                    kept=alias_map[key],
                    ignored=alias.sequence_number
                )
                continue
            alias_map[key] = alias.sequence_number

        ordered = sorted(enumerate(patterns), key=lambda pair: (pair[1].priority, pair[0]))
        rules = tuple(PatternRule.compile(p) for _, p in ordered)

        by_sku: dict[str, VariationType] = {}
        by_name: dict[str, VariationType] = {}
        for item in classifications:
            if item.sku and normalize_key(item.sku):
                by_sku.setdefault(normalize_key(item.sku), item.variation_type)
            if item.product_name and normalize_key(item.product_name):
                by_name.setdefault(normalize_key(item.product_name), item.variation_type)

        logger.info(
            "sku_resolution_map_built",
            aliases=len(alias_map),
            patterns=len(rules),
            classifications=len(by_sku) + len(by_name)
        )

        return cls(alias_map, rules, by_sku, by_name)

    # ===================
    # LOOKUPS
    # ===================

    @property
    def alias_count(self) -> int:
        return len(self._aliases)

    @property
    def pattern_count(self) -> int:
        return len(self._rules)

    @property
    def is_empty(self) -> bool:
        return not self._aliases and not self._rules

    def resolve_with_source(
        self,
        raw_sku: Optional[str],
        raw_product_name: Optional[str]
    ) -> tuple[Optional[int], MatchSource]:
        """Resolve and report which layer produced the answer."""
        sku_key = normalize_key(raw_sku)
        if sku_key and sku_key in self._aliases:
            return self._aliases[sku_key], MatchSource.ALIAS

        name = raw_product_name or ""
        if name:
            for rule in self._rules:
                sequence = rule.match(name)
                if sequence is not None:
                    return sequence, MatchSource.PATTERN

        return None, MatchSource.NONE

    def resolve(self, raw_sku: Optional[str], raw_product_name: Optional[str]) -> Optional[int]:
        """Box number for a SKU / product name, or None if unmapped."""
        sequence, _ = self.resolve_with_source(raw_sku, raw_product_name)
        return sequence

    def classify(self, raw_sku: Optional[str], raw_product_name: Optional[str]) -> VariationType:
        """
        Catalog classification of a line item.

        Explicit catalog entries win, then anything the aliases or patterns
        resolve is a subscription box. The fee/credit heuristics only apply
        to line items nothing resolves.
        """
        sku_key = normalize_key(raw_sku)
        if sku_key and sku_key in self._by_sku:
            return self._by_sku[sku_key]

        name_key = normalize_key(raw_product_name)
        if name_key and name_key in self._by_name:
            return self._by_name[name_key]

        if self.resolve(raw_sku, raw_product_name) is not None:
            return VariationType.SUBSCRIPTION

        if is_likely_non_subscription_item(raw_product_name or ""):
            return VariationType.IGNORED

        return VariationType.SUBSCRIPTION
