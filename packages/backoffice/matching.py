"""Resolve free-text product names to catalog products.

Resolution is a tie-break over catalog search hits, not a ranking by
similarity: an exact (case-insensitive) name wins, then a hit carrying the
catalog's default-variant marker, then the first hit. :func:`score` only
orders candidates for review screens.

Before searching, configured :class:`~backoffice.config.AliasRule` entries
rewrite short product-family names ("pure turkey", "duck for cats") into
the catalog's naming scheme. Learned mappings are consulted first and
updated after every successful match.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar

from db.models.inventory import BoProduct
from sqlalchemy.orm import Session

from .catalog import get_product, search_products
from .config import AliasRule, IngestConfig, MatchingConfig, default_ingest_config
from .logging_setup import get_logger
from .mappings import find_mapping, upsert_mapping
from .models import MappingType, MatchedLineItem, ParsedLineItem
from .normalizers import round_money

logger = get_logger("backoffice.matching")

SUBSTRING_SCORE = 0.8

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]+")


class _Named(Protocol):
    name: str


N = TypeVar("N", bound=_Named)


def normalize(name: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""

    return " ".join(_NON_ALNUM_RE.sub("", (name or "").lower()).split())


def _matched_words(words: Sequence[str], others: Sequence[str]) -> int:
    return sum(1 for w in words if any(o in w or w in o for o in others))


def score(a: str, b: str) -> float:
    """Similarity in ``[0, 1]``; symmetric in its arguments.

    Containment of one normalized name in the other scores
    :data:`SUBSTRING_SCORE`. Otherwise words overlap when either contains the
    other; the overlap count is taken in both directions and the smaller is
    divided by the longer word list.
    """

    na, nb = normalize(a), normalize(b)
    if not na or not nb:
        return 0.0
    if na in nb or nb in na:
        return SUBSTRING_SCORE
    wa, wb = na.split(), nb.split()
    matched = min(_matched_words(wa, wb), _matched_words(wb, wa))
    return matched / max(len(wa), len(wb))


def rank_by_similarity(name: str, candidates: Iterable[N]) -> list[N]:
    """Candidates ordered by :func:`score` against ``name``, best first (stable)."""

    return sorted(candidates, key=lambda c: score(name, c.name), reverse=True)


def resolve_candidate(
    name: str, candidates: Sequence[N], *, default_variant_marker: str = "Regular"
) -> N | None:
    if not candidates:
        return None
    key = (name or "").strip().lower()
    for c in candidates:
        if c.name.strip().lower() == key:
            return c
    marker = default_variant_marker.lower()
    if marker:
        for c in candidates:
            if marker in c.name.lower():
                return c
    return candidates[0]


def rewrite_alias(name: str, aliases: Iterable[AliasRule]) -> list[str]:
    """Search queries for ``name``: alias rewrites first, the name itself last."""

    text = " ".join((name or "").split())
    queries: list[str] = []
    for rule in aliases:
        m = re.match(rule.pattern, text, re.IGNORECASE)
        if m is None:
            continue
        groups = {k: v for k, v in m.groupdict().items() if v is not None}
        for template in (rule.template, rule.fallback_template):
            if not template:
                continue
            try:
                queries.append(template.format(**groups))
            except KeyError:
                logger.warning("Alias %s template references a missing group", rule.name)
        break
    queries.append(text)

    seen: set[str] = set()
    unique: list[str] = []
    for q in queries:
        if q and q.lower() not in seen:
            seen.add(q.lower())
            unique.append(q)
    return unique


@dataclass(frozen=True, slots=True)
class MatchResult:
    matched: tuple[MatchedLineItem, ...]
    unmatched: tuple[ParsedLineItem, ...]

    @property
    def unmatched_names(self) -> list[str]:
        return [item.raw_name for item in self.unmatched]


def _from_trusted_mapping(
    session: Session,
    name: str,
    *,
    mapping_type: MappingType,
    threshold: int,
) -> BoProduct | None:
    mapping = find_mapping(session, mapping_type, name)
    if mapping is None or mapping.target_id is None or mapping.confidence < threshold:
        return None
    try:
        product_id = int(mapping.target_id)
    except ValueError:
        return None
    return get_product(session, product_id)


def find_product_for_name(
    session: Session,
    name: str,
    *,
    config: MatchingConfig | None = None,
    mapping_type: MappingType = MappingType.EMAIL_PRODUCT,
) -> BoProduct | None:
    """Best catalog product for ``name``, or ``None`` if nothing was found."""

    cfg = config if config is not None else default_ingest_config().matching
    product = _from_trusted_mapping(
        session, name, mapping_type=mapping_type, threshold=cfg.trusted_mapping_confidence
    )
    if product is not None:
        logger.debug("Name %r resolved by learned mapping to %s", name, product.id)
        return product
    for query in rewrite_alias(name, cfg.aliases):
        candidates = search_products(session, query)
        chosen = resolve_candidate(
            query, candidates, default_variant_marker=cfg.default_variant_marker
        )
        if chosen is not None:
            return chosen
    return None


def match_line_items(
    session: Session,
    items: Iterable[ParsedLineItem],
    *,
    config: IngestConfig | None = None,
    mapping_type: MappingType = MappingType.EMAIL_PRODUCT,
) -> MatchResult:
    """Bind parsed line items to catalog products.

    One catalog lookup per item. Every successful match is written back to
    the mapping store so the next email with the same wording is cheaper.
    """

    cfg = config if config is not None else default_ingest_config()
    matched: list[MatchedLineItem] = []
    unmatched: list[ParsedLineItem] = []
    for item in items:
        product = find_product_for_name(
            session, item.raw_name, config=cfg.matching, mapping_type=mapping_type
        )
        if product is None:
            logger.info("No catalog product for %r", item.raw_name)
            unmatched.append(item)
            continue
        upsert_mapping(
            session,
            mapping_type,
            item.raw_name,
            product.name,
            target_id=product.id,
            config=cfg.mappings,
        )
        matched.append(
            MatchedLineItem.from_parsed(
                item,
                product_id=product.id,
                matched_name=product.name,
                last_known_price=round_money(product.last_purchase_price or 0),
            )
        )
    return MatchResult(matched=tuple(matched), unmatched=tuple(unmatched))


__all__ = [
    "SUBSTRING_SCORE",
    "MatchResult",
    "find_product_for_name",
    "match_line_items",
    "normalize",
    "rank_by_similarity",
    "resolve_candidate",
    "rewrite_alias",
    "score",
]
