"""Smart mapping store: learned ``source text -> target`` lookups.

Whenever a person (or the matcher) resolves a free-text name to a catalog
product or a supplier, the pair is remembered in ``bo_smart_mappings`` so the
next import can reuse it. Each record keeps:

- ``confidence`` (0-100): starts at the caller-supplied value and drops by 10
  (not below 60) when a young mapping (fewer than 3 uses) is re-pointed at a
  different target;
- ``usage_count``: bumped on every reuse;
- ``score``: stored relevance used to order suggestions,
  ``min(100, confidence + min(20, usage_count / 5))``.

Each mapping type holds at most ``max_per_type`` rows; when full, unused rows
(``usage_count == 0``) of that type are deleted before inserting. Used rows
are never pruned.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from db.models.inventory import BoSmartMapping
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from .config import MappingsConfig, default_ingest_config
from .logging_setup import get_logger
from .models import MappingType

logger = get_logger("backoffice.mappings")

# Mappings used fewer times than this are still considered unproven.
UNSTABLE_USAGE_LIMIT = 3
CONFIDENCE_PENALTY = 10
CONFIDENCE_FLOOR = 60


def _cfg(config: MappingsConfig | None) -> MappingsConfig:
    return config if config is not None else default_ingest_config().mappings


def normalize_source(source: str) -> str:
    return (source or "").strip().lower()


def relevance_score(confidence: int, usage_count: int) -> float:
    return float(min(100.0, confidence + min(20.0, usage_count / 5)))


def _penalized(confidence: int) -> int:
    lowered = confidence - CONFIDENCE_PENALTY
    if lowered >= CONFIDENCE_FLOOR:
        return lowered
    return min(confidence, CONFIDENCE_FLOOR)


def find_mapping(
    session: Session, mapping_type: MappingType | str, source: str
) -> BoSmartMapping | None:
    """Exact lookup on the normalized ``source``."""

    key = normalize_source(source)
    if not key:
        return None
    return session.scalars(
        select(BoSmartMapping).where(
            BoSmartMapping.mapping_type == str(mapping_type),
            BoSmartMapping.source == key,
        )
    ).first()


def prune_unused(session: Session, mapping_type: MappingType | str) -> int:
    result = session.execute(
        delete(BoSmartMapping).where(
            BoSmartMapping.mapping_type == str(mapping_type),
            BoSmartMapping.usage_count == 0,
        )
    )
    removed = result.rowcount or 0
    if removed:
        logger.info("Pruned %d unused %s mappings", removed, mapping_type)
    return removed


def upsert_mapping(
    session: Session,
    mapping_type: MappingType | str,
    source: str,
    target: str,
    *,
    target_id: str | int | None = None,
    metadata: dict[str, Any] | None = None,
    confidence: int | None = None,
    usage_count: int = 0,
    config: MappingsConfig | None = None,
) -> BoSmartMapping:
    """Record that ``source`` resolved to ``target``.

    ``confidence`` and ``usage_count`` only apply when a new record is
    created; an existing record is updated as described in the module
    docstring.
    """

    cfg = _cfg(config)
    key = normalize_source(source)
    if not key:
        raise ValueError("mapping source must be non-empty")
    target_id_s = str(target_id) if target_id is not None else None
    now = datetime.now(UTC)

    existing = find_mapping(session, mapping_type, key)
    if existing is not None:
        prior_usage = existing.usage_count
        existing.usage_count = prior_usage + 1
        existing.last_used = now
        if target != existing.target:
            existing.target = target
            existing.target_id = target_id_s
            if prior_usage < UNSTABLE_USAGE_LIMIT:
                existing.confidence = _penalized(existing.confidence)
        elif target_id_s is not None:
            existing.target_id = target_id_s
        if metadata:
            # Reassign so the JSON column is flagged dirty.
            existing.mapping_metadata = {**(existing.mapping_metadata or {}), **metadata}
        existing.score = relevance_score(existing.confidence, existing.usage_count)
        existing.updated_at = now
        session.flush()
        return existing

    population = session.scalar(
        select(func.count())
        .select_from(BoSmartMapping)
        .where(BoSmartMapping.mapping_type == str(mapping_type))
    )
    if (population or 0) >= cfg.max_per_type:
        prune_unused(session, mapping_type)

    start_confidence = cfg.default_confidence if confidence is None else confidence
    row = BoSmartMapping(
        mapping_type=str(mapping_type),
        source=key,
        target=target,
        target_id=target_id_s,
        confidence=start_confidence,
        usage_count=usage_count,
        score=relevance_score(start_confidence, usage_count),
        mapping_metadata=dict(metadata or {}),
        last_used=now,
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    session.flush()
    logger.debug("Created %s mapping %r -> %r", mapping_type, key, target)
    return row


def suggest_mappings(
    session: Session,
    mapping_type: MappingType | str,
    source: str,
    *,
    max_results: int | None = None,
    config: MappingsConfig | None = None,
) -> list[BoSmartMapping]:
    """Exact match if one exists, else records sharing a word (>2 chars)."""

    limit = max_results if max_results is not None else _cfg(config).default_max_results
    exact = find_mapping(session, mapping_type, source)
    if exact is not None:
        return [exact]
    tokens = [w for w in re.split(r"\s+", normalize_source(source)) if len(w) > 2]
    if not tokens:
        return []
    stmt = (
        select(BoSmartMapping)
        .where(
            BoSmartMapping.mapping_type == str(mapping_type),
            or_(*(BoSmartMapping.source.contains(t, autoescape=True) for t in tokens)),
        )
        .order_by(
            BoSmartMapping.score.desc(),
            BoSmartMapping.usage_count.desc(),
            BoSmartMapping.id.asc(),
        )
        .limit(limit)
    )
    return list(session.scalars(stmt))


def auto_confirmed(
    session: Session,
    mapping_type: MappingType | str = MappingType.PRODUCT_NAMES,
    *,
    confidence_threshold: int | None = None,
    min_usage: int | None = None,
    config: MappingsConfig | None = None,
) -> dict[str, str]:
    """``source -> target`` for mappings trusted enough to skip confirmation."""

    cfg = _cfg(config)
    conf = cfg.auto_confirm_confidence if confidence_threshold is None else confidence_threshold
    usage = cfg.auto_confirm_usage if min_usage is None else min_usage
    rows = session.scalars(
        select(BoSmartMapping).where(
            BoSmartMapping.mapping_type == str(mapping_type),
            BoSmartMapping.confidence >= conf,
            BoSmartMapping.usage_count >= usage,
        )
    )
    return {row.source: row.target for row in rows}


def list_mappings(
    session: Session,
    mapping_type: MappingType | str | None = None,
    *,
    limit: int = 100,
    offset: int = 0,
) -> list[BoSmartMapping]:
    stmt = select(BoSmartMapping)
    if mapping_type is not None:
        stmt = stmt.where(BoSmartMapping.mapping_type == str(mapping_type))
    stmt = stmt.order_by(BoSmartMapping.score.desc(), BoSmartMapping.id.asc())
    return list(session.scalars(stmt.limit(limit).offset(offset)))


def delete_mapping(session: Session, mapping_id: int) -> bool:
    row = session.get(BoSmartMapping, mapping_id)
    if row is None:
        return False
    session.delete(row)
    session.flush()
    return True


def mapping_to_json(row: BoSmartMapping) -> dict[str, Any]:
    return {
        "id": row.id,
        "mappingType": row.mapping_type,
        "source": row.source,
        "target": row.target,
        "targetId": row.target_id,
        "confidence": row.confidence,
        "usageCount": row.usage_count,
        "score": row.score,
        "metadata": row.mapping_metadata or {},
        "lastUsed": row.last_used.isoformat() if row.last_used else None,
    }


__all__ = [
    "auto_confirmed",
    "delete_mapping",
    "find_mapping",
    "list_mappings",
    "mapping_to_json",
    "normalize_source",
    "prune_unused",
    "relevance_score",
    "suggest_mappings",
    "upsert_mapping",
]
