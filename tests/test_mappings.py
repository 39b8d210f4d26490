from __future__ import annotations

import pytest

from backoffice.config import MappingsConfig
from backoffice.mappings import (
    CONFIDENCE_FLOOR,
    auto_confirmed,
    delete_mapping,
    find_mapping,
    list_mappings,
    mapping_to_json,
    relevance_score,
    suggest_mappings,
    upsert_mapping,
)
from backoffice.models import MappingType

PN = MappingType.PRODUCT_NAMES


def test_new_mapping_defaults(session):
    row = upsert_mapping(session, PN, "  Pure Turkey ", "Viva Raw Pure Turkey", target_id=7)

    assert row.source == "pure turkey"
    assert row.target_id == "7"
    assert row.confidence == 80
    assert row.usage_count == 0
    assert row.score == relevance_score(80, 0) == 80.0
    assert find_mapping(session, PN, "PURE TURKEY") is row
    assert find_mapping(session, MappingType.EMAIL_PRODUCT, "pure turkey") is None


def test_same_target_bumps_usage_only(session):
    upsert_mapping(session, PN, "pure turkey", "Turkey")
    row = upsert_mapping(session, PN, "Pure Turkey", "Turkey", metadata={"from": "email"})

    assert row.usage_count == 1
    assert row.confidence == 80
    assert row.mapping_metadata == {"from": "email"}


def test_retarget_of_unproven_mapping_costs_confidence(session):
    upsert_mapping(session, PN, "duck", "Duck Necks")
    row = upsert_mapping(session, PN, "duck", "Duck for Cats", target_id=3)
    assert (row.target, row.target_id, row.confidence) == ("Duck for Cats", "3", 70)

    low = upsert_mapping(session, PN, "beef", "Beef", confidence=65)
    low = upsert_mapping(session, PN, "beef", "Beef Blend")
    assert low.confidence == CONFIDENCE_FLOOR

    below = upsert_mapping(session, PN, "lamb", "Lamb", confidence=50)
    below = upsert_mapping(session, PN, "lamb", "Lamb Blend")
    assert below.confidence == 50


def test_retarget_of_proven_mapping_keeps_confidence(session):
    upsert_mapping(session, PN, "duck", "Duck Necks", usage_count=5)
    row = upsert_mapping(session, PN, "duck", "Duck for Cats")
    assert row.confidence == 80
    assert row.usage_count == 6


def test_empty_source_is_rejected(session):
    with pytest.raises(ValueError):
        upsert_mapping(session, PN, "   ", "x")


def test_unused_mappings_are_pruned_at_capacity(session):
    cfg = MappingsConfig(max_per_type=2)
    upsert_mapping(session, PN, "a", "A", config=cfg)
    upsert_mapping(session, PN, "b", "B", config=cfg)
    upsert_mapping(session, PN, "b", "B", config=cfg)
    upsert_mapping(session, MappingType.EMAIL_PRODUCT, "x", "X", config=cfg)

    upsert_mapping(session, PN, "c", "C", config=cfg)

    assert find_mapping(session, PN, "a") is None
    assert find_mapping(session, PN, "b") is not None
    assert find_mapping(session, PN, "c") is not None
    assert find_mapping(session, MappingType.EMAIL_PRODUCT, "x") is not None


def test_suggestions(session):
    upsert_mapping(session, PN, "pure turkey", "Turkey", usage_count=25)
    upsert_mapping(session, PN, "turkey for cats", "Turkey Cats", confidence=90)
    upsert_mapping(session, PN, "duck", "Duck")

    assert [m.target for m in suggest_mappings(session, PN, "Pure Turkey")] == ["Turkey"]
    assert [m.target for m in suggest_mappings(session, PN, "big turkey box")] == [
        "Turkey Cats",
        "Turkey",
    ]
    assert [m.target for m in suggest_mappings(session, PN, "turkey", max_results=1)] == [
        "Turkey Cats"
    ]
    assert suggest_mappings(session, PN, "a b") == []


def test_auto_confirmed(session):
    upsert_mapping(session, PN, "pure turkey", "Turkey", confidence=90, usage_count=3)
    upsert_mapping(session, PN, "duck", "Duck", confidence=90, usage_count=1)
    upsert_mapping(session, PN, "beef", "Beef", usage_count=10)

    assert auto_confirmed(session) == {"pure turkey": "Turkey"}
    assert auto_confirmed(session, min_usage=1) == {"pure turkey": "Turkey", "duck": "Duck"}


def test_list_delete_and_json(session):
    row = upsert_mapping(session, PN, "duck", "Duck", target_id=4)
    upsert_mapping(session, MappingType.EMAIL_SUPPLIER, "viva raw", "Viva Raw")

    assert [m.source for m in list_mappings(session, PN)] == ["duck"]
    assert len(list_mappings(session)) == 2

    body = mapping_to_json(row)
    assert body["mappingType"] == "product_names"
    assert body["targetId"] == "4"
    assert body["usageCount"] == 0
    assert body["metadata"] == {}

    assert delete_mapping(session, row.id) is True
    assert delete_mapping(session, row.id) is False
    assert find_mapping(session, PN, "duck") is None
