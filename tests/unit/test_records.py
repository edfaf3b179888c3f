"""Unit tests for record models and canonical hashing."""
from datetime import date

from aom_core.schemas.records import (
    CostRecord,
    Platform,
    canonical_json,
    synthetic_unique_hash,
    visit_unique_hash,
)


def test_platform_order_and_lookup():
    assert [platform.value for platform in Platform] == ["AdWords", "Bing", "Criteo", "FacebookAds"]
    assert Platform.from_name("Bing") is Platform.BING
    assert Platform.from_name("bing") is None


def test_canonical_json_is_key_order_and_number_stable():
    assert canonical_json({"b": 1.0, "a": [2.50, 0.1 + 0.2]}) == '{"a":[2.5,0.3],"b":1}'
    assert canonical_json({"a": 1, "b": 2}) == canonical_json({"b": 2, "a": 1})
    assert canonical_json({"flag": True, "day": date(2024, 3, 10)}) == '{"day":"2024-03-10","flag":true}'


def test_unique_hashes():
    assert visit_unique_hash(42) == "visit-42"

    first = synthetic_unique_hash(date(2024, 3, 10), "Bing", {"x": 1.0, "y": "z"})
    second = synthetic_unique_hash(date(2024, 3, 10), "Bing", {"y": "z", "x": 1})
    assert first == second
    assert first.startswith("2024-03-10-Bing-")
    assert synthetic_unique_hash(date(2024, 3, 11), "Bing", {"x": 1}) != first


def test_cost_record_relevance_and_cpc():
    record = CostRecord(
        platform=Platform.CRITEO,
        external_row_id="r1",
        site_id=1,
        metric_date=date(2024, 3, 10),
        clicks=4,
        cost=2.0,
    )

    assert record.is_relevant
    assert record.cpc == 0.5
    assert record.payload()["platform"] == "Criteo"
    assert record.payload()["cost"] == 2

    empty = record.model_copy(update={"clicks": 0, "cost": 0.0})
    assert not empty.is_relevant
    assert empty.cpc is None
