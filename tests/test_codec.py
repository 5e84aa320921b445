"""Tests for raw record normalization."""

import pytest

from product_sync.codec import RecordCodec
from product_sync.exceptions import InvalidRecord
from product_sync.models import ProductStatus

from tests.helpers import FIXED_NOW


@pytest.fixture
def codec() -> RecordCodec:
    return RecordCodec(clock=lambda: FIXED_NOW)


class TestNormalize:
    def test_extracts_code_and_keeps_other_fields(self, codec):
        record = codec.normalize({"code": "0001", "product_name": "Milk", "brands": "Acme"})

        assert record.code == "0001"
        assert record.attributes == {"product_name": "Milk", "brands": "Acme"}
        assert record.imported_at == FIXED_NOW
        assert record.status == ProductStatus.CREATED

    def test_strips_code(self, codec):
        assert codec.normalize({"code": "  42 "}).code == "42"

    def test_accepts_integer_code(self, codec):
        assert codec.normalize({"code": 17}).code == "17"

    def test_nested_values_copied_verbatim(self, codec):
        raw = {"code": "1", "nutriments": {"energy": 120}, "tags": ["a", "b"]}
        assert codec.normalize(raw).attributes == {
            "nutriments": {"energy": 120},
            "tags": ["a", "b"],
        }

    @pytest.mark.parametrize(
        "raw",
        [
            {"name": "no code"},
            {"code": ""},
            {"code": "   "},
            {"code": None},
            {"code": True},
            {"code": ["1"]},
            "not an object",
        ],
    )
    def test_rejects_records_without_usable_code(self, codec, raw):
        with pytest.raises(InvalidRecord):
            codec.normalize(raw)

    def test_reimport_resets_status_to_created(self, codec):
        first = codec.normalize({"code": "1", "status": "trash"})
        assert first.status == ProductStatus.CREATED
        # a raw "status" field is payload, not record metadata
        assert first.attributes == {"status": "trash"}


class TestNormalizeBatch:
    def test_drops_invalid_records_and_counts_them(self, codec):
        records, rejected = codec.normalize_batch(
            [{"code": "1"}, {"name": "missing"}, {"code": "2"}, {"code": ""}]
        )

        assert [r.code for r in records] == ["1", "2"]
        assert rejected == 2

    def test_record_limit_truncates_silently(self):
        codec = RecordCodec(record_limit=2, clock=lambda: FIXED_NOW)
        records, rejected = codec.normalize_batch([{"code": str(i)} for i in range(5)])

        assert [r.code for r in records] == ["0", "1"]
        assert rejected == 0

    def test_no_limit_keeps_everything(self, codec):
        records, _ = codec.normalize_batch([{"code": str(i)} for i in range(250)])
        assert len(records) == 250

    def test_empty_batch(self, codec):
        assert codec.normalize_batch([]) == ([], 0)
