import pytest

from opsdesk.errors import InvalidInput
from opsdesk.services.line_items import (
    compute_totals,
    line_total,
    normalize_line_items,
    parse_currency,
    parse_money,
    stored_line_items,
)
from opsdesk.utils.parsing import isoformat, parse_iso_datetime


class TestLineTotal:
    def test_whole_quantity(self):
        assert line_total(3, 1250) == 3750

    def test_fractional_quantity_rounds_half_up(self):
        # 1.5 * 333 = 499.5
        assert line_total(1.5, 333) == 500

    def test_nan_quantity_is_invalid(self):
        with pytest.raises(InvalidInput):
            line_total(float("nan"), 100)


class TestNormalizeLineItems:
    def test_computes_line_totals(self):
        items = normalize_line_items([
            {"description": " Setup ", "quantity": 1, "unitPrice": 9900},
            {"description": "Hours", "quantity": 2.0, "unitPrice": 5000},
        ])

        assert items == [
            {"description": "Setup", "quantity": 1, "unitPrice": 9900, "lineTotal": 9900},
            {"description": "Hours", "quantity": 2, "unitPrice": 5000, "lineTotal": 10000},
        ]

    def test_accepts_legacy_total_key(self):
        items = normalize_line_items([{"description": "A", "quantity": 2, "unitPrice": 100, "total": 200}])
        assert items[0]["lineTotal"] == 200

    def test_rejects_mismatched_line_total(self):
        with pytest.raises(InvalidInput) as exc:
            normalize_line_items([{"description": "A", "quantity": 2, "unitPrice": 100, "lineTotal": 999}])
        assert "Line item 1" in exc.value.message

    def test_empty_list_rejected(self):
        with pytest.raises(InvalidInput) as exc:
            normalize_line_items([])
        assert exc.value.message == "At least one line item is required"

    @pytest.mark.parametrize(
        "item",
        [
            "not an object",
            {"quantity": 1, "unitPrice": 100},
            {"description": "A", "quantity": 0, "unitPrice": 100},
            {"description": "A", "quantity": True, "unitPrice": 100},
            {"description": "A", "quantity": 1, "unitPrice": -5},
            {"description": "A", "quantity": 1, "unitPrice": 10.5},
        ],
    )
    def test_invalid_items(self, item):
        with pytest.raises(InvalidInput):
            normalize_line_items([item])


class TestTotals:
    def test_total_is_subtotal_plus_tax(self):
        totals = compute_totals([{"lineTotal": 4000}, {"lineTotal": 6000}], tax=2000)
        assert (totals.subtotal, totals.tax, totals.total) == (10000, 2000, 12000)

    def test_parse_money_rejects_negative(self):
        with pytest.raises(InvalidInput):
            parse_money(-1, "tax")

    def test_parse_currency_defaults_and_uppercases(self):
        assert parse_currency(None, "USD") == "USD"
        assert parse_currency("eur", "USD") == "EUR"
        with pytest.raises(InvalidInput):
            parse_currency("EURO", "USD")


class TestStoredLineItems:
    def test_json_string_is_decoded(self):
        assert stored_line_items('[{"description": "A"}]') == [{"description": "A"}]

    def test_malformed_rows(self):
        for raw in ("{not json", {"a": 1}, [1, 2]):
            with pytest.raises(InvalidInput) as exc:
                stored_line_items(raw)
            assert exc.value.message == "Invalid quote data: line items are malformed"


class TestDates:
    def test_zulu_timestamp_becomes_naive_utc(self):
        parsed = parse_iso_datetime("2026-03-01T12:30:00Z", "issueDate")
        assert parsed.tzinfo is None
        assert isoformat(parsed) == "2026-03-01T12:30:00Z"

    def test_offset_is_normalized(self):
        parsed = parse_iso_datetime("2026-03-01T14:30:00+02:00", "dueDate")
        assert isoformat(parsed) == "2026-03-01T12:30:00Z"

    def test_garbage_names_the_field(self):
        with pytest.raises(InvalidInput) as exc:
            parse_iso_datetime("next tuesday", "dueDate")
        assert exc.value.message == "Invalid dueDate"
