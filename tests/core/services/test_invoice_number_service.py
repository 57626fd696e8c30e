"""Tests for InvoiceNumberService."""

import pytest
from datetime import date, datetime, timezone

from core.exceptions import DuplicateInvoiceNumber, ValidationError
from core.services.invoice_number_service import sequence


class TestSequence:
    """Tests for the bijective base-26 suffix."""

    @pytest.mark.parametrize("index,expected", [
        (0, "A"), (1, "B"), (25, "Z"), (26, "AA"), (27, "AB"), (51, "AZ"), (52, "BA"), (701, "ZZ"), (702, "AAA"),
    ])
    def test_letters(self, index, expected):
        assert sequence(index) == expected

    def test_negative_index_rejected(self):
        with pytest.raises(ValidationError):
            sequence(-1)


class TestOfficeCode:

    def test_known_locations_case_insensitive(self, number_service):
        assert number_service.office_code("Mumbai") == "M"
        assert number_service.office_code("DELHI") == "D"
        assert number_service.office_code(" bangalore ") == "B"
        assert number_service.office_code("Delhi (LT)") == "LT"

    def test_unknown_location_uses_default(self, number_service):
        assert number_service.office_code("Chennai") == "M"

    def test_unknown_location_rejected_when_strict(self, number_service):
        with pytest.raises(ValidationError, match="Invalid location"):
            number_service.office_code("Chennai", strict=True)


class TestInvoiceDay:

    def test_plain_date_unchanged(self, number_service):
        assert number_service.invoice_day(date(2026, 1, 8)) == date(2026, 1, 8)

    def test_aware_datetime_uses_reference_timezone(self, number_service):
        # 20:00 UTC on the 7th is 01:30 on the 8th in Kolkata
        value = datetime(2026, 1, 7, 20, 0, tzinfo=timezone.utc)
        assert number_service.invoice_day(value) == date(2026, 1, 8)

    def test_naive_datetime_rejected(self, number_service):
        with pytest.raises(ValidationError):
            number_service.invoice_day(datetime(2026, 1, 8, 12, 0))


class TestSuggest:
    """Tests for next-number derivation."""

    def _seed(self, store, numbers, day=date(2026, 1, 8)):
        for number in numbers:
            store.seed_invoice(invoice_number=number, invoice_date=day)

    def test_first_number_of_day(self, store, number_service):
        with store.transaction() as tx:
            assert number_service.suggest(tx, date(2026, 1, 8), "mumbai") == "08012026-M"

    def test_second_number_gets_suffix_a(self, store, number_service):
        self._seed(store, ["08012026-M"])
        with store.transaction() as tx:
            assert number_service.suggest(tx, date(2026, 1, 8), "mumbai") == "08012026-M-A"

    def test_other_offices_and_legacy_numbers_ignored(self, store, number_service):
        self._seed(store, ["08012026-M", "08012026-D", "08012026-D-A", "INV-0042"])
        with store.transaction() as tx:
            assert number_service.suggest(tx, date(2026, 1, 8), "mumbai") == "08012026-M-A"
            assert number_service.suggest(tx, date(2026, 1, 8), "delhi") == "08012026-D-B"

    def test_lt_office_not_counted_for_delhi(self, store, number_service):
        self._seed(store, ["08012026-LT"])
        with store.transaction() as tx:
            assert number_service.suggest(tx, date(2026, 1, 8), "delhi") == "08012026-D"
            assert number_service.suggest(tx, date(2026, 1, 8), "delhi (lt)") == "08012026-LT-A"

    def test_taken_position_moves_forward(self, store, number_service):
        self._seed(store, ["08012026-M", "08012026-M-B"])
        with store.transaction() as tx:
            assert number_service.suggest(tx, date(2026, 1, 8), "mumbai") == "08012026-M-C"

    def test_explicit_suffix_ahead_of_count(self, store, number_service):
        self._seed(store, ["08012026-M-A", "08012026-M-B"])
        with store.transaction() as tx:
            assert number_service.suggest(tx, date(2026, 1, 8), "mumbai") == "08012026-M-C"

    def test_27th_and_28th_invoice(self, store, number_service):
        numbers = ["08012026-M"] + [f"08012026-M-{sequence(i)}" for i in range(25)]
        self._seed(store, numbers)
        with store.transaction() as tx:
            assert number_service.suggest(tx, date(2026, 1, 8), "mumbai") == "08012026-M-Z"

        self._seed(store, ["08012026-M-Z"])
        with store.transaction() as tx:
            assert number_service.suggest(tx, date(2026, 1, 8), "mumbai") == "08012026-M-AA"

    def test_suggest_number_payload(self, number_service):
        result = number_service.suggest_number(date(2026, 1, 8), "Mumbai")

        assert result == {
            "invoice_number": "08012026-M",
            "date": "2026-01-08",
            "location": "mumbai",
            "office_code": "M",
        }

    def test_suggest_number_requires_known_location(self, number_service):
        with pytest.raises(ValidationError):
            number_service.suggest_number(date(2026, 1, 8), "Chennai")

    def test_suggest_number_requires_location(self, number_service):
        with pytest.raises(ValidationError, match="required"):
            number_service.suggest_number(date(2026, 1, 8), "  ")


class TestValidate:

    @pytest.mark.parametrize("number", ["08012026-M", "08012026-M-A", "31122099-LT-AB", "01012000-B"])
    def test_accepts_well_formed(self, number_service, number):
        number_service.validate(number)

    @pytest.mark.parametrize("number", ["0801202-M", "08012026-X", "08012026-M-a", "08012026-M-1", "INV-1"])
    def test_rejects_malformed(self, number_service, number):
        with pytest.raises(ValidationError, match="must follow format"):
            number_service.validate(number)

    @pytest.mark.parametrize("number", ["32012026-M", "08132026-M", "08011999-M", "00012026-M"])
    def test_rejects_implausible_date(self, number_service, number):
        with pytest.raises(ValidationError, match="Invalid date"):
            number_service.validate(number)


class TestAllocate:

    def test_auto_number_takes_scope_lock(self, store, number_service):
        with store.transaction() as tx:
            number = number_service.allocate(tx, date(2026, 1, 8), "mumbai")

        assert number == "08012026-M"
        assert store.locks == [("M", date(2026, 1, 8))]

    def test_explicit_number_validated(self, store, number_service):
        with store.transaction() as tx:
            with pytest.raises(ValidationError):
                number_service.allocate(tx, date(2026, 1, 8), "mumbai", explicit="bogus")

    def test_explicit_number_must_be_free(self, store, number_service):
        store.seed_invoice(invoice_number="08012026-M", invoice_date=date(2026, 1, 8))

        with store.transaction() as tx:
            with pytest.raises(DuplicateInvoiceNumber) as exc:
                number_service.allocate(tx, date(2026, 1, 8), "mumbai", explicit="08012026-M")

        assert exc.value.invoice_number == "08012026-M"

    def test_explicit_number_skips_lock(self, store, number_service):
        with store.transaction() as tx:
            number = number_service.allocate(tx, date(2026, 1, 8), "mumbai", explicit=" 08012026-M-C ")

        assert number == "08012026-M-C"
        assert store.locks == []
