"""Tests for SplitService."""

import pytest
from decimal import Decimal
from datetime import date
from uuid import UUID, uuid4

from core.exceptions import NotFoundError, ShareMismatch, ValidationError
from core.models import Client, PartnerShareInput, PaymentCreate, PaymentStatus, SplitTarget
from core.services.split_service import _apportion


def _share(user, percentage):
    return PartnerShareInput(partner_user_id=UUID(int=user), percentage=Decimal(percentage))


def _target(client_id, percentage):
    return SplitTarget(client_id=client_id, percentage=Decimal(percentage))


ACME = Client(client_id=1, client_name="Acme Ltd", group_id=10)


class TestApportion:

    def test_parts_sum_to_total(self):
        parts = _apportion(Decimal("1000.0100"), [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")])

        assert parts == [Decimal("333.3033"), Decimal("333.3033"), Decimal("333.4034")]
        assert sum(parts) == Decimal("1000.0100")

    def test_single_share_is_whole_total(self):
        assert _apportion(Decimal("99.99"), [Decimal("100")]) == [Decimal("99.99")]


class TestValidatePartnerShares:

    def test_accepts_shares_totalling_100(self, split_service):
        split_service.validate_partner_shares([_share(1, "62.5"), _share(2, "37.5")])

    def test_tolerates_rounding_drift(self, split_service):
        split_service.validate_partner_shares([_share(1, "33.33"), _share(2, "33.33"), _share(3, "33.33")])

    def test_required(self, split_service):
        with pytest.raises(ValidationError, match="required"):
            split_service.validate_partner_shares([])

    def test_total_must_be_100(self, split_service):
        with pytest.raises(ShareMismatch) as exc:
            split_service.validate_partner_shares([_share(1, "50"), _share(2, "49")])

        assert exc.value.kind == "Partner shares"
        assert exc.value.total == Decimal("99")

    def test_non_positive_share(self, split_service):
        with pytest.raises(ValidationError, match="greater than 0"):
            split_service.validate_partner_shares([_share(1, "100"), _share(2, "0")])

    def test_duplicate_partner(self, split_service):
        with pytest.raises(ValidationError, match="Duplicate partners"):
            split_service.validate_partner_shares([_share(1, "50"), _share(1, "50")])


class TestNormalizeSplits:

    def test_no_splits(self, store, split_service):
        with store.transaction() as tx:
            assert split_service.normalize_splits(tx, ACME, []) == []

    def test_single_full_target_means_no_split(self, store, split_service):
        with store.transaction() as tx:
            assert split_service.normalize_splits(tx, ACME, [_target(2, "100")]) == []

    def test_valid_split(self, store, split_service):
        targets = [_target(1, "60"), _target(2, "40")]

        with store.transaction() as tx:
            assert split_service.normalize_splits(tx, ACME, targets) == targets

    def test_total_must_be_100(self, store, split_service):
        with store.transaction() as tx:
            with pytest.raises(ShareMismatch):
                split_service.normalize_splits(tx, ACME, [_target(1, "60"), _target(2, "30")])

    def test_duplicate_clients(self, store, split_service):
        with store.transaction() as tx:
            with pytest.raises(ValidationError, match="Duplicate client"):
                split_service.normalize_splits(tx, ACME, [_target(2, "50"), _target(2, "50")])

    def test_unknown_client(self, store, split_service):
        with store.transaction() as tx:
            with pytest.raises(NotFoundError):
                split_service.normalize_splits(tx, ACME, [_target(1, "50"), _target(99, "50")])

    def test_client_without_group(self, store, split_service):
        solo = Client(client_id=3, client_name="Solo LLP")

        with store.transaction() as tx:
            with pytest.raises(ValidationError, match="group"):
                split_service.normalize_splits(tx, solo, [_target(3, "50"), _target(1, "50")])

    def test_non_positive_percentage(self, store, split_service):
        with store.transaction() as tx:
            with pytest.raises(ValidationError, match="greater than 0"):
                split_service.normalize_splits(tx, ACME, [_target(1, "100"), _target(2, "0")])


class TestListSplits:

    def test_children_with_shares_and_payments(self, split_service, payment_service, make_invoice, finalize):
        invoice = make_invoice()
        finalize(invoice.id, splits=[_target(1, "60"), _target(2, "40")])

        splits = split_service.list_splits(invoice.id)
        payment_service.record(splits[0].id, PaymentCreate(
            amount=Decimal("100"), payment_date=date(2026, 1, 20), payment_method="upi",
        ))
        splits = split_service.list_splits(invoice.id)

        assert [s.invoice_number for s in splits] == ["08012026-M-1", "08012026-M-2"]
        assert [s.split_percentage for s in splits] == [Decimal("60"), Decimal("40")]
        assert [s.payment_count for s in splits] == [1, 0]
        assert [s.display_status for s in splits] == [PaymentStatus.PARTIALLY_PAID, PaymentStatus.NEW]
        assert [len(s.partner_shares) for s in splits] == [2, 2]
        assert splits[0].partner_shares[0].percentage == Decimal("70")

    def test_unsplit_invoice_has_no_children(self, split_service, make_invoice):
        invoice = make_invoice()
        assert split_service.list_splits(invoice.id) == []

    def test_unknown_invoice(self, split_service):
        with pytest.raises(NotFoundError):
            split_service.list_splits(uuid4())
