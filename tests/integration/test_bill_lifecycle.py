"""Integration tests for the bill lifecycle: consumptions, allocations, transitions."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from expense_engine.errors import (
    AllocationMismatchError,
    ImmutableError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from expense_engine.models import Allocation, AuditLog, Bill
from expense_engine.models.allocation import AllocationMethod, SubjectType
from expense_engine.models.bill import BillStatus, BillType
from expense_engine.services.allocation_service import AllocationSubject
from expense_engine.services.bill_service import BillService


def allocation_total(db_session, bill_id):
    return db_session.scalar(select(func.sum(Allocation.amount)).where(Allocation.bill_id == bill_id))


class TestCreateBill:
    """Test bill creation and validation."""

    def test_created_as_draft_with_audit(self, db_session, bill_service):
        bill = bill_service.create_bill(
            bill_type=BillType.INTERNET,
            period_start=date(2024, 1, 1),
            period_end=date(2024, 1, 31),
            total_amount="59.99",
        )

        assert bill.status == BillStatus.DRAFT
        assert bill.total_amount == Decimal("59.99")
        audit = db_session.scalars(select(AuditLog).where(AuditLog.entity_id == bill.id)).one()
        assert (audit.entity_type, audit.action) == ("bill", "create")

    def test_inverted_period_rejected(self, bill_service):
        with pytest.raises(ValidationError):
            bill_service.create_bill(
                bill_type=BillType.GAS,
                period_start=date(2024, 2, 1),
                period_end=date(2024, 1, 1),
                total_amount="10.00",
            )

    def test_negative_total_rejected(self, bill_service):
        with pytest.raises(ValidationError):
            bill_service.create_bill(
                bill_type=BillType.GAS,
                period_start=date(2024, 1, 1),
                period_end=date(2024, 1, 31),
                total_amount="-0.01",
            )

    def test_float_total_rejected(self, bill_service):
        with pytest.raises(ValidationError):
            bill_service.create_bill(
                bill_type=BillType.GAS,
                period_start=date(2024, 1, 1),
                period_end=date(2024, 1, 31),
                total_amount=10.5,
            )

    def test_update_draft(self, bill_service, draft_bill):
        bill = bill_service.update_bill(draft_bill.id, total_amount="120.00", notes="corrected")

        assert bill.total_amount == Decimal("120.00")
        assert bill.notes == "corrected"

    def test_update_unknown_field_rejected(self, bill_service, draft_bill):
        with pytest.raises(ValidationError, match="status"):
            bill_service.update_bill(draft_bill.id, status=BillStatus.CLOSED)

    def test_missing_bill(self, bill_service):
        with pytest.raises(NotFoundError) as exc_info:
            bill_service.post_bill(404)
        assert exc_info.value.context == {"bill_id": 404}


class TestAllocations:
    """Test allocation computation on draft bills."""

    def test_proportional_from_consumptions(self, db_session, bill_service, draft_bill, users):
        alice, bob = users["alice"], users["bob"]
        bill_service.record_consumption(draft_bill.id, alice.id, "150")
        bill_service.record_consumption(draft_bill.id, bob.id, "300")
        # Corrected reading supersedes the first one
        bill_service.record_consumption(
            draft_bill.id, alice.id, "100", recorded_at=datetime(2099, 1, 1, tzinfo=timezone.utc)
        )

        allocations = bill_service.compute_allocations(draft_bill.id, None, AllocationMethod.PROPORTIONAL)

        by_user = {a.subject_id: a.amount for a in allocations}
        assert by_user == {alice.id: Decimal("25.00"), bob.id: Decimal("75.00")}
        assert allocation_total(db_session, draft_bill.id) == draft_bill.total_amount

    def test_equal_with_remainder(self, db_session, bill_service, users):
        bill = bill_service.create_bill(
            bill_type=BillType.SHARED,
            period_start=date(2024, 3, 1),
            period_end=date(2024, 3, 31),
            total_amount="10.00",
        )
        subjects = [AllocationSubject(SubjectType.USER, u.id) for u in users.values()]

        allocations = bill_service.compute_allocations(bill.id, subjects, AllocationMethod.EQUAL)

        assert [a.amount for a in allocations] == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]
        assert allocation_total(db_session, bill.id) == Decimal("10.00")

    def test_group_weight_used_by_default(self, bill_service, directory, draft_bill, users):
        couple = directory.create_group("Couple", weight="2")
        subjects = [
            AllocationSubject(SubjectType.GROUP, couple.id),
            AllocationSubject(SubjectType.USER, users["carol"].id),
        ]

        allocations = bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.WEIGHT)

        assert [(a.subject_type, a.amount) for a in allocations] == [
            (SubjectType.GROUP, Decimal("66.67")),
            (SubjectType.USER, Decimal("33.33")),
        ]

    def test_recompute_replaces_previous(self, db_session, bill_service, draft_bill, users):
        alice, bob = users["alice"], users["bob"]
        subjects = [AllocationSubject(SubjectType.USER, alice.id), AllocationSubject(SubjectType.USER, bob.id)]
        bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.EQUAL)

        bill_service.compute_allocations(draft_bill.id, subjects[:1], AllocationMethod.EQUAL)

        allocations = bill_service.get_allocations(draft_bill.id)
        assert [(a.subject_id, a.amount) for a in allocations] == [(alice.id, Decimal("100.00"))]

    def test_override_mismatch_persists_nothing(self, db_session, bill_service, draft_bill, users):
        subjects = [
            AllocationSubject(SubjectType.USER, users["alice"].id, amount=Decimal("60.00")),
            AllocationSubject(SubjectType.USER, users["bob"].id, amount=Decimal("39.00")),
        ]

        with pytest.raises(AllocationMismatchError):
            bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.OVERRIDE)

        assert bill_service.get_allocations(draft_bill.id) == []

    def test_unknown_subject_rejected(self, bill_service, draft_bill):
        with pytest.raises(NotFoundError):
            bill_service.compute_allocations(
                draft_bill.id, [AllocationSubject(SubjectType.USER, 999)], AllocationMethod.EQUAL
            )

    def test_subjects_required_except_proportional(self, bill_service, draft_bill):
        with pytest.raises(ValidationError, match="Subjects are required"):
            bill_service.compute_allocations(draft_bill.id, None, AllocationMethod.EQUAL)

    def test_negative_consumption_rejected(self, bill_service, draft_bill, users):
        with pytest.raises(ValidationError):
            bill_service.record_consumption(draft_bill.id, users["alice"].id, "-1")


class TestTransitions:
    """Test draft -> posted -> closed."""

    @pytest.fixture
    def allocated_bill(self, bill_service, draft_bill, users):
        subjects = [AllocationSubject(SubjectType.USER, u.id) for u in users.values()]
        bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.EQUAL)
        return draft_bill

    def test_post_requires_allocations(self, bill_service, draft_bill):
        with pytest.raises(InvalidStateError, match="no allocations"):
            bill_service.post_bill(draft_bill.id)

    def test_post_twice(self, db_session, bill_service, allocated_bill):
        """Exactly one draft->posted transition; the second call fails."""
        posted = bill_service.post_bill(allocated_bill.id)
        assert posted.status == BillStatus.POSTED

        with pytest.raises(InvalidStateError) as exc_info:
            bill_service.post_bill(allocated_bill.id)
        assert not isinstance(exc_info.value, ImmutableError)

        actions = db_session.scalars(
            select(AuditLog.action).where(AuditLog.entity_type == "bill", AuditLog.action == "post")
        ).all()
        assert actions == ["post"]

    def test_close_requires_posted(self, bill_service, allocated_bill):
        with pytest.raises(InvalidStateError):
            bill_service.close_bill(allocated_bill.id)

    def test_posted_bill_rejects_allocation_changes(self, bill_service, allocated_bill, users):
        bill_service.post_bill(allocated_bill.id)

        with pytest.raises(InvalidStateError):
            bill_service.record_consumption(allocated_bill.id, users["alice"].id, "1")
        with pytest.raises(InvalidStateError):
            bill_service.compute_allocations(
                allocated_bill.id,
                [AllocationSubject(SubjectType.USER, users["alice"].id)],
                AllocationMethod.EQUAL,
            )

    def test_closed_bill_is_immutable(self, bill_service, allocated_bill, users):
        bill_service.post_bill(allocated_bill.id)
        closed = bill_service.close_bill(allocated_bill.id)
        assert closed.status == BillStatus.CLOSED

        with pytest.raises(ImmutableError):
            bill_service.update_bill(allocated_bill.id, notes="late edit")
        with pytest.raises(ImmutableError):
            bill_service.record_consumption(allocated_bill.id, users["alice"].id, "1")
        with pytest.raises(ImmutableError):
            bill_service.post_bill(allocated_bill.id)
        with pytest.raises(ImmutableError):
            bill_service.close_bill(allocated_bill.id)

    def test_losing_concurrent_post_gets_invalid_state(self, file_sessionmaker):
        """Two sessions post the same bill: one wins, the other fails loudly."""
        setup = file_sessionmaker()
        service = BillService(setup)
        user = service.directory.create_user("Dana")
        bill = service.create_bill(
            bill_type=BillType.SHARED,
            period_start=date(2024, 1, 1),
            period_end=date(2024, 1, 31),
            total_amount="20.00",
        )
        service.compute_allocations(
            bill.id, [AllocationSubject(SubjectType.USER, user.id)], AllocationMethod.EQUAL
        )
        bill_id = bill.id
        setup.close()

        first, second = file_sessionmaker(), file_sessionmaker()
        try:
            stale = BillService(second).require_bill(bill_id)
            assert stale.status == BillStatus.DRAFT

            BillService(first).post_bill(bill_id)

            with pytest.raises(InvalidStateError):
                BillService(second).post_bill(bill_id)

            assert second.get(Bill, bill_id).status == BillStatus.POSTED
        finally:
            first.close()
            second.close()


class TestQueries:
    """Test bill and consumption lookups."""

    def test_list_bills_filters(self, bill_service, draft_bill):
        internet = bill_service.create_bill(
            bill_type=BillType.INTERNET,
            period_start=date(2024, 4, 1),
            period_end=date(2024, 4, 30),
            total_amount="59.99",
        )

        assert bill_service.get_bill(draft_bill.id) is draft_bill
        assert bill_service.get_bill(9999) is None
        assert [b.id for b in bill_service.list_bills()] == [internet.id, draft_bill.id]
        assert [b.id for b in bill_service.list_bills(bill_type=BillType.ELECTRICITY)] == [draft_bill.id]
        assert bill_service.list_bills(status=BillStatus.POSTED) == []

    def test_effective_consumptions_keep_latest_per_user(self, bill_service, draft_bill, users):
        alice, bob = users["alice"], users["bob"]
        bill_service.record_consumption(
            draft_bill.id, alice.id, "10", recorded_at=datetime(2024, 3, 10, tzinfo=timezone.utc)
        )
        bill_service.record_consumption(
            draft_bill.id, bob.id, "20", recorded_at=datetime(2024, 3, 11, tzinfo=timezone.utc)
        )
        bill_service.record_consumption(
            draft_bill.id, alice.id, "12", recorded_at=datetime(2024, 3, 12, tzinfo=timezone.utc)
        )

        assert len(bill_service.list_consumptions(draft_bill.id)) == 3
        effective = bill_service.effective_consumptions(draft_bill.id)
        assert [(c.user_id, c.units) for c in effective] == [
            (alice.id, Decimal("12.000")),
            (bob.id, Decimal("20.000")),
        ]


class TestTotalsAndAllocations:
    """Allocations always match the bill total they were computed from."""

    @pytest.fixture
    def subjects(self, users):
        return [AllocationSubject(SubjectType.USER, u.id) for u in users.values()]

    def test_changing_total_clears_allocations(self, db_session, bill_service, draft_bill, subjects):
        bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.EQUAL)

        bill_service.update_bill(draft_bill.id, total_amount="250.00")

        assert bill_service.get_allocations(draft_bill.id) == []
        with pytest.raises(InvalidStateError, match="no allocations"):
            bill_service.post_bill(draft_bill.id)

        bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.EQUAL)
        posted = bill_service.post_bill(draft_bill.id)
        assert posted.status == BillStatus.POSTED
        assert allocation_total(db_session, draft_bill.id) == Decimal("250.00")

    def test_changing_total_units_clears_allocations(self, bill_service, draft_bill, subjects):
        bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.EQUAL)

        bill_service.update_bill(draft_bill.id, total_units="500")

        assert bill_service.get_allocations(draft_bill.id) == []

    def test_unchanged_total_keeps_allocations(self, bill_service, draft_bill, subjects):
        bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.EQUAL)

        bill_service.update_bill(draft_bill.id, total_amount="100.00", notes="same total")

        assert len(bill_service.get_allocations(draft_bill.id)) == 3

    def test_post_rejects_allocations_not_matching_total(self, db_session, bill_service, draft_bill, subjects):
        bill_service.compute_allocations(draft_bill.id, subjects, AllocationMethod.EQUAL)
        # Total changed behind the service's back
        db_session.execute(
            update(Bill).where(Bill.id == draft_bill.id).values(total_amount=Decimal("250.00"))
        )
        db_session.commit()

        with pytest.raises(AllocationMismatchError) as exc_info:
            bill_service.post_bill(draft_bill.id)

        assert exc_info.value.context["allocated"] == Decimal("100.00")
        assert bill_service.require_bill(draft_bill.id).status == BillStatus.DRAFT
