"""
Tests for the equipment request workflow.

Tests cover:
- Submission validation
- Approval with and without an automatic sign-out
- Rejection
- Terminal states rejecting further transitions
"""

from datetime import date

import pytest

from equiptrack.errors import ConflictError, ValidationError
from equiptrack.models.models import EquipmentRequest, SignOut
from equiptrack.services import ledger, requests as workflow


def _submit(db, equipment, **overrides):
    fields = dict(
        requester_name="Robin",
        requester_email="robin@acme.test",
        building="Warehouse 4",
        equipment_number_to_test="FRZ-9",
        date_from=date(2024, 7, 1),
        date_to=date(2024, 7, 3),
    )
    fields.update(overrides)
    request = workflow.submit(db, equipment, **fields)
    db.commit()
    return request


class TestSubmit:

    def test_creates_pending(self, db, equipment_a):
        request = _submit(db, equipment_a)
        assert request.status == "pending"
        assert request.reviewed_by is None

    def test_date_order_validated(self, db, equipment_a):
        with pytest.raises(ValidationError):
            _submit(db, equipment_a, date_from=date(2024, 7, 5), date_to=date(2024, 7, 1))

    def test_availability_not_enforced(self, db, equipment_a):
        ledger.sign_out(db, equipment_a, "Dana")
        db.commit()
        assert _submit(db, equipment_a).status == "pending"


class TestApprove:

    def test_approve_opens_sign_out(self, db, equipment_a):
        request = _submit(db, equipment_a)
        row = workflow.approve(db, request, "Morgan")
        db.commit()

        assert request.status == "approved"
        assert request.reviewed_by == "Morgan"
        assert request.reviewed_at is not None
        assert row.signed_out_by == "Robin"
        assert row.equipment_request_id == request.id
        assert row.building == "Warehouse 4"
        assert row.equipment_number_to_test == "FRZ-9"
        assert row.date_from == date(2024, 7, 1)
        assert "Warehouse 4" in row.purpose and "#FRZ-9" in row.purpose
        assert [u.system_equipment for u in row.usage] == ["FRZ-9"]

    def test_approve_without_sign_out(self, db, equipment_a):
        request = _submit(db, equipment_a)
        assert workflow.approve(db, request, "Morgan", create_sign_out=False) is None
        db.commit()
        assert request.status == "approved"
        assert db.query(SignOut).count() == 0

    def test_approve_when_equipment_out_changes_nothing(self, db, equipment_a):
        request = _submit(db, equipment_a)
        ledger.sign_out(db, equipment_a, "Dana")
        db.commit()

        with pytest.raises(ConflictError):
            workflow.approve(db, request, "Morgan")
        db.rollback()

        assert db.get(EquipmentRequest, request.id).status == "pending"
        assert db.query(SignOut).count() == 1

    def test_reviewer_required(self, db, equipment_a):
        request = _submit(db, equipment_a)
        with pytest.raises(ValidationError):
            workflow.approve(db, request, "  ")


class TestReject:

    def test_reject_records_comment(self, db, equipment_a):
        request = _submit(db, equipment_a)
        workflow.reject(db, request, "Morgan", "  Booked for audit  ")
        db.commit()
        assert request.status == "rejected"
        assert request.review_comment == "Booked for audit"


class TestTerminalStates:
    """Reviewed requests never transition again."""

    @pytest.mark.parametrize("first", ["approve", "reject"])
    @pytest.mark.parametrize("second", ["approve", "reject"])
    def test_second_review_conflicts(self, db, equipment_a, first, second):
        request = _submit(db, equipment_a)
        if first == "approve":
            workflow.approve(db, request, "Morgan", create_sign_out=False)
        else:
            workflow.reject(db, request, "Morgan")
        db.commit()
        status, reviewed_at = request.status, request.reviewed_at

        with pytest.raises(ConflictError):
            if second == "approve":
                workflow.approve(db, request, "Quinn")
            else:
                workflow.reject(db, request, "Quinn", "late")
        db.rollback()

        fresh = db.get(EquipmentRequest, request.id)
        assert fresh.status == status
        assert fresh.reviewed_by == "Morgan"
        assert fresh.reviewed_at == reviewed_at

    def test_stale_copy_loses_race(self, db, equipment_a):
        """The compare-and-set update refuses a request reviewed behind our back."""
        request = _submit(db, equipment_a)
        assert request.status == "pending"
        db.query(EquipmentRequest).filter(EquipmentRequest.id == request.id).update(
            {EquipmentRequest.status: "rejected"}, synchronize_session=False
        )
        # the in-memory object still believes it is pending
        with pytest.raises(ConflictError):
            workflow.approve(db, request, "Morgan")
