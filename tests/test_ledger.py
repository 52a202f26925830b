"""
Tests for the sign-out / check-in ledger.

Tests cover:
- One open sign-out per equipment item
- Check-in, including double check-in
- All-or-nothing batch sign-out
- Usage annotations
"""

import pytest
from sqlalchemy.exc import IntegrityError

from equiptrack.errors import ConflictError, NotFoundError, ValidationError
from equiptrack.models.models import SignOut, Usage
from equiptrack.services import ledger
from equiptrack.services.ledger import SignOutDetails


def _open_count(db, equipment):
    return db.query(SignOut).filter(SignOut.equipment_id == equipment.id, SignOut.signed_in_at.is_(None)).count()


class TestSignOut:

    def test_sign_out_opens_row(self, db, equipment_a, site):
        row = ledger.sign_out(db, equipment_a, "  Dana  ", SignOutDetails(purpose="Audit", site_id=site.id, room_number="12"))
        db.commit()
        assert row.signed_out_by == "Dana"
        assert row.signed_in_at is None
        assert row.room_number == "12"
        assert ledger.get_active_sign_out(db, equipment_a.id).id == row.id

    def test_location_fields_normalized(self, db, equipment_a):
        row = ledger.sign_out(
            db, equipment_a, "Dana",
            SignOutDetails(building="   ", room_number="", equipment_number_to_test=" FRZ-9 ", purpose=" Audit "),
        )
        db.commit()
        assert row.building is None
        assert row.room_number is None
        assert row.equipment_number_to_test == "FRZ-9"
        assert row.purpose == "Audit"

    def test_second_sign_out_conflicts(self, db, equipment_a):
        ledger.sign_out(db, equipment_a, "Dana")
        db.commit()
        with pytest.raises(ConflictError):
            ledger.sign_out(db, equipment_a, "Lee")
        assert _open_count(db, equipment_a) == 1

    def test_blank_name_rejected(self, db, equipment_a):
        with pytest.raises(ValidationError):
            ledger.sign_out(db, equipment_a, "   ")

    def test_index_blocks_second_open_row(self, db, equipment_a):
        """The partial unique index holds even when the pre-check is bypassed."""
        ledger.sign_out(db, equipment_a, "Dana")
        db.commit()
        db.add(SignOut(equipment_id=equipment_a.id, signed_out_by="Race", signed_out_at=equipment_a.created_at))
        with pytest.raises(IntegrityError):
            db.flush()
        db.rollback()
        assert _open_count(db, equipment_a) == 1

    def test_sign_out_again_after_check_in(self, db, equipment_a):
        first = ledger.sign_out(db, equipment_a, "Dana")
        ledger.check_in(db, first, "Dana")
        second = ledger.sign_out(db, equipment_a, "Lee")
        db.commit()
        assert second.id != first.id
        assert _open_count(db, equipment_a) == 1


class TestCheckIn:

    def test_check_in_closes(self, db, equipment_a):
        row = ledger.sign_out(db, equipment_a, "Dana")
        ledger.check_in(db, row, "Lee")
        db.commit()
        assert row.signed_in_by == "Lee"
        assert row.signed_in_at is not None
        assert ledger.get_active_sign_out(db, equipment_a.id) is None

    def test_double_check_in_conflicts(self, db, equipment_a):
        """A second check-in never overwrites the first."""
        row = ledger.sign_out(db, equipment_a, "Dana")
        ledger.check_in(db, row, "Lee")
        db.commit()
        first_in = row.signed_in_at
        with pytest.raises(ConflictError):
            ledger.check_in(db, row, "Sam")
        assert row.signed_in_by == "Lee"
        assert row.signed_in_at == first_in

    def test_unknown_sign_out(self, db):
        with pytest.raises(NotFoundError):
            ledger.check_in(db, None, "Lee")


class TestSignOutMany:

    def test_batch_shares_batch_id(self, db, equipment_a, equipment_b):
        rows = ledger.sign_out_many(db, [equipment_a, equipment_b], "Dana", SignOutDetails(building="B1"))
        db.commit()
        assert len(rows) == 2
        assert rows[0].batch_id is not None
        assert rows[0].batch_id == rows[1].batch_id
        assert all(r.building == "B1" for r in rows)

    def test_batch_with_busy_item_writes_nothing(self, db, equipment_a, equipment_b):
        ledger.sign_out(db, equipment_b, "Lee")
        db.commit()
        with pytest.raises(ConflictError) as exc:
            ledger.sign_out_many(db, [equipment_a, equipment_b], "Dana")
        assert "B-200" in exc.value.detail
        db.rollback()
        assert _open_count(db, equipment_a) == 0
        assert _open_count(db, equipment_b) == 1

    def test_duplicates_rejected(self, db, equipment_a):
        with pytest.raises(ValidationError):
            ledger.sign_out_many(db, [equipment_a, equipment_a], "Dana")

    def test_empty_batch_rejected(self, db):
        with pytest.raises(ValidationError):
            ledger.sign_out_many(db, [], "Dana")


class TestUsage:

    def test_add_and_remove(self, db, equipment_a):
        row = ledger.sign_out(db, equipment_a, "Dana")
        usage = ledger.add_usage(db, row, " Chiller 3 ", "Outlet sensor")
        db.commit()
        assert usage.system_equipment == "Chiller 3"
        assert [u.id for u in row.usage] == [usage.id]

        ledger.remove_usage(db, usage)
        db.commit()
        assert db.query(Usage).count() == 0

    def test_system_equipment_required(self, db, equipment_a):
        row = ledger.sign_out(db, equipment_a, "Dana")
        with pytest.raises(ValidationError):
            ledger.add_usage(db, row, "")

    def test_remove_unknown(self, db):
        with pytest.raises(NotFoundError):
            ledger.remove_usage(db, None)
