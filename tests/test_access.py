"""
Tests for access scope resolution.

Tests cover:
- The covers relation for each scope level
- Inheritance onto departments and equipment created after a grant
- Role-based visibility (super admin, company admin, granted users)
- Grant normalization and validation on replace
- Role change rules
"""

import uuid

import pytest

from equiptrack.errors import ForbiddenError, NotFoundError, ValidationError
from equiptrack.models.models import Department
from equiptrack.services import access
from equiptrack.services.access import (
    DepartmentScope,
    EquipmentScope,
    GrantRow,
    Lineage,
    SiteScope,
    covers,
)

from conftest import add_equipment, add_profile


class TestCovers:
    """Pure tests of the scope relation."""

    site_id = uuid.uuid4()
    department_id = uuid.uuid4()
    equipment_id = uuid.uuid4()

    def _lineage(self, **overrides):
        fields = dict(
            company_id=uuid.uuid4(),
            site_id=self.site_id,
            department_id=self.department_id,
            equipment_id=self.equipment_id,
        )
        fields.update(overrides)
        return Lineage(**fields)

    def test_site_scope_covers_everything_below(self):
        scope = SiteScope(self.site_id)
        assert covers(scope, self._lineage())
        assert covers(scope, self._lineage(equipment_id=None))
        assert covers(scope, self._lineage(department_id=None, equipment_id=None))

    def test_site_scope_other_site(self):
        assert not covers(SiteScope(uuid.uuid4()), self._lineage())

    def test_department_scope(self):
        scope = DepartmentScope(self.department_id)
        assert covers(scope, self._lineage())
        assert not covers(scope, self._lineage(department_id=None, equipment_id=None))

    def test_equipment_scope_is_exact(self):
        scope = EquipmentScope(self.equipment_id)
        assert covers(scope, self._lineage())
        assert not covers(scope, self._lineage(equipment_id=uuid.uuid4()))
        assert not covers(scope, self._lineage(equipment_id=None))


class TestHasAccess:

    def test_site_grant_covers_items_created_later(self, db, manager, site, company, logger_type):
        """Departments and equipment added after the grant are still covered."""
        department = Department(site_id=site.id, name="Calibration Lab")
        db.add(department)
        db.commit()
        equipment = add_equipment(db, company, logger_type, department, number="NEW-1")

        assert access.has_access(manager, department)
        assert access.has_access(manager, equipment)
        assert equipment.id in access.visible_equipment_ids(db, manager)

    def test_department_grant_excludes_sibling_site(self, db, member, equipment_a, equipment_south):
        assert access.has_access(member, equipment_a)
        assert not access.has_access(member, equipment_south)
        assert access.visible_equipment_ids(db, member) == {equipment_a.id}

    def test_company_admin_sees_whole_company(self, db, company_admin, equipment_a, equipment_south):
        assert access.visible_equipment_ids(db, company_admin) == {equipment_a.id, equipment_south.id}

    def test_company_admin_blind_to_other_company(self, db, company_admin, other_company, logger_type):
        from equiptrack.models.models import EquipmentType
        other_type = EquipmentType(company_id=other_company.id, name="Thermocouple", requires_calibration=False)
        db.add(other_type)
        db.commit()
        foreign = add_equipment(db, other_company, other_type, number="G-1")
        assert not access.has_access(company_admin, foreign)

    def test_super_admin_sees_everything(self, db, super_admin, equipment_a, equipment_south):
        assert access.visible_equipment_ids(db, super_admin) == {equipment_a.id, equipment_south.id}

    def test_unassigned_equipment_only_for_admins(self, db, company, logger_type, manager, company_admin):
        loose = add_equipment(db, company, logger_type, None, number="LOOSE-1")
        assert not access.has_access(manager, loose)
        assert access.has_access(company_admin, loose)

    def test_no_grants_sees_nothing(self, db, company, equipment_a):
        nobody = add_profile(db, "nobody@acme.test", "user", company)
        assert access.visible_equipment_ids(db, nobody) == set()
        assert access.visible_sites(db, nobody) == []

    def test_can_edit_needs_role_and_scope(self, manager, member, equipment_a, equipment_south):
        assert access.can_edit(manager, equipment_a)
        assert not access.can_edit(manager, equipment_south)
        assert not access.can_edit(member, equipment_a)

    def test_ensure_access_read_only_user(self, member, equipment_a, equipment_south):
        access.ensure_access(member, equipment_a)
        with pytest.raises(ForbiddenError):
            access.ensure_access(member, equipment_a, edit=True)
        with pytest.raises(NotFoundError):
            access.ensure_access(member, equipment_south)


class TestReplaceGrants:

    def test_narrower_rows_are_dropped(self, db, member, site, department, equipment_a):
        grants = access.replace_grants(db, member, [
            GrantRow(site_id=site.id),
            GrantRow(site_id=site.id, department_id=department.id),
            GrantRow(site_id=site.id, department_id=department.id, equipment_id=equipment_a.id),
            GrantRow(site_id=site.id),
        ])
        db.commit()
        assert len(grants) == 1
        assert grants[0].department_id is None
        assert [g.site_id for g in member.access_grants] == [site.id]

    def test_equipment_row_fills_department(self, db, member, site, equipment_a, department):
        grants = access.replace_grants(db, member, [GrantRow(site_id=site.id, equipment_id=equipment_a.id)])
        assert grants[0].department_id == department.id
        assert grants[0].equipment_id == equipment_a.id

    def test_department_outside_site_rejected(self, db, member, site, department_b):
        with pytest.raises(ValidationError):
            access.replace_grants(db, member, [GrantRow(site_id=site.id, department_id=department_b.id)])

    def test_foreign_site_rejected(self, db, member, other_company):
        from equiptrack.models.models import Site
        foreign = Site(company_id=other_company.id, name="Elsewhere")
        db.add(foreign)
        db.commit()
        with pytest.raises(ValidationError):
            access.replace_grants(db, member, [GrantRow(site_id=foreign.id)])

    def test_empty_set_revokes(self, db, member, equipment_a):
        access.replace_grants(db, member, [])
        db.commit()
        assert member.access_grants == []
        assert not access.has_access(member, equipment_a)


class TestChangeRole:

    def test_admin_promotes_user(self, company_admin, member):
        access.change_role(company_admin, member, "equipment_manager")
        assert member.role == "equipment_manager"

    def test_cannot_change_own_role(self, company_admin):
        with pytest.raises(ForbiddenError):
            access.change_role(company_admin, company_admin, "user")

    def test_cannot_grant_own_rank(self, company_admin, member):
        with pytest.raises(ForbiddenError):
            access.change_role(company_admin, member, "company_admin")

    def test_manager_cannot_demote_peer_or_above(self, db, company, manager, company_admin):
        with pytest.raises(ForbiddenError):
            access.change_role(manager, company_admin, "user")

    def test_super_admin_not_assignable(self, super_admin, member):
        with pytest.raises(ValidationError):
            access.change_role(super_admin, member, "super_admin")
