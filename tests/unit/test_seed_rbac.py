"""
Tests for the system catalog seed
=================================
"""

from rbac_engine.db.seeds.seed_rbac import PERMISSIONS, ROLES, seed_rbac
from rbac_engine.models import Module, Permission, Role, RolePermission, UserRoleAssignment


class TestSeed:
    def test_counts(self, db):
        counts = seed_rbac(db)
        assert counts == {"modules": 8, "permissions": len(PERMISSIONS), "roles": len(ROLES)}

    def test_idempotent(self, db):
        """Running twice creates no duplicate rows."""
        seed_rbac(db, super_admin_principal="root")
        seed_rbac(db, super_admin_principal="root")
        assert db.query(Module).count() == 8
        assert db.query(Permission).count() == len(PERMISSIONS)
        assert db.query(Role).count() == len(ROLES)
        assert db.query(UserRoleAssignment).filter_by(principal_id="root").count() == 1

    def test_system_flags(self, db, store):
        seed_rbac(db)
        assert store.get_by_name(Role, "moderator").is_system is True
        assert store.get_by_name(Role, "beneficiary").is_system is False
        assert all(p.is_system and p.resource and p.action for p in db.query(Permission).all())

    def test_reseed_keeps_removed_links_removed(self, db, store):
        """Links removed by an operator are not re-granted by a later seed."""
        seed_rbac(db)
        moderator = store.get_by_name(Role, "moderator")
        link = db.query(RolePermission).filter_by(role_id=moderator.id).first()
        link.is_active = False
        db.commit()
        seed_rbac(db)
        assert db.get(RolePermission, link.id).is_active is False
