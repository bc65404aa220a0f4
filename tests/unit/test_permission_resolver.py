"""
Tests for the Permission Resolver
=================================

Effective permission sets from active assignments and active role links.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from rbac_engine.core.exceptions import ResolutionError, StoreUnavailableError
from rbac_engine.models import RolePermission, UserRoleAssignment
from rbac_engine.services.resolver_service import PermissionSet, utcnow


@pytest.fixture
def moderator_holder(seeded, mutations, root, role_named):
    mutations.assign_role(root, "u1", role_named("moderator").id)
    return "u1"


class TestResolution:
    """Tests for computing permission sets."""

    def test_unknown_principal_has_no_permissions(self, seeded, resolver):
        """A principal with no assignments resolves to the empty set."""
        assert len(resolver.resolve("stranger")) == 0

    def test_role_permissions_are_resolved(self, moderator_holder, resolver):
        """Assigned role's active permissions are in the set."""
        permissions = resolver.resolve(moderator_holder)
        assert "cases:approve" in permissions
        assert "cases:delete" not in permissions

    def test_union_across_roles(self, seeded, mutations, root, role_named, resolver):
        """Permissions from several roles are unioned."""
        mutations.assign_role(root, "u2", role_named("donor").id)
        mutations.assign_role(root, "u2", role_named("beneficiary").id)
        permissions = resolver.resolve("u2")
        assert "contributions:create" in permissions
        assert "cases:create" in permissions

    def test_permission_set_iterates_sorted(self, moderator_holder, resolver):
        names = list(resolver.resolve(moderator_holder))
        assert names == sorted(names)

    def test_visitor_resolves_visitor_role(self, seeded, resolver):
        """The visitor sentinel gets exactly the visitor role's permissions."""
        permissions = resolver.resolve("visitor")
        assert set(permissions) == {"cases:view_public", "content:view_public", "stats:view_public"}

    def test_super_admin_holds_everything(self, seeded, resolver):
        permissions = resolver.resolve("root")
        assert "rbac:manage" in permissions
        assert "audit:read" in permissions


class TestInactiveRows:
    """Inactive or expired rows never contribute permissions."""

    def test_inactive_link_is_ignored(self, moderator_holder, resolver, store, db, role_named, permission_named):
        link = (
            db.query(RolePermission)
            .filter_by(role_id=role_named("moderator").id, permission_id=permission_named("cases:approve").id)
            .one()
        )
        link.is_active = False
        db.commit()
        resolver.invalidate(moderator_holder)
        assert not resolver.has_permission(moderator_holder, "cases:approve")

    def test_inactive_assignment_is_ignored(self, moderator_holder, resolver, db):
        assignment = db.query(UserRoleAssignment).filter_by(principal_id=moderator_holder).one()
        assignment.is_active = False
        db.commit()
        resolver.invalidate(moderator_holder)
        assert len(resolver.resolve(moderator_holder)) == 0

    def test_inactive_permission_is_ignored(self, moderator_holder, resolver, db, permission_named):
        permission_named("cases:approve").is_active = False
        db.commit()
        resolver.invalidate(moderator_holder)
        assert not resolver.has_permission(moderator_holder, "cases:approve")

    def test_inactive_role_is_ignored(self, moderator_holder, resolver, db, role_named):
        role_named("moderator").is_active = False
        db.commit()
        resolver.invalidate(moderator_holder)
        assert len(resolver.resolve(moderator_holder)) == 0

    def test_expired_assignment_is_ignored(self, moderator_holder, resolver, db):
        """Assignments past their expiry are not active."""
        assignment = db.query(UserRoleAssignment).filter_by(principal_id=moderator_holder).one()
        assignment.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()
        resolver.invalidate(moderator_holder)
        assert len(resolver.resolve(moderator_holder)) == 0


class TestCaching:
    """Tests for cache use and invalidation."""

    def test_second_resolve_hits_cache(self, moderator_holder, resolver, store):
        resolver.resolve(moderator_holder)
        with patch.object(store, "permission_names_for_roles") as names:
            resolver.resolve(moderator_holder)
        names.assert_not_called()

    def test_stale_until_invalidated(self, moderator_holder, resolver, db, role_named):
        """Direct store edits are only seen after invalidation."""
        assert resolver.has_permission(moderator_holder, "cases:approve")
        role_named("moderator").is_active = False
        db.commit()
        assert resolver.has_permission(moderator_holder, "cases:approve")
        resolver.invalidate(moderator_holder)
        assert not resolver.has_permission(moderator_holder, "cases:approve")

    def test_invalidate_all(self, moderator_holder, resolver, cache):
        resolver.resolve(moderator_holder)
        resolver.resolve("visitor")
        resolver.invalidate_all()
        assert cache.get(moderator_holder) is None
        assert cache.get("visitor") is None


class TestRoles:
    """Role membership and coarse level checks."""

    def test_has_role(self, moderator_holder, resolver):
        assert resolver.has_role(moderator_holder, "moderator")
        assert not resolver.has_role(moderator_holder, "admin")

    def test_visitor_holds_visitor_role(self, seeded, resolver):
        assert [role.name for role in resolver.roles("visitor")] == ["visitor"]
        assert resolver.has_role("visitor", "visitor")
        assert resolver.role_level("visitor") == 0

    def test_level_is_highest_held(self, seeded, mutations, root, role_named, resolver):
        mutations.assign_role(root, "u3", role_named("donor").id)
        mutations.assign_role(root, "u3", role_named("moderator").id)
        assert resolver.role_level("u3") == 60
        assert resolver.role_at_least("u3", 60)
        assert not resolver.role_at_least("u3", 80)

    def test_no_roles_is_level_zero(self, seeded, resolver):
        assert resolver.roles("stranger") == []
        assert resolver.role_level("stranger") == 0
        assert not resolver.role_at_least("stranger", 1)

    def test_roles_without_level_are_skipped(self, moderator_holder, resolver, db, role_named):
        role_named("moderator").level = None
        db.commit()
        assert resolver.role_level(moderator_holder) == 0

    def test_expired_role_is_not_held(self, moderator_holder, resolver, db):
        assignment = db.query(UserRoleAssignment).filter_by(principal_id=moderator_holder).one()
        assignment.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()
        assert not resolver.has_role(moderator_holder, "moderator")

    def test_store_failure_raises_resolution_error(self, seeded, resolver, store):
        with patch.object(store, "active_assignments", side_effect=StoreUnavailableError()):
            with pytest.raises(ResolutionError):
                resolver.has_role("root", "super_admin")


class TestFailures:
    """Store failures surface as resolution errors, never as empty sets."""

    def test_store_failure_raises_resolution_error(self, seeded, resolver, store):
        with patch.object(store, "active_assignments", side_effect=StoreUnavailableError()):
            with pytest.raises(ResolutionError):
                resolver.resolve("u1")

    def test_failure_is_not_cached(self, seeded, resolver, store, cache):
        resolver.invalidate_all()
        with patch.object(store, "permission_names_for_roles", side_effect=StoreUnavailableError()):
            with pytest.raises(ResolutionError):
                resolver.resolve("root")
        assert cache.get("root") is None
        assert "rbac:manage" in resolver.resolve("root")


class TestPermissionSet:
    def test_contains_and_len(self):
        permission_set = PermissionSet("u1", frozenset({"a:b", "c:d"}))
        assert "a:b" in permission_set
        assert "x:y" not in permission_set
        assert len(permission_set) == 2
