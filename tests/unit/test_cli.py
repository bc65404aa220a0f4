"""
Tests for the rbacctl CLI
=========================
"""

import pytest
from typer.testing import CliRunner

from rbac_engine.cli import app
from rbac_engine.models import Permission, UserRoleAssignment

runner = CliRunner()


@pytest.fixture
def cli_db(session_factory, monkeypatch):
    """Point the CLI's session factory at the test database."""
    monkeypatch.setattr("rbac_engine.db.session.SessionLocal", session_factory)
    return session_factory


class TestDbCommands:
    def test_init(self):
        result = runner.invoke(app, ["db", "init"])
        assert result.exit_code == 0
        assert "Tables created" in result.output

    def test_seed(self, cli_db):
        result = runner.invoke(app, ["db", "seed", "--super-admin", "root"])
        assert result.exit_code == 0
        assert "Seeded 8 modules" in result.output
        session = cli_db()
        try:
            assert session.query(UserRoleAssignment).filter_by(principal_id="root").count() == 1
        finally:
            session.close()


class TestChecks:
    def test_check_granted(self, seeded, cli_db):
        result = runner.invoke(app, ["check", "root", "rbac:manage"])
        assert result.exit_code == 0
        assert "GRANTED" in result.output

    def test_check_denied_exit_code(self, seeded, cli_db):
        result = runner.invoke(app, ["check", "nobody", "rbac:manage"])
        assert result.exit_code == 1
        assert "DENIED (FORBIDDEN)" in result.output

    def test_permissions(self, seeded, cli_db):
        result = runner.invoke(app, ["permissions", "visitor"])
        assert result.exit_code == 0
        assert "cases:view_public" in result.output
        assert "3 permissions" in result.output

    def test_roles_and_level(self, seeded, cli_db):
        result = runner.invoke(app, ["roles", "admin-1", "--at-least", "80"])
        assert result.exit_code == 0
        assert "admin" in result.output
        assert "level 80" in result.output

    def test_roles_below_level_exit_code(self, seeded, cli_db):
        result = runner.invoke(app, ["roles", "visitor", "--at-least", "20"])
        assert result.exit_code == 1
        assert "BELOW LEVEL 20" in result.output


class TestMutatingCommands:
    def test_assign(self, seeded, cli_db):
        result = runner.invoke(app, ["assign", "u7", "donor", "--actor", "root"])
        assert result.exit_code == 0
        check = runner.invoke(app, ["check", "u7", "contributions:create"])
        assert check.exit_code == 0

    def test_assign_unknown_role(self, seeded, cli_db):
        result = runner.invoke(app, ["assign", "u7", "nope", "--actor", "root"])
        assert result.exit_code == 1

    def test_assign_forbidden_actor(self, seeded, cli_db):
        result = runner.invoke(app, ["assign", "u7", "donor", "--actor", "nobody"])
        assert result.exit_code == 1
        assert "FORBIDDEN" in result.output

    def test_assign_requires_actor(self, seeded, cli_db):
        result = runner.invoke(app, ["assign", "u7", "donor"])
        assert result.exit_code == 2

    def test_repair(self, seeded, db, cli_db, module_named):
        db.add(Permission(
            name="reports:export", display_name="Export", resource="", action=None,
            module_id=module_named("reports").id, is_system=False, is_active=True,
        ))
        db.commit()
        result = runner.invoke(app, ["repair-permissions", "--actor", "root"])
        assert result.exit_code == 0
        assert "reports:export -> reports:export" in result.output
        assert "Repaired 1 permissions" in result.output
