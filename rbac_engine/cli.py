"""RBAC Engine CLI tool (rbacctl)."""

from contextlib import contextmanager
from typing import Optional

import typer

from rbac_engine.core.config import settings
from rbac_engine.core.exceptions import RBACError

app = typer.Typer(name="rbacctl", help="RBAC Engine CLI")
db_app = typer.Typer(help="Database management commands")
app.add_typer(db_app, name="db")


@contextmanager
def _services():
    """Session-scoped store, resolver, guard and mutation service."""
    from rbac_engine.db.rule_store import RuleStore
    from rbac_engine.db.session import SessionLocal
    from rbac_engine.services.audit_service import AuditRecorder
    from rbac_engine.services.cache_service import MemoryPermissionCache
    from rbac_engine.services.guard_service import Guard
    from rbac_engine.services.mutation_service import RuleMutationService
    from rbac_engine.services.resolver_service import PermissionResolver

    db = SessionLocal()
    try:
        store = RuleStore(db)
        # Fresh reads for every CLI invocation
        resolver = PermissionResolver(store, MemoryPermissionCache(ttl_seconds=0))
        guard = Guard(resolver)
        mutations = RuleMutationService(store, guard, resolver, AuditRecorder(store))
        yield store, resolver, guard, mutations
    finally:
        db.close()


def _actor_context(actor: Optional[str]):
    from rbac_engine.services.mutation_service import MutationContext

    actor = actor or settings.SUPER_ADMIN_PRINCIPAL
    if not actor:
        typer.echo("No actor given and SUPER_ADMIN_PRINCIPAL is not set", err=True)
        raise typer.Exit(code=2)
    return MutationContext(actor_id=actor, user_agent="rbacctl")


def _fail(exc: RBACError) -> None:
    typer.echo(f"{exc.code}: {exc.message}", err=True)
    raise typer.Exit(code=1)


@db_app.command("init")
def db_init():
    """Create all RBAC tables."""
    from rbac_engine.db.session import init_db

    init_db()
    typer.echo("Tables created")


@db_app.command("seed")
def db_seed(
    super_admin: Optional[str] = typer.Option(
        None, help="Principal to receive super_admin (defaults to SUPER_ADMIN_PRINCIPAL)",
    ),
):
    """Seed system modules, permissions and roles."""
    from rbac_engine.db.session import SessionLocal
    from rbac_engine.db.seeds.seed_rbac import seed_rbac

    db = SessionLocal()
    try:
        counts = seed_rbac(db, super_admin or settings.SUPER_ADMIN_PRINCIPAL)
    except RBACError as exc:
        _fail(exc)
    finally:
        db.close()
    typer.echo(
        f"Seeded {counts['modules']} modules, {counts['permissions']} permissions, "
        f"{counts['roles']} roles"
    )


@app.command("repair-permissions")
def repair_permissions(
    actor: Optional[str] = typer.Option(None, help="Acting principal"),
):
    """Fill blank resource/action fields from permission names."""
    ctx = _actor_context(actor)
    with _services() as (_, _, _, mutations):
        try:
            repaired = mutations.repair_permission_fields(ctx)
        except RBACError as exc:
            _fail(exc)
        for permission in repaired:
            typer.echo(f"  [{permission.id}] {permission.name} -> {permission.resource}:{permission.action}")
        typer.echo(f"Repaired {len(repaired)} permissions")


@app.command("check")
def check(
    principal: str = typer.Argument(..., help="Principal id"),
    permission: str = typer.Argument(..., help="Permission name, e.g. cases:approve"),
):
    """Check a single permission. Exits 1 when denied."""
    from rbac_engine.services.guard_service import Denial

    with _services() as (_, _, guard, _):
        result = guard.require(principal, permission)
    if isinstance(result, Denial):
        typer.echo(f"DENIED ({result.reason.value}): {principal} -> {permission}")
        raise typer.Exit(code=1)
    typer.echo(f"GRANTED: {principal} -> {permission}")


@app.command("permissions")
def permissions(
    principal: str = typer.Argument(..., help="Principal id"),
):
    """List a principal's effective permissions."""
    with _services() as (_, resolver, _, _):
        try:
            permission_set = resolver.resolve(principal)
        except RBACError as exc:
            _fail(exc)
    for name in permission_set:
        typer.echo(f"  {name}")
    typer.echo(f"{len(permission_set)} permissions")


@app.command("roles")
def roles(
    principal: str = typer.Argument(..., help="Principal id"),
    at_least: Optional[int] = typer.Option(None, "--at-least", help="Exit 1 unless a role reaches this level"),
):
    """List a principal's roles and highest role level."""
    with _services() as (_, resolver, _, _):
        try:
            held = [role.name for role in resolver.roles(principal)]
            level = resolver.role_level(principal)
            allowed = at_least is None or resolver.role_at_least(principal, at_least)
        except RBACError as exc:
            _fail(exc)
    for name in held:
        typer.echo(f"  {name}")
    typer.echo(f"level {level}")
    if not allowed:
        typer.echo(f"BELOW LEVEL {at_least}: {principal}")
        raise typer.Exit(code=1)


@app.command("assign")
def assign(
    principal: str = typer.Argument(..., help="Principal id"),
    role: str = typer.Argument(..., help="Role name"),
    actor: Optional[str] = typer.Option(None, help="Acting principal"),
):
    """Assign a role to a principal."""
    from rbac_engine.models import Role

    ctx = _actor_context(actor)
    with _services() as (store, _, _, mutations):
        try:
            target = store.get_by_name(Role, role)
            if target is None:
                typer.echo(f"Role '{role}' not found", err=True)
                raise typer.Exit(code=1)
            mutations.assign_role(ctx, principal, target.id)
        except RBACError as exc:
            _fail(exc)
    typer.echo(f"Assigned '{role}' to {principal}")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
):
    """Start the FastAPI server."""
    import uvicorn
    uvicorn.run("rbac_engine.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
