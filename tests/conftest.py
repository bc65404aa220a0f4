"""
RBAC Engine Test Configuration
==============================

Pytest fixtures: an in-memory SQLite rule store per test, the engine
services wired over it, and a seeded catalog.
"""

import os

# Must be set before rbac_engine.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PERMISSION_CACHE_BACKEND"] = "memory"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("SUPER_ADMIN_PRINCIPAL", None)

import pytest
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import rbac_engine.models  # noqa: F401
from rbac_engine.db.base import Base
from rbac_engine.db.rule_store import RuleStore
from rbac_engine.db.seeds.seed_rbac import seed_rbac
from rbac_engine.models import Module, Permission, Role
from rbac_engine.services.audit_service import AuditRecorder
from rbac_engine.services.cache_service import MemoryPermissionCache
from rbac_engine.services.guard_service import Guard
from rbac_engine.services.mutation_service import MutationContext, RuleMutationService
from rbac_engine.services.resolver_service import PermissionResolver

SUPER_ADMIN = "root"
ADMIN = "admin-1"


@pytest.fixture
def session_factory():
    """Fresh in-memory database with all tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return RuleStore(db)


@pytest.fixture
def cache():
    return MemoryPermissionCache(ttl_seconds=30)


@pytest.fixture
def resolver(store, cache):
    return PermissionResolver(store, cache)


@pytest.fixture
def guard(resolver):
    return Guard(resolver)


@pytest.fixture
def audit(store):
    return AuditRecorder(store)


@pytest.fixture
def mutations(store, guard, resolver, audit):
    return RuleMutationService(store, guard, resolver, audit)


@pytest.fixture
def seeded(db, store, mutations):
    """Seeded catalog with ``root`` as super admin and ``admin-1`` as admin."""
    seed_rbac(db, super_admin_principal=SUPER_ADMIN)
    admin_role = store.get_by_name(Role, "admin")
    mutations.assign_role(super_ctx(), ADMIN, admin_role.id)
    return store


def super_ctx() -> MutationContext:
    return MutationContext(actor_id=SUPER_ADMIN, ip_address="127.0.0.1", user_agent="pytest")


def admin_ctx() -> MutationContext:
    return MutationContext(actor_id=ADMIN, ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture
def root():
    return super_ctx()


@pytest.fixture
def admin():
    return admin_ctx()


@pytest.fixture
def role_named(store):
    def lookup(name: str) -> Role:
        return store.get_by_name(Role, name)
    return lookup


@pytest.fixture
def permission_named(store):
    def lookup(name: str) -> Permission:
        return store.get_by_name(Permission, name)
    return lookup


@pytest.fixture
def module_named(store):
    def lookup(name: str) -> Module:
        return store.get_by_name(Module, name)
    return lookup


def make_token(principal_id: str) -> str:
    return jwt.encode({"sub": principal_id}, "test-secret", algorithm="HS256")


@pytest.fixture
def auth_headers():
    def headers(principal_id: str) -> dict:
        return {"Authorization": f"Bearer {make_token(principal_id)}"}
    return headers
