"""RBAC catalog API router: modules, permissions, roles and assignments."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from rbac_engine.core.security import (
    get_catalog, get_mutation_context, get_mutations, get_principal_id,
    get_resolver, require_rule_manager,
)
from rbac_engine.models import UserRoleAssignment
from rbac_engine.schemas.schemas import (
    AssignmentOut, MessageResponse, PrincipalRolesOut, PrincipalRolesPage, RoleSetOut,
    ModuleCreate, ModuleOut, ModuleUpdate, ModulePermissionsOut,
    PermissionCreate, PermissionOut, PermissionSetOut, PermissionUpdate,
    RoleAssignRequest, RoleCreate, RoleDetailOut, RoleOut, RolePermissionsSet, RoleUpdate,
)
from rbac_engine.services.catalog_service import CatalogService
from rbac_engine.services.mutation_service import MutationContext, RuleMutationService
from rbac_engine.services.resolver_service import PermissionResolver

router = APIRouter(prefix="/rbac", tags=["rbac"])


def _assignment_out(assignment: UserRoleAssignment) -> AssignmentOut:
    return AssignmentOut(
        principal_id=assignment.principal_id,
        role_id=assignment.role_id,
        role_name=assignment.role.name,
        assigned_by=assignment.assigned_by,
        assigned_at=assignment.assigned_at,
        expires_at=assignment.expires_at,
    )


def _role_detail(catalog: CatalogService, role_id: int) -> RoleDetailOut:
    detail = catalog.get_role(role_id)
    out = RoleDetailOut.model_validate(detail["role"])
    out.permissions = [PermissionOut.model_validate(p) for p in detail["permissions"]]
    return out


# ==================== Modules ====================

@router.get("/modules", response_model=List[ModuleOut])
async def list_modules(
    catalog: CatalogService = Depends(get_catalog),
    grant=Depends(require_rule_manager),
):
    """List active modules in display order."""
    return [ModuleOut.model_validate(m) for m in catalog.list_modules()]


@router.post("/modules", response_model=ModuleOut, status_code=status.HTTP_201_CREATED)
async def create_module(
    body: ModuleCreate,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    return ModuleOut.model_validate(mutations.create_module(ctx, body))


@router.put("/modules/{module_id}", response_model=ModuleOut)
async def update_module(
    module_id: int,
    body: ModuleUpdate,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    return ModuleOut.model_validate(mutations.update_module(ctx, module_id, body))


@router.delete("/modules/{module_id}", response_model=MessageResponse)
async def delete_module(
    module_id: int,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    module = mutations.delete_module(ctx, module_id)
    return MessageResponse(message=f"Module '{module.name}' deleted")


# ==================== Permissions ====================

@router.get("/permissions", response_model=List[PermissionOut])
async def list_permissions(
    module_id: Optional[int] = Query(None),
    catalog: CatalogService = Depends(get_catalog),
    grant=Depends(require_rule_manager),
):
    return [PermissionOut.model_validate(p) for p in catalog.list_permissions(module_id)]


@router.get("/permissions/by-module", response_model=List[ModulePermissionsOut])
async def permissions_by_module(
    catalog: CatalogService = Depends(get_catalog),
    grant=Depends(require_rule_manager),
):
    """Active permissions grouped under their module."""
    return [
        ModulePermissionsOut(
            module=ModuleOut.model_validate(group["module"]) if group["module"] else None,
            permissions=[PermissionOut.model_validate(p) for p in group["permissions"]],
        )
        for group in catalog.permissions_by_module()
    ]


@router.post("/permissions", response_model=PermissionOut, status_code=status.HTTP_201_CREATED)
async def create_permission(
    body: PermissionCreate,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    return PermissionOut.model_validate(mutations.create_permission(ctx, body))


@router.post("/permissions/repair", response_model=MessageResponse)
async def repair_permissions(
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    """Fill blank resource/action columns from permission names."""
    repaired = mutations.repair_permission_fields(ctx)
    return MessageResponse(
        message=f"Repaired {len(repaired)} permissions",
        detail={"permission_ids": [p.id for p in repaired]},
    )


@router.put("/permissions/{permission_id}", response_model=PermissionOut)
async def update_permission(
    permission_id: int,
    body: PermissionUpdate,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    return PermissionOut.model_validate(mutations.update_permission(ctx, permission_id, body))


@router.delete("/permissions/{permission_id}", response_model=MessageResponse)
async def delete_permission(
    permission_id: int,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    permission = mutations.delete_permission(ctx, permission_id)
    return MessageResponse(message=f"Permission '{permission.name}' deleted")


# ==================== Roles ====================

@router.get("/roles", response_model=List[RoleOut])
async def list_roles(
    catalog: CatalogService = Depends(get_catalog),
    grant=Depends(require_rule_manager),
):
    return [RoleOut.model_validate(r) for r in catalog.list_roles()]


@router.get("/roles/{role_id}", response_model=RoleDetailOut)
async def get_role(
    role_id: int,
    catalog: CatalogService = Depends(get_catalog),
    grant=Depends(require_rule_manager),
):
    """Role with its active permissions."""
    return _role_detail(catalog, role_id)


@router.post("/roles", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(
    body: RoleCreate,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    return RoleOut.model_validate(mutations.create_role(ctx, body))


@router.put("/roles/{role_id}", response_model=RoleOut)
async def update_role(
    role_id: int,
    body: RoleUpdate,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    return RoleOut.model_validate(mutations.update_role(ctx, role_id, body))


@router.delete("/roles/{role_id}", response_model=MessageResponse)
async def delete_role(
    role_id: int,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    role = mutations.delete_role(ctx, role_id)
    return MessageResponse(message=f"Role '{role.name}' deleted")


@router.put("/roles/{role_id}/permissions", response_model=RoleDetailOut)
async def set_role_permissions(
    role_id: int,
    body: RolePermissionsSet,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
    catalog: CatalogService = Depends(get_catalog),
):
    """Replace the role's permission set."""
    mutations.set_role_permissions(ctx, role_id, body.permission_ids)
    return _role_detail(catalog, role_id)


# ==================== Assignments ====================

@router.get("/users", response_model=PrincipalRolesPage)
async def list_principals_with_roles(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    catalog: CatalogService = Depends(get_catalog),
    grant=Depends(require_rule_manager),
):
    """Principals holding at least one role, ordered by principal id."""
    result = catalog.principals_with_roles(page, page_size)
    return PrincipalRolesPage(
        principals=[
            PrincipalRolesOut(
                principal_id=entry["principal_id"],
                roles=[_assignment_out(a) for a in entry["assignments"]],
            )
            for entry in result["principals"]
        ],
        total=result["total"],
        page=result["page"],
        page_size=result["page_size"],
    )


@router.get("/users/{principal_id}/roles", response_model=List[AssignmentOut])
async def list_principal_roles(
    principal_id: str,
    catalog: CatalogService = Depends(get_catalog),
    grant=Depends(require_rule_manager),
):
    return [_assignment_out(a) for a in catalog.principal_roles(principal_id)]


@router.post(
    "/users/{principal_id}/roles",
    response_model=AssignmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def assign_role(
    principal_id: str,
    body: RoleAssignRequest,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    assignment = mutations.assign_role(ctx, principal_id, body.role_id, body.expires_at)
    return _assignment_out(assignment)


@router.delete("/users/{principal_id}/roles/{role_id}", response_model=MessageResponse)
async def revoke_role(
    principal_id: str,
    role_id: int,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    assignment = mutations.revoke_role(ctx, principal_id, role_id)
    return MessageResponse(message=f"Role '{assignment.role.name}' revoked from {principal_id}")


@router.delete("/users/{principal_id}/roles", response_model=MessageResponse)
async def revoke_all_roles(
    principal_id: str,
    ctx: MutationContext = Depends(get_mutation_context),
    mutations: RuleMutationService = Depends(get_mutations),
):
    count = mutations.revoke_all_roles(ctx, principal_id)
    return MessageResponse(message=f"Revoked {count} roles from {principal_id}", detail={"count": count})


# ==================== Current principal ====================

@router.get("/me/permissions", response_model=PermissionSetOut)
async def my_permissions(
    principal_id: str = Depends(get_principal_id),
    resolver: PermissionResolver = Depends(get_resolver),
):
    """Effective permissions of the caller (visitor when unauthenticated)."""
    permission_set = resolver.resolve(principal_id)
    return PermissionSetOut(principal_id=principal_id, permissions=list(permission_set))


@router.get("/me/roles", response_model=RoleSetOut)
async def my_roles(
    principal_id: str = Depends(get_principal_id),
    resolver: PermissionResolver = Depends(get_resolver),
):
    roles = resolver.roles(principal_id)
    return RoleSetOut(
        principal_id=principal_id,
        roles=[role.name for role in roles],
        level=resolver.role_level(principal_id),
    )
