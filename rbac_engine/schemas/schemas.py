"""Pydantic schemas for rule catalog requests and responses.

Blank strings are accepted here; the mutation service rejects them with
``VALIDATION_ERROR``.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


# ---- Module ----
class ModuleCreate(BaseModel):
    name: str
    display_name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None

class ModuleUpdate(BaseModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None

class ModuleOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    sort_order: int
    is_system: bool
    is_active: bool

    class Config:
        from_attributes = True


# ---- Permission ----
class PermissionCreate(BaseModel):
    name: str
    display_name: str
    resource: Optional[str] = None
    action: Optional[str] = None
    module_id: int
    description: Optional[str] = None

class PermissionUpdate(BaseModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    module_id: Optional[int] = None
    description: Optional[str] = None

class PermissionOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    module_id: Optional[int] = None
    is_system: bool
    is_active: bool

    class Config:
        from_attributes = True

class ModulePermissionsOut(BaseModel):
    module: Optional[ModuleOut] = None
    permissions: List[PermissionOut]


# ---- Role ----
class RoleCreate(BaseModel):
    name: str
    display_name: str
    description: Optional[str] = None
    level: Optional[int] = None
    sort_order: Optional[int] = None

class RoleUpdate(BaseModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    level: Optional[int] = None
    sort_order: Optional[int] = None

class RoleOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    level: Optional[int] = None
    sort_order: int
    is_system: bool
    is_active: bool

    class Config:
        from_attributes = True

class RoleDetailOut(RoleOut):
    permissions: List[PermissionOut] = []

class RolePermissionsSet(BaseModel):
    permission_ids: List[int] = Field(default_factory=list)


# ---- Assignments ----
class RoleAssignRequest(BaseModel):
    role_id: int
    expires_at: Optional[datetime] = None

class AssignmentOut(BaseModel):
    principal_id: str
    role_id: int
    role_name: str
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class PrincipalRolesOut(BaseModel):
    principal_id: str
    roles: List[AssignmentOut]


class PrincipalRolesPage(BaseModel):
    principals: List[PrincipalRolesOut]
    total: int
    page: int
    page_size: int


# ---- Resolution ----
class PermissionSetOut(BaseModel):
    principal_id: str
    permissions: List[str]


class RoleSetOut(BaseModel):
    principal_id: str
    roles: List[str]
    level: int


# ---- Audit ----
class AuditLogOut(BaseModel):
    id: int
    actor_id: Optional[str] = None
    action: str
    target_type: str
    target_id: Optional[str] = None
    detail_json: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AuditLogPage(BaseModel):
    logs: List[AuditLogOut]
    total: int
    page: int
    page_size: int


# ---- Common ----
class MessageResponse(BaseModel):
    message: str
    detail: Optional[Dict[str, Any]] = None
