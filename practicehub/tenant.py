"""
Tenant context.

Every service call receives an explicit TenantContext built from the
authenticated principal. Lookups go through `scoped_get` so a row from
another organization is never returned.
"""

import logging
from dataclasses import dataclass
from typing import Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.orm import Session

from .database import is_postgres
from .exceptions import NotFoundError, PermissionDenied, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

STAFF_ROLES = frozenset({"clinic_admin", "staff"})


@dataclass(frozen=True)
class TenantContext:
    organization_id: int
    user_id: Optional[int] = None
    role: str = "staff"
    client_id: Optional[int] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_client(self) -> bool:
        return self.role == "client"


def scoped_get(
    db: Session,
    model: type[ModelT],
    entity_id: int,
    tenant: TenantContext,
    label: Optional[str] = None,
    lock: bool = False,
) -> ModelT:
    """
    Load `model` by id restricted to the tenant's organization.

    Raises NotFoundError when the row does not exist or belongs to another
    organization; the two cases are indistinguishable to the caller.
    """
    query = db.query(model).filter(
        model.id == entity_id, model.organization_id == tenant.organization_id
    )
    if lock:
        query = query.with_for_update()
    entity = query.first()
    if entity is None:
        raise NotFoundError(f"{label or model.__name__} not found", details={"id": entity_id})
    return entity


def scoped_reference(
    db: Session,
    model: type[ModelT],
    entity_id: int,
    tenant: TenantContext,
    label: Optional[str] = None,
    lock: bool = False,
) -> ModelT:
    """
    Resolve an id referenced from a request body.

    Unlike `scoped_get`, a missing or foreign row is a validation error: the
    request itself is malformed and is rejected before any write.
    """
    try:
        return scoped_get(db, model, entity_id, tenant, label=label, lock=lock)
    except NotFoundError as e:
        logger.warning(
            f"🚫 Rejected reference {model.__name__}#{entity_id} for organization {tenant.organization_id}"
        )
        raise ValidationError(
            f"{label or model.__name__} {entity_id} does not belong to this organization",
            code="CrossTenantReference",
            details={"field": (label or model.__name__).lower(), "id": entity_id},
        ) from e


def require_staff(tenant: TenantContext) -> None:
    if not tenant.is_staff:
        raise PermissionDenied("This action requires a staff account")


def set_tenant_context(db: Session, organization_id: int) -> None:
    """
    Push the organization into the PostgreSQL session for row-level security
    policies keyed on app.current_organization_id. No-op on other databases.
    """
    if not is_postgres(db):
        return
    try:
        db.execute(
            text("SELECT set_config('app.current_organization_id', :org_id, false)"),
            {"org_id": str(organization_id)},
        )
        logger.debug(f"RLS context set for organization_id={organization_id}")
    except Exception as e:
        logger.error(f"Failed to set RLS context for organization_id={organization_id}: {e}")
        raise
