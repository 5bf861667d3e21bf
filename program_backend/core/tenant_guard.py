"""
Tenant enforcement helpers

- Rows written on behalf of a resource inherit the tenant of the most
  specific owning resource; the request tenant is only a fallback.
- Reading another tenant's resource raises 404 (NOT 403) to prevent
  information leakage. Super admins bypass the check.
"""
import logging
from typing import Any, Optional

from program_backend.errors import ErrorCode, InternalError, NotFoundError
from program_backend.rbac import CallerContext

logger = logging.getLogger(__name__)


def resolve_tenant_id(
    owner_tenant_id: Optional[int],
    caller: CallerContext,
    context: str,
    **log_context: Any
) -> int:
    """
    Resolution order:
    1. tenant of the owning resource (submission, phase, project, event)
    2. tenant of the request

    Neither being present is a data-integrity failure, never a user error.
    """
    if owner_tenant_id is not None:
        return owner_tenant_id
    if caller.tenant_id is not None:
        return caller.tenant_id

    logger.error(
        f"Cannot determine tenant for {context}: user={caller.user_id} context={log_context}"
    )
    raise InternalError("Cannot determine tenant for this operation", code=ErrorCode.TENANT_UNRESOLVED)


def require_tenant_scope(caller: CallerContext, tenant_id: Optional[int], resource: str, identifier: Any = None) -> None:
    if caller.is_super_admin or tenant_id is None or caller.tenant_id is None:
        return
    if tenant_id != caller.tenant_id:
        logger.warning(
            f"Cross-tenant access blocked: user {caller.user_id} (tenant {caller.tenant_id}) "
            f"-> {resource} {identifier} (tenant {tenant_id})"
        )
        raise NotFoundError(resource, identifier)
